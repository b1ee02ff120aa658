"""
Tests for the notifications API views.

Tests follow pattern: test_<method>_<scenario>_<expected_outcome>
"""

from rest_framework import status

from notifications.tests.factories import NotificationFactory

# =============================================================================
# URL Constants
# =============================================================================


NOTIFICATIONS_URL = "/api/v1/notifications/"


def read_url(notification_id):
    return f"{NOTIFICATIONS_URL}{notification_id}/read/"


# =============================================================================
# Tests
# =============================================================================


class TestNotificationListView:
    def test_get_returns_only_own_notifications(self, buyer_client, buyer, outsider):
        NotificationFactory.create_batch(2, recipient=buyer)
        NotificationFactory(recipient=outsider)

        response = buyer_client.get(NOTIFICATIONS_URL)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["count"] == 2

    def test_get_filters_unread(self, buyer_client, buyer):
        NotificationFactory(recipient=buyer, is_read=True)
        unread = NotificationFactory(recipient=buyer)

        response = buyer_client.get(NOTIFICATIONS_URL, {"is_read": "false"})

        assert response.data["count"] == 1
        assert response.data["results"][0]["id"] == unread.id

    def test_settlement_events_arrive_in_inbox(self, seller_client, paid_order):
        response = seller_client.get(NOTIFICATIONS_URL)

        titles = [item["title"] for item in response.data["results"]]
        assert "New Order Alert!" in titles

    def test_get_unauthenticated_returns_401(self, api_client):
        assert api_client.get(NOTIFICATIONS_URL).status_code == status.HTTP_401_UNAUTHORIZED


class TestMarkReadView:
    def test_post_marks_read(self, buyer_client, buyer):
        notification = NotificationFactory(recipient=buyer)

        response = buyer_client.post(read_url(notification.id))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["is_read"] is True

    def test_post_other_users_notification_returns_404(self, outsider_client, buyer):
        notification = NotificationFactory(recipient=buyer)

        response = outsider_client.post(read_url(notification.id))

        assert response.status_code == status.HTTP_404_NOT_FOUND
