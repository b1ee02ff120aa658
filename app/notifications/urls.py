"""
URL configuration for notifications API.

Routes:
    /                     - List notifications (GET)
    /{id}/read/           - Mark single as read (POST)
"""

from rest_framework.routers import DefaultRouter

from notifications.views import NotificationViewSet

router = DefaultRouter()
router.register(r"", NotificationViewSet, basename="notification")

app_name = "notifications"
urlpatterns = router.urls
