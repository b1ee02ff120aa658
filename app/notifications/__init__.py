"""
Notifications app: persisted in-app notifications.

Settlement services call NotificationService.notify() after their
transaction commits. Delivery is best-effort; a failed notification is
logged and never rolls back or fails the settlement operation.
"""
