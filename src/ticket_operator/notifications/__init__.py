from .dispatcher import NotificationDispatcher
from .events import NotificationEvent, NotificationEventType
from .sinks import NotificationSink, OsNotificationSink, WebhookSink

__all__ = [
    "NotificationDispatcher",
    "NotificationEvent",
    "NotificationEventType",
    "NotificationSink",
    "OsNotificationSink",
    "WebhookSink",
]
