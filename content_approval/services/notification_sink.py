"""
Notification sink for approval workflow events.

The engine only emits events; delivery (email, websocket, in-app) belongs to
whichever sink is plugged in. The default sink writes them to the log.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from content_approval.core.time_utils import utc_now

logger = logging.getLogger(__name__)


class NotificationType(Enum):
    """Events the approval engine emits"""
    REAPPROVAL_REQUIRED = "reapproval_required"
    DECISION_RECORDED = "decision_recorded"


@dataclass
class NotificationEvent:
    """Single workflow event"""
    notification_type: NotificationType
    post_id: str
    client_id: str
    project_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utc_now)


class NotificationSink:
    """Interface for event delivery"""

    def notify(self, event: NotificationEvent) -> None:
        raise NotImplementedError


class LoggingNotificationSink(NotificationSink):
    """Writes events to the application log"""

    def notify(self, event: NotificationEvent) -> None:
        logger.info(
            f"{event.notification_type.value} for post {event.post_id} (client {event.client_id})",
            extra={"post_id": event.post_id, "client_id": event.client_id},
        )


class InMemoryNotificationSink(NotificationSink):
    """Collects events in a list; used when embedding the engine in tests or scripts"""

    def __init__(self):
        self.events: List[NotificationEvent] = []

    def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def of_type(self, notification_type: NotificationType) -> List[NotificationEvent]:
        return [e for e in self.events if e.notification_type == notification_type]


_default_sink: Optional[NotificationSink] = None


def get_notification_sink() -> NotificationSink:
    """Get the process-wide default sink"""
    global _default_sink
    if _default_sink is None:
        _default_sink = LoggingNotificationSink()
    return _default_sink
