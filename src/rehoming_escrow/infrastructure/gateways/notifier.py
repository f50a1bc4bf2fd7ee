"""Notification adapter.

Delivery mechanics (push, email, in-app) are owned by another team; this
adapter only records the intent in the structured log. Notifications are
fire-and-forget: the outbox dispatcher never lets a failure here roll back
a state transition.
"""

from __future__ import annotations

from rehoming_escrow.logging_config import get_logger

logger = get_logger(__name__)


class LoggingNotifier:
    """Notifier that emits one structured log entry per message."""

    async def send(self, user_id: str, event: str, data: dict) -> None:
        logger.info("notification.sent", user_id=user_id, notification=event, **data)
