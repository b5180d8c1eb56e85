"""
Notification collaborator and the dispatcher the core talks to.

The core never calls a NotificationClient directly. It goes through
NotificationDispatcher, which:
- never raises: delivery failures are logged and the notification stays in
  an outbox so ``retry_pending()`` can redeliver it (at-least-once)
- drops any notification whose ``dedupe_key`` was already delivered, so a
  redelivery never reaches the user twice (idempotent consumer)
- tells delivery listeners about every confirmed delivery, retries included,
  so owners of durable "notified" flags can record them (the in-memory
  dedupe set does not survive a restart)
"""

from typing import Callable, Protocol, runtime_checkable

import structlog

from ..errors import NotificationError
from ..models.notification import Notification

logger = structlog.get_logger(__name__)


@runtime_checkable
class NotificationClient(Protocol):
    """Delivery transport. Implementations may raise on failure."""

    def create_notification(self, notification: Notification) -> None:
        ...


class InMemoryNotificationClient:
    """Collects delivered notifications in a list."""

    def __init__(self):
        self.notifications: list[Notification] = []

    def create_notification(self, notification: Notification) -> None:
        self.notifications.append(notification)

    def for_user(self, user_id: str) -> list[Notification]:
        return [n for n in self.notifications if n.user_id == user_id]


class NotificationDispatcher:
    """Failure-isolated, idempotent front for a NotificationClient."""

    def __init__(self, client: NotificationClient | None = None):
        self.client = client or InMemoryNotificationClient()
        self._delivered_keys: set[str] = set()
        self._outbox: list[Notification] = []
        self._listeners: list[Callable[[Notification], None]] = []

    def add_delivery_listener(self, listener: Callable[[Notification], None]) -> None:
        """Call ``listener(notification)`` after each confirmed delivery."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    @property
    def pending(self) -> list[Notification]:
        """Notifications whose delivery failed and awaits retry."""
        return list(self._outbox)

    def dispatch(self, notification: Notification) -> bool:
        """
        Deliver a notification.

        Returns:
            True if delivered now or already delivered under the same
            dedupe key; False if delivery failed (queued for retry).
        """
        key = notification.dedupe_key
        if key and key in self._delivered_keys:
            logger.debug('notification.duplicate_skipped', dedupe_key=key)
            self._confirm(notification)
            return True

        try:
            self.client.create_notification(notification)
        except Exception as e:
            error = NotificationError(
                f"Notification delivery failed: {e}",
                context={
                    'user_id': notification.user_id,
                    'type': notification.type,
                    'entity_id': notification.entity_id,
                },
            )
            logger.warning('notification.delivery_failed', error=str(error))
            if notification not in self._outbox:
                self._outbox.append(notification)
            return False

        if key:
            self._delivered_keys.add(key)
        if notification in self._outbox:
            self._outbox.remove(notification)
        logger.info(
            'notification.delivered',
            user_id=notification.user_id,
            type=notification.type,
            entity_id=notification.entity_id,
        )
        self._confirm(notification)
        return True

    def _confirm(self, notification: Notification) -> None:
        for listener in self._listeners:
            try:
                listener(notification)
            except Exception as e:
                logger.warning(
                    'notification.listener_failed',
                    dedupe_key=notification.dedupe_key,
                    entity_id=notification.entity_id,
                    error=str(e),
                )

    def retry_pending(self) -> int:
        """Redeliver queued notifications. Returns how many were delivered."""
        delivered = 0
        for notification in list(self._outbox):
            if self.dispatch(notification):
                delivered += 1
        return delivered
