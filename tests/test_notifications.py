"""
Tests for NotificationDispatcher.

Tests cover:
- Successful delivery reaches the client
- Failing client: dispatch returns False, never raises, notification queued
- retry_pending() redelivers queued notifications
- Same dedupe key is delivered once (idempotent consumer)
- Delivery listeners hear about every confirmed delivery, retries included,
  and a failing listener never fails the delivery
"""

from unittest.mock import MagicMock

from brokerage_graph.clients.notifier import InMemoryNotificationClient, NotificationDispatcher
from brokerage_graph.models import Notification


def _notification(key: str | None = 'match_1:new-match') -> Notification:
    return Notification(
        user_id='agent_b',
        type='new-property-match',
        priority='high',
        title='New match',
        message='A listing matches your requirement',
        entity_type='property-match',
        entity_id='match_1',
        dedupe_key=key,
    )


class TestDelivery:
    def test_delivers_to_client(self, dispatcher, notifier):
        assert dispatcher.dispatch(_notification()) is True
        assert len(notifier.for_user('agent_b')) == 1

    def test_default_client_is_in_memory(self):
        dispatcher = NotificationDispatcher()
        assert isinstance(dispatcher.client, InMemoryNotificationClient)


class TestFailureIsolation:
    def test_failure_returns_false_and_queues(self):
        client = MagicMock()
        client.create_notification.side_effect = ConnectionError('transport down')
        dispatcher = NotificationDispatcher(client)

        assert dispatcher.dispatch(_notification()) is False
        assert len(dispatcher.pending) == 1

    def test_retry_pending_redelivers(self):
        client = MagicMock()
        client.create_notification.side_effect = [ConnectionError('down'), None]
        dispatcher = NotificationDispatcher(client)
        dispatcher.dispatch(_notification())

        assert dispatcher.retry_pending() == 1
        assert dispatcher.pending == []
        assert client.create_notification.call_count == 2


class TestIdempotency:
    def test_same_key_delivered_once(self, dispatcher, notifier):
        dispatcher.dispatch(_notification())
        dispatcher.dispatch(_notification())

        assert len(notifier.notifications) == 1

    def test_notifications_without_key_are_not_deduplicated(self, dispatcher, notifier):
        dispatcher.dispatch(_notification(key=None))
        dispatcher.dispatch(_notification(key=None))

        assert len(notifier.notifications) == 2


class TestDeliveryListeners:
    def test_listener_sees_delivery_and_retry(self):
        client = MagicMock()
        client.create_notification.side_effect = [ConnectionError('down'), None]
        dispatcher = NotificationDispatcher(client)
        seen = []
        dispatcher.add_delivery_listener(seen.append)

        dispatcher.dispatch(_notification())
        assert seen == []

        dispatcher.retry_pending()
        assert [n.entity_id for n in seen] == ['match_1']

    def test_listener_registered_once(self, dispatcher):
        seen = []
        dispatcher.add_delivery_listener(seen.append)
        dispatcher.add_delivery_listener(seen.append)

        dispatcher.dispatch(_notification(key=None))

        assert len(seen) == 1

    def test_failing_listener_does_not_fail_delivery(self, dispatcher, notifier):
        listener = MagicMock(side_effect=RuntimeError('store down'))
        dispatcher.add_delivery_listener(listener)

        assert dispatcher.dispatch(_notification()) is True
        assert len(notifier.notifications) == 1
        listener.assert_called_once()
