"""
Test suite for event system

Tests the event dispatcher and the events published by the ledger.
"""

import pytest
from unittest.mock import Mock

from core_accounting.events import DomainEvent, EventPayload, EventDispatcher
from core_accounting.service import AccountingService


def _payload(event_type=DomainEvent.ENTRY_POSTED, entity_id="1"):
    return EventPayload(event_type=event_type, entity_type="journal_entry",
                        entity_id=entity_id, data={})


class TestEventPayload:
    """Test EventPayload creation and serialization"""

    def test_to_dict(self):
        event = _payload()
        data = event.to_dict()
        assert data['event_type'] == "journal.entry_posted"
        assert data['entity_id'] == "1"
        assert data['event_id'] == event.event_id
        assert 'timestamp' in data

    def test_event_ids_are_unique(self):
        assert _payload().event_id != _payload().event_id


class TestEventDispatcher:
    """Test the event dispatcher"""

    def test_subscribe_and_publish_single_event(self):
        dispatcher = EventDispatcher()
        handler = Mock()
        dispatcher.subscribe(DomainEvent.ENTRY_POSTED, handler)

        event = _payload()
        dispatcher.publish(event)

        handler.assert_called_once_with(event)

    def test_handlers_only_receive_their_event_type(self):
        dispatcher = EventDispatcher()
        entry_handler = Mock()
        account_handler = Mock()
        dispatcher.subscribe(DomainEvent.ENTRY_POSTED, entry_handler)
        dispatcher.subscribe(DomainEvent.ACCOUNT_CREATED, account_handler)

        dispatcher.publish(_payload())

        entry_handler.assert_called_once()
        account_handler.assert_not_called()

    def test_subscribe_all(self):
        dispatcher = EventDispatcher()
        handler = Mock()
        dispatcher.subscribe_all(handler)

        dispatcher.publish(_payload(DomainEvent.ENTRY_POSTED))
        dispatcher.publish(_payload(DomainEvent.ACCOUNT_DELETED))

        assert handler.call_count == 2

    def test_unsubscribe(self):
        dispatcher = EventDispatcher()
        handler = Mock()
        dispatcher.subscribe(DomainEvent.ENTRY_POSTED, handler)
        dispatcher.unsubscribe(DomainEvent.ENTRY_POSTED, handler)

        dispatcher.publish(_payload())
        handler.assert_not_called()

    def test_unsubscribe_unknown_handler_is_harmless(self):
        EventDispatcher().unsubscribe(DomainEvent.ENTRY_POSTED, Mock())

    def test_failing_handler_does_not_stop_others(self):
        """Test that one handler raising neither propagates nor skips the rest"""
        dispatcher = EventDispatcher()
        failing = Mock(side_effect=RuntimeError("handler failed"))
        healthy = Mock()
        dispatcher.subscribe(DomainEvent.ENTRY_POSTED, failing)
        dispatcher.subscribe(DomainEvent.ENTRY_POSTED, healthy)

        failures = dispatcher.publish(_payload())

        failing.assert_called_once()
        healthy.assert_called_once()
        assert failures == 1

    def test_subscribe_returns_unsubscriber(self):
        dispatcher = EventDispatcher()
        handler = Mock()
        unsubscribe = dispatcher.subscribe(DomainEvent.ENTRY_POSTED, handler)

        assert unsubscribe()
        assert not unsubscribe()
        assert dispatcher.publish(_payload()) == 0
        handler.assert_not_called()

    def test_handler_subscribed_during_publish_waits_for_next_event(self):
        dispatcher = EventDispatcher()
        late = Mock()

        def first(event):
            dispatcher.subscribe(DomainEvent.ENTRY_POSTED, late)

        dispatcher.subscribe(DomainEvent.ENTRY_POSTED, first)
        dispatcher.publish(_payload())
        late.assert_not_called()

        dispatcher.publish(_payload())
        late.assert_called_once()

    def test_payload_is_immutable(self):
        with pytest.raises(AttributeError):
            _payload().entity_id = "2"

    def test_handler_count_and_clear(self):
        dispatcher = EventDispatcher()
        dispatcher.subscribe(DomainEvent.ENTRY_POSTED, Mock())
        dispatcher.subscribe(DomainEvent.ACCOUNT_CREATED, Mock())
        dispatcher.subscribe_all(Mock())

        assert dispatcher.get_handler_count(DomainEvent.ENTRY_POSTED) == 1
        assert dispatcher.get_handler_count() == 3

        dispatcher.clear()
        assert dispatcher.get_handler_count() == 0


class TestLedgerEvents:
    """Test events published by the accounting service"""

    def test_post_publishes_entry_posted(self):
        dispatcher = EventDispatcher()
        handler = Mock()
        dispatcher.subscribe(DomainEvent.ENTRY_POSTED, handler)

        service = AccountingService(event_dispatcher=dispatcher)
        service.registry.seed_default_chart()
        entry = service.post_entry("2024-01-15", "F-001", "Venta", [
            {"account_code": "1101", "debit": "100"},
            {"account_code": "4101", "credit": "100"},
        ])

        handler.assert_called_once()
        event = handler.call_args[0][0]
        assert event.entity_id == str(entry.id)
        assert event.data['total'] == "100.00"
        assert event.data['accounts'] == ["1101", "4101"]

    def test_failing_subscriber_does_not_undo_post(self):
        """Test that a post stands even if a subscriber raises"""
        dispatcher = EventDispatcher()
        dispatcher.subscribe(DomainEvent.ENTRY_POSTED, Mock(side_effect=RuntimeError("boom")))

        service = AccountingService(event_dispatcher=dispatcher)
        service.registry.seed_default_chart()
        service.post_entry("2024-01-15", "F-001", "Venta", [
            {"account_code": "1101", "debit": "100"},
            {"account_code": "4101", "credit": "100"},
        ])

        assert service.ledger.entry_count() == 1
        assert service.get_account_balance("1101") == 100

    def test_account_lifecycle_events(self):
        dispatcher = EventDispatcher()
        handler = Mock()
        dispatcher.subscribe_all(handler)

        service = AccountingService(event_dispatcher=dispatcher)
        service.create_account("1101", "Caja", "asset")
        service.update_account("1101", name="Caja Chica")
        service.deactivate_or_delete("1101")

        types = [call[0][0].event_type for call in handler.call_args_list]
        assert types == [DomainEvent.ACCOUNT_CREATED, DomainEvent.ACCOUNT_UPDATED,
                         DomainEvent.ACCOUNT_DELETED]
