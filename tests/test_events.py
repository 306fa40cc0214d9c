"""
Tests for the Event System (Observer Pattern)
"""

import pytest
from datetime import datetime
from unittest.mock import Mock

from transfer_ledger.events import DomainEvent, EventPayload, EventDispatcher


class TestEventPayload:
    """Test EventPayload creation and serialization"""

    def test_event_payload_creation(self):
        event = EventPayload(
            event_type=DomainEvent.TRANSFER_COMPLETED,
            entity_type="transfer",
            entity_id="test-123",
            data={"amount": "100.00"}
        )

        assert event.event_type == DomainEvent.TRANSFER_COMPLETED
        assert isinstance(event.timestamp, datetime)
        assert len(event.event_id) > 0

        as_dict = event.to_dict()
        assert as_dict["event_type"] == "transfer.completed"
        assert as_dict["data"] == {"amount": "100.00"}


class TestEventDispatcher:
    """Test publish/subscribe behaviour"""

    def setup_method(self):
        self.dispatcher = EventDispatcher()
        self.event = EventPayload(
            event_type=DomainEvent.ACCOUNT_CREATED,
            entity_type="account",
            entity_id="A1",
            data={}
        )

    def test_specific_and_global_handlers(self):
        specific = Mock()
        catch_all = Mock()
        other = Mock()
        self.dispatcher.subscribe(DomainEvent.ACCOUNT_CREATED, specific)
        self.dispatcher.subscribe(DomainEvent.TRANSFER_COMPLETED, other)
        self.dispatcher.subscribe_all(catch_all)

        self.dispatcher.publish(self.event)

        specific.assert_called_once_with(self.event)
        catch_all.assert_called_once_with(self.event)
        other.assert_not_called()
        assert self.dispatcher.get_handler_count() == 3
        assert self.dispatcher.get_handler_count(DomainEvent.ACCOUNT_CREATED) == 1

    def test_failing_handler_does_not_stop_others(self):
        failing = Mock(side_effect=RuntimeError("handler failure"))
        working = Mock()
        self.dispatcher.subscribe(DomainEvent.ACCOUNT_CREATED, failing)
        self.dispatcher.subscribe(DomainEvent.ACCOUNT_CREATED, working)

        self.dispatcher.publish(self.event)

        working.assert_called_once()

    def test_unsubscribe_and_clear(self):
        handler = Mock()
        self.dispatcher.subscribe(DomainEvent.ACCOUNT_CREATED, handler)
        self.dispatcher.unsubscribe(DomainEvent.ACCOUNT_CREATED, handler)
        self.dispatcher.publish(self.event)
        handler.assert_not_called()

        # Unsubscribing twice only logs a warning
        self.dispatcher.unsubscribe(DomainEvent.ACCOUNT_CREATED, handler)

        self.dispatcher.subscribe_all(handler)
        self.dispatcher.clear()
        assert self.dispatcher.get_handler_count() == 0
