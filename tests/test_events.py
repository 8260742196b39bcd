"""
Tests for the event dispatcher
"""

import pytest
from datetime import datetime
from unittest.mock import Mock

from core_ledger.events import DomainEvent, EventDispatcher, EventPayload, EventPublisherMixin


def make_event(event_type=DomainEvent.DEPOSIT_COMPLETED):
    return EventPayload(
        event_type=event_type,
        entity_type="transaction",
        entity_id="TXN1",
        data={"amount": "10.00"}
    )


class TestEventPayload:

    def test_defaults(self):
        event = make_event()
        assert isinstance(event.timestamp, datetime)
        assert event.timestamp.tzinfo is not None
        assert len(event.event_id) > 0

    def test_to_dict(self):
        data = make_event().to_dict()
        assert data["event_type"] == "deposit.completed"
        assert data["entity_id"] == "TXN1"
        assert data["data"] == {"amount": "10.00"}


class TestEventDispatcher:

    def setup_method(self):
        self.dispatcher = EventDispatcher()

    def test_subscribe_and_publish(self):
        handler = Mock()
        self.dispatcher.subscribe(DomainEvent.DEPOSIT_COMPLETED, handler)

        event = make_event()
        self.dispatcher.publish(event)
        self.dispatcher.publish(make_event(DomainEvent.TRANSFER_COMPLETED))

        handler.assert_called_once_with(event)

    def test_global_handler_receives_everything(self):
        handler = Mock()
        self.dispatcher.subscribe_all(handler)

        self.dispatcher.publish(make_event())
        self.dispatcher.publish(make_event(DomainEvent.LEDGER_HALTED))

        assert handler.call_count == 2

    def test_failing_handler_does_not_break_others(self):
        failing = Mock(side_effect=RuntimeError("handler down"))
        working = Mock()
        self.dispatcher.subscribe(DomainEvent.DEPOSIT_COMPLETED, failing)
        self.dispatcher.subscribe(DomainEvent.DEPOSIT_COMPLETED, working)

        self.dispatcher.publish(make_event())

        working.assert_called_once()

    def test_unsubscribe(self):
        handler = Mock()
        self.dispatcher.subscribe(DomainEvent.DEPOSIT_COMPLETED, handler)
        self.dispatcher.unsubscribe(DomainEvent.DEPOSIT_COMPLETED, handler)
        self.dispatcher.unsubscribe(DomainEvent.DEPOSIT_COMPLETED, handler)  # second time only warns

        self.dispatcher.publish(make_event())

        handler.assert_not_called()

    def test_handler_count(self):
        self.dispatcher.subscribe(DomainEvent.DEPOSIT_COMPLETED, Mock())
        self.dispatcher.subscribe(DomainEvent.TRANSFER_COMPLETED, Mock())
        self.dispatcher.subscribe_all(Mock())

        assert self.dispatcher.get_handler_count(DomainEvent.DEPOSIT_COMPLETED) == 1
        assert self.dispatcher.get_handler_count() == 3

    def test_handler_may_subscribe_during_publish(self):
        late = Mock()

        def subscribing_handler(event):
            self.dispatcher.subscribe(DomainEvent.DEPOSIT_COMPLETED, late)

        self.dispatcher.subscribe(DomainEvent.DEPOSIT_COMPLETED, subscribing_handler)
        self.dispatcher.publish(make_event())
        late.assert_not_called()

        self.dispatcher.publish(make_event())
        late.assert_called_once()


class TestEventPublisherMixin:

    def test_no_dispatcher_is_silent(self):
        EventPublisherMixin().publish_event(DomainEvent.ACCOUNT_CREATED, "account", "1", {})

    def test_publishes_through_dispatcher(self):
        publisher = EventPublisherMixin()
        publisher.events = EventDispatcher()
        handler = Mock()
        publisher.events.subscribe(DomainEvent.ACCOUNT_CREATED, handler)

        publisher.publish_event(DomainEvent.ACCOUNT_CREATED, "account", "1", {"owner_id": "u1"})

        event = handler.call_args[0][0]
        assert event.entity_id == "1"
        assert event.data == {"owner_id": "u1"}
