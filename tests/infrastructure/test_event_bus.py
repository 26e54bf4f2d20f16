"""Unit tests for EventBus."""

from datetime import UTC, datetime

import pytest

from startpage.domain.events.state_events import (
    BackgroundSwapped,
    MutationOrigin,
    StateField,
    StateMutated,
)
from startpage.infrastructure.messaging.event_bus import EventBus


def mutation(field: StateField = StateField.SHORTCUTS) -> StateMutated:
    return StateMutated(occurred_at=datetime.now(UTC), field=field, origin=MutationOrigin.LOCAL)


class TestEventBus:
    """Test suite for EventBus."""

    @pytest.fixture
    def event_bus(self):
        return EventBus()

    @pytest.mark.asyncio
    async def test_subscribe_and_publish(self, event_bus):
        received = []

        async def handler(event: StateMutated):
            received.append(event)

        event_bus.subscribe(StateMutated, handler)
        event = mutation()

        await event_bus.publish(event)

        assert received == [event]

    @pytest.mark.asyncio
    async def test_handlers_run_in_subscription_order(self, event_bus):
        calls = []

        async def first(event):
            calls.append("first")

        async def second(event):
            calls.append("second")

        event_bus.subscribe(StateMutated, first)
        event_bus.subscribe(StateMutated, second)

        await event_bus.publish(mutation())

        assert calls == ["first", "second"]

    @pytest.mark.asyncio
    async def test_only_matching_type_is_dispatched(self, event_bus):
        swapped = []

        async def handler(event):
            swapped.append(event)

        event_bus.subscribe(BackgroundSwapped, handler)

        await event_bus.publish(mutation())

        assert swapped == []

    @pytest.mark.asyncio
    async def test_handler_error_does_not_affect_other_handlers(self, event_bus):
        """Test that error in one handler doesn't stop other handlers."""
        handler2_called = False

        async def handler1(event):
            raise ValueError("Handler 1 error")

        async def handler2(event):
            nonlocal handler2_called
            handler2_called = True

        event_bus.subscribe(StateMutated, handler1)
        event_bus.subscribe(StateMutated, handler2)

        await event_bus.publish(mutation())

        assert handler2_called is True

    def test_unsubscribe_and_counts(self, event_bus):
        async def handler(event):
            pass

        event_bus.subscribe(StateMutated, handler)
        assert event_bus.get_handler_count(StateMutated) == 1
        assert event_bus.get_handler_count(BackgroundSwapped) == 0

        event_bus.unsubscribe(StateMutated, handler)
        event_bus.unsubscribe(StateMutated, handler)
        assert event_bus.get_handler_count(StateMutated) == 0

    def test_clear_handlers(self, event_bus):
        async def handler(event):
            pass

        event_bus.subscribe(StateMutated, handler)
        event_bus.subscribe(BackgroundSwapped, handler)

        event_bus.clear_handlers(StateMutated)
        assert event_bus.get_handler_count(StateMutated) == 0
        assert event_bus.get_handler_count(BackgroundSwapped) == 1

        event_bus.clear_handlers()
        assert event_bus.get_handler_count(BackgroundSwapped) == 0

    def test_event_requires_datetime(self):
        with pytest.raises(TypeError):
            StateMutated(occurred_at="now", field=StateField.SHORTCUTS, origin=MutationOrigin.LOCAL)
