"""In-process event bus for domain events.

Publishers (the state store, the background swapper) announce what happened;
subscribers (the reconciliation engine's push watcher, the swapper's URL
watcher) react without the publisher knowing about them.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import TypeVar

from startpage.domain.events.state_events import DomainEvent

logger = logging.getLogger(__name__)

TEvent = TypeVar("TEvent", bound=DomainEvent)

EventHandler = Callable[[TEvent], Awaitable[None]]


class EventBus:
    """Dispatch events to async handlers in subscription order.

    Example:
        ```python
        bus = EventBus()

        async def on_mutation(event: StateMutated) -> None:
            print(event.field, event.origin)

        bus.subscribe(StateMutated, on_mutation)
        await bus.publish(StateMutated(occurred_at=utc_now(), field=..., origin=...))
        ```
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: type[TEvent], handler: EventHandler[TEvent]) -> None:
        self._handlers[event_type].append(handler)
        logger.debug(
            "event_handler_subscribed",
            extra={
                "event_type": event_type.__name__,
                "handler": getattr(handler, "__name__", repr(handler)),
                "total_handlers": len(self._handlers[event_type]),
            },
        )

    def unsubscribe(self, event_type: type[TEvent], handler: EventHandler[TEvent]) -> None:
        try:
            self._handlers[event_type].remove(handler)
        except ValueError:
            logger.warning(
                "event_handler_not_found",
                extra={
                    "event_type": event_type.__name__,
                    "handler": getattr(handler, "__name__", repr(handler)),
                },
            )

    async def publish(self, event: DomainEvent) -> None:
        """Call every handler for the event's type; a failing handler does not stop the rest."""
        event_type = type(event)
        handlers = list(self._handlers.get(event_type, []))
        if not handlers:
            logger.debug("event_published_no_handlers", extra={"event_type": event_type.__name__})
            return

        for handler in handlers:
            try:
                await handler(event)
            except Exception as exc:
                logger.exception(
                    "event_handler_failed",
                    extra={
                        "event_type": event_type.__name__,
                        "handler": getattr(handler, "__name__", repr(handler)),
                        "error": str(exc),
                    },
                )

    def get_handler_count(self, event_type: type[DomainEvent]) -> int:
        return len(self._handlers.get(event_type, []))

    def clear_handlers(self, event_type: type[DomainEvent] | None = None) -> None:
        if event_type is None:
            self._handlers.clear()
        else:
            self._handlers.pop(event_type, None)
