"""Event router: maps event-type tags to handler objects.

The routing table is built once, at construction, from the handlers'
declared tags. New event types are supported by registering another
handler; dispatch itself never changes. A tag without a handler resolves
to None: the pipeline acknowledges it without touching state, so the
provider can grow its vocabulary without breaking this receiver.
"""

from collections.abc import Iterable
from enum import StrEnum
from typing import Protocol, runtime_checkable

from paysync.domain.states import EventType
from paysync.webhooks.events import WebhookEvent


class HandlerResult(StrEnum):
    """What applying an event did to local state."""

    APPLIED = "applied"
    STALE = "stale"  # not newer than the entity's last applied event


@runtime_checkable
class EventHandler(Protocol):
    event_types: frozenset[str]

    def handles(self, tag: str) -> bool: ...

    async def apply(self, event: WebhookEvent) -> HandlerResult: ...


class EventRouter:
    """Tag -> handler table. Registering the same tag twice is an error."""

    def __init__(self, handlers: Iterable[EventHandler] = ()):
        self._routes: dict[str, EventHandler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: EventHandler) -> None:
        for tag in handler.event_types:
            if not handler.handles(tag):
                raise ValueError(f"{type(handler).__name__} declares {tag!r} but does not handle it")
            if tag in self._routes:
                existing = type(self._routes[tag]).__name__
                raise ValueError(f"Event type {tag!r} already routed to {existing}")
            self._routes[str(tag)] = handler

    def resolve(self, tag: str) -> EventHandler | None:
        """Return the handler for ``tag``, or None for the Unhandled route."""
        return self._routes.get(tag)

    @property
    def tags(self) -> frozenset[str]:
        return frozenset(self._routes)

    def unrouted(self) -> list[EventType]:
        """Known event types that have no handler registered."""
        return [event_type for event_type in EventType if event_type.value not in self._routes]
