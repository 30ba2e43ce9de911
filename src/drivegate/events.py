"""EventBus and event types for access-relevant mutations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Mutations that sync clients or audit sinks may care about."""

    FOLDER_CREATED = "folder_created"
    RESOURCE_MOVED = "resource_moved"
    RESOURCE_RENAMED = "resource_renamed"
    RESOURCE_TRASHED = "resource_trashed"
    RESOURCE_RESTORED = "resource_restored"
    SHARE_CREATED = "share_created"
    SHARE_REVOKED = "share_revoked"


@dataclass(frozen=True, slots=True)
class ResourceEvent:
    """Immutable record of a committed mutation.

    Attributes:
        event_type: The kind of mutation that occurred.
        resource_type: ``"file"``, ``"folder"`` or ``"share"``.
        resource_id: Id of the affected resource.
        user_id: Principal that performed the mutation, if any.
        owner_id: Owner of the affected resource, if known.
        details: Event-specific extras (old/new parent, old name, ...).
    """

    event_type: EventType
    resource_type: str
    resource_id: str
    user_id: str | None = None
    owner_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


class EventBus:
    """Dispatches events to registered handlers.

    Handlers are called sequentially in registration order.
    Exceptions are logged but never propagated.  Events are emitted after
    commit, so a failing handler cannot undo the change.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[Callable[..., Any]]] = {et: [] for et in EventType}

    def register(self, event_type: EventType, handler: Callable[..., Any]) -> None:
        """Append *handler* to the list for *event_type*."""
        self._handlers[event_type].append(handler)

    def unregister(self, event_type: EventType, handler: Callable[..., Any]) -> bool:
        """Remove first occurrence of *handler*. Return True if found."""
        handlers = self._handlers[event_type]
        try:
            handlers.remove(handler)
            return True
        except ValueError:
            return False

    async def emit(self, event: ResourceEvent) -> None:
        """Dispatch *event* to all registered handlers for its type."""
        for handler in self._handlers[event.event_type]:
            try:
                await handler(event)
            except Exception:
                logger.warning(
                    "Handler %r failed for %s on %s %s",
                    handler,
                    event.event_type.value,
                    event.resource_type,
                    event.resource_id,
                    exc_info=True,
                )

    @property
    def handler_count(self) -> int:
        """Total number of registered handlers across all event types."""
        return sum(len(h) for h in self._handlers.values())

    def clear(self) -> None:
        """Remove all registered handlers."""
        for handlers in self._handlers.values():
            handlers.clear()
