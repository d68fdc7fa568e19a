"""Typed event bus for decoupled notifications between services.

Services emit events only after a transaction has committed, so a
handler never observes state that was rolled back.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, TypeVar, Type

T = TypeVar("T")


# -- City events ---------------------------------------------------------

@dataclass(frozen=True)
class TaskQueued:
    """A task was appended to one of a city's queues."""
    city_id: str
    queue: str
    task_id: str
    end_time: float


@dataclass(frozen=True)
class TaskCancelled:
    """The tail task of a queue was cancelled and refunded."""
    city_id: str
    queue: str
    task_id: str


@dataclass(frozen=True)
class TaskCompleted:
    """A queued task reached its end time and was applied to the city."""
    city_id: str
    queue: str
    task_id: str
    item_id: str


@dataclass(frozen=True)
class SpellCast:
    """A divine power was cast from a city."""
    city_id: str
    god: str
    spell_id: str
    target_city_id: str | None = None


# -- Movement events -----------------------------------------------------

@dataclass(frozen=True)
class MovementDispatched:
    """A movement record was created."""
    movement_id: str
    movement_type: str
    origin_city_id: str
    arrival_time: float


@dataclass(frozen=True)
class MovementRecalled:
    """A movement was cancelled inside its grace window or turned around."""
    movement_id: str
    cancelled: bool


# -- Shared-entity events ------------------------------------------------

@dataclass(frozen=True)
class TradeAccepted:
    """A market offer was accepted and removed."""
    trade_id: str
    creator_id: str
    acceptor_id: str


@dataclass(frozen=True)
class WonderLevelClaimed:
    """An alliance wonder advanced a level."""
    alliance_id: str
    wonder_id: str
    level: int


@dataclass(frozen=True)
class AllianceResearchCompleted:
    """Donations paid for the next level of an alliance research."""
    alliance_id: str
    research_id: str
    level: int


@dataclass(frozen=True)
class CitySlotClaimed:
    """A player took ownership of an empty city slot."""
    slot_id: str
    city_id: str
    owner_id: str


# -- Event Bus -----------------------------------------------------------

class EventBus:
    """Simple synchronous event bus with typed events.

    Usage:
        bus = EventBus()
        bus.on(TaskCompleted, lambda e: print(e.item_id))
        bus.emit(TaskCompleted(city_id="c1", queue="build", task_id="t1", item_id="farm"))
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable[[Any], None]]] = defaultdict(list)

    def on(self, event_type: Type[T], handler: Callable[[T], None]) -> None:
        """Register a handler for an event type."""
        self._handlers[event_type].append(handler)

    def off(self, event_type: Type[T], handler: Callable[[T], None]) -> None:
        """Unregister a handler."""
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: object) -> None:
        """Emit an event to all registered handlers."""
        for handler in self._handlers.get(type(event), []):
            handler(event)

    def clear(self) -> None:
        """Remove all handlers."""
        self._handlers.clear()
