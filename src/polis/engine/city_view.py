"""City view — a live, read-only mirror of one city for presentation layers.

The view follows the store's snapshot listener for the city document.
After an action a caller may install an optimistic copy with
``apply_local``; the next committed snapshot always replaces it.
"""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Callable, Optional

from polis.engine import task_queue
from polis.models.tasks import QueueKind
from polis.persistence.serialization import city_from_doc
from polis.util import constants

if TYPE_CHECKING:
    from polis.engine.city_service import CityService
    from polis.models.city import City
    from polis.persistence.document_store import DocumentStore

log = logging.getLogger(__name__)

CityListener = Callable[[Optional["City"]], None]


class CityView:
    """Observer over a single city document.

    Args:
        store: Document store to subscribe to.
        city_service: Economy and accrual rules used for derived values.
        city_id: City to mirror.
    """

    def __init__(self, store: DocumentStore, city_service: CityService, city_id: str) -> None:
        self._store = store
        self._cities = city_service
        self.city_id = city_id
        self._snapshot: Optional[City] = None
        self._local: Optional[City] = None
        self._effects: dict[str, float] = {}
        self._listeners: list[CityListener] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    # -- Subscription ----------------------------------------------------

    async def attach(self) -> None:
        """Load the current document and start following its snapshots."""
        doc = await self._store.get(constants.CITIES, self.city_id)
        self._set_snapshot(doc)
        if self._snapshot is not None:
            self._effects = await self._cities.effects_for(self._snapshot)
        self._unsubscribe = self._store.watch(constants.CITIES, self.city_id, self._set_snapshot)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_change(self, listener: CityListener) -> Callable[[], None]:
        """Call ``listener(city)`` whenever the visible state changes."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_snapshot(self, doc: Optional[dict]) -> None:
        self._snapshot = city_from_doc(self.city_id, doc) if doc is not None else None
        if self._local is not None:
            log.debug("City %s: optimistic state replaced by snapshot", self.city_id)
        self._local = None
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self.city)

    def apply_local(self, city: City) -> None:
        """Show ``city`` until the next committed snapshot arrives."""
        self._local = city
        self._notify()

    def set_effects(self, effects: dict[str, float]) -> None:
        self._effects = dict(effects)

    # -- State -----------------------------------------------------------

    @property
    def city(self) -> Optional[City]:
        return self._local if self._local is not None else self._snapshot

    @property
    def is_optimistic(self) -> bool:
        return self._local is not None

    def stats(self) -> dict:
        """Derived numbers a city screen shows."""
        city = self.city
        if city is None:
            return {}
        economy = self._cities.economy
        farm = economy.farm_capacity(city.level(constants.FARM), self._effects)
        used = economy.city_used_population(city)
        return {
            "max_population": farm,
            "used_population": used,
            "available_population": farm - used,
            "happiness": economy.happiness(city, self._effects),
            "production": economy.production_rates(city, self._effects),
            "warehouse_capacity": self._cities.warehouse_capacity(city, self._effects),
            "market_capacity": economy.market_capacity(city.level(constants.MARKET)),
            "hospital_capacity": economy.hospital_capacity(city.level(constants.HOSPITAL)),
            "max_favor": economy.max_favor(city.level(constants.TEMPLE)),
            "points": economy.city_points(city),
        }

    def projected(self, at: float) -> Optional[City]:
        """A copy of the city with resources and favor accrued up to ``at``."""
        city = self.city
        if city is None:
            return None
        projected = copy.deepcopy(city)
        self._cities.accrue(projected, at - city.last_updated, self._effects)
        return projected

    def projected_resources(self, at: float) -> dict[str, float]:
        projected = self.projected(at)
        return dict(projected.resources) if projected else {}

    def projected_favor(self, at: float) -> float:
        projected = self.projected(at)
        return projected.favor if projected else 0.0

    def queue_remaining(self, kind: QueueKind, at: float) -> Optional[float]:
        """Seconds until the head task of ``kind`` completes, or None if idle."""
        city = self.city
        if city is None:
            return None
        return task_queue.head_remaining(city.queue(kind), at)
