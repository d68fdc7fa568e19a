"""City model — the authoritative per-city document.

Derived values (available population, happiness, production rates)
are never stored here; ``polis.engine.economy`` recomputes them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from polis.models.tasks import QueueKind, QueueTask


class HeroStatus(Enum):
    IDLE = "idle"
    IN_CITY = "in_city"
    EN_ROUTE = "en_route"


@dataclass
class BuildingState:
    level: int = 0
    workers: int = 0


@dataclass
class HeroState:
    """A recruited hero; ``city_id`` is set while stationed or travelling."""

    hero_id: str
    status: HeroStatus = HeroStatus.IDLE
    city_id: Optional[str] = None


@dataclass
class ReinforcementEntry:
    """Troops another city has stationed here, keyed by origin city id."""

    owner_id: str
    origin_city_name: str
    units: dict[str, int] = field(default_factory=dict)


def _empty_resources() -> dict[str, float]:
    return {"wood": 0.0, "stone": 0.0, "silver": 0.0}


@dataclass
class City:
    """State of one city.

    Attributes:
        city_id: Document id.
        owner_id: Owning player id.
        slot_id: Map slot the city occupies.
        resources: wood/stone/silver on hand, at most warehouse capacity.
        buildings: Building id → level and assigned workers.
        units: Units at home; ``wounded`` holds units waiting for the hospital.
        research: Completed research id → active flag (inactive once the
            academy drops below the research's requirement).
        worship: Favor per god; switching god never resets another god's favor.
        cave_silver: Silver stored in the cave, a pool separate from ``resources``.
        queues: ``QueueKind.value`` → ordered task list.
        last_updated: Store time of the last resource accrual.
    """

    city_id: str
    owner_id: str
    slot_id: str
    city_name: str = ""
    owner_username: str = ""
    island_id: Optional[str] = None
    x: float = 0.0
    y: float = 0.0
    resources: dict[str, float] = field(default_factory=_empty_resources)
    buildings: dict[str, BuildingState] = field(default_factory=dict)
    units: dict[str, int] = field(default_factory=dict)
    wounded: dict[str, int] = field(default_factory=dict)
    research: dict[str, bool] = field(default_factory=dict)
    research_points: int = 0
    god: Optional[str] = None
    worship: dict[str, float] = field(default_factory=dict)
    cave_silver: float = 0.0
    heroes: dict[str, HeroState] = field(default_factory=dict)
    agents: dict[str, int] = field(default_factory=dict)
    reinforcements: dict[str, ReinforcementEntry] = field(default_factory=dict)
    special_building: Optional[str] = None
    queues: dict[str, list[QueueTask]] = field(default_factory=dict)
    last_updated: float = 0.0

    def level(self, building_id: str) -> int:
        state = self.buildings.get(building_id)
        return state.level if state else 0

    def workers(self, building_id: str) -> int:
        state = self.buildings.get(building_id)
        return state.workers if state else 0

    def queue(self, kind: QueueKind) -> list[QueueTask]:
        """Return the live task list for ``kind`` (created on first access)."""
        return self.queues.setdefault(kind.value, [])

    @property
    def favor(self) -> float:
        """Favor of the currently worshipped god."""
        if self.god is None:
            return 0.0
        return self.worship.get(self.god, 0.0)

    def stationed_hero(self) -> Optional[str]:
        for hero in self.heroes.values():
            if hero.status == HeroStatus.IN_CITY and hero.city_id == self.city_id:
                return hero.hero_id
        return None

    def has_research(self, research_id: str) -> bool:
        return self.research.get(research_id, False)
