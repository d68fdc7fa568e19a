"""Static game-balance definitions.

Every table is keyed by string id and loaded once from ``config/*.yaml``.
Instances are frozen; engines read them through ``GameData``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class UnitType(Enum):
    """Which element a unit moves through."""

    LAND = "land"
    NAVAL = "naval"


@dataclass(frozen=True)
class ProductionSpec:
    """Hourly output of a resource building: ``floor(base * growth^(level-1))``."""

    resource: str
    base: float
    growth: float


@dataclass(frozen=True)
class BuildingDetails:
    """Definition of a city building.

    Attributes:
        building_id: Unique id, e.g. ``"timber_camp"``.
        max_level: Highest level the building can reach.
        base_cost: Level-1 cost: wood, stone, silver, population, time.
        growth: Per-level multiplier for each key of ``base_cost``.
        requirements: Building id → minimum level.
        research_requirements: Research ids that must be completed or queued.
        production: Set for worker-staffed resource buildings.
        points: Score weight per level.
    """

    building_id: str
    name: str
    max_level: int
    base_cost: dict[str, float] = field(default_factory=dict)
    growth: dict[str, float] = field(default_factory=dict)
    requirements: dict[str, int] = field(default_factory=dict)
    research_requirements: tuple[str, ...] = ()
    production: Optional[ProductionSpec] = None
    points: int = 0


@dataclass(frozen=True)
class UnitDetails:
    """Definition of a trainable unit."""

    unit_id: str
    name: str
    unit_type: UnitType = UnitType.LAND
    flying: bool = False
    mythical: bool = False
    god: Optional[str] = None
    speed: float = 0.0
    capacity: int = 0
    population: int = 1
    cost: dict[str, float] = field(default_factory=dict)
    time: float = 0.0
    heal_cost: dict[str, float] = field(default_factory=dict)
    heal_time: float = 0.0

    @property
    def is_land(self) -> bool:
        return self.unit_type == UnitType.LAND

    @property
    def is_naval(self) -> bool:
        return self.unit_type == UnitType.NAVAL


@dataclass(frozen=True)
class ResearchDetails:
    """Definition of an academy research."""

    research_id: str
    name: str
    cost: dict[str, float] = field(default_factory=dict)
    time: float = 0.0
    academy_level: int = 1
    required_research: Optional[str] = None


@dataclass(frozen=True)
class SpellDetails:
    """A divine power. ``effect`` is a tagged mapping with a ``type`` key."""

    spell_id: str
    name: str
    favor_cost: float
    effect: dict[str, Any] = field(default_factory=dict)
    targets_other_city: bool = False


@dataclass(frozen=True)
class GodDetails:
    god_id: str
    name: str
    spells: dict[str, SpellDetails] = field(default_factory=dict)


@dataclass(frozen=True)
class HeroDetails:
    """A recruitable hero; ``effects`` apply to the city it is stationed in."""

    hero_id: str
    name: str
    cost: dict[str, float] = field(default_factory=dict)
    effects: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class AgentDetails:
    agent_id: str
    name: str
    cost: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class WonderDetails:
    """An alliance wonder; ``effects`` are granted per wonder level."""

    wonder_id: str
    name: str
    effects: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class AllianceResearchDetails:
    """Alliance-wide research; ``effects`` are granted per research level."""

    research_id: str
    name: str
    max_level: int = 10
    base_cost: dict[str, float] = field(default_factory=dict)
    cost_multiplier: float = 1.5
    effects: dict[str, float] = field(default_factory=dict)


@dataclass
class ItemTables:
    """Raw result of the item loader, handed to ``GameData.load``."""

    buildings: list[BuildingDetails] = field(default_factory=list)
    units: list[UnitDetails] = field(default_factory=list)
    research: list[ResearchDetails] = field(default_factory=list)
    gods: list[GodDetails] = field(default_factory=list)
    heroes: list[HeroDetails] = field(default_factory=list)
    agents: list[AgentDetails] = field(default_factory=list)
    wonders: list[WonderDetails] = field(default_factory=list)
    alliance_research: list[AllianceResearchDetails] = field(default_factory=list)
