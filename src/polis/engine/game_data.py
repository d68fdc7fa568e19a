"""Game data provider — read-only balance tables.

Wraps the loaded ``ItemTables`` with id lookups, unit → queue routing
and effect aggregation for alliances and stationed heroes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from polis.models.city import HeroStatus
from polis.models.items import (
    AgentDetails,
    AllianceResearchDetails,
    BuildingDetails,
    GodDetails,
    HeroDetails,
    ItemTables,
    ResearchDetails,
    SpellDetails,
    UnitDetails,
    WonderDetails,
)
from polis.models.tasks import QueueKind
from polis.util import constants
from polis.util.effects import merge

if TYPE_CHECKING:
    from polis.models.alliance import Alliance
    from polis.models.city import City


class GameData:
    """Balance table database — read-only after ``load``.

    Attributes:
        buildings: Building definitions keyed by id.
        units: Unit definitions keyed by id.
        research: Research definitions keyed by id.
    """

    def __init__(self) -> None:
        self.buildings: dict[str, BuildingDetails] = {}
        self.units: dict[str, UnitDetails] = {}
        self.research: dict[str, ResearchDetails] = {}
        self.gods: dict[str, GodDetails] = {}
        self.heroes: dict[str, HeroDetails] = {}
        self.agents: dict[str, AgentDetails] = {}
        self.wonders: dict[str, WonderDetails] = {}
        self.alliance_research: dict[str, AllianceResearchDetails] = {}

    def load(self, tables: ItemTables) -> None:
        """Index loaded tables by id."""
        self.buildings = {b.building_id: b for b in tables.buildings}
        self.units = {u.unit_id: u for u in tables.units}
        self.research = {r.research_id: r for r in tables.research}
        self.gods = {g.god_id: g for g in tables.gods}
        self.heroes = {h.hero_id: h for h in tables.heroes}
        self.agents = {a.agent_id: a for a in tables.agents}
        self.wonders = {w.wonder_id: w for w in tables.wonders}
        self.alliance_research = {r.research_id: r for r in tables.alliance_research}

    @classmethod
    def from_tables(cls, tables: ItemTables) -> "GameData":
        data = cls()
        data.load(tables)
        return data

    # -- Lookups ---------------------------------------------------------

    def building(self, building_id: str) -> BuildingDetails | None:
        return self.buildings.get(building_id)

    def unit(self, unit_id: str) -> UnitDetails | None:
        return self.units.get(unit_id)

    def spell(self, god_id: str, spell_id: str) -> SpellDetails | None:
        god = self.gods.get(god_id)
        if god is None:
            return None
        return god.spells.get(spell_id)

    def production_buildings(self) -> dict[str, BuildingDetails]:
        """Buildings that accept workers, keyed by building id."""
        return {bid: b for bid, b in self.buildings.items() if b.production is not None}

    def unit_population(self, unit_id: str) -> int:
        unit = self.units.get(unit_id)
        return unit.population if unit else 0

    # -- Unit routing ----------------------------------------------------

    @staticmethod
    def training_queue(unit: UnitDetails) -> tuple[QueueKind, str]:
        """Return the one queue (and its source building) a unit trains in.

        Mythical is checked first: a mythical sea creature still comes
        from the divine temple.
        """
        if unit.mythical:
            return QueueKind.DIVINE_TEMPLE, constants.DIVINE_TEMPLE
        if unit.is_naval:
            return QueueKind.SHIPYARD, constants.SHIPYARD
        return QueueKind.BARRACKS, constants.BARRACKS

    # -- Effects ---------------------------------------------------------

    def alliance_effects(self, alliance: Optional[Alliance]) -> dict[str, float]:
        """Effects granted by alliance research levels and the active wonder."""
        if alliance is None:
            return {}
        effects: dict[str, float] = {}
        for rid, level in alliance.research.items():
            research = self.alliance_research.get(rid)
            if research is None or level <= 0:
                continue
            effects = merge(effects, {k: v * level for k, v in research.effects.items()})
        if alliance.wonder is not None:
            wonder = self.wonders.get(alliance.wonder.wonder_id)
            if wonder is not None and alliance.wonder.level > 0:
                effects = merge(effects, {
                    k: v * alliance.wonder.level for k, v in wonder.effects.items()
                })
        return effects

    def hero_effects(self, city: City) -> dict[str, float]:
        """Passive effects of heroes stationed in ``city``."""
        effects: dict[str, float] = {}
        for hero in city.heroes.values():
            if hero.status != HeroStatus.IN_CITY or hero.city_id != city.city_id:
                continue
            details = self.heroes.get(hero.hero_id)
            if details is not None:
                effects = merge(effects, details.effects)
        return effects

    def city_effects(self, city: City, alliance: Optional[Alliance] = None) -> dict[str, float]:
        return merge(self.alliance_effects(alliance), self.hero_effects(city))
