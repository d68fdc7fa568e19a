"""Economy calculator — production, capacity, population and cost formulas.

Every method is a pure function of its arguments plus the injected
balance tables and ``GameConfig``; nothing here touches the store.
Callers own atomicity.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Mapping, Optional

from polis.models.tasks import QueueKind, TaskAction
from polis.util import constants, effects as fx

if TYPE_CHECKING:
    from polis.engine.game_data import GameData
    from polis.loaders.game_config_loader import GameConfig
    from polis.models.city import BuildingState, City

log = logging.getLogger(__name__)

# -- Capacity curves -----------------------------------------------------
WAREHOUSE_BASE = 1500
WAREHOUSE_GROWTH = 1.4
FARM_BASE = 200
FARM_GROWTH = 1.25
MARKET_BASE = 500
MARKET_PER_LEVEL = 200
MARKET_MAX = 2500
HOSPITAL_PER_LEVEL = 1000
CAVE_PER_LEVEL = 1000

MAX_WORKER_SLOTS = 6
LEVELS_PER_WORKER_SLOT = 5

POINTS_PER_RESEARCH = 50
WONDER_POINTS = 500

UNIT_QUEUES = (QueueKind.BARRACKS, QueueKind.SHIPYARD, QueueKind.DIVINE_TEMPLE, QueueKind.HEAL)


class Economy:
    """Pure economy formulas bound to one set of balance tables.

    Args:
        game_data: Balance tables.
        game_config: Tunable constants (worker bonus, happiness, instant modes).
    """

    def __init__(self, game_data: GameData, game_config: GameConfig) -> None:
        self._data = game_data
        self._config = game_config

    # -- Costs -----------------------------------------------------------

    def upgrade_cost(self, building_id: str, target_level: int) -> dict[str, float]:
        """Cost of raising ``building_id`` to ``target_level``.

        Returns wood, stone, silver, population and time.  Level 1 of a
        starting building costs no population.
        """
        building = self._data.buildings[building_id]
        base = building.base_cost
        growth = building.growth
        step = max(target_level, 1) - 1
        cost = {
            key: float(math.floor(base.get(key, 0) * growth.get(key, 1.0) ** step))
            for key in ("wood", "stone", "silver", "population", "time")
        }
        if target_level <= 1 and building_id in self._config.initial_buildings:
            cost["population"] = 0.0
        if self._config.instant_build:
            cost["time"] = self._config.instant_duration
        return cost

    def demolish_time(self, building_id: str, current_level: int) -> float:
        """Half the forward build time of the level being vacated."""
        if self._config.instant_build:
            return self._config.instant_duration
        building = self._data.buildings[building_id]
        step = max(current_level, 1) - 1
        forward = math.floor(building.base_cost.get("time", 0)
                             * building.growth.get("time", 1.0) ** step)
        return float(math.floor(forward / 2))

    def research_cost(self, research_id: str,
                      effects: Optional[Mapping[str, float]] = None) -> dict[str, float]:
        """Resources, research points and time for one research."""
        research = self._data.research[research_id]
        cost = {key: research.cost.get(key, 0.0) for key in ("wood", "stone", "silver", "points")}
        modifier = (effects or {}).get(fx.RESEARCH_TIME_MODIFIER, 0.0)
        cost["time"] = float(math.floor(research.time * max(0.0, 1.0 + modifier)))
        if self._config.instant_research:
            cost["time"] = self._config.instant_duration
        return cost

    def unit_cost(self, unit_id: str, amount: int) -> dict[str, float]:
        """Batch cost: every component (including favor and time) scales with ``amount``."""
        unit = self._data.units[unit_id]
        cost = {key: unit.cost.get(key, 0.0) * amount
                for key in ("wood", "stone", "silver", "favor")}
        cost["population"] = float(unit.population * amount)
        cost["time"] = unit.time * amount
        if self._config.instant_units:
            cost["time"] = self._config.instant_duration
        return cost

    def heal_cost(self, unit_id: str, amount: int) -> dict[str, float]:
        unit = self._data.units[unit_id]
        cost = {key: unit.heal_cost.get(key, 0.0) * amount for key in constants.RESOURCES}
        cost["population"] = float(unit.population * amount)
        cost["time"] = unit.heal_time * amount
        if self._config.instant_units:
            cost["time"] = self._config.instant_duration
        return cost

    # -- Production ------------------------------------------------------

    def production_rate(self, building_id: str, level: int, workers: int) -> float:
        """Resource per hour of a production building before city-wide modifiers."""
        building = self._data.buildings[building_id]
        spec = building.production
        if spec is None or level < 1:
            return 0.0
        base = math.floor(spec.base * spec.growth ** (level - 1))
        return base * (1 + self._config.worker_production_bonus * workers)

    def production_rates(self, city: City,
                         effects: Optional[Mapping[str, float]] = None) -> dict[str, float]:
        """Hourly production per resource with effects and happiness applied."""
        effects = effects or {}
        multiplier = self.happiness_multiplier(self.happiness(city, effects)["total"])
        rates = {res: 0.0 for res in constants.RESOURCES}
        for bid, building in self._data.production_buildings().items():
            resource = building.production.resource
            raw = self.production_rate(bid, city.level(bid), city.workers(bid))
            bonus = effects.get(fx.PRODUCTION_MODIFIERS.get(resource, ""), 0.0)
            rates[resource] = rates.get(resource, 0.0) + raw * (1 + bonus)
        return {res: float(math.floor(rate * multiplier)) for res, rate in rates.items()}

    # -- Capacities ------------------------------------------------------

    @staticmethod
    def warehouse_capacity(level: int, effects: Optional[Mapping[str, float]] = None) -> float:
        if level < 1:
            return 0.0
        base = math.floor(WAREHOUSE_BASE * WAREHOUSE_GROWTH ** (level - 1))
        modifier = (effects or {}).get(fx.WAREHOUSE_CAPACITY_MODIFIER, 0.0)
        return float(math.floor(base * (1 + modifier)))

    @staticmethod
    def farm_capacity(level: int, effects: Optional[Mapping[str, float]] = None) -> float:
        if level < 1:
            return 0.0
        base = math.floor(FARM_BASE * FARM_GROWTH ** (level - 1))
        modifier = (effects or {}).get(fx.FARM_CAPACITY_MODIFIER, 0.0)
        return float(math.floor(base * (1 + modifier)))

    @staticmethod
    def market_capacity(level: int) -> float:
        if level < 1:
            return 0.0
        return float(min(MARKET_MAX, MARKET_BASE + (level - 1) * MARKET_PER_LEVEL))

    @staticmethod
    def hospital_capacity(level: int) -> float:
        return float(max(level, 0) * HOSPITAL_PER_LEVEL)

    def cave_capacity(self, level: int, effects: Optional[Mapping[str, float]] = None) -> float:
        """Silver the cave can hold; a fully upgraded cave is unlimited."""
        building = self._data.buildings.get(constants.CAVE)
        if building is not None and level >= building.max_level:
            return math.inf
        base = max(level, 0) * CAVE_PER_LEVEL
        modifier = (effects or {}).get(fx.CAVE_CAPACITY_MODIFIER, 0.0)
        return float(math.floor(base * (1 + modifier)))

    @staticmethod
    def max_workers(level: int) -> int:
        """Worker slots: one at level 1, one more every five levels, at most six."""
        if level < 1:
            return 0
        return min(MAX_WORKER_SLOTS, 1 + level // LEVELS_PER_WORKER_SLOT)

    # -- Population ------------------------------------------------------

    def building_population(self, building_id: str, level: int) -> float:
        """Population tied up by every level of a standing building."""
        if building_id not in self._data.buildings:
            return 0.0
        return sum(self.upgrade_cost(building_id, lvl)["population"]
                   for lvl in range(1, level + 1))

    def used_population(self, buildings: Mapping[str, BuildingState],
                        units: Mapping[str, int],
                        special_building: Optional[str] = None,
                        queued_units: Optional[Mapping[str, int]] = None) -> float:
        """Population used by buildings, workers, units and the special building.

        ``queued_units`` counts units already paid for in training or
        healing queues.
        """
        used = 0.0
        for bid, state in buildings.items():
            used += self.building_population(bid, state.level)
            used += state.workers * self._config.worker_population
        for uid, count in units.items():
            used += self._data.unit_population(uid) * count
        for uid, count in (queued_units or {}).items():
            used += self._data.unit_population(uid) * count
        if special_building:
            used += self._config.special_building.population
        return used

    @staticmethod
    def queued_units(city: City) -> dict[str, int]:
        """Units sitting in training or heal queues."""
        counts: dict[str, int] = {}
        for kind in UNIT_QUEUES:
            for task in city.queue(kind):
                counts[task.item_id] = counts.get(task.item_id, 0) + task.amount
        return counts

    def city_used_population(self, city: City) -> float:
        return self.used_population(city.buildings, city.units, city.special_building,
                                    self.queued_units(city))

    def available_population(self, city: City,
                             effects: Optional[Mapping[str, float]] = None) -> float:
        capacity = self.farm_capacity(city.level(constants.FARM), effects)
        return capacity - self.city_used_population(city)

    @staticmethod
    def queued_build_population(city: City) -> float:
        """Population reserved by upgrades waiting in the build queue."""
        return sum(task.cost.get("population", 0.0) for task in city.queue(QueueKind.BUILD)
                   if task.action != TaskAction.DEMOLISH)

    # -- Happiness -------------------------------------------------------

    def happiness(self, city: City,
                  effects: Optional[Mapping[str, float]] = None) -> dict[str, float]:
        """Happiness breakdown: senate baseline minus the per-worker penalty."""
        base = city.level(constants.SENATE) * self._config.happiness_per_senate_level
        workers = sum(state.workers for state in city.buildings.values())
        penalty = workers * self._config.worker_happiness_penalty
        offset = (effects or {}).get(fx.HAPPINESS_OFFSET, 0.0)
        total = max(0.0, min(100.0, base - penalty + offset))
        return {"base": base, "penalty": penalty, "bonus": offset, "total": total}

    def happiness_multiplier(self, happiness: float) -> float:
        if happiness > self._config.happy_threshold:
            return self._config.happy_multiplier
        if happiness < self._config.unhappy_threshold:
            return self._config.unhappy_multiplier
        return 1.0

    # -- Favor -----------------------------------------------------------

    def favor_per_second(self, temple_level: int,
                         effects: Optional[Mapping[str, float]] = None) -> float:
        modifier = (effects or {}).get(fx.FAVOR_PRODUCTION_MODIFIER, 0.0)
        per_hour = temple_level * self._config.favor_per_temple_level_per_hour
        return per_hour * (1 + modifier) / 3600.0

    def max_favor(self, temple_level: int) -> float:
        return self._config.favor_cap_base + temple_level * self._config.favor_cap_per_temple_level

    # -- Points ----------------------------------------------------------

    def city_points(self, city: City, alliance_has_wonder: bool = False) -> int:
        points = 0
        for bid, state in city.buildings.items():
            building = self._data.buildings.get(bid)
            if building is None:
                continue
            points += building.points * state.level * (state.level + 1) // 2
        for uid, count in city.units.items():
            points += self._data.unit_population(uid) * count
        points += POINTS_PER_RESEARCH * len(city.research)
        if alliance_has_wonder:
            points += WONDER_POINTS
        return points
