"""Shared fixtures: a small balance catalog, a controllable clock and an
in-memory document store with every engine service wired to it."""

from __future__ import annotations

from typing import Any, Optional

import pytest

from polis.engine.alliance_service import AllianceService
from polis.engine.city_service import CityService
from polis.engine.game_data import GameData
from polis.engine.movement_service import MovementService
from polis.engine.trade_service import TradeService
from polis.engine.unit_service import UnitService
from polis.engine.world_service import WorldService
from polis.loaders.game_config_loader import GameConfig, WonderCosts
from polis.models.city import BuildingState, City
from polis.models.items import (
    AgentDetails,
    AllianceResearchDetails,
    BuildingDetails,
    GodDetails,
    HeroDetails,
    ItemTables,
    ProductionSpec,
    ResearchDetails,
    SpellDetails,
    UnitDetails,
    UnitType,
    WonderDetails,
)
from polis.models.world import Player
from polis.persistence.document_store import DocumentStore
from polis.persistence.serialization import city_to_doc, player_to_doc
from polis.util import constants
from polis.util.cache import TTLCache
from polis.util.events import EventBus

START_TIME = 1000.0


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = START_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FixedRandom:
    """Random source pinned to one wind speed and one weather."""

    def __init__(self, wind: float = 5.0, weather: str = "Clear") -> None:
        self.wind = wind
        self.weather = weather

    def uniform(self, a: float, b: float) -> float:
        return self.wind

    def choice(self, seq):
        return self.weather if self.weather in seq else seq[0]


# ── Balance catalog ────────────────────────────────────────────────────


def _flat(wood: float = 0, stone: float = 0, silver: float = 0,
          population: float = 0, time: float = 0) -> dict[str, float]:
    return {"wood": wood, "stone": stone, "silver": silver,
            "population": population, "time": time}


def _building(bid: str, name: str, cost: dict[str, float], **kwargs: Any) -> BuildingDetails:
    return BuildingDetails(building_id=bid, name=name, max_level=kwargs.pop("max_level", 25),
                           base_cost=cost, **kwargs)


def make_tables() -> ItemTables:
    """A compact catalog with flat (growth 1.0) costs unless a test needs growth."""
    buildings = [
        _building("senate", "Senate", _flat(200, 150, 0, 0, 60), points=10),
        _building("farm", "Farm", _flat(50, 50, 0, 0, 30)),
        _building("warehouse", "Warehouse", _flat(50, 50, 0, 0, 30)),
        _building("timber_camp", "Timber Camp", _flat(50, 50, 0, 2, 20),
                  production=ProductionSpec("wood", 3600, 1.0)),
        _building("quarry", "Quarry", _flat(50, 50, 0, 2, 20),
                  production=ProductionSpec("stone", 100, 1.5)),
        _building("silver_mine", "Silver Mine", _flat(50, 50, 0, 2, 20),
                  production=ProductionSpec("silver", 0, 1.0)),
        _building("academy", "Academy", _flat(100, 100, 100, 0, 100),
                  requirements={"senate": 2}),
        _building("barracks", "Barracks", _flat(100, 100, 100, 5, 100),
                  growth={"wood": 1.6, "stone": 1.6, "silver": 1.8,
                          "population": 1.0, "time": 1.25}),
        _building("shipyard", "Shipyard", _flat(100, 100, 100, 0, 100),
                  research_requirements=("shipwright",)),
        _building("temple", "Temple", _flat(100, 100, 100, 0, 100)),
        _building("divine_temple", "Divine Temple", _flat(100, 100, 100, 0, 100)),
        _building("market", "Market", _flat(100, 100, 100, 0, 100)),
        _building("hospital", "Hospital", _flat(100, 100, 100, 0, 100)),
        _building("cave", "Cave", _flat(100, 100, 100, 0, 100), max_level=10),
    ]
    units = [
        UnitDetails("villager", "Villager", speed=6, population=1,
                    cost={"wood": 40}, time=60),
        UnitDetails("swordsman", "Swordsman", speed=8, population=1,
                    cost={"wood": 95, "silver": 85}, time=120,
                    heal_cost={"wood": 45, "silver": 40}, heal_time=60),
        UnitDetails("hoplite", "Hoplite", speed=6, population=1,
                    cost={"stone": 75, "silver": 150}, time=140),
        UnitDetails("transport_boat", "Transport Boat", unit_type=UnitType.NAVAL,
                    speed=8, capacity=26, population=7,
                    cost={"wood": 500, "silver": 400}, time=600),
        UnitDetails("pegasus", "Pegasus", flying=True, mythical=True, god="athena",
                    speed=35, population=20,
                    cost={"wood": 100, "silver": 50, "favor": 10}, time=1800),
        UnitDetails("sea_monster", "Hydra", unit_type=UnitType.NAVAL, mythical=True,
                    god="poseidon", speed=8, population=50,
                    cost={"wood": 100, "favor": 40}, time=3600),
    ]
    research = [
        ResearchDetails("pottery", "Pottery",
                        cost={"wood": 100, "stone": 100, "silver": 100, "points": 4},
                        time=600, academy_level=1),
        ResearchDetails("phalanx", "Phalanx",
                        cost={"wood": 100, "stone": 100, "silver": 100, "points": 4},
                        time=900, academy_level=1, required_research="pottery"),
        ResearchDetails("shipwright", "Shipwright",
                        cost={"wood": 100, "stone": 100, "silver": 100, "points": 4},
                        time=600, academy_level=3),
    ]
    gods = [
        GodDetails("zeus", "Zeus", spells={
            "lightning_bolt": SpellDetails(
                "lightning_bolt", "Lightning Bolt", 50,
                effect={"type": "damage_building", "building": "senate", "levels": 1},
                targets_other_city=True),
        }),
        GodDetails("hera", "Hera", spells={
            "wedding": SpellDetails(
                "wedding", "Wedding", 30,
                effect={"type": "add_multiple_resources",
                        "resources": {"wood": 200, "stone": 200, "silver": 200}}),
        }),
        GodDetails("athena", "Athena", spells={
            "wisdom": SpellDetails(
                "wisdom", "Wisdom", 20,
                effect={"type": "add_resources", "resource": "silver", "amount": 300}),
            "owl_sight": SpellDetails(
                "owl_sight", "Owl Sight", 10, effect={"type": "reveal_city"}),
        }),
        GodDetails("poseidon", "Poseidon"),
    ]
    return ItemTables(
        buildings=buildings,
        units=units,
        research=research,
        gods=gods,
        heroes=[HeroDetails("agamemnon", "Agamemnon", cost={"silver": 100, "favor": 10},
                            effects={"silver_production_modifier": 0.1})],
        agents=[AgentDetails("architect", "Architect", cost={"wood": 100})],
        wonders=[WonderDetails("great_pyramid", "Great Pyramid",
                               effects={"warehouse_capacity_modifier": 0.1})],
        alliance_research=[AllianceResearchDetails("forestry", "Forestry", max_level=2,
                                                   base_cost={"wood": 100, "stone": 100,
                                                              "silver": 50},
                                                   cost_multiplier=2.0,
                                                   effects={"wood_production_modifier": 0.05})],
    )


def make_game_config(**overrides: Any) -> GameConfig:
    wonder = WonderCosts(
        start_cost={"wood": 100, "stone": 100, "silver": 50},
        base_cost={"wood": 200, "stone": 200, "silver": 100},
        cost_growth=1.5,
    )
    params: dict[str, Any] = {"db_path": ":memory:", "wonder": wonder,
                              "slot_claim_backoff_seconds": 0.0}
    params.update(overrides)
    return GameConfig(**params)


# ── Fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def store(clock: FakeClock):
    s = DocumentStore(":memory:", clock=clock)
    await s.connect()
    yield s
    await s.close()


@pytest.fixture
def tables() -> ItemTables:
    return make_tables()


@pytest.fixture
def game_data(tables: ItemTables) -> GameData:
    return GameData.from_tables(tables)


@pytest.fixture
def game_config() -> GameConfig:
    return make_game_config()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def city_service(store, game_data, event_bus, game_config) -> CityService:
    return CityService(store, game_data, event_bus, game_config)


@pytest.fixture
def unit_service(game_data, event_bus, city_service, game_config) -> UnitService:
    return UnitService(game_data, event_bus, city_service, game_config)


@pytest.fixture
def world_service(store, event_bus, game_config, clock) -> WorldService:
    return WorldService(store, event_bus, game_config,
                        cache=TTLCache(game_config.world_data_ttl_seconds, clock=clock),
                        rng=FixedRandom(weather="Stormy"))


@pytest.fixture
def movement_service(store, game_data, event_bus, city_service, game_config) -> MovementService:
    return MovementService(store, game_data, event_bus, city_service, game_config,
                           rng=FixedRandom())


@pytest.fixture
def trade_service(store, event_bus, city_service, game_config) -> TradeService:
    return TradeService(store, event_bus, city_service, game_config)


@pytest.fixture
def alliance_service(store, game_data, event_bus, city_service, game_config) -> AllianceService:
    return AllianceService(store, game_data, event_bus, city_service, game_config)


@pytest.fixture
def make_city(store, clock):
    """Factory: write a city document and return the model.

    ``levels`` is merged over the default layout (senate, farm, warehouse
    and the three production buildings at level 1).
    """

    async def _make(city_id: str = "c1", owner_id: str = "p1",
                    levels: Optional[dict[str, int]] = None, **fields: Any) -> City:
        layout = {"senate": 1, "farm": 1, "warehouse": 1,
                  "timber_camp": 1, "quarry": 1, "silver_mine": 1}
        layout.update(levels or {})
        params: dict[str, Any] = {
            "slot_id": f"slot-{city_id}",
            "city_name": f"{owner_id}'s City",
            "owner_username": owner_id,
            "island_id": "i1",
            "resources": {"wood": 1000.0, "stone": 1000.0, "silver": 1000.0},
            "last_updated": clock.now,
        }
        params.update(fields)
        city = City(city_id=city_id, owner_id=owner_id,
                    buildings={bid: BuildingState(level=lvl) for bid, lvl in layout.items()},
                    **params)
        await store.set(constants.CITIES, city_id, city_to_doc(city))
        return city

    return _make


@pytest.fixture
def make_player(store):
    async def _make(player_id: str = "p1", username: Optional[str] = None,
                    alliance_id: Optional[str] = None) -> Player:
        player = Player(player_id=player_id, username=username or player_id,
                        alliance_id=alliance_id)
        await store.set(constants.PLAYERS, player_id, player_to_doc(player))
        return player

    return _make
