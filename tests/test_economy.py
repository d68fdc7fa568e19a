"""Tests for the economy calculator: costs, production, capacities and population."""

from __future__ import annotations

import pytest

from polis.engine.economy import Economy
from polis.models.city import BuildingState, City
from polis.models.tasks import QueueTask, TaskAction

from conftest import make_game_config


@pytest.fixture
def economy(game_data) -> Economy:
    return Economy(game_data, make_game_config())


def _make_city(senate: int = 1, workers: int = 0, **levels: int) -> City:
    buildings = {"senate": BuildingState(level=senate), "farm": BuildingState(level=1),
                 "warehouse": BuildingState(level=1),
                 "timber_camp": BuildingState(level=1, workers=workers)}
    for bid, lvl in levels.items():
        buildings[bid] = BuildingState(level=lvl)
    return City(city_id="c1", owner_id="p1", slot_id="s1", buildings=buildings)


# ── Costs ──────────────────────────────────────────────────────────────


class TestUpgradeCost:
    def test_flat_growth(self, economy: Economy):
        cost = economy.upgrade_cost("senate", 2)
        assert cost == {"wood": 200, "stone": 150, "silver": 0, "population": 0, "time": 60}

    def test_growth_per_level_is_floored(self, economy: Economy):
        cost = economy.upgrade_cost("barracks", 3)
        assert cost["wood"] == 256       # 100 * 1.6^2
        assert cost["silver"] == 324     # 100 * 1.8^2
        assert cost["time"] == 156       # 100 * 1.25^2
        assert cost["population"] == 5

    def test_starting_building_level_one_costs_no_population(self, economy: Economy):
        assert economy.upgrade_cost("timber_camp", 1)["population"] == 0
        assert economy.upgrade_cost("timber_camp", 2)["population"] == 2

    def test_instant_build_overrides_time(self, game_data):
        economy = Economy(game_data, make_game_config(instant_build=True, instant_duration=1.0))
        assert economy.upgrade_cost("senate", 2)["time"] == 1.0
        assert economy.demolish_time("senate", 3) == 1.0

    def test_demolish_takes_half_the_forward_time(self, economy: Economy):
        assert economy.demolish_time("senate", 2) == 30
        assert economy.demolish_time("barracks", 3) == 78


class TestUnitCost:
    def test_every_component_scales_with_amount(self, economy: Economy):
        cost = economy.unit_cost("swordsman", 3)
        assert cost["wood"] == 285
        assert cost["silver"] == 255
        assert cost["favor"] == 0
        assert cost["population"] == 3
        assert cost["time"] == 360

    def test_mythical_units_cost_favor(self, economy: Economy):
        assert economy.unit_cost("pegasus", 2)["favor"] == 20

    def test_heal_cost(self, economy: Economy):
        cost = economy.heal_cost("swordsman", 2)
        assert cost["wood"] == 90
        assert cost["silver"] == 80
        assert cost["time"] == 120

    def test_research_time_modifier(self, economy: Economy):
        assert economy.research_cost("pottery")["time"] == 600
        assert economy.research_cost("pottery", {"research_time_modifier": -0.1})["time"] == 540


# ── Production ─────────────────────────────────────────────────────────


class TestProduction:
    def test_rate_grows_per_level(self, economy: Economy):
        assert economy.production_rate("quarry", 1, 0) == 100
        assert economy.production_rate("quarry", 3, 0) == 225

    def test_workers_add_ten_percent_each(self, economy: Economy):
        assert economy.production_rate("timber_camp", 1, 2) == pytest.approx(4320)

    def test_unbuilt_building_produces_nothing(self, economy: Economy):
        assert economy.production_rate("quarry", 0, 0) == 0

    def test_low_happiness_reduces_production(self, economy: Economy):
        rates = economy.production_rates(_make_city(senate=1))
        assert rates["wood"] == 3240     # 3600 * 0.9

    def test_neutral_happiness(self, economy: Economy):
        rates = economy.production_rates(_make_city(senate=5))
        assert rates["wood"] == 3600

    def test_high_happiness_boosts_production(self, economy: Economy):
        rates = economy.production_rates(_make_city(senate=8))
        assert rates["wood"] == 3960

    def test_production_modifier_effect(self, economy: Economy):
        rates = economy.production_rates(_make_city(senate=5),
                                         {"wood_production_modifier": 0.5})
        assert rates["wood"] == 5400


class TestHappiness:
    def test_workers_cost_happiness(self, economy: Economy):
        happiness = economy.happiness(_make_city(senate=5, workers=1))
        assert happiness["base"] == 50
        assert happiness["penalty"] == 5
        assert happiness["total"] == 45

    def test_total_is_clamped(self, economy: Economy):
        assert economy.happiness(_make_city(senate=25))["total"] == 100
        assert economy.happiness(_make_city(senate=0, workers=1))["total"] == 0

    def test_thresholds(self, economy: Economy):
        assert economy.happiness_multiplier(71) == pytest.approx(1.1)
        assert economy.happiness_multiplier(70) == 1.0
        assert economy.happiness_multiplier(40) == 1.0
        assert economy.happiness_multiplier(39) == pytest.approx(0.9)


# ── Capacities ─────────────────────────────────────────────────────────


class TestCapacities:
    def test_warehouse(self):
        assert Economy.warehouse_capacity(0) == 0
        assert Economy.warehouse_capacity(1) == 1500
        assert Economy.warehouse_capacity(1, {"warehouse_capacity_modifier": 0.1}) == 1650

    def test_farm(self):
        assert Economy.farm_capacity(1) == 200
        assert Economy.farm_capacity(2) == 250

    def test_market_is_capped(self):
        assert Economy.market_capacity(0) == 0
        assert Economy.market_capacity(1) == 500
        assert Economy.market_capacity(5) == 1300
        assert Economy.market_capacity(20) == 2500

    def test_hospital(self):
        assert Economy.hospital_capacity(3) == 3000

    def test_cave(self, economy: Economy):
        assert economy.cave_capacity(0) == 0
        assert economy.cave_capacity(3) == 3000
        assert economy.cave_capacity(3, {"cave_capacity_modifier": 0.05}) == 3150
        assert economy.cave_capacity(9) == 9000
        assert economy.cave_capacity(10) == float("inf")

    @pytest.mark.parametrize("level,slots", [(0, 0), (1, 1), (4, 1), (5, 2), (25, 6), (40, 6)])
    def test_worker_slots(self, level: int, slots: int):
        assert Economy.max_workers(level) == slots


# ── Population ─────────────────────────────────────────────────────────


class TestPopulation:
    def test_buildings_units_and_workers(self, economy: Economy):
        city = _make_city(workers=1, barracks=1)
        city.units = {"swordsman": 10, "transport_boat": 1}
        # barracks 5 + one worker 20 + units 10 + boat 7
        assert economy.city_used_population(city) == 42
        assert economy.available_population(city) == 158

    def test_queued_units_are_counted(self, economy: Economy):
        city = _make_city()
        city.queues["barracks"] = [QueueTask("t1", TaskAction.TRAIN, "swordsman", 60, amount=4)]
        city.queues["heal"] = [QueueTask("t2", TaskAction.HEAL, "swordsman", 60, amount=2)]
        assert economy.city_used_population(city) == 6

    def test_special_building_population(self, economy: Economy):
        city = _make_city()
        city.special_building = "theater"
        assert economy.city_used_population(city) == 60

    def test_queued_build_population_ignores_demolitions(self, economy: Economy):
        city = _make_city()
        city.queues["build"] = [
            QueueTask("t1", TaskAction.UPGRADE, "barracks", 60, level=1, cost={"population": 5}),
            QueueTask("t2", TaskAction.DEMOLISH, "senate", 30, level=0),
        ]
        assert economy.queued_build_population(city) == 5


# ── Favor & points ─────────────────────────────────────────────────────


class TestFavorAndPoints:
    def test_favor_rate_and_cap(self, economy: Economy):
        assert economy.favor_per_second(3) == pytest.approx(3 / 3600)
        assert economy.max_favor(5) == 200

    def test_city_points(self, economy: Economy):
        city = _make_city(senate=2)
        city.research = {"pottery": True}
        # senate 10 * (2*3/2) + research 50
        assert economy.city_points(city) == 80
        assert economy.city_points(city, alliance_has_wonder=True) == 580
