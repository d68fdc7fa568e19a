"""Tests for unit training, healing, dismissal, heroes and agents."""

from __future__ import annotations

from polis.engine.unit_service import UnitService
from polis.models.city import City, HeroState, HeroStatus
from polis.models.tasks import QueueKind
from polis.persistence.serialization import city_from_doc
from polis.util import constants

from conftest import START_TIME


async def _load(store, city_id: str = "c1") -> City:
    return city_from_doc(city_id, await store.get(constants.CITIES, city_id))


# ── Training ───────────────────────────────────────────────────────────


class TestTraining:
    async def test_land_units_train_in_barracks(self, unit_service: UnitService, make_city,
                                                store):
        await make_city(levels={"barracks": 1})

        assert await unit_service.train_units("c1", "p1", "swordsman", 2) is None

        city = await _load(store)
        assert city.resources == {"wood": 810, "stone": 1000, "silver": 830}
        task = city.queue(QueueKind.BARRACKS)[0]
        assert task.amount == 2
        assert task.end_time == START_TIME + 240

    async def test_naval_units_need_a_shipyard(self, unit_service: UnitService, make_city):
        await make_city(levels={"barracks": 1})
        assert await unit_service.train_units("c1", "p1", "transport_boat", 1) == \
            "A shipyard is required to train Transport Boat"

    async def test_mythical_sea_unit_trains_in_divine_temple(self, unit_service: UnitService,
                                                             make_city, store):
        await make_city(levels={"shipyard": 1, "divine_temple": 1, "temple": 1},
                        god="poseidon", worship={"poseidon": 100.0})

        assert await unit_service.train_units("c1", "p1", "sea_monster", 1) is None

        city = await _load(store)
        assert len(city.queue(QueueKind.DIVINE_TEMPLE)) == 1
        assert city.queue(QueueKind.SHIPYARD) == []
        assert city.favor == 60

    async def test_mythical_unit_needs_its_god(self, unit_service: UnitService, make_city):
        await make_city(levels={"divine_temple": 1, "temple": 1},
                        god="zeus", worship={"zeus": 100.0})
        assert await unit_service.train_units("c1", "p1", "pegasus", 1) == \
            "Pegasus requires the worship of athena"

    async def test_population_limit(self, unit_service: UnitService, make_city):
        # farm 200 - barracks 5 - swordsmen 190 leaves 5
        await make_city(levels={"barracks": 1}, units={"swordsman": 190},
                        resources={"wood": 1500.0, "stone": 1500.0, "silver": 1500.0})
        assert await unit_service.train_units("c1", "p1", "hoplite", 10) == \
            "Not enough population (need 10, have 5)"
        assert await unit_service.train_units("c1", "p1", "hoplite", 5) is None

    async def test_cancel_refunds_half(self, unit_service: UnitService, make_city, store):
        await make_city(levels={"barracks": 1})
        await unit_service.train_units("c1", "p1", "swordsman", 2)
        task_id = (await _load(store)).queue(QueueKind.BARRACKS)[0].task_id

        assert await unit_service.cancel_training("c1", "p1", "barracks", task_id) is None

        city = await _load(store)
        assert city.resources == {"wood": 905, "stone": 1000, "silver": 915}
        assert city.queue(QueueKind.BARRACKS) == []

    async def test_cancel_rejects_non_training_queue(self, unit_service: UnitService):
        assert await unit_service.cancel_training("c1", "p1", "build", "t") == \
            "build is not a training queue"

    async def test_completed_units_join_the_city(self, unit_service: UnitService,
                                                 city_service, make_city, clock):
        await make_city(levels={"barracks": 1})
        await unit_service.train_units("c1", "p1", "swordsman", 2)
        clock.advance(240)

        city = await city_service.reconcile("c1")

        assert city.units == {"swordsman": 2}

    async def test_dismiss(self, unit_service: UnitService, make_city, store):
        await make_city(units={"swordsman": 5})
        assert await unit_service.dismiss_units("c1", "p1", {"swordsman": 5}) is None
        assert (await _load(store)).units == {}
        assert await unit_service.dismiss_units("c1", "p1", {"swordsman": 1}) == \
            "Not enough swordsman to dismiss"


# ── Healing ────────────────────────────────────────────────────────────


class TestHealing:
    async def test_heal_and_cancel(self, unit_service: UnitService, make_city, store):
        await make_city(levels={"hospital": 1}, wounded={"swordsman": 3})

        assert await unit_service.heal_units("c1", "p1", {"swordsman": 2}) is None
        city = await _load(store)
        assert city.wounded == {"swordsman": 1}
        assert city.resources == {"wood": 910, "stone": 1000, "silver": 920}
        task = city.queue(QueueKind.HEAL)[0]
        assert task.end_time == START_TIME + 120

        assert await unit_service.cancel_heal("c1", "p1", task.task_id) is None
        city = await _load(store)
        assert city.wounded == {"swordsman": 3}
        assert city.resources == {"wood": 955, "stone": 1000, "silver": 960}

    async def test_cannot_heal_more_than_wounded(self, unit_service: UnitService, make_city):
        await make_city(wounded={"swordsman": 1})
        assert await unit_service.heal_units("c1", "p1", {"swordsman": 2}) == \
            "Not enough wounded swordsman"

    async def test_healed_units_return(self, unit_service: UnitService, city_service,
                                       make_city, clock):
        await make_city(wounded={"swordsman": 2}, units={"swordsman": 1})
        await unit_service.heal_units("c1", "p1", {"swordsman": 2})
        clock.advance(120)
        city = await city_service.reconcile("c1")
        assert city.units == {"swordsman": 3}
        assert city.wounded == {}


# ── Heroes & agents ────────────────────────────────────────────────────


class TestHeroes:
    async def test_recruit_and_station(self, unit_service: UnitService, make_city, store):
        await make_city(levels={"temple": 1}, god="zeus", worship={"zeus": 20.0})

        assert await unit_service.recruit_hero("c1", "p1", "agamemnon") is None
        city = await _load(store)
        assert city.resources["silver"] == 900
        assert city.favor == 10
        assert city.heroes["agamemnon"].status == HeroStatus.IDLE

        assert await unit_service.station_hero("c1", "p1", "agamemnon") is None
        assert (await _load(store)).stationed_hero() == "agamemnon"

        assert await unit_service.unstation_hero("c1", "p1", "agamemnon") is None
        assert (await _load(store)).stationed_hero() is None

    async def test_stationed_hero_grants_effects(self, city_service, make_city):
        city = await make_city(heroes={"agamemnon": HeroState("agamemnon", HeroStatus.IN_CITY,
                                                              "c1")})
        effects = await city_service.effects_for(city)
        assert effects == {"silver_production_modifier": 0.1}

    async def test_travelling_hero_cannot_be_stationed(self, unit_service: UnitService,
                                                       make_city):
        await make_city(heroes={"agamemnon": HeroState("agamemnon", HeroStatus.EN_ROUTE,
                                                       "c1")})
        assert await unit_service.station_hero("c1", "p1", "agamemnon") == \
            "This hero is travelling"

    async def test_recruit_twice(self, unit_service: UnitService, make_city):
        await make_city(heroes={"agamemnon": HeroState("agamemnon")})
        assert await unit_service.recruit_hero("c1", "p1", "agamemnon") == \
            "Agamemnon has already been recruited"


class TestAgents:
    async def test_recruit_agent(self, unit_service: UnitService, make_city, store):
        await make_city()
        assert await unit_service.recruit_agent("c1", "p1", "architect") is None
        city = await _load(store)
        assert city.agents == {"architect": 1}
        assert city.resources["wood"] == 900
