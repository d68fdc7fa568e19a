"""Tests for the transactional city actions: buildings, research, gods and workers."""

from __future__ import annotations

import pytest

from polis.engine.city_service import CityService
from polis.models.city import City
from polis.models.tasks import QueueKind, TaskAction
from polis.persistence.serialization import city_from_doc, player_from_doc
from polis.util import constants
from polis.util.errors import UnknownEffectError
from polis.util.events import SpellCast, TaskCancelled, TaskCompleted, TaskQueued

from conftest import START_TIME


async def _load(store, city_id: str = "c1") -> City:
    return city_from_doc(city_id, await store.get(constants.CITIES, city_id))


def _record(event_bus, event_type) -> list:
    seen: list = []
    event_bus.on(event_type, seen.append)
    return seen


# ── Building upgrades ──────────────────────────────────────────────────


class TestUpgradeBuilding:
    async def test_upgrade_deducts_cost_and_queues_task(self, city_service: CityService,
                                                        make_city, store, event_bus):
        queued = _record(event_bus, TaskQueued)
        await make_city()

        assert await city_service.upgrade_building("c1", "p1", "senate") is None

        city = await _load(store)
        assert city.resources == {"wood": 800, "stone": 850, "silver": 1000}
        queue = city.queue(QueueKind.BUILD)
        assert len(queue) == 1
        assert queue[0].level == 2
        assert queue[0].end_time == START_TIME + 60
        assert queued[0].end_time == START_TIME + 60

    async def test_cancel_refunds_half_floored(self, city_service: CityService, make_city,
                                               store, event_bus):
        cancelled = _record(event_bus, TaskCancelled)
        await make_city()
        await city_service.upgrade_building("c1", "p1", "senate")
        task_id = (await _load(store)).queue(QueueKind.BUILD)[0].task_id

        assert await city_service.cancel_build("c1", "p1", task_id) is None

        city = await _load(store)
        assert city.resources == {"wood": 900, "stone": 925, "silver": 1000}
        assert city.queue(QueueKind.BUILD) == []
        assert cancelled[0].task_id == task_id

    async def test_only_the_last_task_can_be_cancelled(self, city_service: CityService,
                                                       make_city, store):
        await make_city()
        await city_service.upgrade_building("c1", "p1", "senate")
        await city_service.upgrade_building("c1", "p1", "farm")
        first = (await _load(store)).queue(QueueKind.BUILD)[0].task_id

        result = await city_service.cancel_build("c1", "p1", first)

        assert result == "You can only cancel the last item in the queue."
        assert len((await _load(store)).queue(QueueKind.BUILD)) == 2

    async def test_queued_levels_chain(self, city_service: CityService, make_city, store):
        await make_city()
        await city_service.upgrade_building("c1", "p1", "senate")
        await city_service.upgrade_building("c1", "p1", "senate")

        queue = (await _load(store)).queue(QueueKind.BUILD)
        assert [t.level for t in queue] == [2, 3]
        assert [t.end_time for t in queue] == [START_TIME + 60, START_TIME + 120]

    async def test_queue_is_bounded(self, city_service: CityService, make_city, store):
        await make_city()
        for _ in range(5):
            assert await city_service.upgrade_building("c1", "p1", "senate") is None

        result = await city_service.upgrade_building("c1", "p1", "senate")

        assert result == "Queue is full (max 5 tasks)"
        city = await _load(store)
        assert len(city.queue(QueueKind.BUILD)) == 5
        assert city.resources["wood"] == 0

    async def test_not_enough_resources(self, city_service: CityService, make_city, store):
        await make_city(resources={"wood": 100.0, "stone": 1000.0, "silver": 1000.0})

        result = await city_service.upgrade_building("c1", "p1", "senate")

        assert result.startswith("Not enough wood")
        assert (await _load(store)).queue(QueueKind.BUILD) == []

    async def test_requirement_met_by_queued_prerequisite(self, city_service: CityService,
                                                          make_city, store):
        await make_city()
        assert await city_service.upgrade_building("c1", "p1", "academy") == \
            "Requires Senate level 2"

        await city_service.upgrade_building("c1", "p1", "senate")
        assert await city_service.upgrade_building("c1", "p1", "academy") is None

    async def test_research_requirement(self, city_service: CityService, make_city):
        await make_city()
        assert await city_service.upgrade_building("c1", "p1", "shipyard") == \
            "Requires research shipwright"

    async def test_population_is_checked(self, city_service: CityService, make_city):
        await make_city(units={"swordsman": 198})
        result = await city_service.upgrade_building("c1", "p1", "barracks")
        assert result.startswith("Not enough population")

    async def test_max_level(self, city_service: CityService, make_city):
        await make_city(levels={"senate": 25})
        assert await city_service.upgrade_building("c1", "p1", "senate") == \
            "Senate is already at max level"

    async def test_foreign_city_is_rejected(self, city_service: CityService, make_city):
        await make_city(owner_id="p2")
        assert await city_service.upgrade_building("c1", "p1", "senate") == \
            "You do not own this city"

    async def test_unknown_building(self, city_service: CityService, make_city):
        await make_city()
        assert await city_service.upgrade_building("c1", "p1", "colosseum") == \
            "Unknown building: colosseum"


class TestDemolish:
    async def test_demolish_is_free_and_takes_half_time(self, city_service: CityService,
                                                        make_city, store):
        await make_city(levels={"senate": 2})
        assert await city_service.demolish_building("c1", "p1", "senate") is None

        city = await _load(store)
        task = city.queue(QueueKind.BUILD)[0]
        assert task.action == TaskAction.DEMOLISH
        assert task.level == 1
        assert task.duration == 30
        assert city.resources == {"wood": 1000, "stone": 1000, "silver": 1000}

    async def test_nothing_to_demolish(self, city_service: CityService, make_city):
        await make_city()
        assert await city_service.demolish_building("c1", "p1", "academy") == \
            "Academy has no level left to demolish"


# ── Settling & reconciliation ──────────────────────────────────────────


class TestSettle:
    async def test_finished_task_is_applied_on_next_action(self, city_service: CityService,
                                                           make_city, store, clock, event_bus):
        completed = _record(event_bus, TaskCompleted)
        await make_city()
        await city_service.upgrade_building("c1", "p1", "senate")
        clock.advance(61)

        await city_service.upgrade_building("c1", "p1", "farm")

        city = await _load(store)
        assert city.level("senate") == 2
        assert [t.item_id for t in city.queue(QueueKind.BUILD)] == ["farm"]
        assert completed[0].item_id == "senate"

    async def test_reconcile_accrues_and_caps(self, city_service: CityService, make_city,
                                              clock):
        await make_city(levels={"senate": 5},
                        resources={"wood": 0.0, "stone": 0.0, "silver": 0.0})
        clock.advance(600)

        city = await city_service.reconcile("c1")

        assert city.resources["wood"] == pytest.approx(600)
        assert city.last_updated == START_TIME + 600

        clock.advance(7200)
        city = await city_service.reconcile("c1")
        assert city.resources["wood"] == 1500

    async def test_reconcile_applies_tasks(self, city_service: CityService, make_city, clock):
        await make_city()
        await city_service.upgrade_building("c1", "p1", "senate")
        clock.advance(60)

        city = await city_service.reconcile("c1")

        assert city.level("senate") == 2
        assert city.queue(QueueKind.BUILD) == []

    async def test_reconcile_missing_city(self, city_service: CityService):
        assert await city_service.reconcile("ghost") is None

    async def test_reconcile_all(self, city_service: CityService, make_city):
        await make_city("c1")
        await make_city("c2", owner_id="p2")
        assert await city_service.reconcile_all() == 2

    async def test_favor_accrues_for_the_current_god(self, city_service: CityService,
                                                     make_city, clock):
        await make_city(levels={"temple": 2}, god="hera", worship={"hera": 0.0, "zeus": 7.0})
        clock.advance(3600)

        city = await city_service.reconcile("c1")

        assert city.worship["hera"] == pytest.approx(2)
        assert city.worship["zeus"] == 7.0


# ── Special building ───────────────────────────────────────────────────


class TestSpecialBuilding:
    async def test_build_and_demolish(self, city_service: CityService, make_city, store,
                                      game_config, clock):
        game_config.special_building.wood = 400
        game_config.special_building.stone = 400
        game_config.special_building.silver = 400
        await make_city()

        assert await city_service.build_special_building("c1", "p1", "theater") is None
        assert await city_service.build_special_building("c1", "p1", "oracle") == \
            "This city already has a special building"

        clock.advance(game_config.special_building.time)
        await city_service.reconcile("c1")
        assert (await _load(store)).special_building == "theater"

        assert await city_service.demolish_special_building("c1", "p1") is None
        city = await _load(store)
        assert city.special_building is None

    async def test_unknown_type(self, city_service: CityService, make_city):
        await make_city()
        assert await city_service.build_special_building("c1", "p1", "casino") == \
            "Unknown special building: casino"


# ── Research ───────────────────────────────────────────────────────────


class TestResearch:
    async def test_start_and_cancel(self, city_service: CityService, make_city, store):
        await make_city(levels={"academy": 1}, research_points=4)

        assert await city_service.start_research("c1", "p1", "pottery") is None
        city = await _load(store)
        assert city.research_points == 0
        assert city.resources["wood"] == 900

        task_id = city.queue(QueueKind.RESEARCH)[0].task_id
        assert await city_service.cancel_research("c1", "p1", task_id) is None
        city = await _load(store)
        assert city.research_points == 4
        assert city.resources["wood"] == 950

    async def test_requires_points(self, city_service: CityService, make_city):
        await make_city(levels={"academy": 1}, research_points=2)
        result = await city_service.start_research("c1", "p1", "pottery")
        assert result == "Not enough research points (need 4, have 2)"

    async def test_requires_academy_level(self, city_service: CityService, make_city):
        await make_city(levels={"academy": 1}, research_points=8)
        assert await city_service.start_research("c1", "p1", "shipwright") == \
            "Requires Academy level 3"

    async def test_requires_prior_research(self, city_service: CityService, make_city):
        await make_city(levels={"academy": 1}, research_points=8)
        assert await city_service.start_research("c1", "p1", "phalanx") == \
            "Requires research pottery"

    async def test_duplicate_research(self, city_service: CityService, make_city):
        await make_city(levels={"academy": 1}, research_points=8)
        await city_service.start_research("c1", "p1", "pottery")
        assert await city_service.start_research("c1", "p1", "pottery") == \
            "Pottery is already being researched"

    async def test_academy_upgrade_grants_points(self, city_service: CityService, make_city,
                                                 store):
        await make_city(levels={"senate": 2})
        await city_service.upgrade_building("c1", "p1", "academy")
        assert (await _load(store)).research_points == 4

    async def test_research_deactivates_when_academy_drops(self, city_service: CityService,
                                                           make_city, store, clock):
        await make_city(levels={"academy": 3, "senate": 2}, research={"shipwright": True})
        await city_service.demolish_building("c1", "p1", "academy")
        clock.advance(3600)
        city = await city_service.reconcile("c1")
        assert city.research == {"shipwright": False}


# ── Gods ───────────────────────────────────────────────────────────────


class TestDivine:
    async def test_worship_keeps_other_favor(self, city_service: CityService, make_city,
                                             store):
        await make_city(levels={"temple": 1}, god="zeus", worship={"zeus": 40.0})
        assert await city_service.worship_god("c1", "p1", "athena") is None
        city = await _load(store)
        assert city.god == "athena"
        assert city.worship == {"zeus": 40.0, "athena": 0.0}

    async def test_worship_needs_temple(self, city_service: CityService, make_city):
        await make_city()
        assert await city_service.worship_god("c1", "p1", "zeus") == \
            "You need a temple to worship a god"

    async def test_cast_adds_resources_and_spends_favor(self, city_service: CityService,
                                                        make_city, store, event_bus):
        casts = _record(event_bus, SpellCast)
        await make_city(levels={"temple": 1}, god="athena", worship={"athena": 50.0})

        assert await city_service.cast_spell("c1", "p1", "wisdom") is None

        city = await _load(store)
        assert city.resources["silver"] == 1300
        assert city.favor == 30
        assert casts[0].spell_id == "wisdom"

    async def test_added_resources_are_capped(self, city_service: CityService, make_city,
                                              store):
        await make_city(levels={"temple": 1}, god="hera", worship={"hera": 50.0},
                        resources={"wood": 1400.0, "stone": 0.0, "silver": 0.0})
        await city_service.cast_spell("c1", "p1", "wedding")
        city = await _load(store)
        assert city.resources == {"wood": 1500, "stone": 200, "silver": 200}

    async def test_damage_on_another_city(self, city_service: CityService, make_city, store):
        await make_city(levels={"temple": 1}, god="zeus", worship={"zeus": 60.0})
        await make_city("c2", owner_id="p2", levels={"senate": 3})

        assert await city_service.cast_spell("c1", "p1", "lightning_bolt",
                                             target_city_id="c2") is None
        assert (await _load(store, "c2")).level("senate") == 2
        assert (await _load(store)).favor == 10

    async def test_targeted_power_needs_target(self, city_service: CityService, make_city):
        await make_city(levels={"temple": 1}, god="zeus", worship={"zeus": 60.0})
        assert await city_service.cast_spell("c1", "p1", "lightning_bolt") == \
            "This power must target another city"

    async def test_not_enough_favor(self, city_service: CityService, make_city):
        await make_city(levels={"temple": 1}, god="athena", worship={"athena": 5.0})
        assert await city_service.cast_spell("c1", "p1", "wisdom") == \
            "Not enough favor (need 20, have 5)"

    async def test_unknown_effect_fails_loudly(self, city_service: CityService, make_city,
                                               store):
        await make_city(levels={"temple": 1}, god="athena", worship={"athena": 50.0})

        with pytest.raises(UnknownEffectError):
            await city_service.cast_spell("c1", "p1", "owl_sight")

        assert (await _load(store)).favor == 50


# ── Cave ───────────────────────────────────────────────────────────────


class TestCave:
    async def test_deposit_moves_silver_into_the_cave(self, city_service: CityService,
                                                      make_city, store):
        await make_city(levels={"cave": 2})

        assert await city_service.deposit_cave_silver("c1", "p1", 400) is None

        city = await _load(store)
        assert city.cave_silver == 400
        assert city.resources["silver"] == 600

    async def test_deposit_is_limited_by_cave_level(self, city_service: CityService, make_city,
                                                    store):
        await make_city(levels={"cave": 1}, cave_silver=800.0)

        assert await city_service.deposit_cave_silver("c1", "p1", 300) == \
            "Cannot deposit. Cave storage limit is 1,000."
        assert (await _load(store)).cave_silver == 800

    async def test_unbuilt_cave_holds_nothing(self, city_service: CityService, make_city):
        await make_city()
        assert await city_service.deposit_cave_silver("c1", "p1", 1) == \
            "Cannot deposit. Cave storage limit is 0."

    async def test_max_level_cave_is_unlimited(self, city_service: CityService, make_city,
                                               store):
        await make_city(levels={"cave": 10}, cave_silver=50000.0,
                        resources={"wood": 0.0, "stone": 0.0, "silver": 1000.0})

        assert await city_service.deposit_cave_silver("c1", "p1", 1000) is None
        assert (await _load(store)).cave_silver == 51000

    async def test_deposit_needs_city_silver(self, city_service: CityService, make_city):
        await make_city(levels={"cave": 5},
                        resources={"wood": 0.0, "stone": 0.0, "silver": 100.0})
        assert await city_service.deposit_cave_silver("c1", "p1", 200) == \
            "Not enough silver in your city to deposit."

    @pytest.mark.parametrize("amount", [0, -5])
    async def test_amount_must_be_positive(self, city_service: CityService, amount):
        assert await city_service.deposit_cave_silver("c1", "p1", amount) == \
            "Please enter a valid amount to deposit."
        assert await city_service.withdraw_cave_silver("c1", "p1", amount) == \
            "Please enter a valid amount to withdraw."

    async def test_withdraw(self, city_service: CityService, make_city, store):
        await make_city(levels={"cave": 1}, cave_silver=300.0)

        assert await city_service.withdraw_cave_silver("c1", "p1", 200) is None
        city = await _load(store)
        assert city.cave_silver == 100
        assert city.resources["silver"] == 1200

        assert await city_service.withdraw_cave_silver("c1", "p1", 200) == \
            "Not enough silver in the cave to withdraw."


# ── Workers ────────────────────────────────────────────────────────────


class TestWorkers:
    async def test_add_and_remove(self, city_service: CityService, make_city, store):
        await make_city()
        assert await city_service.add_worker("c1", "p1", "timber_camp") is None
        assert await city_service.add_worker("c1", "p1", "timber_camp") == \
            "Timber Camp has no free worker slots"
        assert (await _load(store)).workers("timber_camp") == 1

        assert await city_service.remove_worker("c1", "p1", "timber_camp") is None
        assert (await _load(store)).workers("timber_camp") == 0

    async def test_non_production_building(self, city_service: CityService, make_city):
        await make_city()
        assert await city_service.add_worker("c1", "p1", "senate") == \
            "senate does not accept workers"

    async def test_worker_needs_population(self, city_service: CityService, make_city):
        await make_city(units={"swordsman": 190})
        assert await city_service.add_worker("c1", "p1", "quarry") == \
            "Not enough available population for a worker"


class TestWorkerPresets:
    async def test_save_apply_delete(self, city_service: CityService, make_city, make_player,
                                     store):
        await make_player("p1")
        await make_city()

        assert await city_service.save_worker_preset(
            "p1", "eco", {"timber_camp": 1, "quarry": 3}) is None
        assert await city_service.apply_worker_preset("c1", "p1", "eco") is None

        city = await _load(store)
        assert city.workers("timber_camp") == 1
        assert city.workers("quarry") == 1     # capped by worker slots
        assert city.workers("silver_mine") == 0

        assert await city_service.delete_worker_preset("p1", "eco") is None
        player = player_from_doc("p1", await store.get(constants.PLAYERS, "p1"))
        assert player.worker_presets == []

    async def test_preset_limit(self, city_service: CityService, make_player):
        await make_player("p1")
        for name in ("a", "b", "c"):
            assert await city_service.save_worker_preset("p1", name, {"quarry": 1}) is None
        assert await city_service.save_worker_preset("p1", "d", {"quarry": 1}) == \
            "You can only save 3 presets"
        assert await city_service.save_worker_preset("p1", "a", {"quarry": 0}) is None

    async def test_apply_is_all_or_nothing(self, city_service: CityService, make_city,
                                           make_player, store):
        await make_player("p1")
        await make_city(units={"swordsman": 170})
        await city_service.save_worker_preset("p1", "full", {"timber_camp": 1, "quarry": 1})

        result = await city_service.apply_worker_preset("c1", "p1", "full")

        assert result.startswith("Not enough population to apply preset")
        city = await _load(store)
        assert city.workers("timber_camp") == 0
        assert city.workers("quarry") == 0

    async def test_unknown_preset(self, city_service: CityService, make_city, make_player):
        await make_player("p1")
        await make_city()
        assert await city_service.apply_worker_preset("c1", "p1", "nope") == \
            "No preset named nope"
