"""Tests for the live city view and the background game loop."""

from __future__ import annotations

import asyncio
import copy

import pytest

from polis.engine.city_view import CityView
from polis.engine.game_loop import GameLoop
from polis.models.tasks import QueueKind

from conftest import START_TIME, make_game_config


@pytest.fixture
async def view(store, city_service, make_city):
    await make_city(resources={"wood": 0.0, "stone": 0.0, "silver": 0.0})
    city_view = CityView(store, city_service, "c1")
    await city_view.attach()
    yield city_view
    city_view.detach()


# ── Snapshots ──────────────────────────────────────────────────────────


class TestSnapshots:
    async def test_attach_loads_the_document(self, view: CityView):
        assert view.city.city_id == "c1"
        assert not view.is_optimistic

    async def test_committed_actions_reach_the_view(self, view: CityView, city_service,
                                                    store):
        seen = []
        view.on_change(seen.append)
        await store.update("cities", "c1", {"resources": {"wood": 500.0, "stone": 500.0,
                                                           "silver": 500.0}})

        assert await city_service.upgrade_building("c1", "p1", "senate") is None

        assert view.city.resources["wood"] == 300
        assert len(view.city.queue(QueueKind.BUILD)) == 1
        assert len(seen) == 2

    async def test_optimistic_copy_is_replaced_by_the_next_commit(self, view: CityView, store):
        local = copy.deepcopy(view.city)
        local.city_name = "Guess"
        view.apply_local(local)
        assert view.is_optimistic
        assert view.city.city_name == "Guess"

        await store.update("cities", "c1", {"city_name": "Sparta"})

        assert not view.is_optimistic
        assert view.city.city_name == "Sparta"

    async def test_deleted_city(self, view: CityView, store):
        await store.delete("cities", "c1")
        assert view.city is None
        assert view.stats() == {}
        assert view.projected_resources(START_TIME) == {}

    async def test_detach_stops_updates(self, view: CityView, store):
        view.detach()
        await store.update("cities", "c1", {"city_name": "Sparta"})
        assert view.city.city_name == "p1's City"


# ── Derived values ─────────────────────────────────────────────────────


class TestDerivedValues:
    async def test_projected_resources(self, view: CityView):
        # senate 1 keeps the city unhappy: 3600 wood/h * 0.9
        resources = view.projected_resources(START_TIME + 600)
        assert resources["wood"] == pytest.approx(540)
        assert resources["stone"] == pytest.approx(15)
        assert resources["silver"] == 0

    async def test_projection_does_not_touch_the_view(self, view: CityView):
        view.projected(START_TIME + 600)
        assert view.city.resources["wood"] == 0

    async def test_stats(self, view: CityView):
        stats = view.stats()
        assert stats["warehouse_capacity"] == 1500
        assert stats["market_capacity"] == 0
        assert stats["production"]["wood"] == 3240

    async def test_queue_remaining(self, view: CityView, city_service, store):
        await store.update("cities", "c1", {"resources": {"wood": 500.0, "stone": 500.0,
                                                           "silver": 500.0}})
        assert view.queue_remaining(QueueKind.BUILD, START_TIME) is None

        await city_service.upgrade_building("c1", "p1", "senate")

        assert view.queue_remaining(QueueKind.BUILD, START_TIME + 20) == 40
        assert view.queue_remaining(QueueKind.BUILD, START_TIME + 90) == 0


# ── Game loop ──────────────────────────────────────────────────────────


class TestGameLoop:
    async def test_step_reconciles_every_city(self, city_service, world_service, make_city,
                                              clock):
        await make_city("c1", resources={"wood": 0.0, "stone": 0.0, "silver": 0.0})
        await make_city("c2", owner_id="p2")
        loop = GameLoop(city_service, world_service, make_game_config())
        clock.advance(600)

        await loop.step()

        assert loop.last_reconciled == 2
        city = await world_service.get_city("c1")
        assert city.resources["wood"] == pytest.approx(540)
        assert city.last_updated == START_TIME + 600

    async def test_step_advances_the_world_clock(self, city_service, world_service, clock):
        loop = GameLoop(city_service, world_service, make_game_config())
        await loop.step()
        clock.advance(3 * 3600)
        await loop.step()
        assert (await world_service.conditions()).weather == "Stormy"

    async def test_run_until_stopped(self, city_service, world_service):
        loop = GameLoop(city_service, world_service, make_game_config(step_length_ms=1))
        task = asyncio.create_task(loop.run())
        for _ in range(100):
            if loop.tick_count >= 2:
                break
            await asyncio.sleep(0.01)

        loop.stop()
        await asyncio.wait_for(task, timeout=1)

        assert loop.tick_count >= 2
        assert not loop.is_running
        assert loop.uptime_seconds > 0
