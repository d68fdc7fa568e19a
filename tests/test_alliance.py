"""Tests for alliance membership, alliance research and the shared wonder."""

from __future__ import annotations

import pytest

from polis.engine.alliance_service import AllianceService
from polis.models.alliance import Alliance
from polis.persistence.serialization import city_from_doc
from polis.util import constants
from polis.util.events import AllianceResearchCompleted, WonderLevelClaimed


@pytest.fixture
async def alliance(alliance_service: AllianceService, make_player, make_city) -> Alliance:
    await make_player("p1", username="Leader")
    await make_player("p2", username="Member")
    await make_city("c1", owner_id="p1", owner_username="Leader")
    await make_city("c2", owner_id="p2", owner_username="Member")
    created = await alliance_service.create_alliance("p1", "Delian League")
    assert await alliance_service.join_alliance("p2", created.alliance_id) is None
    return created


async def _start(alliance_service: AllianceService) -> None:
    assert await alliance_service.start_wonder("p1", "c1", "great_pyramid", "i1", 5.0, 5.0) is None


# ── Membership ─────────────────────────────────────────────────────────


class TestMembership:
    async def test_create_and_join(self, alliance_service: AllianceService, alliance, store):
        loaded = await alliance_service.get_alliance(alliance.alliance_id)
        assert loaded.leader_id == "p1"
        assert loaded.members == ["p1", "p2"]
        assert (await store.get(constants.PLAYERS, "p2"))["alliance_id"] == alliance.alliance_id

    async def test_cannot_join_twice(self, alliance_service: AllianceService, alliance):
        assert await alliance_service.join_alliance("p2", alliance.alliance_id) == \
            "You are already in an alliance"

    async def test_name_required(self, alliance_service: AllianceService, make_player):
        await make_player("p3")
        assert await alliance_service.create_alliance("p3", "   ") == \
            "Alliance name must not be empty"

    async def test_unknown_alliance(self, alliance_service: AllianceService, make_player):
        await make_player("p3")
        assert await alliance_service.join_alliance("p3", "nope") == "Alliance not found"


# ── Wonder ─────────────────────────────────────────────────────────────


class TestWonder:
    async def test_only_the_leader_starts(self, alliance_service: AllianceService, alliance):
        assert await alliance_service.start_wonder("p2", "c2", "great_pyramid", "i1", 0, 0) == \
            "Only the leader can start a wonder."

    async def test_start_is_paid_by_the_leader(self, alliance_service: AllianceService,
                                               alliance, store):
        await _start(alliance_service)

        city = city_from_doc("c1", await store.get(constants.CITIES, "c1"))
        assert city.resources == {"wood": 900, "stone": 900, "silver": 950}
        loaded = await alliance_service.get_alliance(alliance.alliance_id)
        assert loaded.wonder.wonder_id == "great_pyramid"
        assert loaded.wonder.level == 0

    async def test_one_wonder_at_a_time(self, alliance_service: AllianceService, alliance):
        await _start(alliance_service)
        assert await alliance_service.start_wonder("p1", "c1", "great_pyramid", "i1", 0, 0) == \
            "Your alliance is already building a wonder."

    async def test_unknown_wonder(self, alliance_service: AllianceService, alliance):
        assert await alliance_service.start_wonder("p1", "c1", "colossus", "i1", 0, 0) == \
            "Unknown wonder: colossus"

    async def test_donate_and_claim(self, alliance_service: AllianceService, alliance, store,
                                    event_bus):
        claimed = []
        event_bus.on(WonderLevelClaimed, claimed.append)
        await _start(alliance_service)

        assert await alliance_service.donate("p2", "c2",
                                             {"wood": 250, "stone": 200, "silver": 100}) is None
        member_city = city_from_doc("c2", await store.get(constants.CITIES, "c2"))
        assert member_city.resources == {"wood": 750, "stone": 800, "silver": 900}

        assert await alliance_service.claim_level("p2") == \
            "Only the leader can claim wonder levels."
        assert await alliance_service.claim_level("p1") is None

        loaded = await alliance_service.get_alliance(alliance.alliance_id)
        assert loaded.wonder.level == 1
        assert loaded.wonder_progress == {"wood": 50, "stone": 0, "silver": 0}
        assert claimed[0].level == 1

        # the next level costs 300/300/150
        assert await alliance_service.claim_level("p1") == \
            "Not enough resources have been donated to claim this level."

    async def test_donation_needs_resources(self, alliance_service: AllianceService, alliance):
        await _start(alliance_service)
        assert await alliance_service.donate("p2", "c2", {"wood": 5000}) == \
            "Not enough wood in your city."

    async def test_donation_needs_a_wonder(self, alliance_service: AllianceService, alliance):
        assert await alliance_service.donate("p2", "c2", {"wood": 10}) == \
            "Your alliance is not building a wonder"

    async def test_wonder_level_boosts_member_warehouses(self, alliance_service: AllianceService,
                                                         city_service, alliance, store):
        await _start(alliance_service)
        await alliance_service.donate("p1", "c1", {"wood": 200, "stone": 200, "silver": 100})
        await alliance_service.claim_level("p1")

        city = city_from_doc("c2", await store.get(constants.CITIES, "c2"))
        effects = await city_service.effects_for(city)
        assert effects == {"warehouse_capacity_modifier": 0.1}
        assert city_service.warehouse_capacity(city, effects) == 1650

    async def test_demolish_resets_progress(self, alliance_service: AllianceService, alliance):
        await _start(alliance_service)
        await alliance_service.donate("p1", "c1", {"wood": 100})

        assert await alliance_service.demolish_wonder("p2") == \
            "Only the leader can demolish the wonder."
        assert await alliance_service.demolish_wonder("p1") is None

        loaded = await alliance_service.get_alliance(alliance.alliance_id)
        assert loaded.wonder is None
        assert loaded.wonder_progress == {"wood": 0, "stone": 0, "silver": 0}

    async def test_event_log(self, alliance_service: AllianceService, alliance, clock):
        clock.advance(1)
        await _start(alliance_service)
        clock.advance(1)
        await alliance_service.donate("p2", "c2", {"stone": 40})

        events = await alliance_service.events(alliance.alliance_id)

        assert [e["type"] for e in events] == ["member_join", "wonder_start", "wonder_donation"]
        assert events[1]["text"] == "Leader has started construction of the Great Pyramid."
        assert events[2]["text"] == "Member donated 40 stone to the wonder."


# ── Research ───────────────────────────────────────────────────────────


class TestResearch:
    def test_cost_grows_per_level(self, alliance_service: AllianceService):
        assert alliance_service.research_cost("forestry", 0) == \
            {"wood": 100, "stone": 100, "silver": 50}
        assert alliance_service.research_cost("forestry", 1) == \
            {"wood": 200, "stone": 200, "silver": 100}

    async def test_partial_donation_is_kept_as_progress(self, alliance_service: AllianceService,
                                                        alliance, store):
        assert await alliance_service.donate_to_research("p2", "c2", "forestry",
                                                         {"wood": 60}) is None

        loaded = await alliance_service.get_alliance(alliance.alliance_id)
        assert loaded.research.get("forestry", 0) == 0
        assert loaded.research_progress["forestry"] == {"wood": 60, "stone": 0, "silver": 0}
        city = city_from_doc("c2", await store.get(constants.CITIES, "c2"))
        assert city.resources["wood"] == 940

    async def test_covering_the_cost_raises_the_level(self, alliance_service: AllianceService,
                                                      city_service, alliance, store, event_bus,
                                                      clock):
        completed = []
        clock.advance(1)
        event_bus.on(AllianceResearchCompleted, completed.append)

        assert await alliance_service.donate_to_research(
            "p1", "c1", "forestry", {"wood": 150, "stone": 100, "silver": 50}) is None

        loaded = await alliance_service.get_alliance(alliance.alliance_id)
        assert loaded.research["forestry"] == 1
        assert loaded.research_progress["forestry"] == {"wood": 50, "stone": 0, "silver": 0}
        assert completed[0].research_id == "forestry"
        assert completed[0].level == 1
        events = await alliance_service.events(alliance.alliance_id)
        assert events[-1]["type"] == "research_completed"
        assert events[-1]["text"] == "The alliance has completed Forestry Level 1!"

        city = city_from_doc("c2", await store.get(constants.CITIES, "c2"))
        assert await city_service.effects_for(city) == {"wood_production_modifier": 0.05}

    async def test_max_level(self, alliance_service: AllianceService, alliance):
        await alliance_service.donate_to_research("p1", "c1", "forestry",
                                                  {"wood": 100, "stone": 100, "silver": 50})
        await alliance_service.donate_to_research("p2", "c2", "forestry",
                                                  {"wood": 200, "stone": 200, "silver": 100})

        loaded = await alliance_service.get_alliance(alliance.alliance_id)
        assert loaded.research["forestry"] == 2
        assert await alliance_service.donate_to_research("p1", "c1", "forestry",
                                                         {"wood": 10}) == \
            "Forestry is already at its maximum level."

    async def test_donation_needs_resources(self, alliance_service: AllianceService, alliance):
        assert await alliance_service.donate_to_research("p1", "c1", "forestry",
                                                         {"silver": 5000}) == "Not enough silver."
        loaded = await alliance_service.get_alliance(alliance.alliance_id)
        assert "forestry" not in loaded.research_progress

    async def test_unknown_research(self, alliance_service: AllianceService, alliance):
        assert await alliance_service.donate_to_research("p1", "c1", "alchemy", {"wood": 1}) == \
            "Unknown alliance research: alchemy"

    async def test_requires_an_alliance(self, alliance_service: AllianceService, make_player,
                                        make_city):
        await make_player("p3")
        await make_city("c3", owner_id="p3")
        assert await alliance_service.donate_to_research("p3", "c3", "forestry",
                                                         {"wood": 10}) == \
            "You are not in an alliance."
