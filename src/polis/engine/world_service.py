"""World service — city slots, the world clock and cached map data.

Claiming a slot is the one place with an explicit retry policy: fetch a
batch of empty slots, try each in its own transaction, and when the whole
batch was taken by other players back off and fetch again, a bounded
number of times.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING, Iterable, Optional

from polis.engine.actions import save_city
from polis.loaders.game_config_loader import GameConfig
from polis.models.city import BuildingState, City
from polis.models.world import CitySlot, Player, WorldConditions
from polis.persistence.serialization import (
    city_from_doc,
    conditions_from_doc,
    conditions_to_doc,
    player_from_doc,
    player_to_doc,
    slot_from_doc,
    slot_to_doc,
)
from polis.util import constants
from polis.util.cache import TTLCache
from polis.util.errors import ActionRejected, TransactionConflict
from polis.util.events import CitySlotClaimed

if TYPE_CHECKING:
    from polis.persistence.document_store import DocumentStore, Transaction
    from polis.util.events import EventBus

log = logging.getLogger(__name__)

WORLD_FULL = "This world is full! Please try again later."


class WorldService:
    """World-wide state shared by every player.

    Args:
        store: Transactional document store.
        event_bus: Receives ``CitySlotClaimed`` events.
        game_config: Starting city layout, clock lengths and retry bounds.
        cache: Cache for villages and ruins; a private one is created if omitted.
        rng: Random source for weather rolls.
    """

    def __init__(self, store: DocumentStore, event_bus: EventBus,
                 game_config: GameConfig | None = None,
                 cache: TTLCache | None = None,
                 rng: random.Random | None = None) -> None:
        self._store = store
        self._events = event_bus
        self._config = game_config or GameConfig()
        self._cache = cache or TTLCache(self._config.world_data_ttl_seconds)
        self._rng = rng or random.Random()

    # -- Slots -----------------------------------------------------------

    async def add_slots(self, slots: Iterable[CitySlot]) -> int:
        """Seed map slots; returns how many were written."""
        count = 0
        for slot in slots:
            await self._store.set(constants.CITY_SLOTS, slot.slot_id, slot_to_doc(slot))
            count += 1
        log.info("Seeded %d city slots", count)
        return count

    def _new_city(self, city_id: str, slot: CitySlot, player_id: str, username: str,
                  city_name: str, now: float) -> City:
        cfg = self._config
        buildings = {bid: BuildingState(level=cfg.starting_levels.get(bid, 0))
                     for bid in cfg.initial_buildings}
        for bid, level in cfg.starting_levels.items():
            buildings.setdefault(bid, BuildingState(level=level))
        return City(
            city_id=city_id,
            owner_id=player_id,
            slot_id=slot.slot_id,
            city_name=city_name,
            owner_username=username,
            island_id=slot.island_id,
            x=slot.x,
            y=slot.y,
            resources=dict(cfg.starting_resources),
            buildings=buildings,
            last_updated=now,
        )

    async def _claim_one(self, slot_id: str, player_id: str, username: str,
                         city_name: str) -> City:

        async def txn_fn(txn: Transaction) -> City:
            doc = await txn.get(constants.CITY_SLOTS, slot_id)
            if doc is None:
                raise ActionRejected("This plot does not exist")
            slot = slot_from_doc(slot_id, doc)
            if slot.owner_id is not None:
                raise ActionRejected("This plot is already taken")

            now = self._store.server_time()
            city = self._new_city(self._store.new_id(), slot, player_id, username,
                                  city_name, now)
            slot.owner_id = player_id
            slot.city_id = city.city_id
            txn.set(constants.CITY_SLOTS, slot_id, slot_to_doc(slot))
            save_city(txn, city)

            player_doc = await txn.get(constants.PLAYERS, player_id)
            player = (player_from_doc(player_id, player_doc) if player_doc
                      else Player(player_id=player_id, username=username))
            txn.set(constants.PLAYERS, player_id, player_to_doc(player))
            return city

        return await self._store.run_transaction(txn_fn, max_attempts=1)

    async def claim_city_slot(self, player_id: str, username: str,
                              city_name: Optional[str] = None) -> City | str:
        """Give a new player an empty slot and a starting city.

        Returns the created city, or an error message when no slot could
        be claimed within the retry bound.
        """
        existing = await self._store.query(constants.CITIES, {"owner_id": player_id}, limit=1)
        if existing:
            return "You already have a city in this world"
        name = city_name or f"{username}'s City"
        cfg = self._config

        for attempt_no in range(1, cfg.slot_claim_attempts + 1):
            candidates = await self._store.query(constants.CITY_SLOTS, {"owner_id": None},
                                                 limit=cfg.slot_fetch_limit)
            if not candidates:
                log.warning("No empty slots left for %s", player_id)
                break
            for slot_id, _ in candidates:
                try:
                    city = await self._claim_one(slot_id, player_id, username, name)
                except (ActionRejected, TransactionConflict) as exc:
                    log.warning("Slot %s not claimed for %s: %s", slot_id, player_id, exc)
                    continue
                log.info("Slot %s claimed by %s, city %s", slot_id, player_id, city.city_id)
                self._events.emit(CitySlotClaimed(slot_id=slot_id, city_id=city.city_id,
                                                  owner_id=player_id))
                return city
            if attempt_no < cfg.slot_claim_attempts:
                await asyncio.sleep(cfg.slot_claim_backoff_seconds * attempt_no)
        return WORLD_FULL

    async def get_city(self, city_id: str) -> Optional[City]:
        doc = await self._store.get(constants.CITIES, city_id)
        return city_from_doc(city_id, doc) if doc else None

    async def cities_of(self, player_id: str) -> list[City]:
        rows = await self._store.query(constants.CITIES, {"owner_id": player_id})
        return [city_from_doc(cid, doc) for cid, doc in rows]

    # -- World clock -----------------------------------------------------

    async def conditions(self) -> WorldConditions:
        return conditions_from_doc(await self._store.get(constants.WORLD, constants.WORLD_STATE_ID))

    async def advance_clock(self) -> WorldConditions:
        """Rotate the season and re-roll the weather once their time is up."""
        cfg = self._config

        async def txn_fn(txn: Transaction) -> WorldConditions:
            now = self._store.server_time()
            doc = await txn.get(constants.WORLD, constants.WORLD_STATE_ID)
            conditions = conditions_from_doc(doc)
            changed = doc is None
            if doc is None:
                conditions.season_started = now
                conditions.weather_started = now

            while now - conditions.season_started >= cfg.season_length_seconds:
                index = constants.SEASONS.index(conditions.season) \
                    if conditions.season in constants.SEASONS else -1
                conditions.season = constants.SEASONS[(index + 1) % len(constants.SEASONS)]
                conditions.season_started += cfg.season_length_seconds
                changed = True
            if now - conditions.weather_started >= cfg.weather_length_seconds:
                conditions.weather = self._rng.choice(constants.WEATHERS)
                conditions.weather_started = now
                changed = True

            if changed:
                txn.set(constants.WORLD, constants.WORLD_STATE_ID, conditions_to_doc(conditions))
            return conditions

        before = await self.conditions()
        after = await self._store.run_transaction(txn_fn)
        if (before.season, before.weather) != (after.season, after.weather):
            log.info("World is now %s, %s", after.season, after.weather)
        return after

    # -- Cached map data -------------------------------------------------

    async def _load_collection(self, collection: str) -> list[tuple[str, dict]]:
        return await self._store.query(collection)

    async def villages(self) -> list[tuple[str, dict]]:
        return await self._cache.get_or_load(
            constants.VILLAGES, lambda: self._load_collection(constants.VILLAGES))

    async def ruins(self) -> list[tuple[str, dict]]:
        return await self._cache.get_or_load(
            constants.RUINS, lambda: self._load_collection(constants.RUINS))

    def invalidate_world_data(self, collection: Optional[str] = None) -> None:
        """Forget cached villages/ruins so the next read hits the store."""
        self._cache.invalidate(collection)
