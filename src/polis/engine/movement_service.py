"""Movement service — dispatch, recall, turn-around, founding and withdrawal.

A dispatch validates island rules and transport capacity, prices the trip
with the travel calculator and then, in one transaction, creates the
movement record and takes its units, resources, hero and agent out of the
origin city. What happens on arrival is decided elsewhere.
"""

from __future__ import annotations

import logging
import math
import random
from typing import TYPE_CHECKING, Optional

from polis.engine import travel
from polis.engine.actions import attempt, load_city, require_resources, save_city
from polis.engine.travel import TravelCalculator
from polis.loaders.game_config_loader import GameConfig
from polis.models.city import HeroStatus
from polis.models.movement import (
    ATTACK_TYPES,
    FORMATION_LINES,
    Movement,
    MovementStatus,
    MovementType,
    Target,
    TargetKind,
)
from polis.models.world import WorldConditions
from polis.persistence.serialization import (
    movement_from_doc,
    movement_to_doc,
    player_from_doc,
    slot_from_doc,
)
from polis.util import constants
from polis.util.errors import ActionRejected
from polis.util.events import MovementDispatched, MovementRecalled

if TYPE_CHECKING:
    from polis.engine.city_service import CityService
    from polis.engine.game_data import GameData
    from polis.engine.world_service import WorldService
    from polis.models.city import City
    from polis.persistence.document_store import DocumentStore, Transaction
    from polis.util.events import EventBus

log = logging.getLogger(__name__)

DISPATCH_MODES = frozenset({"attack", "reinforce", "scout", "trade", "assign_hero"})
NOMINAL_SPEED_MODES = frozenset({"scout", "trade", "assign_hero"})

_ATTACK_TYPE_BY_TARGET = {
    TargetKind.VILLAGE: MovementType.ATTACK_VILLAGE,
    TargetKind.RUIN: MovementType.ATTACK_RUIN,
    TargetKind.GOD_TOWN: MovementType.ATTACK_GOD_TOWN,
}


class MovementService:
    """Service for creating and recalling movements.

    Args:
        store: Transactional document store.
        game_data: Balance tables (unit speeds and capacities).
        event_bus: Event bus for inter-service communication.
        city_service: Settles the origin city before validation.
        game_config: Tunable constants.
        world_service: Source of the current season and weather.
        rng: Random source for wind sampling; seed it for reproducible trips.
    """

    def __init__(self, store: DocumentStore, game_data: GameData, event_bus: EventBus,
                 city_service: CityService, game_config: GameConfig | None = None,
                 world_service: WorldService | None = None,
                 rng: random.Random | None = None) -> None:
        self._store = store
        self._data = game_data
        self._events = event_bus
        self._cities = city_service
        self._config = game_config or GameConfig()
        self._world = world_service
        self._rng = rng or random.Random()
        self._travel = TravelCalculator(self._config)

    async def _conditions(self) -> WorldConditions:
        if self._world is None:
            return WorldConditions()
        return await self._world.conditions()

    # -- Validation helpers ----------------------------------------------

    def _clean_units(self, units: Optional[dict[str, int]]) -> dict[str, int]:
        selected = {uid: int(n) for uid, n in (units or {}).items() if int(n) > 0}
        for uid in selected:
            if self._data.unit(uid) is None:
                raise ActionRejected(f"Unknown unit: {uid}")
        return selected

    def _check_formation(self, formation: dict[str, str], units: dict[str, int]) -> None:
        for line, unit_id in formation.items():
            if line not in FORMATION_LINES:
                raise ActionRejected(f"Unknown formation line: {line}")
            if not isinstance(unit_id, str):
                raise ActionRejected("Each formation line takes a single unit type")
            unit = self._data.unit(unit_id)
            if unit is None or not unit.is_land:
                raise ActionRejected(f"Only land units can hold the {line} line")
            if units.get(unit_id, 0) <= 0:
                raise ActionRejected(f"{unit.name} is placed in the {line} line but not sent")

    def _check_transport(self, units: dict[str, int]) -> None:
        """Land units crossing the sea need ships unless they fly."""
        need = 0
        capacity = 0
        for uid, count in units.items():
            unit = self._data.units[uid]
            if unit.is_naval:
                capacity += unit.capacity * count
            elif not unit.flying:
                need += unit.population * count
        if need > capacity:
            raise ActionRejected(
                f"Not enough transport capacity: {need} population to carry, "
                f"ships hold {capacity} (short by {need - capacity})")

    @staticmethod
    def _is_cross_island(origin_island: Optional[str], target: Target) -> bool:
        if target.kind in (TargetKind.RUIN, TargetKind.GOD_TOWN):
            return True
        return origin_island != target.island_id

    def _trip_seconds(self, mode: str, units: dict[str, int], dist: float,
                      conditions: WorldConditions, wind: float) -> float:
        if mode in NOMINAL_SPEED_MODES:
            speed: Optional[float] = self._config.nominal_speed
        else:
            speed = travel.slowest_speed(units, self._data.units)
        if speed is None:
            raise ActionRejected("Select at least one unit")
        mix = travel.unit_type_mix(units, self._data.units)
        seconds = self._travel.travel_time(dist, speed, mode, conditions, mix, wind)
        if math.isinf(seconds):
            raise ActionRejected("These units cannot reach the target")
        return seconds

    async def _resolve_target_city(self, target: Target) -> Optional[str]:
        if target.city_id:
            return target.city_id
        if target.kind not in (TargetKind.CITY, TargetKind.SLOT):
            return None
        rows = await self._store.query(constants.CITIES, {"slot_id": target.target_id}, limit=1)
        return rows[0][0] if rows else None

    # -- Dispatch --------------------------------------------------------

    async def dispatch(self, owner_id: str, origin_city_id: str, mode: str, target: Target,
                       units: Optional[dict[str, int]] = None,
                       resources: Optional[dict[str, float]] = None,
                       hero: Optional[str] = None,
                       formation: Optional[dict[str, str]] = None) -> Movement | str:
        """Send an attack, reinforcement, scout, trade or hero movement.

        Returns the created movement or an error message.
        """
        try:
            if mode not in DISPATCH_MODES:
                raise ActionRejected(f"Unknown movement mode: {mode}")
            movement_type = MovementType(mode)
            if mode == "attack":
                movement_type = _ATTACK_TYPE_BY_TARGET.get(target.kind, MovementType.ATTACK)
            selected = {} if mode in ("scout", "trade") else self._clean_units(units)
            payload = {k: float(v) for k, v in (resources or {}).items() if float(v) > 0}
            formation = dict(formation or {})
            if formation:
                if movement_type not in ATTACK_TYPES:
                    raise ActionRejected("Only attacks carry a formation")
                self._check_formation(formation, selected)
            if mode in ("attack", "reinforce") and not selected:
                raise ActionRejected("Select at least one unit")
            if mode == "assign_hero" and not hero:
                raise ActionRejected("Select a hero to assign")
            if mode == "trade":
                if not payload:
                    raise ActionRejected("Select resources to send")
                if any(res not in constants.RESOURCES for res in payload):
                    raise ActionRejected("Only wood, stone and silver can be traded")
            if mode == "scout" and payload.get(constants.SILVER, 0) <= 0:
                raise ActionRejected("Scouting requires silver from the cave")
            target_city_id = await self._resolve_target_city(target)
            if mode in ("trade", "reinforce", "assign_hero") and target_city_id is None:
                raise ActionRejected("Could not find the target city")
            if target_city_id == origin_city_id:
                raise ActionRejected("The target is your own origin city")
        except ActionRejected as exc:
            return exc.message

        conditions = await self._conditions()
        wind = travel.sample_wind_speed(conditions.weather, self._rng)

        async def txn_fn(txn: Transaction) -> Movement:
            now = self._store.server_time()
            city = await load_city(txn, origin_city_id, owner_id)
            self._cities.settle(city, now)

            if movement_type == MovementType.ATTACK_VILLAGE and city.island_id != target.island_id:
                raise ActionRejected("Farming villages can only be attacked from the same island")
            cross_island = self._is_cross_island(city.island_id, target)
            if cross_island and selected and mode not in NOMINAL_SPEED_MODES:
                self._check_transport(selected)
            if mode == "assign_hero" and target.owner_id not in (None, owner_id):
                raise ActionRejected("Heroes can only be assigned to your own cities")

            for uid, count in selected.items():
                if city.units.get(uid, 0) < count:
                    raise ActionRejected(f"Not enough {uid} in the city")
            if mode == "trade":
                capacity = self._cities.economy.market_capacity(city.level(constants.MARKET))
                if sum(payload.values()) > capacity:
                    raise ActionRejected(f"Your market can only send {capacity:.0f} resources")
                require_resources(city.resources, payload)
            if mode == "scout" and city.cave_silver < payload[constants.SILVER]:
                raise ActionRejected("Not enough silver in the cave")
            if hero:
                state = city.heroes.get(hero)
                if state is None or state.status != HeroStatus.IN_CITY:
                    raise ActionRejected("The hero is not in this city")

            dist = travel.distance(city.x, city.y, target.x, target.y)
            seconds = self._trip_seconds(mode, selected, dist, conditions, wind)

            for uid, count in selected.items():
                city.units[uid] -= count
                if city.units[uid] == 0:
                    del city.units[uid]
            carried: dict[str, float] = {}
            if mode == "trade":
                for res, amount in payload.items():
                    city.resources[res] -= amount
                carried = payload
            if mode == "scout":
                city.cave_silver -= payload[constants.SILVER]
                carried = {constants.SILVER: payload[constants.SILVER]}
            if hero:
                city.heroes[hero].status = HeroStatus.EN_ROUTE

            movement = Movement(
                movement_id=self._store.new_id(),
                movement_type=movement_type,
                status=MovementStatus.MOVING,
                origin_city_id=city.city_id,
                origin_owner_id=owner_id,
                origin_city_name=city.city_name,
                origin_x=city.x,
                origin_y=city.y,
                target_kind=target.kind,
                target_id=target.target_id,
                target_x=target.x,
                target_y=target.y,
                target_owner_id=target.owner_id,
                target_city_id=target_city_id,
                target_name=target.name,
                units=selected,
                hero=hero,
                resources=carried,
                attack_formation=formation,
                departure_time=now,
                arrival_time=now + seconds,
                cancellable_until=now + self._config.cancel_grace_seconds,
                is_cross_island=cross_island,
                wind_speed=wind,
                involved_parties=sorted({owner_id, target.owner_id} - {None}),
            )
            txn.set(constants.MOVEMENTS, movement.movement_id, movement_to_doc(movement))
            save_city(txn, city)
            return movement

        result = await attempt(self._store, txn_fn, f"dispatch {mode}")
        if isinstance(result, str):
            return result
        log.info("Movement %s: %s from %s arrives at %.0f",
                 result.movement_id, result.movement_type.value, origin_city_id,
                 result.arrival_time)
        self._events.emit(MovementDispatched(
            movement_id=result.movement_id, movement_type=result.movement_type.value,
            origin_city_id=origin_city_id, arrival_time=result.arrival_time,
        ))
        return result

    # -- Founding --------------------------------------------------------

    async def _colony_name(self, owner_id: str) -> str:
        player_doc = await self._store.get(constants.PLAYERS, owner_id)
        username = player_from_doc(owner_id, player_doc).username if player_doc else owner_id
        base = f"{username}'s Colony"
        taken = {doc.get("city_name") for _, doc in
                 await self._store.query(constants.CITIES, {"owner_id": owner_id})}
        if base not in taken:
            return base
        n = 2
        while f"{base} {n}" in taken:
            n += 1
        return f"{base} {n}"

    async def found_city(self, owner_id: str, origin_city_id: str, slot_id: str,
                         units: dict[str, int],
                         agent_id: str = constants.ARCHITECT) -> Movement | str:
        """Send villagers and an architect to settle an empty slot."""
        try:
            selected = self._clean_units(units)
        except ActionRejected as exc:
            return exc.message
        villagers = selected.get(constants.VILLAGER, 0)
        if villagers < 1:
            return "Founding a city requires at least one villager"
        new_name = await self._colony_name(owner_id)

        async def txn_fn(txn: Transaction) -> Movement:
            now = self._store.server_time()
            city = await load_city(txn, origin_city_id, owner_id)
            self._cities.settle(city, now)
            slot_doc = await txn.get(constants.CITY_SLOTS, slot_id)
            if slot_doc is None:
                raise ActionRejected("This plot does not exist")
            slot = slot_from_doc(slot_id, slot_doc)
            if slot.owner_id is not None:
                raise ActionRejected("This plot is already taken")
            if city.agents.get(agent_id, 0) < 1:
                raise ActionRejected(f"You need an available {agent_id} to found a city")
            for uid, count in selected.items():
                if city.units.get(uid, 0) < count:
                    raise ActionRejected(f"Not enough {uid} in the city")

            for uid, count in selected.items():
                city.units[uid] -= count
                if city.units[uid] == 0:
                    del city.units[uid]
            city.agents[agent_id] -= 1

            movement = Movement(
                movement_id=self._store.new_id(),
                movement_type=MovementType.FOUND_CITY,
                status=MovementStatus.MOVING,
                origin_city_id=city.city_id,
                origin_owner_id=owner_id,
                origin_city_name=city.city_name,
                origin_x=city.x,
                origin_y=city.y,
                target_kind=TargetKind.SLOT,
                target_id=slot_id,
                target_x=slot.x,
                target_y=slot.y,
                units=selected,
                agent=agent_id,
                departure_time=now,
                arrival_time=now + self._travel.founding_time(villagers),
                cancellable_until=now + self._config.cancel_grace_seconds,
                is_cross_island=city.island_id != slot.island_id,
                new_city_name=new_name,
                involved_parties=[owner_id],
            )
            txn.set(constants.MOVEMENTS, movement.movement_id, movement_to_doc(movement))
            save_city(txn, city)
            return movement

        result = await attempt(self._store, txn_fn, "found city")
        if isinstance(result, str):
            return result
        log.info("Movement %s: founding %r at slot %s", result.movement_id, new_name, slot_id)
        self._events.emit(MovementDispatched(
            movement_id=result.movement_id, movement_type=result.movement_type.value,
            origin_city_id=origin_city_id, arrival_time=result.arrival_time,
        ))
        return result

    # -- Recall & turn-around --------------------------------------------

    async def _load_own_movement(self, txn: Transaction, movement_id: str,
                                 player_id: str) -> Movement:
        doc = await txn.get(constants.MOVEMENTS, movement_id)
        if doc is None:
            raise ActionRejected("Movement not found")
        movement = movement_from_doc(movement_id, doc)
        if movement.origin_owner_id != player_id:
            raise ActionRejected("You can only recall your own movements")
        if movement.status != MovementStatus.MOVING:
            raise ActionRejected("This movement is already returning")
        return movement

    async def recall(self, movement_id: str, player_id: str) -> Optional[str]:
        """Cancel a movement outright inside its grace window; the payload returns home."""

        async def txn_fn(txn: Transaction) -> None:
            now = self._store.server_time()
            movement = await self._load_own_movement(txn, movement_id, player_id)
            if now >= movement.cancellable_until:
                raise ActionRejected("The movement can no longer be cancelled")
            city = await load_city(txn, movement.origin_city_id, player_id)
            self._restore_payload(city, movement)
            save_city(txn, city)
            txn.delete(constants.MOVEMENTS, movement_id)

        result = await attempt(self._store, txn_fn, "recall movement")
        if result is None:
            self._events.emit(MovementRecalled(movement_id=movement_id, cancelled=True))
        return result

    @staticmethod
    def _restore_payload(city: City, movement: Movement) -> None:
        for uid, count in movement.units.items():
            city.units[uid] = city.units.get(uid, 0) + count
        if movement.movement_type == MovementType.SCOUT:
            city.cave_silver += movement.resources.get(constants.SILVER, 0.0)
        else:
            for res, amount in movement.resources.items():
                city.resources[res] = city.resources.get(res, 0.0) + amount
        if movement.hero and movement.hero in city.heroes:
            city.heroes[movement.hero].status = HeroStatus.IN_CITY
            city.heroes[movement.hero].city_id = city.city_id
        if movement.agent:
            city.agents[movement.agent] = city.agents.get(movement.agent, 0) + 1

    async def turn_around(self, movement_id: str, player_id: str) -> Movement | str:
        """Send a moving movement home; the way back takes as long as the way out so far."""

        async def txn_fn(txn: Transaction) -> Movement:
            now = self._store.server_time()
            movement = await self._load_own_movement(txn, movement_id, player_id)
            if now >= movement.arrival_time:
                raise ActionRejected("The movement has already arrived")
            elapsed = now - movement.departure_time
            movement.status = MovementStatus.RETURNING
            movement.departure_time = now
            movement.arrival_time = now + elapsed
            movement.cancellable_until = now
            txn.set(constants.MOVEMENTS, movement_id, movement_to_doc(movement))
            return movement

        result = await attempt(self._store, txn_fn, "turn around")
        if isinstance(result, str):
            return result
        self._events.emit(MovementRecalled(movement_id=movement_id, cancelled=False))
        return result

    # -- Reinforcement withdrawal ----------------------------------------

    async def withdraw(self, player_id: str, host_city_id: str,
                       withdrawals: dict[str, dict[str, int]]) -> list[Movement] | str:
        """Bring own reinforcements home from ``host_city_id``.

        ``withdrawals`` maps origin city id → units to withdraw. Entries
        belonging to other players are refused; one return movement is
        created per origin city.
        """
        if not withdrawals:
            return "Select troops to withdraw"
        conditions = await self._conditions()
        wind = travel.sample_wind_speed(conditions.weather, self._rng)

        async def txn_fn(txn: Transaction) -> list[Movement]:
            now = self._store.server_time()
            host = await load_city(txn, host_city_id)
            created: list[Movement] = []
            for origin_id, units in withdrawals.items():
                entry = host.reinforcements.get(origin_id)
                if entry is None:
                    raise ActionRejected("There are no troops from that city here")
                if entry.owner_id != player_id:
                    raise ActionRejected("You can only withdraw your own troops")
                selected = {uid: int(n) for uid, n in units.items() if int(n) > 0}
                if not selected:
                    raise ActionRejected("Select troops to withdraw")
                for uid, count in selected.items():
                    if entry.units.get(uid, 0) < count:
                        raise ActionRejected(f"Not enough {uid} stationed here")
                for uid, count in selected.items():
                    entry.units[uid] -= count
                    if entry.units[uid] == 0:
                        del entry.units[uid]
                if not entry.units:
                    del host.reinforcements[origin_id]

                origin = await load_city(txn, origin_id)
                dist = travel.distance(host.x, host.y, origin.x, origin.y)
                seconds = self._trip_seconds("return", selected, dist, conditions, wind)
                movement = Movement(
                    movement_id=self._store.new_id(),
                    movement_type=MovementType.RETURN,
                    status=MovementStatus.RETURNING,
                    origin_city_id=origin.city_id,
                    origin_owner_id=player_id,
                    origin_city_name=origin.city_name,
                    origin_x=origin.x,
                    origin_y=origin.y,
                    target_kind=TargetKind.CITY,
                    target_id=host.slot_id,
                    target_x=host.x,
                    target_y=host.y,
                    target_owner_id=host.owner_id,
                    target_city_id=host.city_id,
                    target_name=host.city_name,
                    units=selected,
                    departure_time=now,
                    arrival_time=now + seconds,
                    cancellable_until=now,
                    is_cross_island=origin.island_id != host.island_id,
                    wind_speed=wind,
                    involved_parties=sorted({player_id, host.owner_id}),
                )
                txn.set(constants.MOVEMENTS, movement.movement_id, movement_to_doc(movement))
                created.append(movement)
            save_city(txn, host)
            return created

        result = await attempt(self._store, txn_fn, "withdraw reinforcements")
        if isinstance(result, str):
            return result
        for movement in result:
            log.info("Movement %s: %s withdrawing %s from %s", movement.movement_id,
                     player_id, movement.units, host_city_id)
            self._events.emit(MovementDispatched(
                movement_id=movement.movement_id, movement_type=movement.movement_type.value,
                origin_city_id=movement.origin_city_id, arrival_time=movement.arrival_time,
            ))
        return result

    # -- Queries ---------------------------------------------------------

    async def movements_for(self, player_id: str) -> list[Movement]:
        """Movements a player is involved in, soonest arrival first."""
        rows = await self._store.query(constants.MOVEMENTS)
        movements = [movement_from_doc(mid, doc) for mid, doc in rows
                     if player_id in doc.get("involved_parties", [])]
        return sorted(movements, key=lambda m: m.arrival_time)
