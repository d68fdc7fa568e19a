"""City service — guarded state transitions on a single city.

Responsibilities:
- Queue catch-up (``settle``) and resource/favor accrual (``reconcile``)
- Building upgrade, demolition and build-queue cancellation
- Special building construction and demolition
- Research start and cancellation
- Worship and divine powers
- Worker assignment and worker presets

Every action loads the city inside a store transaction, settles finished
queue tasks, validates against that snapshot, mutates it and commits.
Actions return ``None`` on success or an error message.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Optional

from polis.engine import task_queue
from polis.engine.actions import (
    add_capped,
    attempt,
    deduct_resources,
    load_city,
    require_resources,
    resource_part,
    save_city,
)
from polis.engine.economy import Economy
from polis.loaders.game_config_loader import GameConfig
from polis.models.city import BuildingState
from polis.models.tasks import QueueKind, QueueTask, TaskAction
from polis.models.world import WorkerPreset
from polis.persistence.serialization import (
    alliance_from_doc,
    player_from_doc,
    player_to_doc,
)
from polis.util import constants
from polis.util.errors import ActionRejected, UnknownEffectError
from polis.util.events import SpellCast, TaskCancelled, TaskCompleted, TaskQueued

if TYPE_CHECKING:
    from polis.engine.game_data import GameData
    from polis.models.city import City
    from polis.models.items import BuildingDetails
    from polis.persistence.document_store import DocumentStore, Transaction
    from polis.util.events import EventBus

log = logging.getLogger(__name__)

CityMutation = Callable[["City", float, dict], Optional[tuple[QueueKind, QueueTask]]]


class CityService:
    """Service for all single-city actions.

    Args:
        store: Transactional document store.
        game_data: Balance tables.
        event_bus: Receives task events after each commit.
        game_config: Tunable constants.
        economy: Economy calculator (built from the tables if omitted).
    """

    def __init__(self, store: DocumentStore, game_data: GameData, event_bus: EventBus,
                 game_config: GameConfig | None = None,
                 economy: Economy | None = None) -> None:
        self._store = store
        self._data = game_data
        self._events = event_bus
        self._config = game_config or GameConfig()
        self._economy = economy or Economy(game_data, self._config)

    @property
    def economy(self) -> Economy:
        return self._economy

    # -- Effects ---------------------------------------------------------

    async def effects_for(self, city: City) -> dict[str, float]:
        """Alliance and hero effects that apply to ``city``.

        Read outside the action transaction: alliance donations must not
        make every member's city action conflict.
        """
        alliance = None
        player_doc = await self._store.get(constants.PLAYERS, city.owner_id)
        alliance_id = (player_doc or {}).get("alliance_id")
        if alliance_id:
            alliance_doc = await self._store.get(constants.ALLIANCES, alliance_id)
            if alliance_doc is not None:
                alliance = alliance_from_doc(alliance_id, alliance_doc)
        return self._data.city_effects(city, alliance)

    def warehouse_capacity(self, city: City, effects: dict[str, float]) -> float:
        return self._economy.warehouse_capacity(city.level(constants.WAREHOUSE), effects)

    # -- Settling & reconciliation ---------------------------------------

    def settle(self, city: City, now: float) -> list[tuple[QueueKind, QueueTask]]:
        """Apply every queued task whose end time has passed."""
        done: list[tuple[QueueKind, QueueTask]] = []
        for kind in QueueKind:
            for task in task_queue.pop_completed(city.queue(kind), now):
                self._apply_task(city, task)
                done.append((kind, task))
        return done

    def _apply_task(self, city: City, task: QueueTask) -> None:
        if task.action in (TaskAction.UPGRADE, TaskAction.DEMOLISH):
            state = city.buildings.setdefault(task.item_id, BuildingState())
            state.level = task.level
            state.workers = min(state.workers, self._economy.max_workers(task.level))
            if task.item_id == constants.ACADEMY:
                self._refresh_research(city)
        elif task.action == TaskAction.SPECIAL_BUILDING:
            city.special_building = task.item_id
        elif task.action == TaskAction.RESEARCH:
            city.research[task.item_id] = True
            self._refresh_research(city)
        elif task.action in (TaskAction.TRAIN, TaskAction.HEAL):
            city.units[task.item_id] = city.units.get(task.item_id, 0) + task.amount
        log.info("City %s: %s %s completed", city.city_id, task.action.value, task.item_id)

    def _refresh_research(self, city: City) -> None:
        """Deactivate research whose academy requirement is no longer met, and back."""
        academy = city.level(constants.ACADEMY)
        for rid in list(city.research):
            details = self._data.research.get(rid)
            if details is not None:
                city.research[rid] = academy >= details.academy_level

    def accrue(self, city: City, elapsed: float, effects: dict[str, float]) -> None:
        """Add production and favor for ``elapsed`` seconds, capped at storage."""
        if elapsed <= 0:
            return
        capacity = self.warehouse_capacity(city, effects)
        rates = self._economy.production_rates(city, effects)
        for res, per_hour in rates.items():
            current = city.resources.get(res, 0.0)
            if current >= capacity:
                continue
            city.resources[res] = min(capacity, current + per_hour / 3600.0 * elapsed)
        if city.god:
            temple = city.level(constants.TEMPLE)
            cap = self._economy.max_favor(temple)
            gained = self._economy.favor_per_second(temple, effects) * elapsed
            current = city.worship.get(city.god, 0.0)
            if current < cap:
                city.worship[city.god] = min(cap, current + gained)

    async def reconcile(self, city_id: str) -> Optional[City]:
        """Accrue resources since ``last_updated`` and apply finished tasks."""
        done: list[tuple[QueueKind, QueueTask]] = []

        async def txn_fn(txn: Transaction) -> City:
            now = self._store.server_time()
            city = await load_city(txn, city_id)
            effects = await self.effects_for(city)
            self.accrue(city, now - city.last_updated, effects)
            done[:] = self.settle(city, now)
            city.last_updated = now
            save_city(txn, city)
            return city

        result = await attempt(self._store, txn_fn, "reconcile")
        if isinstance(result, str):
            return None
        self._emit_completed(city_id, done)
        return result

    async def reconcile_all(self) -> int:
        """Reconcile every city; returns how many were processed."""
        count = 0
        for city_id, _ in await self._store.query(constants.CITIES):
            if await self.reconcile(city_id) is not None:
                count += 1
        return count

    def _emit_completed(self, city_id: str, done: list[tuple[QueueKind, QueueTask]]) -> None:
        for kind, task in done:
            self._events.emit(TaskCompleted(city_id=city_id, queue=kind.value,
                                            task_id=task.task_id, item_id=task.item_id))

    # -- Action runner ---------------------------------------------------

    async def run_city_action(self, city_id: str, owner_id: str, action: str,
                              mutate: CityMutation) -> Optional[str]:
        """Load, settle, validate and commit one city action.

        ``mutate(city, now, effects)`` raises ``ActionRejected`` to abort
        and may return the ``(queue, task)`` it enqueued.
        """
        done: list[tuple[QueueKind, QueueTask]] = []

        async def txn_fn(txn: Transaction) -> Optional[tuple[QueueKind, QueueTask]]:
            now = self._store.server_time()
            city = await load_city(txn, city_id, owner_id)
            done[:] = self.settle(city, now)
            effects = await self.effects_for(city)
            queued = mutate(city, now, effects)
            save_city(txn, city)
            return queued

        result = await attempt(self._store, txn_fn, action)
        if isinstance(result, str):
            return result
        self._emit_completed(city_id, done)
        if result is not None:
            kind, task = result
            self._events.emit(TaskQueued(city_id=city_id, queue=kind.value,
                                         task_id=task.task_id, end_time=task.end_time))
        log.info("City %s: %s ok", city_id, action)
        return None

    def _enqueue(self, city: City, kind: QueueKind, task: QueueTask,
                 now: float) -> tuple[QueueKind, QueueTask]:
        task_queue.enqueue(city.queue(kind), task, now, self._config.max_queue_length)
        return kind, task

    def _check_queue_space(self, city: City, kind: QueueKind, needed: int = 1) -> None:
        if len(city.queue(kind)) + needed > self._config.max_queue_length:
            raise ActionRejected(
                f"Queue is full (max {self._config.max_queue_length} tasks)")

    # -- Buildings -------------------------------------------------------

    @staticmethod
    def effective_level(city: City, building_id: str) -> int:
        """Level the building will have once everything queued for it completes."""
        for task in reversed(city.queue(QueueKind.BUILD)):
            if task.item_id == building_id and task.action in (TaskAction.UPGRADE,
                                                               TaskAction.DEMOLISH):
                return task.level
        return city.level(building_id)

    def _check_building_requirements(self, city: City, building: BuildingDetails) -> None:
        for req_id, req_level in building.requirements.items():
            if self.effective_level(city, req_id) < req_level:
                req = self._data.building(req_id)
                name = req.name if req else req_id
                raise ActionRejected(f"Requires {name} level {req_level}")
        queued_research = {t.item_id for t in city.queue(QueueKind.RESEARCH)}
        for rid in building.research_requirements:
            if not city.has_research(rid) and rid not in queued_research:
                raise ActionRejected(f"Requires research {rid}")

    async def upgrade_building(self, city_id: str, owner_id: str,
                               building_id: str) -> Optional[str]:
        """Queue the next level of ``building_id``."""
        building = self._data.building(building_id)
        if building is None:
            return f"Unknown building: {building_id}"

        def mutate(city: City, now: float, effects: dict) -> tuple[QueueKind, QueueTask]:
            self._check_queue_space(city, QueueKind.BUILD)
            next_level = self.effective_level(city, building_id) + 1
            if next_level > building.max_level:
                raise ActionRejected(f"{building.name} is already at max level")
            self._check_building_requirements(city, building)

            cost = self._economy.upgrade_cost(building_id, next_level)
            require_resources(city.resources, cost)
            if building_id not in constants.CAPACITY_BUILDINGS:
                used = (self._economy.city_used_population(city)
                        + self._economy.queued_build_population(city))
                capacity = self._economy.farm_capacity(city.level(constants.FARM), effects)
                if used + cost["population"] > capacity:
                    raise ActionRejected(
                        f"Not enough population (need {cost['population']:.0f}, "
                        f"have {max(0.0, capacity - used):.0f})")

            deduct_resources(city.resources, cost)
            if building_id == constants.ACADEMY:
                city.research_points += self._config.research_points_per_academy_level
            task = QueueTask(
                task_id=task_queue.new_task_id(), action=TaskAction.UPGRADE,
                item_id=building_id, duration=cost["time"], level=next_level,
                cost={**resource_part(cost), "population": cost["population"]},
            )
            return self._enqueue(city, QueueKind.BUILD, task, now)

        return await self.run_city_action(city_id, owner_id, f"upgrade {building_id}", mutate)

    async def demolish_building(self, city_id: str, owner_id: str,
                                building_id: str) -> Optional[str]:
        """Queue the removal of one level of ``building_id``."""
        building = self._data.building(building_id)
        if building is None:
            return f"Unknown building: {building_id}"

        def mutate(city: City, now: float, effects: dict) -> tuple[QueueKind, QueueTask]:
            self._check_queue_space(city, QueueKind.BUILD)
            current = self.effective_level(city, building_id)
            if current <= 0:
                raise ActionRejected(f"{building.name} has no level left to demolish")
            task = QueueTask(
                task_id=task_queue.new_task_id(), action=TaskAction.DEMOLISH,
                item_id=building_id, duration=self._economy.demolish_time(building_id, current),
                level=current - 1,
            )
            return self._enqueue(city, QueueKind.BUILD, task, now)

        return await self.run_city_action(city_id, owner_id, f"demolish {building_id}", mutate)

    async def cancel_build(self, city_id: str, owner_id: str, task_id: str) -> Optional[str]:
        """Cancel the build-queue tail and refund half its cost."""

        def mutate(city: City, now: float, effects: dict) -> None:
            task = task_queue.cancel_last(city.queue(QueueKind.BUILD), task_id, now)
            task_queue.refund(city.resources, task.cost, self.warehouse_capacity(city, effects),
                              self._config.cancel_refund_ratio)
            if task.action == TaskAction.UPGRADE and task.item_id == constants.ACADEMY:
                city.research_points = max(
                    0, city.research_points - self._config.research_points_per_academy_level)

        result = await self.run_city_action(city_id, owner_id, "cancel build", mutate)
        if result is None:
            self._events.emit(TaskCancelled(city_id=city_id, queue=QueueKind.BUILD.value,
                                            task_id=task_id))
        return result

    # -- Special building ------------------------------------------------

    async def build_special_building(self, city_id: str, owner_id: str,
                                     building_id: str) -> Optional[str]:
        special = self._config.special_building
        if building_id not in special.types:
            return f"Unknown special building: {building_id}"

        def mutate(city: City, now: float, effects: dict) -> tuple[QueueKind, QueueTask]:
            queue = city.queue(QueueKind.BUILD)
            if city.special_building or any(t.action == TaskAction.SPECIAL_BUILDING
                                            for t in queue):
                raise ActionRejected("This city already has a special building")
            self._check_queue_space(city, QueueKind.BUILD)
            cost = special.resources()
            require_resources(city.resources, cost)
            used = (self._economy.city_used_population(city)
                    + self._economy.queued_build_population(city))
            capacity = self._economy.farm_capacity(city.level(constants.FARM), effects)
            if used + special.population > capacity:
                raise ActionRejected("Not enough population for a special building")
            deduct_resources(city.resources, cost)
            duration = (self._config.instant_duration if self._config.instant_build
                        else special.time)
            task = QueueTask(
                task_id=task_queue.new_task_id(), action=TaskAction.SPECIAL_BUILDING,
                item_id=building_id, duration=duration, level=1,
                cost={**cost, "population": float(special.population)},
            )
            return self._enqueue(city, QueueKind.BUILD, task, now)

        return await self.run_city_action(city_id, owner_id, f"special {building_id}", mutate)

    async def demolish_special_building(self, city_id: str, owner_id: str) -> Optional[str]:
        """Remove the special building immediately with a half refund."""

        def mutate(city: City, now: float, effects: dict) -> None:
            if not city.special_building:
                raise ActionRejected("This city has no special building")
            city.special_building = None
            task_queue.refund(city.resources, self._config.special_building.resources(),
                              self.warehouse_capacity(city, effects),
                              self._config.cancel_refund_ratio)

        return await self.run_city_action(city_id, owner_id, "demolish special", mutate)

    # -- Research --------------------------------------------------------

    async def start_research(self, city_id: str, owner_id: str,
                             research_id: str) -> Optional[str]:
        research = self._data.research.get(research_id)
        if research is None:
            return f"Unknown research: {research_id}"

        def mutate(city: City, now: float, effects: dict) -> tuple[QueueKind, QueueTask]:
            queue = city.queue(QueueKind.RESEARCH)
            if research_id in city.research:
                raise ActionRejected(f"{research.name} is already researched")
            if any(t.item_id == research_id for t in queue):
                raise ActionRejected(f"{research.name} is already being researched")
            self._check_queue_space(city, QueueKind.RESEARCH)
            if city.level(constants.ACADEMY) < research.academy_level:
                raise ActionRejected(f"Requires Academy level {research.academy_level}")
            if research.required_research and research.required_research not in city.research:
                raise ActionRejected(f"Requires research {research.required_research}")

            cost = self._economy.research_cost(research_id, effects)
            require_resources(city.resources, cost)
            if city.research_points < cost["points"]:
                raise ActionRejected(
                    f"Not enough research points (need {cost['points']:.0f}, "
                    f"have {city.research_points})")
            deduct_resources(city.resources, cost)
            city.research_points -= int(cost["points"])
            task = QueueTask(
                task_id=task_queue.new_task_id(), action=TaskAction.RESEARCH,
                item_id=research_id, duration=cost["time"],
                cost={**resource_part(cost), "points": cost["points"]},
            )
            return self._enqueue(city, QueueKind.RESEARCH, task, now)

        return await self.run_city_action(city_id, owner_id, f"research {research_id}", mutate)

    async def cancel_research(self, city_id: str, owner_id: str, task_id: str) -> Optional[str]:
        """Cancel the research-queue tail: half the resources, all research points back."""

        def mutate(city: City, now: float, effects: dict) -> None:
            task = task_queue.cancel_last(city.queue(QueueKind.RESEARCH), task_id, now)
            task_queue.refund(city.resources, task.cost, self.warehouse_capacity(city, effects),
                              self._config.cancel_refund_ratio)
            city.research_points += int(task.cost.get("points", 0))

        result = await self.run_city_action(city_id, owner_id, "cancel research", mutate)
        if result is None:
            self._events.emit(TaskCancelled(city_id=city_id, queue=QueueKind.RESEARCH.value,
                                            task_id=task_id))
        return result

    # -- Divine ----------------------------------------------------------

    async def worship_god(self, city_id: str, owner_id: str, god_id: str) -> Optional[str]:
        """Switch the worshipped god; favor stored for other gods is kept."""
        if god_id not in self._data.gods:
            return f"Unknown god: {god_id}"

        def mutate(city: City, now: float, effects: dict) -> None:
            if city.level(constants.TEMPLE) < 1:
                raise ActionRejected("You need a temple to worship a god")
            city.worship.setdefault(god_id, 0.0)
            city.god = god_id

        return await self.run_city_action(city_id, owner_id, f"worship {god_id}", mutate)

    async def cast_spell(self, city_id: str, owner_id: str, spell_id: str,
                         target_city_id: Optional[str] = None) -> Optional[str]:
        """Spend favor of the current god on one of its powers.

        Raises:
            UnknownEffectError: The spell's effect type is not implemented.
        """

        async def txn_fn(txn: Transaction) -> SpellCast:
            now = self._store.server_time()
            city = await load_city(txn, city_id, owner_id)
            self.settle(city, now)
            if city.god is None:
                raise ActionRejected("You are not worshipping any god")
            spell = self._data.spell(city.god, spell_id)
            if spell is None:
                raise ActionRejected(f"{spell_id} is not a power of {city.god}")
            if city.favor < spell.favor_cost:
                raise ActionRejected(
                    f"Not enough favor (need {spell.favor_cost:.0f}, have {city.favor:.0f})")

            target = city
            if target_city_id and target_city_id != city_id:
                target = await load_city(txn, target_city_id)
                self.settle(target, now)
            elif spell.targets_other_city:
                raise ActionRejected("This power must target another city")

            effects = await self.effects_for(target)
            self._resolve_effect(target, spell.effect, effects)
            city.worship[city.god] = city.favor - spell.favor_cost
            save_city(txn, city)
            if target is not city:
                save_city(txn, target)
            return SpellCast(city_id=city_id, god=city.god, spell_id=spell_id,
                             target_city_id=target_city_id)

        try:
            result = await attempt(self._store, txn_fn, f"cast {spell_id}")
        except UnknownEffectError as exc:
            log.error("City %s: power %s cannot be resolved: %s", city_id, spell_id, exc)
            raise
        if isinstance(result, str):
            return result
        self._events.emit(result)
        return None

    def _resolve_effect(self, target: City, effect: dict[str, Any],
                        effects: dict[str, float]) -> None:
        effect_type = effect.get("type", "")
        if effect_type == "add_resources":
            add_capped(target.resources, {effect["resource"]: float(effect["amount"])},
                       self.warehouse_capacity(target, effects))
        elif effect_type == "add_multiple_resources":
            add_capped(target.resources,
                       {k: float(v) for k, v in effect.get("resources", {}).items()},
                       self.warehouse_capacity(target, effects))
        elif effect_type == "damage_building":
            building_id = effect["building"]
            state = target.buildings.get(building_id)
            if state is not None:
                state.level = max(0, state.level - int(effect.get("levels", 1)))
                state.workers = min(state.workers, self._economy.max_workers(state.level))
        else:
            raise UnknownEffectError(effect_type)

    # -- Cave ------------------------------------------------------------

    def cave_capacity(self, city: City, effects: dict[str, float]) -> float:
        return self._economy.cave_capacity(city.level(constants.CAVE), effects)

    async def deposit_cave_silver(self, city_id: str, owner_id: str,
                                  amount: float) -> Optional[str]:
        """Move silver from the city's resources into the cave (scouting funds)."""
        if amount <= 0:
            return "Please enter a valid amount to deposit."

        def mutate(city: City, now: float, effects: dict) -> None:
            if city.resources.get(constants.SILVER, 0.0) < amount:
                raise ActionRejected("Not enough silver in your city to deposit.")
            capacity = self.cave_capacity(city, effects)
            if city.cave_silver + amount > capacity:
                raise ActionRejected(f"Cannot deposit. Cave storage limit is {capacity:,.0f}.")
            city.resources[constants.SILVER] -= amount
            city.cave_silver += amount

        return await self.run_city_action(city_id, owner_id, f"deposit {amount:.0f} silver",
                                          mutate)

    async def withdraw_cave_silver(self, city_id: str, owner_id: str,
                                   amount: float) -> Optional[str]:
        if amount <= 0:
            return "Please enter a valid amount to withdraw."

        def mutate(city: City, now: float, effects: dict) -> None:
            if city.cave_silver < amount:
                raise ActionRejected("Not enough silver in the cave to withdraw.")
            city.cave_silver -= amount
            city.resources[constants.SILVER] = city.resources.get(constants.SILVER, 0.0) + amount

        return await self.run_city_action(city_id, owner_id, f"withdraw {amount:.0f} silver",
                                          mutate)

    # -- Workers ---------------------------------------------------------

    def _production_building(self, building_id: str) -> BuildingDetails:
        building = self._data.building(building_id)
        if building is None or building.production is None:
            raise ActionRejected(f"{building_id} does not accept workers")
        return building

    async def add_worker(self, city_id: str, owner_id: str, building_id: str) -> Optional[str]:

        def mutate(city: City, now: float, effects: dict) -> None:
            building = self._production_building(building_id)
            state = city.buildings.get(building_id)
            if state is None or state.level < 1:
                raise ActionRejected(f"{building.name} is not built")
            if state.workers >= self._economy.max_workers(state.level):
                raise ActionRejected(f"{building.name} has no free worker slots")
            if self._economy.available_population(city, effects) < self._config.worker_population:
                raise ActionRejected("Not enough available population for a worker")
            state.workers += 1

        return await self.run_city_action(city_id, owner_id, f"add worker {building_id}", mutate)

    async def remove_worker(self, city_id: str, owner_id: str,
                            building_id: str) -> Optional[str]:

        def mutate(city: City, now: float, effects: dict) -> None:
            self._production_building(building_id)
            state = city.buildings.get(building_id)
            if state is not None:
                state.workers = max(0, state.workers - 1)

        return await self.run_city_action(city_id, owner_id,
                                          f"remove worker {building_id}", mutate)

    async def save_worker_preset(self, owner_id: str, name: str,
                                 workers: dict[str, int]) -> Optional[str]:
        """Store a named worker layout on the player (replacing one of the same name)."""
        if not name.strip():
            return "Preset name is required"
        for bid, count in workers.items():
            building = self._data.building(bid)
            if building is None or building.production is None:
                return f"{bid} does not accept workers"
            if count < 0:
                return "Worker counts cannot be negative"

        async def txn_fn(txn: Transaction) -> None:
            doc = await txn.get(constants.PLAYERS, owner_id)
            if doc is None:
                raise ActionRejected("Player not found")
            player = player_from_doc(owner_id, doc)
            presets = [p for p in player.worker_presets if p.name != name]
            if len(presets) >= self._config.max_worker_presets:
                raise ActionRejected(
                    f"You can only save {self._config.max_worker_presets} presets")
            presets.append(WorkerPreset(name=name, workers=dict(workers)))
            player.worker_presets = presets
            txn.set(constants.PLAYERS, owner_id, player_to_doc(player))

        return await attempt(self._store, txn_fn, "save preset")

    async def delete_worker_preset(self, owner_id: str, name: str) -> Optional[str]:

        async def txn_fn(txn: Transaction) -> None:
            doc = await txn.get(constants.PLAYERS, owner_id)
            if doc is None:
                raise ActionRejected("Player not found")
            player = player_from_doc(owner_id, doc)
            remaining = [p for p in player.worker_presets if p.name != name]
            if len(remaining) == len(player.worker_presets):
                raise ActionRejected(f"No preset named {name}")
            player.worker_presets = remaining
            txn.set(constants.PLAYERS, owner_id, player_to_doc(player))

        return await attempt(self._store, txn_fn, "delete preset")

    async def apply_worker_preset(self, city_id: str, owner_id: str,
                                  name: str) -> Optional[str]:
        """Apply a saved layout all at once, or not at all."""
        player_doc = await self._store.get(constants.PLAYERS, owner_id)
        if player_doc is None:
            return "Player not found"
        preset = next((p for p in player_from_doc(owner_id, player_doc).worker_presets
                       if p.name == name), None)
        if preset is None:
            return f"No preset named {name}"

        def mutate(city: City, now: float, effects: dict) -> None:
            targets: dict[str, int] = {}
            added = removed = 0
            for bid in self._data.production_buildings():
                state = city.buildings.get(bid)
                level = state.level if state else 0
                target = min(preset.workers.get(bid, 0), self._economy.max_workers(level))
                current = state.workers if state else 0
                added += max(0, target - current)
                removed += max(0, current - target)
                targets[bid] = target
            needed = added * self._config.worker_population
            freed = removed * self._config.worker_population
            available = self._economy.available_population(city, effects)
            if needed > available + freed:
                raise ActionRejected(
                    f"Not enough population to apply preset (need {needed}, "
                    f"have {available + freed:.0f})")
            for bid, target in targets.items():
                if bid in city.buildings:
                    city.buildings[bid].workers = target

        return await self.run_city_action(city_id, owner_id, f"apply preset {name}", mutate)
