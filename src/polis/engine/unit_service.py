"""Unit service — training, healing, dismissal, heroes and agents.

Training and healing go through the city's unit queues. Each unit type
trains in exactly one queue (land → barracks, naval → shipyard,
mythical → divine temple) and needs its source building.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from polis.engine import task_queue
from polis.engine.actions import deduct_resources, require_resources, resource_part
from polis.engine.game_data import GameData
from polis.loaders.game_config_loader import GameConfig
from polis.models.city import HeroState, HeroStatus
from polis.models.tasks import QueueKind, QueueTask, TaskAction
from polis.util.errors import ActionRejected
from polis.util.events import TaskCancelled

if TYPE_CHECKING:
    from polis.engine.city_service import CityService
    from polis.models.city import City
    from polis.util.events import EventBus

log = logging.getLogger(__name__)

TRAINING_QUEUES = (QueueKind.BARRACKS, QueueKind.SHIPYARD, QueueKind.DIVINE_TEMPLE)


class UnitService:
    """Service for unit, hero and agent actions.

    Args:
        game_data: Balance tables.
        event_bus: Event bus for inter-service communication.
        city_service: Runs the transactional city actions.
        game_config: Tunable constants.
    """

    def __init__(self, game_data: GameData, event_bus: EventBus, city_service: CityService,
                 game_config: GameConfig | None = None) -> None:
        self._data = game_data
        self._events = event_bus
        self._cities = city_service
        self._economy = city_service.economy
        self._config = game_config or GameConfig()

    def _check_queue_space(self, city: City, kind: QueueKind, needed: int = 1) -> None:
        if len(city.queue(kind)) + needed > self._config.max_queue_length:
            raise ActionRejected(f"Queue is full (max {self._config.max_queue_length} tasks)")

    # -- Training --------------------------------------------------------

    async def train_units(self, city_id: str, owner_id: str, unit_id: str,
                          amount: int) -> Optional[str]:
        """Queue a batch of ``amount`` units in the unit's training queue."""
        unit = self._data.unit(unit_id)
        if unit is None:
            return f"Unknown unit: {unit_id}"
        if amount < 1:
            return "Amount must be at least 1"
        kind, source = GameData.training_queue(unit)

        def mutate(city: City, now: float, effects: dict) -> tuple[QueueKind, QueueTask]:
            if city.level(source) < 1:
                raise ActionRejected(f"A {source} is required to train {unit.name}")
            self._check_queue_space(city, kind)
            cost = self._economy.unit_cost(unit_id, amount)
            require_resources(city.resources, cost)
            if unit.mythical:
                if unit.god and city.god != unit.god:
                    raise ActionRejected(f"{unit.name} requires the worship of {unit.god}")
                if city.favor < cost["favor"]:
                    raise ActionRejected(
                        f"Not enough favor (need {cost['favor']:.0f}, have {city.favor:.0f})")
            available = self._economy.available_population(city, effects)
            if cost["population"] > available:
                raise ActionRejected(
                    f"Not enough population (need {cost['population']:.0f}, "
                    f"have {max(0.0, available):.0f})")

            deduct_resources(city.resources, cost)
            if cost["favor"] and city.god:
                city.worship[city.god] = city.favor - cost["favor"]
            task = QueueTask(
                task_id=task_queue.new_task_id(), action=TaskAction.TRAIN, item_id=unit_id,
                duration=cost["time"], amount=amount,
                cost={**resource_part(cost), "favor": cost["favor"],
                      "population": cost["population"]},
            )
            task_queue.enqueue(city.queue(kind), task, now, self._config.max_queue_length)
            return kind, task

        return await self._cities.run_city_action(city_id, owner_id,
                                                  f"train {amount} {unit_id}", mutate)

    async def cancel_training(self, city_id: str, owner_id: str, queue: str,
                              task_id: str) -> Optional[str]:
        """Cancel the tail of a training queue with a half resource refund."""
        try:
            kind = QueueKind(queue)
        except ValueError:
            return f"Unknown queue: {queue}"
        if kind not in TRAINING_QUEUES:
            return f"{queue} is not a training queue"

        def mutate(city: City, now: float, effects: dict) -> None:
            task = task_queue.cancel_last(city.queue(kind), task_id, now)
            task_queue.refund(city.resources, task.cost,
                              self._cities.warehouse_capacity(city, effects),
                              self._config.cancel_refund_ratio)

        result = await self._cities.run_city_action(city_id, owner_id, "cancel training", mutate)
        if result is None:
            self._events.emit(TaskCancelled(city_id=city_id, queue=kind.value, task_id=task_id))
        return result

    async def dismiss_units(self, city_id: str, owner_id: str,
                            units: dict[str, int]) -> Optional[str]:
        """Release units from the city; frees their population."""
        if not units or any(count < 1 for count in units.values()):
            return "Select at least one unit to dismiss"

        def mutate(city: City, now: float, effects: dict) -> None:
            for uid, count in units.items():
                if city.units.get(uid, 0) < count:
                    raise ActionRejected(f"Not enough {uid} to dismiss")
            for uid, count in units.items():
                city.units[uid] -= count
                if city.units[uid] == 0:
                    del city.units[uid]

        return await self._cities.run_city_action(city_id, owner_id, "dismiss units", mutate)

    # -- Healing ---------------------------------------------------------

    async def heal_units(self, city_id: str, owner_id: str,
                         units: dict[str, int]) -> Optional[str]:
        """Move wounded units into the heal queue, one task per unit type.

        Population and resources are checked against the whole batch.
        """
        if not units or any(count < 1 for count in units.values()):
            return "Select at least one unit to heal"
        for uid in units:
            if self._data.unit(uid) is None:
                return f"Unknown unit: {uid}"

        def mutate(city: City, now: float, effects: dict) -> tuple[QueueKind, QueueTask]:
            for uid, count in units.items():
                if city.wounded.get(uid, 0) < count:
                    raise ActionRejected(f"Not enough wounded {uid}")
            self._check_queue_space(city, QueueKind.HEAL, needed=len(units))

            costs = {uid: self._economy.heal_cost(uid, count) for uid, count in units.items()}
            total = {key: sum(c.get(key, 0.0) for c in costs.values())
                     for key in ("wood", "stone", "silver", "population")}
            require_resources(city.resources, total)
            available = self._economy.available_population(city, effects)
            if total["population"] > available:
                raise ActionRejected(
                    f"Not enough population (need {total['population']:.0f}, "
                    f"have {max(0.0, available):.0f})")

            deduct_resources(city.resources, total)
            queue = city.queue(QueueKind.HEAL)
            last = None
            for uid, count in units.items():
                city.wounded[uid] -= count
                if city.wounded[uid] == 0:
                    del city.wounded[uid]
                last = QueueTask(
                    task_id=task_queue.new_task_id(), action=TaskAction.HEAL, item_id=uid,
                    duration=costs[uid]["time"], amount=count,
                    cost={**resource_part(costs[uid]), "population": costs[uid]["population"]},
                )
                task_queue.enqueue(queue, last, now, self._config.max_queue_length)
            return QueueKind.HEAL, last

        return await self._cities.run_city_action(city_id, owner_id, "heal units", mutate)

    async def cancel_heal(self, city_id: str, owner_id: str, task_id: str) -> Optional[str]:
        """Cancel the heal-queue tail: units go back to wounded, half the cost back."""

        def mutate(city: City, now: float, effects: dict) -> None:
            task = task_queue.cancel_last(city.queue(QueueKind.HEAL), task_id, now)
            city.wounded[task.item_id] = city.wounded.get(task.item_id, 0) + task.amount
            task_queue.refund(city.resources, task.cost,
                              self._cities.warehouse_capacity(city, effects),
                              self._config.cancel_refund_ratio)

        result = await self._cities.run_city_action(city_id, owner_id, "cancel heal", mutate)
        if result is None:
            self._events.emit(TaskCancelled(city_id=city_id, queue=QueueKind.HEAL.value,
                                            task_id=task_id))
        return result

    # -- Heroes ----------------------------------------------------------

    async def recruit_hero(self, city_id: str, owner_id: str, hero_id: str) -> Optional[str]:
        """Recruit a hero for silver and favor of the current god."""
        hero = self._data.heroes.get(hero_id)
        if hero is None:
            return f"Unknown hero: {hero_id}"

        def mutate(city: City, now: float, effects: dict) -> None:
            if hero_id in city.heroes:
                raise ActionRejected(f"{hero.name} has already been recruited")
            require_resources(city.resources, hero.cost)
            favor = hero.cost.get("favor", 0.0)
            if favor > city.favor:
                raise ActionRejected(f"Not enough favor (need {favor:.0f}, have {city.favor:.0f})")
            deduct_resources(city.resources, hero.cost)
            if favor and city.god:
                city.worship[city.god] = city.favor - favor
            city.heroes[hero_id] = HeroState(hero_id=hero_id, status=HeroStatus.IDLE,
                                             city_id=city_id)

        return await self._cities.run_city_action(city_id, owner_id,
                                                  f"recruit hero {hero_id}", mutate)

    async def station_hero(self, city_id: str, owner_id: str, hero_id: str) -> Optional[str]:
        """Put an idle hero in charge of the city (one hero per city)."""

        def mutate(city: City, now: float, effects: dict) -> None:
            hero = city.heroes.get(hero_id)
            if hero is None:
                raise ActionRejected("You do not have this hero")
            if hero.status == HeroStatus.EN_ROUTE:
                raise ActionRejected("This hero is travelling")
            current = city.stationed_hero()
            if current is not None and current != hero_id:
                raise ActionRejected("A hero is already stationed in this city")
            hero.status = HeroStatus.IN_CITY
            hero.city_id = city_id

        return await self._cities.run_city_action(city_id, owner_id,
                                                  f"station hero {hero_id}", mutate)

    async def unstation_hero(self, city_id: str, owner_id: str, hero_id: str) -> Optional[str]:

        def mutate(city: City, now: float, effects: dict) -> None:
            hero = city.heroes.get(hero_id)
            if hero is None or hero.status != HeroStatus.IN_CITY:
                raise ActionRejected("This hero is not stationed here")
            hero.status = HeroStatus.IDLE

        return await self._cities.run_city_action(city_id, owner_id,
                                                  f"unstation hero {hero_id}", mutate)

    # -- Agents ----------------------------------------------------------

    async def recruit_agent(self, city_id: str, owner_id: str, agent_id: str) -> Optional[str]:
        agent = self._data.agents.get(agent_id)
        if agent is None:
            return f"Unknown agent: {agent_id}"

        def mutate(city: City, now: float, effects: dict) -> None:
            require_resources(city.resources, agent.cost)
            deduct_resources(city.resources, agent.cost)
            city.agents[agent_id] = city.agents.get(agent_id, 0) + 1

        return await self._cities.run_city_action(city_id, owner_id,
                                                  f"recruit agent {agent_id}", mutate)
