"""Alliance service — membership, alliance research and the alliance wonder.

One wonder per alliance. The leader starts it (paid from the leader's own
city), every member donates from their own city into the shared progress
pool, and the leader claims a level once the pool covers its cost in all
three resources. Whatever is donated beyond the cost carries over.

Alliance research levels up by donation alone: as soon as the donated
progress covers the next level in every resource, the level is raised in
the same transaction and the surplus is kept for the level after.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Optional

from polis.engine.actions import attempt, deduct_resources, load_city, require_resources, save_city
from polis.loaders.game_config_loader import GameConfig
from polis.models.alliance import Alliance, AllianceWonder
from polis.persistence.serialization import (
    alliance_from_doc,
    alliance_to_doc,
    player_from_doc,
    player_to_doc,
)
from polis.util import constants
from polis.util.errors import ActionRejected
from polis.util.events import AllianceResearchCompleted, WonderLevelClaimed

if TYPE_CHECKING:
    from polis.engine.city_service import CityService
    from polis.engine.game_data import GameData
    from polis.models.world import Player
    from polis.persistence.document_store import DocumentStore, Transaction
    from polis.util.events import EventBus

log = logging.getLogger(__name__)


class AllianceService:
    """Alliance membership, research donations and wonder coordination.

    Args:
        store: Transactional document store.
        game_data: Wonder and alliance research tables.
        event_bus: Receives ``WonderLevelClaimed`` and
            ``AllianceResearchCompleted`` events.
        city_service: Settles donor cities before spending from them.
        game_config: Wonder start cost and level cost curve.
    """

    def __init__(self, store: DocumentStore, game_data: GameData, event_bus: EventBus,
                 city_service: CityService, game_config: GameConfig | None = None) -> None:
        self._store = store
        self._data = game_data
        self._events = event_bus
        self._cities = city_service
        self._config = game_config or GameConfig()

    def wonder_cost(self, level: int) -> dict[str, float]:
        """Resources needed to claim the level after ``level``."""
        wonder = self._config.wonder
        factor = wonder.cost_growth ** level
        return {res: float(math.floor(amount * factor)) for res, amount in wonder.base_cost.items()}

    # -- Loading ---------------------------------------------------------

    async def _load_player(self, txn: Transaction, player_id: str) -> Player:
        doc = await txn.get(constants.PLAYERS, player_id)
        if doc is None:
            raise ActionRejected("Player not found")
        return player_from_doc(player_id, doc)

    async def _load_alliance(self, txn: Transaction, player_id: str) -> Alliance:
        player = await self._load_player(txn, player_id)
        if not player.alliance_id:
            raise ActionRejected("You are not in an alliance.")
        doc = await txn.get(constants.ALLIANCES, player.alliance_id)
        if doc is None:
            raise ActionRejected("Alliance not found")
        return alliance_from_doc(player.alliance_id, doc)

    def _log_event(self, txn: Transaction, alliance_id: str, kind: str, text: str) -> None:
        txn.set(constants.ALLIANCE_EVENTS, self._store.new_id(), {
            "alliance_id": alliance_id,
            "type": kind,
            "text": text,
            "timestamp": self._store.server_time(),
        })

    async def get_alliance(self, alliance_id: str) -> Optional[Alliance]:
        doc = await self._store.get(constants.ALLIANCES, alliance_id)
        return alliance_from_doc(alliance_id, doc) if doc else None

    async def events(self, alliance_id: str) -> list[dict]:
        rows = await self._store.query(constants.ALLIANCE_EVENTS, {"alliance_id": alliance_id})
        return sorted((doc for _, doc in rows), key=lambda d: d.get("timestamp", 0.0))

    # -- Membership ------------------------------------------------------

    async def create_alliance(self, leader_id: str, name: str) -> Alliance | str:
        """Found a new alliance led by ``leader_id``."""
        name = name.strip()
        if not name:
            return "Alliance name must not be empty"

        async def txn_fn(txn: Transaction) -> Alliance:
            player = await self._load_player(txn, leader_id)
            if player.alliance_id:
                raise ActionRejected("You are already in an alliance")
            alliance = Alliance(alliance_id=self._store.new_id(), name=name,
                                leader_id=leader_id, members=[leader_id])
            player.alliance_id = alliance.alliance_id
            txn.set(constants.ALLIANCES, alliance.alliance_id, alliance_to_doc(alliance))
            txn.set(constants.PLAYERS, leader_id, player_to_doc(player))
            return alliance

        result = await attempt(self._store, txn_fn, "create alliance")
        if not isinstance(result, str):
            log.info("Alliance %s (%s) founded by %s", result.alliance_id, name, leader_id)
        return result

    async def join_alliance(self, player_id: str, alliance_id: str) -> Optional[str]:

        async def txn_fn(txn: Transaction) -> None:
            player = await self._load_player(txn, player_id)
            if player.alliance_id:
                raise ActionRejected("You are already in an alliance")
            doc = await txn.get(constants.ALLIANCES, alliance_id)
            if doc is None:
                raise ActionRejected("Alliance not found")
            alliance = alliance_from_doc(alliance_id, doc)
            alliance.members.append(player_id)
            player.alliance_id = alliance_id
            txn.set(constants.ALLIANCES, alliance_id, alliance_to_doc(alliance))
            txn.set(constants.PLAYERS, player_id, player_to_doc(player))
            self._log_event(txn, alliance_id, "member_join", f"{player.username} joined the alliance.")

        return await attempt(self._store, txn_fn, "join alliance")

    # -- Research --------------------------------------------------------

    def research_cost(self, research_id: str, level: int) -> dict[str, float]:
        """Resources needed to raise ``research_id`` from ``level`` to ``level + 1``."""
        research = self._data.alliance_research[research_id]
        factor = research.cost_multiplier ** level
        return {res: float(math.floor(research.base_cost.get(res, 0.0) * factor))
                for res in constants.RESOURCES}

    async def donate_to_research(self, player_id: str, city_id: str, research_id: str,
                                 donation: dict[str, float]) -> Optional[str]:
        """Donate from the member's city toward the next level of an alliance research."""
        research = self._data.alliance_research.get(research_id)
        if research is None:
            return f"Unknown alliance research: {research_id}"
        donation = {res: float(amount) for res, amount in donation.items() if amount}
        if not donation:
            return "Select resources to donate"
        if any(res not in constants.RESOURCES or amount < 0 for res, amount in donation.items()):
            return "Donations must be positive amounts of wood, stone or silver"
        completed: list[tuple[str, int]] = []

        async def txn_fn(txn: Transaction) -> None:
            completed.clear()
            alliance = await self._load_alliance(txn, player_id)
            level = alliance.research.get(research_id, 0)
            if level >= research.max_level:
                raise ActionRejected(f"{research.name} is already at its maximum level.")
            city = await load_city(txn, city_id, player_id)
            self._cities.settle(city, self._store.server_time())
            for res, amount in donation.items():
                if city.resources.get(res, 0.0) < amount:
                    raise ActionRejected(f"Not enough {res}.")
            deduct_resources(city.resources, donation)
            save_city(txn, city)

            progress = alliance.research_progress.setdefault(
                research_id, {res: 0.0 for res in constants.RESOURCES})
            for res, amount in donation.items():
                progress[res] = progress.get(res, 0.0) + amount
            cost = self.research_cost(research_id, level)
            if all(progress.get(res, 0.0) >= amount for res, amount in cost.items()):
                for res, amount in cost.items():
                    progress[res] = progress.get(res, 0.0) - amount
                alliance.research[research_id] = level + 1
                self._log_event(txn, alliance.alliance_id, "research_completed",
                                f"The alliance has completed {research.name} "
                                f"Level {level + 1}!")
                completed[:] = [(alliance.alliance_id, level + 1)]
            txn.set(constants.ALLIANCES, alliance.alliance_id, alliance_to_doc(alliance))

        result = await attempt(self._store, txn_fn, "donate to alliance research")
        if result is None:
            log.info("Alliance research donation by %s to %s: %s", player_id, research_id,
                     donation)
            if completed:
                alliance_id, level = completed[0]
                log.info("Alliance %s: %s reached level %d", alliance_id, research_id, level)
                self._events.emit(AllianceResearchCompleted(alliance_id=alliance_id,
                                                            research_id=research_id,
                                                            level=level))
        return result

    # -- Wonder ----------------------------------------------------------

    async def start_wonder(self, player_id: str, city_id: str, wonder_id: str,
                           island_id: Optional[str], x: float, y: float) -> Optional[str]:
        """Leader only: pay the start cost from ``city_id`` and place the wonder."""
        wonder = self._data.wonders.get(wonder_id)
        if wonder is None:
            return f"Unknown wonder: {wonder_id}"
        start_cost = self._config.wonder.start_cost

        async def txn_fn(txn: Transaction) -> None:
            alliance = await self._load_alliance(txn, player_id)
            if alliance.leader_id != player_id:
                raise ActionRejected("Only the leader can start a wonder.")
            if alliance.wonder is not None:
                raise ActionRejected("Your alliance is already building a wonder.")
            city = await load_city(txn, city_id, player_id)
            self._cities.settle(city, self._store.server_time())
            require_resources(city.resources, start_cost)
            deduct_resources(city.resources, start_cost)
            save_city(txn, city)

            alliance.wonder = AllianceWonder(wonder_id=wonder_id, level=0,
                                             island_id=island_id, x=x, y=y)
            alliance.wonder_progress = {res: 0.0 for res in constants.RESOURCES}
            txn.set(constants.ALLIANCES, alliance.alliance_id, alliance_to_doc(alliance))
            self._log_event(txn, alliance.alliance_id, "wonder_start",
                            f"{city.owner_username or player_id} has started construction "
                            f"of the {wonder.name}.")

        result = await attempt(self._store, txn_fn, "start wonder")
        if result is None:
            log.info("Wonder %s started by %s", wonder_id, player_id)
        return result

    async def donate(self, player_id: str, city_id: str,
                     donation: dict[str, float]) -> Optional[str]:
        """Move resources from the member's own city into the wonder pool."""
        donation = {res: float(amount) for res, amount in donation.items() if amount}
        if not donation:
            return "Select resources to donate"
        if any(res not in constants.RESOURCES or amount < 0 for res, amount in donation.items()):
            return "Donations must be positive amounts of wood, stone or silver"

        async def txn_fn(txn: Transaction) -> None:
            alliance = await self._load_alliance(txn, player_id)
            if alliance.wonder is None:
                raise ActionRejected("Your alliance is not building a wonder")
            city = await load_city(txn, city_id, player_id)
            self._cities.settle(city, self._store.server_time())
            for res, amount in donation.items():
                if city.resources.get(res, 0.0) < amount:
                    raise ActionRejected(f"Not enough {res} in your city.")
            deduct_resources(city.resources, donation)
            for res, amount in donation.items():
                alliance.wonder_progress[res] = alliance.wonder_progress.get(res, 0.0) + amount
            save_city(txn, city)
            txn.set(constants.ALLIANCES, alliance.alliance_id, alliance_to_doc(alliance))
            amounts = ", ".join(f"{amount:,.0f} {res}" for res, amount in donation.items())
            self._log_event(txn, alliance.alliance_id, "wonder_donation",
                            f"{city.owner_username or player_id} donated {amounts} to the wonder.")

        result = await attempt(self._store, txn_fn, "donate to wonder")
        if result is None:
            log.info("Wonder donation by %s: %s", player_id, donation)
        return result

    async def claim_level(self, player_id: str) -> Optional[str]:
        """Leader only: spend one level's cost from the pool and raise the level."""
        claimed: list[tuple[str, str, int]] = []

        async def txn_fn(txn: Transaction) -> None:
            alliance = await self._load_alliance(txn, player_id)
            if alliance.leader_id != player_id:
                raise ActionRejected("Only the leader can claim wonder levels.")
            wonder = alliance.wonder
            if wonder is None:
                raise ActionRejected("Your alliance is not building a wonder")
            cost = self.wonder_cost(wonder.level)
            progress = alliance.wonder_progress
            if any(progress.get(res, 0.0) < amount for res, amount in cost.items()):
                raise ActionRejected("Not enough resources have been donated to claim this level.")
            for res, amount in cost.items():
                progress[res] = progress.get(res, 0.0) - amount
            wonder.level += 1
            txn.set(constants.ALLIANCES, alliance.alliance_id, alliance_to_doc(alliance))
            claimed[:] = [(alliance.alliance_id, wonder.wonder_id, wonder.level)]

        result = await attempt(self._store, txn_fn, "claim wonder level")
        if result is None:
            alliance_id, wonder_id, level = claimed[0]
            log.info("Alliance %s: wonder %s reached level %d", alliance_id, wonder_id, level)
            self._events.emit(WonderLevelClaimed(alliance_id=alliance_id, wonder_id=wonder_id,
                                                 level=level))
        return result

    async def demolish_wonder(self, player_id: str) -> Optional[str]:
        """Leader only: remove the wonder and forfeit all progress."""

        async def txn_fn(txn: Transaction) -> None:
            alliance = await self._load_alliance(txn, player_id)
            if alliance.leader_id != player_id:
                raise ActionRejected("Only the leader can demolish the wonder.")
            if alliance.wonder is None:
                raise ActionRejected("Your alliance has no wonder")
            alliance.wonder = None
            alliance.wonder_progress = {res: 0.0 for res in constants.RESOURCES}
            txn.set(constants.ALLIANCES, alliance.alliance_id, alliance_to_doc(alliance))

        result = await attempt(self._store, txn_fn, "demolish wonder")
        if result is None:
            log.info("Wonder demolished by %s", player_id)
        return result
