"""Trade service — the market board of resource-for-resource offers.

The offered amount leaves the creator's city when the offer is posted.
Accepting swaps resources between both cities and deletes the offer in
one transaction, so of two racing accepts only one can find the offer.
Traded amounts are credited in full; a city pushed past its warehouse
capacity simply stops producing that resource until it is spent down.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from polis.engine.actions import add_resources, attempt, load_city, save_city
from polis.loaders.game_config_loader import GameConfig
from polis.models.trade import ResourceAmount, TradeOffer
from polis.persistence.serialization import trade_from_doc, trade_to_doc
from polis.util import constants
from polis.util.errors import ActionRejected
from polis.util.events import TradeAccepted

if TYPE_CHECKING:
    from polis.engine.city_service import CityService
    from polis.persistence.document_store import DocumentStore, Transaction
    from polis.util.events import EventBus

log = logging.getLogger(__name__)

TRADE_GONE = "This trade no longer exists."


class TradeService:
    """Create, accept and cancel market offers.

    Args:
        store: Transactional document store.
        event_bus: Receives ``TradeAccepted`` events.
        city_service: Settles cities and supplies warehouse capacities.
        game_config: Tunable constants.
    """

    def __init__(self, store: DocumentStore, event_bus: EventBus, city_service: CityService,
                 game_config: GameConfig | None = None) -> None:
        self._store = store
        self._events = event_bus
        self._cities = city_service
        self._config = game_config or GameConfig()

    async def create_offer(self, owner_id: str, city_id: str, offer_resource: str,
                           offer_amount: float, demand_resource: str,
                           demand_amount: float) -> TradeOffer | str:
        """Post an offer, locking ``offer_amount`` out of the city."""
        if offer_resource not in constants.RESOURCES or demand_resource not in constants.RESOURCES:
            return "Only wood, stone and silver can be traded"
        if offer_resource == demand_resource:
            return "You cannot trade a resource for itself."
        if offer_amount <= 0 or demand_amount <= 0:
            return "Please enter valid, positive amounts for the trade."

        async def txn_fn(txn: Transaction) -> TradeOffer:
            now = self._store.server_time()
            city = await load_city(txn, city_id, owner_id)
            self._cities.settle(city, now)
            market = city.level(constants.MARKET)
            if market < 1:
                raise ActionRejected("You need a market to trade")
            capacity = self._cities.economy.market_capacity(market)
            if offer_amount > capacity:
                raise ActionRejected(
                    f"You cannot offer more than your market capacity of {capacity:.0f}.")
            if city.resources.get(offer_resource, 0.0) < offer_amount:
                raise ActionRejected(f"You do not have enough {offer_resource} to make this offer.")
            city.resources[offer_resource] -= offer_amount
            save_city(txn, city)

            trade = TradeOffer(
                trade_id=self._store.new_id(),
                player_id=owner_id,
                origin_city_id=city_id,
                origin_city_name=city.city_name,
                offer=ResourceAmount(offer_resource, float(offer_amount)),
                demand=ResourceAmount(demand_resource, float(demand_amount)),
                created_at=now,
            )
            txn.set(constants.TRADES, trade.trade_id, trade_to_doc(trade))
            return trade

        result = await attempt(self._store, txn_fn, "create trade")
        if not isinstance(result, str):
            log.info("Trade %s: %s offers %.0f %s for %.0f %s", result.trade_id, owner_id,
                     offer_amount, offer_resource, demand_amount, demand_resource)
        return result

    async def accept_offer(self, acceptor_id: str, city_id: str,
                           trade_id: str) -> Optional[str]:
        """Pay the demanded resource from ``city_id`` and receive the offered one."""
        trade_holder: list[TradeOffer] = []

        async def txn_fn(txn: Transaction) -> None:
            now = self._store.server_time()
            doc = await txn.get(constants.TRADES, trade_id)
            if doc is None:
                raise ActionRejected(TRADE_GONE)
            trade = trade_from_doc(trade_id, doc)
            if trade.player_id == acceptor_id:
                raise ActionRejected("You cannot accept your own trade")
            mine = await load_city(txn, city_id, acceptor_id)
            theirs = await load_city(txn, trade.origin_city_id)
            self._cities.settle(mine, now)
            self._cities.settle(theirs, now)

            demand, offer = trade.demand, trade.offer
            if mine.resources.get(demand.resource, 0.0) < demand.amount:
                raise ActionRejected(f"You do not have enough {demand.resource}.")
            mine.resources[demand.resource] -= demand.amount
            add_resources(mine.resources, {offer.resource: offer.amount})
            add_resources(theirs.resources, {demand.resource: demand.amount})
            save_city(txn, mine)
            save_city(txn, theirs)
            txn.delete(constants.TRADES, trade_id)
            trade_holder[:] = [trade]

        result = await attempt(self._store, txn_fn, "accept trade")
        if result is None:
            trade = trade_holder[0]
            log.info("Trade %s accepted by %s", trade_id, acceptor_id)
            self._events.emit(TradeAccepted(trade_id=trade_id, creator_id=trade.player_id,
                                            acceptor_id=acceptor_id))
        return result

    async def cancel_offer(self, owner_id: str, trade_id: str) -> Optional[str]:
        """Withdraw an own offer and get the locked resources back."""

        async def txn_fn(txn: Transaction) -> None:
            now = self._store.server_time()
            doc = await txn.get(constants.TRADES, trade_id)
            if doc is None:
                raise ActionRejected(TRADE_GONE)
            trade = trade_from_doc(trade_id, doc)
            if trade.player_id != owner_id:
                raise ActionRejected("You can only cancel your own trades")
            city = await load_city(txn, trade.origin_city_id, owner_id)
            self._cities.settle(city, now)
            add_resources(city.resources, {trade.offer.resource: trade.offer.amount})
            save_city(txn, city)
            txn.delete(constants.TRADES, trade_id)

        result = await attempt(self._store, txn_fn, "cancel trade")
        if result is None:
            log.info("Trade %s cancelled by %s", trade_id, owner_id)
        return result

    async def list_offers(self, exclude_player: Optional[str] = None) -> list[TradeOffer]:
        """Open offers, oldest first, optionally hiding one player's own."""
        offers = [trade_from_doc(tid, doc)
                  for tid, doc in await self._store.query(constants.TRADES)]
        if exclude_player is not None:
            offers = [t for t in offers if t.player_id != exclude_player]
        return sorted(offers, key=lambda t: t.created_at)
