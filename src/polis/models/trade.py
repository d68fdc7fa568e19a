"""Market trade offer."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ResourceAmount:
    resource: str
    amount: int


@dataclass
class TradeOffer:
    """An open offer; ``offer`` was locked out of the origin city at creation."""

    trade_id: str
    player_id: str
    origin_city_id: str
    offer: ResourceAmount
    demand: ResourceAmount
    origin_city_name: str = ""
    created_at: float = 0.0
