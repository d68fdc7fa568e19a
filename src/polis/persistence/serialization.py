"""Serialization — model dataclasses to and from store documents.

Documents are plain JSON-compatible dicts; enums are stored by value.
"""

from __future__ import annotations

from typing import Any, Optional

from polis.models.alliance import Alliance, AllianceWonder
from polis.models.city import BuildingState, City, HeroState, HeroStatus, ReinforcementEntry
from polis.models.movement import Movement, MovementStatus, MovementType, TargetKind
from polis.models.tasks import QueueTask, TaskAction
from polis.models.trade import ResourceAmount, TradeOffer
from polis.models.world import CitySlot, Player, WorkerPreset, WorldConditions


# -- Queue tasks ---------------------------------------------------------

def task_to_dict(task: QueueTask) -> dict[str, Any]:
    return {
        "task_id": task.task_id,
        "action": task.action.value,
        "item_id": task.item_id,
        "duration": task.duration,
        "end_time": task.end_time,
        "level": task.level,
        "amount": task.amount,
        "cost": dict(task.cost),
    }


def task_from_dict(data: dict[str, Any]) -> QueueTask:
    return QueueTask(
        task_id=data["task_id"],
        action=TaskAction(data["action"]),
        item_id=data["item_id"],
        duration=float(data.get("duration", 0.0)),
        end_time=float(data.get("end_time", 0.0)),
        level=int(data.get("level", 0)),
        amount=int(data.get("amount", 0)),
        cost=dict(data.get("cost", {})),
    )


# -- City ----------------------------------------------------------------

def city_to_doc(city: City) -> dict[str, Any]:
    return {
        "owner_id": city.owner_id,
        "slot_id": city.slot_id,
        "city_name": city.city_name,
        "owner_username": city.owner_username,
        "island_id": city.island_id,
        "x": city.x,
        "y": city.y,
        "resources": dict(city.resources),
        "buildings": {bid: {"level": b.level, "workers": b.workers}
                      for bid, b in city.buildings.items()},
        "units": dict(city.units),
        "wounded": dict(city.wounded),
        "research": dict(city.research),
        "research_points": city.research_points,
        "god": city.god,
        "worship": dict(city.worship),
        "cave_silver": city.cave_silver,
        "heroes": {hid: {"status": h.status.value, "city_id": h.city_id}
                   for hid, h in city.heroes.items()},
        "agents": dict(city.agents),
        "reinforcements": {
            origin: {"owner_id": e.owner_id, "origin_city_name": e.origin_city_name,
                     "units": dict(e.units)}
            for origin, e in city.reinforcements.items()
        },
        "special_building": city.special_building,
        "queues": {kind: [task_to_dict(t) for t in tasks] for kind, tasks in city.queues.items()},
        "last_updated": city.last_updated,
    }


def city_from_doc(city_id: str, doc: dict[str, Any]) -> City:
    return City(
        city_id=city_id,
        owner_id=doc["owner_id"],
        slot_id=doc.get("slot_id", ""),
        city_name=doc.get("city_name", ""),
        owner_username=doc.get("owner_username", ""),
        island_id=doc.get("island_id"),
        x=float(doc.get("x", 0.0)),
        y=float(doc.get("y", 0.0)),
        resources={k: float(v) for k, v in doc.get("resources", {}).items()},
        buildings={bid: BuildingState(level=int(b.get("level", 0)), workers=int(b.get("workers", 0)))
                   for bid, b in doc.get("buildings", {}).items()},
        units={k: int(v) for k, v in doc.get("units", {}).items()},
        wounded={k: int(v) for k, v in doc.get("wounded", {}).items()},
        research={k: bool(v) for k, v in doc.get("research", {}).items()},
        research_points=int(doc.get("research_points", 0)),
        god=doc.get("god"),
        worship={k: float(v) for k, v in doc.get("worship", {}).items()},
        cave_silver=float(doc.get("cave_silver", 0.0)),
        heroes={hid: HeroState(hero_id=hid, status=HeroStatus(h.get("status", "idle")),
                               city_id=h.get("city_id"))
                for hid, h in doc.get("heroes", {}).items()},
        agents={k: int(v) for k, v in doc.get("agents", {}).items()},
        reinforcements={
            origin: ReinforcementEntry(owner_id=e["owner_id"],
                                       origin_city_name=e.get("origin_city_name", ""),
                                       units={k: int(v) for k, v in e.get("units", {}).items()})
            for origin, e in doc.get("reinforcements", {}).items()
        },
        special_building=doc.get("special_building"),
        queues={kind: [task_from_dict(t) for t in tasks]
                for kind, tasks in doc.get("queues", {}).items()},
        last_updated=float(doc.get("last_updated", 0.0)),
    )


# -- Movement ------------------------------------------------------------

_MOVEMENT_PLAIN_FIELDS = (
    "origin_city_id", "origin_owner_id", "origin_city_name", "origin_x", "origin_y",
    "target_id", "target_x", "target_y", "target_owner_id", "target_city_id",
    "target_name", "hero", "agent", "departure_time", "arrival_time",
    "cancellable_until", "is_cross_island", "wind_speed", "new_city_name",
)


def movement_to_doc(movement: Movement) -> dict[str, Any]:
    doc: dict[str, Any] = {name: getattr(movement, name) for name in _MOVEMENT_PLAIN_FIELDS}
    doc.update({
        "type": movement.movement_type.value,
        "status": movement.status.value,
        "target_kind": movement.target_kind.value,
        "units": dict(movement.units),
        "resources": dict(movement.resources),
        "attack_formation": dict(movement.attack_formation),
        "involved_parties": list(movement.involved_parties),
    })
    return doc


def movement_from_doc(movement_id: str, doc: dict[str, Any]) -> Movement:
    plain = {name: doc.get(name) for name in _MOVEMENT_PLAIN_FIELDS if name in doc}
    return Movement(
        movement_id=movement_id,
        movement_type=MovementType(doc["type"]),
        status=MovementStatus(doc["status"]),
        target_kind=TargetKind(doc["target_kind"]),
        units={k: int(v) for k, v in doc.get("units", {}).items()},
        resources={k: float(v) for k, v in doc.get("resources", {}).items()},
        attack_formation=dict(doc.get("attack_formation", {})),
        involved_parties=list(doc.get("involved_parties", [])),
        **plain,
    )


# -- Trade ---------------------------------------------------------------

def trade_to_doc(trade: TradeOffer) -> dict[str, Any]:
    return {
        "player_id": trade.player_id,
        "origin_city_id": trade.origin_city_id,
        "origin_city_name": trade.origin_city_name,
        "offer": {"resource": trade.offer.resource, "amount": trade.offer.amount},
        "demand": {"resource": trade.demand.resource, "amount": trade.demand.amount},
        "created_at": trade.created_at,
    }


def trade_from_doc(trade_id: str, doc: dict[str, Any]) -> TradeOffer:
    return TradeOffer(
        trade_id=trade_id,
        player_id=doc["player_id"],
        origin_city_id=doc["origin_city_id"],
        origin_city_name=doc.get("origin_city_name", ""),
        offer=ResourceAmount(**doc["offer"]),
        demand=ResourceAmount(**doc["demand"]),
        created_at=float(doc.get("created_at", 0.0)),
    )


# -- Alliance ------------------------------------------------------------

def alliance_to_doc(alliance: Alliance) -> dict[str, Any]:
    wonder: Optional[dict[str, Any]] = None
    if alliance.wonder is not None:
        w = alliance.wonder
        wonder = {"wonder_id": w.wonder_id, "level": w.level, "island_id": w.island_id,
                  "x": w.x, "y": w.y}
    return {
        "name": alliance.name,
        "leader_id": alliance.leader_id,
        "members": list(alliance.members),
        "research": dict(alliance.research),
        "research_progress": {rid: dict(p) for rid, p in alliance.research_progress.items()},
        "wonder": wonder,
        "wonder_progress": dict(alliance.wonder_progress),
    }


def alliance_from_doc(alliance_id: str, doc: dict[str, Any]) -> Alliance:
    wonder_raw = doc.get("wonder")
    wonder = AllianceWonder(**wonder_raw) if wonder_raw else None
    alliance = Alliance(
        alliance_id=alliance_id,
        name=doc.get("name", ""),
        leader_id=doc["leader_id"],
        members=list(doc.get("members", [])),
        research={k: int(v) for k, v in doc.get("research", {}).items()},
        research_progress={rid: {k: float(v) for k, v in p.items()}
                           for rid, p in doc.get("research_progress", {}).items()},
        wonder=wonder,
    )
    alliance.wonder_progress.update({k: float(v) for k, v in doc.get("wonder_progress", {}).items()})
    return alliance


# -- World ---------------------------------------------------------------

def slot_to_doc(slot: CitySlot) -> dict[str, Any]:
    return {"x": slot.x, "y": slot.y, "island_id": slot.island_id,
            "owner_id": slot.owner_id, "city_id": slot.city_id}


def slot_from_doc(slot_id: str, doc: dict[str, Any]) -> CitySlot:
    return CitySlot(slot_id=slot_id, x=float(doc.get("x", 0.0)), y=float(doc.get("y", 0.0)),
                    island_id=doc.get("island_id"), owner_id=doc.get("owner_id"),
                    city_id=doc.get("city_id"))


def player_to_doc(player: Player) -> dict[str, Any]:
    return {
        "username": player.username,
        "alliance_id": player.alliance_id,
        "worker_presets": [{"name": p.name, "workers": dict(p.workers)}
                           for p in player.worker_presets],
    }


def player_from_doc(player_id: str, doc: dict[str, Any]) -> Player:
    return Player(
        player_id=player_id,
        username=doc.get("username", ""),
        alliance_id=doc.get("alliance_id"),
        worker_presets=[WorkerPreset(name=p["name"],
                                     workers={k: int(v) for k, v in p.get("workers", {}).items()})
                        for p in doc.get("worker_presets", [])],
    )


def conditions_to_doc(conditions: WorldConditions) -> dict[str, Any]:
    return {"season": conditions.season, "weather": conditions.weather,
            "season_started": conditions.season_started,
            "weather_started": conditions.weather_started}


def conditions_from_doc(doc: Optional[dict[str, Any]]) -> WorldConditions:
    if not doc:
        return WorldConditions()
    return WorldConditions(
        season=doc.get("season", "Spring"),
        weather=doc.get("weather", "Clear"),
        season_started=float(doc.get("season_started", 0.0)),
        weather_started=float(doc.get("weather_started", 0.0)),
    )
