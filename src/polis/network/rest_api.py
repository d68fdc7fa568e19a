"""REST API — FastAPI application for every player action.

Actions answer ``{"success": true, ...}`` or ``{"success": false,
"error": msg}``. City snapshots are pushed over WebSocket via /ws on the
same port.

Usage::

    from polis.network.rest_api import create_app

    app = create_app(services)
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import TYPE_CHECKING, Any, Optional

from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from polis.models.movement import Target, TargetKind
from polis.models.tasks import QueueKind
from polis.network.jwt_auth import get_current_player, verify_token
from polis.network.rest_models import (
    AllianceCreateRequest,
    BuildingRequest,
    CaveSilverRequest,
    DispatchRequest,
    DonationRequest,
    FoundCityRequest,
    JoinWorldRequest,
    ResearchRequest,
    SpecialBuildingRequest,
    SpellRequest,
    TradeAcceptRequest,
    TradeCreateRequest,
    TrainRequest,
    UnitsRequest,
    WithdrawRequest,
    WonderStartRequest,
    WorkerPresetBody,
    WorkerRequest,
    WorshipRequest,
)
from polis.persistence.serialization import (
    alliance_to_doc,
    city_to_doc,
    conditions_to_doc,
    movement_to_doc,
    trade_to_doc,
)
from polis.util import constants
from polis.util.errors import UnknownEffectError

if TYPE_CHECKING:
    from polis.main import Services
    from polis.models.city import City
    from polis.models.movement import Movement

log = logging.getLogger(__name__)


def _result(result: Optional[str]) -> dict[str, Any]:
    """Map the ``None``-or-error-message convention onto a response body."""
    if result is None:
        return {"success": True}
    return {"success": False, "error": result}


def _city_json(city: City) -> dict[str, Any]:
    return {"city_id": city.city_id, **city_to_doc(city)}


def _movement_json(movement: Movement) -> dict[str, Any]:
    return {"movement_id": movement.movement_id, **movement_to_doc(movement)}


def create_app(services: "Services") -> FastAPI:
    """Factory: create and return a configured FastAPI application.

    The ``services`` reference is captured by closure so every endpoint
    can access game logic without global state.
    """
    cities = services.city_service
    units = services.unit_service
    movements = services.movement_service
    trades = services.trade_service
    alliances = services.alliance_service
    world = services.world_service

    app = FastAPI(title="Polis Game Server", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(UnknownEffectError)
    async def unknown_effect(request: Request, exc: UnknownEffectError) -> JSONResponse:
        return JSONResponse(status_code=501, content={"success": False, "error": str(exc)})

    # =================================================================
    # World
    # =================================================================

    @app.post("/api/world/join")
    async def join_world(body: JoinWorldRequest,
                         player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        result = await world.claim_city_slot(player_id, body.username, body.city_name)
        if isinstance(result, str):
            return {"success": False, "error": result}
        return {"success": True, "city": _city_json(result)}

    @app.get("/api/world/conditions")
    async def conditions() -> dict[str, Any]:
        return conditions_to_doc(await world.conditions())

    @app.get("/api/world/villages")
    async def villages() -> dict[str, Any]:
        return {"villages": [{"id": vid, **doc} for vid, doc in await world.villages()]}

    @app.get("/api/world/ruins")
    async def ruins() -> dict[str, Any]:
        return {"ruins": [{"id": rid, **doc} for rid, doc in await world.ruins()]}

    @app.get("/api/status")
    async def status() -> dict[str, Any]:
        loop = services.game_loop
        return {
            "server_time": services.store.server_time(),
            "tick_count": loop.tick_count if loop else 0,
            "uptime_seconds": loop.uptime_seconds if loop else 0.0,
            "last_reconciled": loop.last_reconciled if loop else 0,
        }

    # =================================================================
    # Cities
    # =================================================================

    @app.get("/api/cities")
    async def my_cities(player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return {"cities": [_city_json(c) for c in await world.cities_of(player_id)]}

    @app.get("/api/cities/{city_id}")
    async def city_detail(city_id: str,
                          player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        city = await cities.reconcile(city_id)
        if city is None:
            return {"success": False, "error": "City not found"}
        if city.owner_id != player_id:
            return {"success": False, "error": "You do not own this city"}
        effects = await cities.effects_for(city)
        economy = cities.economy
        cave = cities.cave_capacity(city, effects)
        return {
            "success": True,
            "city": _city_json(city),
            "production": economy.production_rates(city, effects),
            "warehouse_capacity": cities.warehouse_capacity(city, effects),
            "cave_capacity": None if math.isinf(cave) else cave,
            "available_population": economy.available_population(city, effects),
            "happiness": economy.happiness(city, effects),
            "points": economy.city_points(city),
        }

    @app.post("/api/cities/{city_id}/buildings/upgrade")
    async def upgrade(city_id: str, body: BuildingRequest,
                      player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await cities.upgrade_building(city_id, player_id, body.building_id))

    @app.post("/api/cities/{city_id}/buildings/demolish")
    async def demolish(city_id: str, body: BuildingRequest,
                       player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await cities.demolish_building(city_id, player_id, body.building_id))

    @app.post("/api/cities/{city_id}/special-building")
    async def special_building(city_id: str, body: SpecialBuildingRequest,
                               player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await cities.build_special_building(city_id, player_id,
                                                           body.building_type))

    @app.delete("/api/cities/{city_id}/special-building")
    async def demolish_special(city_id: str,
                               player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await cities.demolish_special_building(city_id, player_id))

    @app.post("/api/cities/{city_id}/research")
    async def research(city_id: str, body: ResearchRequest,
                       player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await cities.start_research(city_id, player_id, body.research_id))

    @app.post("/api/cities/{city_id}/queues/{queue}/{task_id}/cancel")
    async def cancel_task(city_id: str, queue: str, task_id: str,
                          player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        if queue == QueueKind.BUILD.value:
            return _result(await cities.cancel_build(city_id, player_id, task_id))
        if queue == QueueKind.RESEARCH.value:
            return _result(await cities.cancel_research(city_id, player_id, task_id))
        if queue == QueueKind.HEAL.value:
            return _result(await units.cancel_heal(city_id, player_id, task_id))
        return _result(await units.cancel_training(city_id, player_id, queue, task_id))

    # =================================================================
    # Gods
    # =================================================================

    @app.post("/api/cities/{city_id}/worship")
    async def worship(city_id: str, body: WorshipRequest,
                      player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await cities.worship_god(city_id, player_id, body.god_id))

    @app.post("/api/cities/{city_id}/spells")
    async def cast_spell(city_id: str, body: SpellRequest,
                         player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await cities.cast_spell(city_id, player_id, body.spell_id,
                                               body.target_city_id))

    # =================================================================
    # Cave
    # =================================================================

    @app.post("/api/cities/{city_id}/cave/deposit")
    async def deposit_cave_silver(city_id: str, body: CaveSilverRequest,
                                  player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await cities.deposit_cave_silver(city_id, player_id, body.amount))

    @app.post("/api/cities/{city_id}/cave/withdraw")
    async def withdraw_cave_silver(city_id: str, body: CaveSilverRequest,
                                   player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await cities.withdraw_cave_silver(city_id, player_id, body.amount))

    # =================================================================
    # Workers
    # =================================================================

    @app.post("/api/cities/{city_id}/workers/add")
    async def add_worker(city_id: str, body: WorkerRequest,
                         player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await cities.add_worker(city_id, player_id, body.building_id))

    @app.post("/api/cities/{city_id}/workers/remove")
    async def remove_worker(city_id: str, body: WorkerRequest,
                            player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await cities.remove_worker(city_id, player_id, body.building_id))

    @app.put("/api/presets")
    async def save_preset(body: WorkerPresetBody,
                          player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await cities.save_worker_preset(player_id, body.name, body.workers))

    @app.delete("/api/presets/{name}")
    async def delete_preset(name: str,
                            player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await cities.delete_worker_preset(player_id, name))

    @app.post("/api/cities/{city_id}/presets/{name}/apply")
    async def apply_preset(city_id: str, name: str,
                           player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await cities.apply_worker_preset(city_id, player_id, name))

    # =================================================================
    # Units, heroes & agents
    # =================================================================

    @app.post("/api/cities/{city_id}/train")
    async def train(city_id: str, body: TrainRequest,
                    player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await units.train_units(city_id, player_id, body.unit_id, body.amount))

    @app.post("/api/cities/{city_id}/dismiss")
    async def dismiss(city_id: str, body: UnitsRequest,
                      player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await units.dismiss_units(city_id, player_id, body.units))

    @app.post("/api/cities/{city_id}/heal")
    async def heal(city_id: str, body: UnitsRequest,
                   player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await units.heal_units(city_id, player_id, body.units))

    @app.post("/api/cities/{city_id}/heroes/{hero_id}/recruit")
    async def recruit_hero(city_id: str, hero_id: str,
                           player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await units.recruit_hero(city_id, player_id, hero_id))

    @app.post("/api/cities/{city_id}/heroes/{hero_id}/station")
    async def station_hero(city_id: str, hero_id: str,
                           player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await units.station_hero(city_id, player_id, hero_id))

    @app.post("/api/cities/{city_id}/heroes/{hero_id}/unstation")
    async def unstation_hero(city_id: str, hero_id: str,
                             player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await units.unstation_hero(city_id, player_id, hero_id))

    @app.post("/api/cities/{city_id}/agents/{agent_id}/recruit")
    async def recruit_agent(city_id: str, agent_id: str,
                            player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await units.recruit_agent(city_id, player_id, agent_id))

    # =================================================================
    # Movements
    # =================================================================

    @app.get("/api/movements")
    async def list_movements(player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return {"movements": [_movement_json(m) for m in await movements.movements_for(player_id)]}

    @app.post("/api/movements")
    async def dispatch(body: DispatchRequest,
                       player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        try:
            kind = TargetKind(body.target.kind)
        except ValueError:
            return {"success": False, "error": f"Unknown target kind: {body.target.kind}"}
        target = Target(kind=kind, **body.target.model_dump(exclude={"kind"}))
        result = await movements.dispatch(player_id, body.origin_city_id, body.mode, target,
                                          units=body.units, resources=body.resources,
                                          hero=body.hero, formation=body.formation)
        if isinstance(result, str):
            return {"success": False, "error": result}
        return {"success": True, "movement": _movement_json(result)}

    @app.post("/api/movements/found-city")
    async def found_city(body: FoundCityRequest,
                         player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        result = await movements.found_city(player_id, body.origin_city_id, body.slot_id,
                                            body.units, body.agent_id)
        if isinstance(result, str):
            return {"success": False, "error": result}
        return {"success": True, "movement": _movement_json(result)}

    @app.post("/api/movements/{movement_id}/recall")
    async def recall(movement_id: str,
                     player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await movements.recall(movement_id, player_id))

    @app.post("/api/movements/{movement_id}/turn-around")
    async def turn_around(movement_id: str,
                          player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        result = await movements.turn_around(movement_id, player_id)
        if isinstance(result, str):
            return {"success": False, "error": result}
        return {"success": True, "movement": _movement_json(result)}

    @app.post("/api/cities/{city_id}/withdraw")
    async def withdraw(city_id: str, body: WithdrawRequest,
                       player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        result = await movements.withdraw(player_id, city_id, body.withdrawals)
        if isinstance(result, str):
            return {"success": False, "error": result}
        return {"success": True, "movements": [_movement_json(m) for m in result]}

    # =================================================================
    # Market
    # =================================================================

    @app.get("/api/trades")
    async def list_trades(player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        offers = await trades.list_offers()
        return {"trades": [{"trade_id": t.trade_id, **trade_to_doc(t)} for t in offers]}

    @app.post("/api/trades")
    async def create_trade(body: TradeCreateRequest,
                           player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        result = await trades.create_offer(player_id, body.city_id, body.offer_resource,
                                           body.offer_amount, body.demand_resource,
                                           body.demand_amount)
        if isinstance(result, str):
            return {"success": False, "error": result}
        return {"success": True, "trade_id": result.trade_id}

    @app.post("/api/trades/{trade_id}/accept")
    async def accept_trade(trade_id: str, body: TradeAcceptRequest,
                           player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await trades.accept_offer(player_id, body.city_id, trade_id))

    @app.delete("/api/trades/{trade_id}")
    async def cancel_trade(trade_id: str,
                           player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await trades.cancel_offer(player_id, trade_id))

    # =================================================================
    # Alliance
    # =================================================================

    @app.post("/api/alliances")
    async def create_alliance(body: AllianceCreateRequest,
                              player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        result = await alliances.create_alliance(player_id, body.name)
        if isinstance(result, str):
            return {"success": False, "error": result}
        return {"success": True, "alliance_id": result.alliance_id}

    @app.post("/api/alliances/{alliance_id}/join")
    async def join_alliance(alliance_id: str,
                            player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await alliances.join_alliance(player_id, alliance_id))

    @app.get("/api/alliances/{alliance_id}")
    async def alliance_detail(alliance_id: str,
                              player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        alliance = await alliances.get_alliance(alliance_id)
        if alliance is None:
            return {"success": False, "error": "Alliance not found"}
        return {"success": True, "alliance": {"alliance_id": alliance_id,
                                              **alliance_to_doc(alliance)},
                "events": await alliances.events(alliance_id)}

    @app.post("/api/alliance/research/{research_id}/donate")
    async def donate_to_research(research_id: str, body: DonationRequest,
                                 player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await alliances.donate_to_research(player_id, body.city_id, research_id,
                                                          body.amounts()))

    @app.post("/api/alliance/wonder/start")
    async def start_wonder(body: WonderStartRequest,
                           player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await alliances.start_wonder(player_id, body.city_id, body.wonder_id,
                                                    body.island_id, body.x, body.y))

    @app.post("/api/alliance/wonder/donate")
    async def donate(body: DonationRequest,
                     player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await alliances.donate(player_id, body.city_id, body.amounts()))

    @app.post("/api/alliance/wonder/claim")
    async def claim_level(player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await alliances.claim_level(player_id))

    @app.delete("/api/alliance/wonder")
    async def demolish_wonder(player_id: str = Depends(get_current_player)) -> dict[str, Any]:
        return _result(await alliances.demolish_wonder(player_id))

    # =================================================================
    # WebSocket — live city snapshots
    # =================================================================

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket):
        """Stream committed snapshots of one city to its owner.

        Connect with ``/ws?token=<jwt>&city_id=<id>``.
        """
        token = ws.query_params.get("token", "")
        city_id = ws.query_params.get("city_id", "")
        try:
            player_id = verify_token(token)
        except ValueError:
            await ws.close(code=4001, reason="Invalid token")
            return
        doc = await services.store.get(constants.CITIES, city_id)
        if doc is None or doc.get("owner_id") != player_id:
            await ws.close(code=4003, reason="Not your city")
            return
        await ws.accept()

        queue: asyncio.Queue = asyncio.Queue()
        unsubscribe = services.store.watch(constants.CITIES, city_id, queue.put_nowait)
        log.info("WS client connected: player=%s city=%s", player_id, city_id)
        try:
            await ws.send_json({"type": "snapshot", "city_id": city_id, "city": doc})
            while True:
                snapshot = await queue.get()
                await ws.send_json({"type": "snapshot", "city_id": city_id, "city": snapshot})
        except WebSocketDisconnect:
            log.info("WS client disconnected: player=%s", player_id)
        finally:
            unsubscribe()

    log.info("REST API created with %d routes", len(app.routes))
    return app
