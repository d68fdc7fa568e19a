"""Game server entry point.

Initializes all components and starts the asyncio event loop:
1. Load configuration (game constants, balance tables)
2. Open the document store
3. Create engine services
4. Start the REST API (uvicorn)
5. Start the game loop

Usage:
    python -m polis.main
    # or via entry point:
    polis-server
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
import signal
import sys
from dataclasses import dataclass, field
from typing import Any, Optional

from polis.engine.alliance_service import AllianceService
from polis.engine.city_service import CityService
from polis.engine.game_data import GameData
from polis.engine.game_loop import GameLoop
from polis.engine.movement_service import MovementService
from polis.engine.trade_service import TradeService
from polis.engine.unit_service import UnitService
from polis.engine.world_service import WorldService
from polis.loaders.game_config_loader import GameConfig, load_game_config
from polis.loaders.item_loader import load_items
from polis.models.items import ItemTables
from polis.persistence.document_store import DocumentStore
from polis.util.cache import TTLCache
from polis.util.events import EventBus

log = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = "config"


# ---------------------------------------------------------------------------
# Containers
# ---------------------------------------------------------------------------


@dataclass
class Configuration:
    """Holds all data loaded from config files."""

    tables: ItemTables = field(default_factory=ItemTables)
    game: GameConfig = field(default_factory=GameConfig)


@dataclass
class Services:
    """Holds references to all engine services."""

    game_config: Optional[GameConfig] = None
    store: Optional[DocumentStore] = None
    event_bus: Optional[EventBus] = None
    game_data: Optional[GameData] = None
    city_service: Optional[CityService] = None
    unit_service: Optional[UnitService] = None
    movement_service: Optional[MovementService] = None
    trade_service: Optional[TradeService] = None
    alliance_service: Optional[AllianceService] = None
    world_service: Optional[WorldService] = None
    game_loop: Optional[GameLoop] = None
    rest_server: Any = None


# ===================================================================
# 1. Load configuration
# ===================================================================


def load_configuration(config_dir: str = DEFAULT_CONFIG_DIR) -> Configuration:
    """Load game constants and balance tables from YAML files."""
    log.info("Loading configuration …")
    game_cfg = load_game_config(os.path.join(config_dir, "game.yaml"))
    tables = load_items(config_dir)
    log.info("  buildings: %d, units: %d, research: %d, gods: %d",
             len(tables.buildings), len(tables.units), len(tables.research), len(tables.gods))
    return Configuration(tables=tables, game=game_cfg)


# ===================================================================
# 2. Open the document store
# ===================================================================


async def init_persistence(game_config: GameConfig) -> DocumentStore:
    log.info("Initializing persistence …")
    store = DocumentStore(game_config.db_path, max_attempts=game_config.transaction_attempts)
    await store.connect()
    return store


# ===================================================================
# 3. Create engine services
# ===================================================================


def create_services(config: Configuration, store: DocumentStore,
                    rng: random.Random | None = None) -> Services:
    """Instantiate all engine services with proper dependency injection.

    Services that are injected into others are created first.
    """
    log.info("Creating services …")
    gc = config.game
    rng = rng or random.Random()
    event_bus = EventBus()
    game_data = GameData.from_tables(config.tables)

    city_service = CityService(store, game_data, event_bus, gc)
    unit_service = UnitService(game_data, event_bus, city_service, gc)
    world_service = WorldService(store, event_bus, gc,
                                 cache=TTLCache(gc.world_data_ttl_seconds), rng=rng)
    movement_service = MovementService(store, game_data, event_bus, city_service, gc,
                                       world_service=world_service, rng=rng)
    trade_service = TradeService(store, event_bus, city_service, gc)
    alliance_service = AllianceService(store, game_data, event_bus, city_service, gc)
    game_loop = GameLoop(city_service, world_service, gc)
    log.info("  all services created")

    return Services(
        game_config=gc,
        store=store,
        event_bus=event_bus,
        game_data=game_data,
        city_service=city_service,
        unit_service=unit_service,
        movement_service=movement_service,
        trade_service=trade_service,
        alliance_service=alliance_service,
        world_service=world_service,
        game_loop=game_loop,
    )


# ===================================================================
# 4. Start the REST API
# ===================================================================


async def start_network(services: Services) -> None:
    """Serve the FastAPI app with uvicorn as a background task."""
    from polis.network.rest_api import create_app
    import uvicorn

    rest_app = create_app(services)
    rest_port = services.game_config.rest_port if services.game_config else 8080
    config = uvicorn.Config(
        rest_app,
        host="0.0.0.0",
        port=rest_port,
        log_level="info",
        access_log=False,
    )
    rest_server = uvicorn.Server(config)
    services.rest_server = rest_server
    asyncio.create_task(rest_server.serve())
    log.info("  REST API listening on http://0.0.0.0:%d", rest_port)


# ===================================================================
# 5. Start the game loop
# ===================================================================


async def start_game_loop(services: Services) -> None:
    """Run the game loop until a shutdown signal arrives, then clean up."""
    log.info("Starting game loop …")
    loop = asyncio.get_running_loop()

    def _request_shutdown() -> None:
        log.info("Shutdown signal received, stopping")
        services.game_loop.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _request_shutdown)

    await services.game_loop.run()

    log.info("Shutting down …")
    if services.rest_server is not None:
        services.rest_server.should_exit = True
        log.info("  REST API server stopped")
    if services.store is not None:
        await services.store.close()
        log.info("  document store closed")
    log.info("  goodbye")


# ===================================================================
# Entry points
# ===================================================================


async def _start(config_dir: str = DEFAULT_CONFIG_DIR) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    log.info("=== Polis server starting ===")

    config = load_configuration(config_dir)
    store = await init_persistence(config.game)
    services = create_services(config, store)
    await start_network(services)
    await start_game_loop(services)


def main() -> None:
    """Entry point for the game server.

    Supports command-line arguments:
        --config_dir <path>  Directory holding game.yaml and the balance tables
    """
    config_dir = DEFAULT_CONFIG_DIR
    if "--config_dir" in sys.argv:
        idx = sys.argv.index("--config_dir")
        if idx + 1 >= len(sys.argv):
            print("Error: --config_dir requires an argument", file=sys.stderr)
            sys.exit(1)
        config_dir = sys.argv[idx + 1]

    asyncio.run(_start(config_dir=config_dir))


if __name__ == "__main__":
    main()
