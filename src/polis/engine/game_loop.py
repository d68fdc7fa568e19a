"""Main game loop — asyncio-based background tick.

Responsibilities:
- Reconcile every city (resource and favor accrual, finished queue tasks)
- Advance the world clock (season and weather)

Player actions never wait for the loop: each action settles its own city
inside its transaction. The loop only keeps idle cities current.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from polis.engine.city_service import CityService
    from polis.engine.world_service import WorldService
    from polis.loaders.game_config_loader import GameConfig

log = logging.getLogger(__name__)


class GameLoop:
    """Periodic reconciliation loop.

    Args:
        city_service: Reconciles cities.
        world_service: Advances the world clock.
        game_config: Supplies ``step_length_ms``.
    """

    def __init__(
        self,
        city_service: CityService,
        world_service: WorldService,
        game_config: GameConfig | None = None,
    ) -> None:
        self._cities = city_service
        self._world = world_service
        self._running = False
        self._step_interval = (game_config.step_length_ms / 1000.0) if game_config else 1.0

        # --- Monitoring counters ---
        self.tick_count: int = 0
        self.started_at: float = 0.0
        self.last_tick_duration_ms: float = 0.0
        self.last_reconciled: int = 0

    async def run(self) -> None:
        """Start the loop. Runs until stop() is called."""
        self._running = True
        self.started_at = time.monotonic()
        while self._running:
            t0 = time.monotonic()
            try:
                await self.step()
            except Exception:
                log.exception("Game loop step failed")
            self.last_tick_duration_ms = (time.monotonic() - t0) * 1000
            self.tick_count += 1
            await asyncio.sleep(self._step_interval)

    @property
    def uptime_seconds(self) -> float:
        """Seconds since the loop started."""
        if self.started_at == 0.0:
            return 0.0
        return time.monotonic() - self.started_at

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Signal the loop to stop."""
        self._running = False

    async def step(self) -> None:
        """One tick of the loop."""
        # 1. Season and weather
        await self._world.advance_clock()

        # 2. Catch up every city
        self.last_reconciled = await self._cities.reconcile_all()
        log.debug("tick %d: reconciled %d cities", self.tick_count, self.last_reconciled)
