"""Travel calculator — distance, travel duration and founding time.

Scout and trade movements use a flat per-tile rate clamped to a short
window. Army movements move at the slowest unit's speed, shaped by the
season, the weather and (for ships and flyers) the wind.
"""

from __future__ import annotations

import logging
import math
import random
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

from polis.models.items import UnitDetails
from polis.util.types import format_duration

if TYPE_CHECKING:
    from polis.loaders.game_config_loader import GameConfig
    from polis.models.world import WorldConditions

log = logging.getLogger(__name__)

LAND = "land"
NAVAL = "naval"
FLYING = "flying"

FAST_MODES = frozenset({"scout", "trade"})

SEASON_LAND_FACTORS = {"Summer": 1.1, "Winter": 0.8}

# Weather → inclusive wind speed range sampled per dispatch.
WIND_RANGES: dict[str, tuple[float, float]] = {
    "Clear": (0.0, 3.0),
    "Windy": (3.0, 6.0),
    "Rainy": (6.0, 9.0),
    "Stormy": (9.0, 10.0),
}

NEUTRAL_WIND = 5.0


def distance(x1: float, y1: float, x2: float, y2: float) -> float:
    """Euclidean distance in map tiles."""
    return math.hypot(x2 - x1, y2 - y1)


def unit_type_mix(units: Mapping[str, int], catalog: Mapping[str, UnitDetails]) -> set[str]:
    """Movement types present in a roster.

    A flying land unit counts as both land and flying.
    """
    mix: set[str] = set()
    for uid, count in units.items():
        unit = catalog.get(uid)
        if unit is None or count <= 0:
            continue
        mix.add(NAVAL if unit.is_naval else LAND)
        if unit.flying:
            mix.add(FLYING)
    return mix


def slowest_speed(units: Mapping[str, int], catalog: Mapping[str, UnitDetails]) -> Optional[float]:
    """Base speed of the slowest selected unit, or None for an empty roster."""
    speeds = [catalog[uid].speed for uid, count in units.items()
              if count > 0 and uid in catalog]
    return min(speeds) if speeds else None


def wind_factor(wind_speed: float) -> float:
    """Map wind speed 0..10 onto a 0.75..1.25 multiplier centred on 5."""
    return 1 + ((wind_speed - NEUTRAL_WIND) / 10) * 0.5


def sample_wind_speed(weather: str, rng: random.Random) -> float:
    """Draw a wind speed from the range belonging to ``weather``."""
    low, high = WIND_RANGES.get(weather, (0.0, 0.0))
    return rng.uniform(low, high)


def effective_speed(speed: float, conditions: WorldConditions,
                    mix: Iterable[str], wind_speed: float = 0.0) -> float:
    """Apply season, weather and wind multipliers to a base speed."""
    mix = set(mix)
    has_land = LAND in mix
    has_sea_or_air = NAVAL in mix or FLYING in mix

    if has_land:
        speed *= SEASON_LAND_FACTORS.get(conditions.season, 1.0)
    if has_sea_or_air:
        speed *= wind_factor(wind_speed)

    weather = conditions.weather
    if weather == "Rainy" and has_land:
        speed *= 0.9
    elif weather == "Stormy":
        if has_sea_or_air:
            speed *= 0.8
        if has_land:
            speed *= 0.8
    elif weather == "Foggy":
        speed *= 0.75
    return speed


class TravelCalculator:
    """Travel durations bound to the world's speed constants.

    Args:
        game_config: Supplies the world speed factor and the scout/trade
            clamp window.
    """

    def __init__(self, game_config: GameConfig) -> None:
        self._config = game_config

    def travel_time(self, dist: float, unit_speed: float, mode: str,
                    conditions: WorldConditions, mix: Iterable[str],
                    wind_speed: float = 0.0) -> float:
        """Seconds needed to cover ``dist`` tiles.

        Returns ``math.inf`` when the effective speed is not positive;
        callers must reject such a dispatch.
        """
        cfg = self._config
        if mode in FAST_MODES:
            raw = dist * cfg.scout_trade_seconds_per_tile
            return max(cfg.scout_trade_min_seconds, min(cfg.scout_trade_max_seconds, raw))

        speed = effective_speed(unit_speed, conditions, mix, wind_speed)
        if speed <= 0:
            return math.inf
        seconds = dist / (speed * cfg.world_speed_factor) * 3600
        log.debug("travel %.2f tiles at %.2f (base %.2f) → %s",
                  dist, speed, unit_speed, format_duration(seconds))
        return seconds

    def founding_time(self, villagers: int) -> float:
        """Seconds to found a city: 24h minus 1h per villager, never under 1h."""
        cfg = self._config
        return max(cfg.founding_min_seconds,
                   cfg.founding_base_seconds - villagers * cfg.founding_seconds_per_villager)
