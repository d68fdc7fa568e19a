"""Game configuration — loads tunable constants from config/game.yaml.

Provides a single ``GameConfig`` dataclass that is loaded once at startup
and then passed (or injected) wherever constants are needed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

import yaml

log = logging.getLogger(__name__)

DEFAULT_GAME_CONFIG_PATH = "config/game.yaml"


@dataclass
class SpecialBuildingCosts:
    """Flat cost of the single per-city special building."""
    wood: int = 15000
    stone: int = 15000
    silver: int = 15000
    population: int = 60
    time: float = 7200.0
    types: List[str] = field(default_factory=lambda: [
        "great_library", "lighthouse", "oracle", "thermal_baths", "theater", "tower",
    ])

    def resources(self) -> Dict[str, float]:
        return {"wood": self.wood, "stone": self.stone, "silver": self.silver}


@dataclass
class WonderCosts:
    """Alliance wonder start cost and per-level cost curve."""
    start_cost: Dict[str, float] = field(default_factory=lambda: {
        "wood": 50000, "stone": 50000, "silver": 25000,
    })
    base_cost: Dict[str, float] = field(default_factory=lambda: {
        "wood": 100000, "stone": 100000, "silver": 50000,
    })
    cost_growth: float = 1.5


@dataclass
class GameConfig:
    """All tunable gameplay constants.

    Loaded from ``config/game.yaml``.  Every field has a sensible default
    so the server can start even without the file.
    """

    # -- Queues ------------------------------------------------------
    max_queue_length: int = 5
    cancel_refund_ratio: float = 0.5
    instant_build: bool = False
    instant_research: bool = False
    instant_units: bool = False
    instant_duration: float = 1.0

    # -- Workers & happiness -----------------------------------------
    worker_population: int = 20
    worker_production_bonus: float = 0.10
    worker_happiness_penalty: float = 5.0
    max_worker_presets: int = 3
    happiness_per_senate_level: float = 10.0
    happy_threshold: float = 70.0
    unhappy_threshold: float = 40.0
    happy_multiplier: float = 1.10
    unhappy_multiplier: float = 0.9

    # -- New city defaults -------------------------------------------
    initial_buildings: List[str] = field(default_factory=lambda: [
        "senate", "farm", "warehouse", "timber_camp", "quarry",
        "silver_mine", "cave", "hospital",
    ])
    starting_levels: Dict[str, int] = field(default_factory=lambda: {
        "senate": 1, "farm": 1, "warehouse": 1,
        "timber_camp": 1, "quarry": 1, "silver_mine": 1,
    })
    starting_resources: Dict[str, float] = field(default_factory=lambda: {
        "wood": 500.0, "stone": 500.0, "silver": 100.0,
    })
    research_points_per_academy_level: int = 4
    special_building: SpecialBuildingCosts = field(default_factory=SpecialBuildingCosts)

    # -- Favor -------------------------------------------------------
    favor_per_temple_level_per_hour: float = 1.0
    favor_cap_base: float = 100.0
    favor_cap_per_temple_level: float = 20.0

    # -- Travel ------------------------------------------------------
    world_speed_factor: float = 5.0
    scout_trade_seconds_per_tile: float = 15.0
    scout_trade_min_seconds: float = 15.0
    scout_trade_max_seconds: float = 300.0
    nominal_speed: float = 10.0
    cancel_grace_seconds: float = 30.0
    founding_base_seconds: float = 86400.0
    founding_seconds_per_villager: float = 3600.0
    founding_min_seconds: float = 3600.0

    # -- Alliance wonder ---------------------------------------------
    wonder: WonderCosts = field(default_factory=WonderCosts)

    # -- World -------------------------------------------------------
    season_length_seconds: float = 7 * 24 * 3600.0
    weather_length_seconds: float = 3 * 3600.0
    world_data_ttl_seconds: float = 900.0
    slot_fetch_limit: int = 10
    slot_claim_attempts: int = 5
    slot_claim_backoff_seconds: float = 1.0

    # -- Store & runtime ---------------------------------------------
    db_path: str = "polis.db"
    transaction_attempts: int = 5
    step_length_ms: float = 1000.0
    rest_port: int = 8080


def load_game_config(path: str = DEFAULT_GAME_CONFIG_PATH) -> GameConfig:
    """Load game configuration from a YAML file.

    Missing keys fall back to dataclass defaults.  If the file does not
    exist, a warning is logged and pure defaults are returned.
    """
    p = Path(path)
    if not p.exists():
        log.warning("Game config not found at %s, using defaults", p)
        return GameConfig()

    with p.open() as f:
        raw = yaml.safe_load(f) or {}

    log.info("Loaded game config from %s (%d keys)", p, len(raw))

    special_raw = raw.pop("special_building", None)
    special = (SpecialBuildingCosts(**special_raw)
               if isinstance(special_raw, dict) else SpecialBuildingCosts())
    wonder_raw = raw.pop("wonder", None)
    wonder = WonderCosts(**wonder_raw) if isinstance(wonder_raw, dict) else WonderCosts()

    return GameConfig(special_building=special, wonder=wonder, **{
        k: v for k, v in raw.items()
        if k in GameConfig.__dataclass_fields__
    })
