"""World-level models: map slots, players and world conditions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class CitySlot:
    """A position on the map where a city can exist."""

    slot_id: str
    x: float
    y: float
    island_id: Optional[str] = None
    owner_id: Optional[str] = None
    city_id: Optional[str] = None


@dataclass
class WorkerPreset:
    name: str
    workers: dict[str, int] = field(default_factory=dict)


@dataclass
class Player:
    """Per-world player document."""

    player_id: str
    username: str
    alliance_id: Optional[str] = None
    worker_presets: list[WorkerPreset] = field(default_factory=list)


@dataclass
class WorldConditions:
    """Current season and weather plus when each last changed."""

    season: str = "Spring"
    weather: str = "Clear"
    season_started: float = 0.0
    weather_started: float = 0.0
