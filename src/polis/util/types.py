"""Shared type aliases and small formatting helpers."""

from __future__ import annotations

import math
from typing import Dict

Resources = Dict[str, float]
UnitCounts = Dict[str, int]


def format_duration(seconds: float) -> str:
    """Format seconds as ``HH:MM:SS``; infinite or NaN durations give ``N/A``."""
    if seconds is None or math.isinf(seconds) or math.isnan(seconds):
        return "N/A"
    total = max(0, int(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
