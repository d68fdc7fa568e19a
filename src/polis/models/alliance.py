"""Alliance model with its single shared wonder."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class AllianceWonder:
    wonder_id: str
    level: int = 0
    island_id: Optional[str] = None
    x: float = 0.0
    y: float = 0.0


def _empty_progress() -> dict[str, float]:
    return {"wood": 0.0, "stone": 0.0, "silver": 0.0}


@dataclass
class Alliance:
    """An alliance document.

    Attributes:
        leader_id: Only the leader may start, claim or demolish the wonder.
        research: Alliance research id → level.
        research_progress: Donations toward the next level of each research.
        wonder: The active wonder, or None.
        wonder_progress: Donated resources not yet consumed by a level claim.
    """

    alliance_id: str
    name: str
    leader_id: str
    members: list[str] = field(default_factory=list)
    research: dict[str, int] = field(default_factory=dict)
    research_progress: dict[str, dict[str, float]] = field(default_factory=dict)
    wonder: Optional[AllianceWonder] = None
    wonder_progress: dict[str, float] = field(default_factory=_empty_progress)

    def is_member(self, player_id: str) -> bool:
        return player_id == self.leader_id or player_id in self.members
