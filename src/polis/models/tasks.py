"""Queue task model shared by every city queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class QueueKind(Enum):
    """The independent queues a city owns."""

    BUILD = "build"
    RESEARCH = "research"
    BARRACKS = "barracks"
    SHIPYARD = "shipyard"
    DIVINE_TEMPLE = "divine_temple"
    HEAL = "heal"


class TaskAction(Enum):
    """What happens to the city when a task completes."""

    UPGRADE = "upgrade"
    DEMOLISH = "demolish"
    SPECIAL_BUILDING = "special_building"
    RESEARCH = "research"
    TRAIN = "train"
    HEAL = "heal"


@dataclass
class QueueTask:
    """One entry of a city queue.

    Attributes:
        task_id: Unique id within the city.
        action: Effect applied on completion.
        item_id: Building, research or unit id.
        duration: Seconds this task occupies the queue.
        end_time: Absolute completion time, chained off the previous entry.
        level: Target building level for build tasks.
        amount: Unit count for training and healing tasks.
        cost: What was paid (wood/stone/silver plus population, points or favor).
    """

    task_id: str
    action: TaskAction
    item_id: str
    duration: float
    end_time: float = 0.0
    level: int = 0
    amount: int = 0
    cost: dict[str, float] = field(default_factory=dict)
