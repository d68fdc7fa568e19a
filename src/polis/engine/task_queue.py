"""Queue engine — bounded, chained task queues.

Every city queue (build, research, the three training queues and the
heal queue) is a plain ``list[QueueTask]`` manipulated through these
functions. Tasks complete in order and only the tail may be cancelled,
so each ``end_time`` is always ``previous.end_time + duration``.
Completion is not polled here: readers compute the remaining time and
``CityService.settle`` applies finished tasks when the city is loaded.
"""

from __future__ import annotations

import logging
import math
import uuid
from typing import Mapping, MutableMapping

from polis.models.tasks import QueueTask
from polis.util import constants
from polis.util.errors import ActionRejected, QueueFull

log = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = 5


def new_task_id() -> str:
    return uuid.uuid4().hex


def enqueue(queue: list[QueueTask], task: QueueTask, now: float,
            max_length: int = DEFAULT_MAX_LENGTH) -> QueueTask:
    """Append ``task`` with its end time chained off the current tail.

    Raises:
        QueueFull: The queue already holds ``max_length`` tasks; it is left untouched.
    """
    if len(queue) >= max_length:
        raise QueueFull(f"Queue is full (max {max_length} tasks)")
    start = queue[-1].end_time if queue else now
    task.end_time = start + task.duration
    queue.append(task)
    return task


def rechain(queue: list[QueueTask], start_index: int, now: float) -> None:
    """Recompute end times from ``start_index`` onwards in queue order."""
    for i in range(start_index, len(queue)):
        previous_end = queue[i - 1].end_time if i > 0 else now
        queue[i].end_time = previous_end + queue[i].duration


def cancel_last(queue: list[QueueTask], task_id: str, now: float) -> QueueTask:
    """Remove the task ``task_id``, which must be the queue tail.

    Raises:
        ActionRejected: The task is unknown or is not the last entry.
    """
    index = next((i for i, t in enumerate(queue) if t.task_id == task_id), None)
    if index is None:
        raise ActionRejected("Task not found in queue")
    if index != len(queue) - 1:
        raise ActionRejected("You can only cancel the last item in the queue.")
    removed = queue.pop(index)
    rechain(queue, index, now)
    return removed


def time_remaining(task: QueueTask, now: float) -> float:
    return max(0.0, task.end_time - now)


def head_remaining(queue: list[QueueTask], now: float) -> float | None:
    """Countdown of the task currently being worked on, None for an empty queue."""
    if not queue:
        return None
    return time_remaining(queue[0], now)


def pop_completed(queue: list[QueueTask], now: float) -> list[QueueTask]:
    """Remove and return the leading tasks whose end time has passed."""
    done: list[QueueTask] = []
    while queue and queue[0].end_time <= now:
        done.append(queue.pop(0))
    return done


def refund(resources: MutableMapping[str, float], cost: Mapping[str, float],
           capacity: float, ratio: float = 0.5) -> dict[str, float]:
    """Return ``floor(ratio * cost)`` of each resource, capped at ``capacity``.

    Returns the amounts actually credited.
    """
    credited: dict[str, float] = {}
    for res in constants.RESOURCES:
        amount = math.floor(cost.get(res, 0.0) * ratio)
        if amount <= 0:
            continue
        before = resources.get(res, 0.0)
        after = min(capacity, before + amount)
        resources[res] = max(before, after)
        credited[res] = resources[res] - before
    return credited
