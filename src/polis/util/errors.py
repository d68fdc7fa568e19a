"""Error taxonomy for city, movement and alliance actions.

Service methods turn ``ActionRejected`` into a plain error string (the
``Optional[str]`` / ``Obj | str`` convention used throughout the engine).
``UnknownEffectError`` is a contract violation and is never converted.
"""

from __future__ import annotations


class ActionRejected(Exception):
    """A precondition failed; nothing was written."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class QueueFull(ActionRejected):
    """The target queue already holds the maximum number of tasks."""


class TransactionConflict(Exception):
    """A document read inside a transaction changed before commit."""

    def __init__(self, keys: list[tuple[str, str]]) -> None:
        super().__init__(f"Conflicting writes on {', '.join(f'{c}/{d}' for c, d in keys)}")
        self.keys = keys


class UnknownEffectError(NotImplementedError):
    """A spell or item carries an effect type the engine does not handle."""

    def __init__(self, effect_type: str) -> None:
        super().__init__(f"Unhandled effect type: {effect_type!r}")
        self.effect_type = effect_type
