"""Transaction helpers shared by all action services.

Every mutating action runs as one store transaction that re-reads the
documents it depends on. Validation failures raise ``ActionRejected``
inside the transaction, so nothing is written, and ``attempt`` turns them
into the error string returned to the caller.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Mapping, MutableMapping, Optional, TypeVar

from polis.models.city import City
from polis.persistence.serialization import city_from_doc, city_to_doc
from polis.util import constants
from polis.util.errors import ActionRejected, TransactionConflict

if TYPE_CHECKING:
    from polis.persistence.document_store import DocumentStore, Transaction

log = logging.getLogger(__name__)

T = TypeVar("T")

CONFLICT_MESSAGE = "The game state changed while processing your request. Please try again."


async def attempt(store: DocumentStore, fn: Callable[[Transaction], Awaitable[T]],
                  action: str) -> T | str:
    """Run ``fn`` transactionally; return its result or a rejection message."""
    try:
        return await store.run_transaction(fn)
    except ActionRejected as exc:
        log.info("%s rejected: %s", action, exc.message)
        return exc.message
    except TransactionConflict:
        log.warning("%s failed: transaction conflict", action)
        return CONFLICT_MESSAGE


async def load_city(txn: Transaction, city_id: str, owner_id: Optional[str] = None) -> City:
    """Read a city inside ``txn``; reject if missing or not owned by ``owner_id``."""
    doc = await txn.get(constants.CITIES, city_id)
    if doc is None:
        raise ActionRejected("City not found")
    city = city_from_doc(city_id, doc)
    if owner_id is not None and city.owner_id != owner_id:
        raise ActionRejected("You do not own this city")
    return city


def save_city(txn: Transaction, city: City) -> None:
    txn.set(constants.CITIES, city.city_id, city_to_doc(city))


def require_resources(resources: Mapping[str, float], cost: Mapping[str, float]) -> None:
    for res in constants.RESOURCES:
        need = cost.get(res, 0.0)
        have = resources.get(res, 0.0)
        if need > have:
            raise ActionRejected(f"Not enough {res} (need {need:.0f}, have {have:.0f})")


def deduct_resources(resources: MutableMapping[str, float], cost: Mapping[str, float]) -> None:
    for res in constants.RESOURCES:
        amount = cost.get(res, 0.0)
        if amount:
            resources[res] = resources.get(res, 0.0) - amount


def add_resources(resources: MutableMapping[str, float], gains: Mapping[str, float]) -> None:
    """Credit ``gains`` in full, even past warehouse capacity."""
    for res, amount in gains.items():
        if res in constants.RESOURCES and amount > 0:
            resources[res] = resources.get(res, 0.0) + amount


def add_capped(resources: MutableMapping[str, float], gains: Mapping[str, float],
               capacity: float) -> None:
    """Credit ``gains``, never pushing a resource above ``capacity``."""
    for res, amount in gains.items():
        if res not in constants.RESOURCES or amount <= 0:
            continue
        current = resources.get(res, 0.0)
        resources[res] = max(current, min(capacity, current + amount))


def resource_part(cost: Mapping[str, float]) -> dict[str, float]:
    return {res: cost.get(res, 0.0) for res in constants.RESOURCES}
