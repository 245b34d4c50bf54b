"""
Resource ledger primitives shared by the quota and rate-limit handlers.

Both handlers have the same shape: measure what an owner currently uses,
compare it with a fixed ceiling, and act only on the excess. Bytes (quota)
and attempts (rate limit) are different resources but the arithmetic is the
same, so it lives here once.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Generic, Iterable, List, Optional, TypeVar

from backend.storage.ports import StoredObject

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class UsageSnapshot:
    """Derived usage of one owner; never persisted."""

    total: int
    item_count: int
    unknown_size_count: int = 0


@dataclass(frozen=True, slots=True)
class Ledger:
    """A named ceiling for one resource."""

    name: str
    ceiling: int

    def is_over(self, amount: int) -> bool:
        return amount > self.ceiling

    def excess(self, amount: int) -> int:
        return max(0, amount - self.ceiling)


@dataclass(frozen=True, slots=True)
class Selection(Generic[T]):
    """An item picked for removal and the amount its removal is expected to free."""

    item: T
    credit: int


def measure_usage(objects: Iterable[StoredObject]) -> UsageSnapshot:
    """Sum listed object sizes; a missing or negative size counts as zero (fail-open)."""
    total = 0
    count = 0
    unknown = 0
    for obj in objects:
        count += 1
        size = obj.size_bytes
        if size is None or size < 0:
            unknown += 1
            continue
        total += size
    return UsageSnapshot(total=total, item_count=count, unknown_size_count=unknown)


def select_eviction_prefix(
    items: Iterable[T],
    *,
    usage: int,
    ceiling: int,
    weigh: Callable[[T], Optional[int]],
) -> List[Selection[T]]:
    """Pick the shortest prefix of `items` whose removal brings usage within `ceiling`.

    `items` must already be ordered oldest-first. `weigh` is called lazily, one
    item at a time, and only until the expected usage is back within the
    ceiling, so an expensive lookup (e.g. an object size) is never made for an
    item that will be kept. A `None` or non-positive weight is credited as zero
    but the item is still selected.
    """
    selected: List[Selection[T]] = []
    planned = 0
    for item in items:
        if usage - planned <= ceiling:
            break
        weight = weigh(item)
        credit = weight if weight is not None and weight > 0 else 0
        selected.append(Selection(item=item, credit=credit))
        planned += credit
    return selected


def window_start(now: datetime, seconds: int) -> datetime:
    """Return the exclusive lower bound of the trailing window ending at `now`."""
    return now - timedelta(seconds=seconds)


__all__ = [
    "Ledger",
    "Selection",
    "UsageSnapshot",
    "measure_usage",
    "select_eviction_prefix",
    "window_start",
]
