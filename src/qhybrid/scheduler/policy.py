# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Ready-queue dispatch policies.

Both policies order by priority and break ties FIFO by admission (or
re-queue) order. :class:`StrictPriorityPolicy` never lets a lower
priority entity run while a higher one is ready. :class:`AgingPriorityPolicy`
raises a waiting entity's effective priority by one level every
``interval`` dispatches, so low-priority work cannot starve.

Aging is implemented with a time-invariant heap key: an entity queued at
dispatch tick ``t0`` with priority ``p`` has effective priority
``p + (t - t0) / interval`` at tick ``t``, which orders identically to
``t0 / interval - p`` for every ``t``.

Removal is lazy: removed ids are skipped when they reach the top.
"""

from __future__ import annotations

import heapq
import itertools
from typing import Protocol, runtime_checkable


@runtime_checkable
class DispatchPolicy(Protocol):
    """Ordering of the scheduler's shared ready queue."""

    name: str

    def push(self, entity_id: str, priority: int, tick: int) -> None:
        """Queue ``entity_id`` at dispatch tick ``tick``."""
        ...

    def pop(self, tick: int) -> str | None:
        """Remove and return the next entity, or ``None`` when empty."""
        ...

    def remove(self, entity_id: str) -> None:
        """Drop ``entity_id`` if queued."""
        ...

    def __len__(self) -> int: ...


class _HeapPolicy:
    """Heap with lazy deletion; subclasses provide the primary key."""

    name = "heap"

    def __init__(self) -> None:
        self._heap: list[tuple[float, int, str]] = []
        self._live: dict[str, int] = {}
        self._seq = itertools.count()

    def _key(self, priority: int, tick: int) -> float:
        raise NotImplementedError

    def push(self, entity_id: str, priority: int, tick: int) -> None:
        seq = next(self._seq)
        self._live[entity_id] = seq
        heapq.heappush(self._heap, (self._key(priority, tick), seq, entity_id))

    def pop(self, tick: int) -> str | None:
        while self._heap:
            _, seq, entity_id = heapq.heappop(self._heap)
            if self._live.get(entity_id) == seq:
                del self._live[entity_id]
                return entity_id
        return None

    def remove(self, entity_id: str) -> None:
        self._live.pop(entity_id, None)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._live

    def __len__(self) -> int:
        return len(self._live)


class StrictPriorityPolicy(_HeapPolicy):
    """Highest priority first, FIFO within a priority."""

    name = "strict"

    def _key(self, priority: int, tick: int) -> float:
        return -float(priority)


class AgingPriorityPolicy(_HeapPolicy):
    """
    Priority with aging.

    Parameters
    ----------
    interval : int
        Dispatch ticks a waiting entity needs to gain one priority level.
    """

    name = "aging"

    def __init__(self, interval: int = 8) -> None:
        super().__init__()
        if interval < 1:
            raise ValueError("aging interval must be >= 1")
        self.interval = interval

    def _key(self, priority: int, tick: int) -> float:
        return tick / self.interval - float(priority)


def make_policy(name: str, aging_interval: int = 8) -> DispatchPolicy:
    """Build a policy by its configuration name."""
    if name == "strict":
        return StrictPriorityPolicy()
    if name == "aging":
        return AgingPriorityPolicy(aging_interval)
    raise ValueError(f"Unknown scheduler policy {name!r}")
