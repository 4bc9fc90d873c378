# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Opaque resource handles and the generation-counted handle table.

A handle id is a ``(index, generation)`` pair. Releasing a slot bumps its
generation, so an id held across a release never resolves to whatever
later reuses the slot.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, cast

from qhybrid.errors import InvalidHandle, KernelInvariantError


logger = logging.getLogger(__name__)


class HandleKind(str, Enum):
    """Kinds of kernel resources reachable through a handle."""

    DEVICE = "device"
    JOB = "job"
    MEASUREMENT_STREAM = "measurement_stream"
    CALIBRATION_PROFILE = "calibration_profile"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class HandleId:
    """Slot index plus the generation the slot had at allocation."""

    index: int
    generation: int

    def __str__(self) -> str:
        return f"{self.index}:{self.generation}"


@dataclass(frozen=True, slots=True)
class ResourceHandle:
    """
    What a process holds: an id, a kind and the owning process id.

    The resource object itself is only reachable through the kernel-side
    :class:`HandleTable`.
    """

    id: HandleId
    kind: HandleKind
    owner: str


@dataclass
class _Slot:
    generation: int = 0
    handle: ResourceHandle | None = None
    resource: Any = None


class HandleTable:
    """
    Slot table mapping handle ids to kernel resources.

    Parameters
    ----------
    initial_capacity : int
        Number of slots created up front; the table grows on demand.
    """

    def __init__(self, initial_capacity: int = 16) -> None:
        self._slots: list[_Slot] = [_Slot() for _ in range(initial_capacity)]
        self._free: list[int] = list(range(initial_capacity - 1, -1, -1))
        self._lock = threading.RLock()

    def allocate(self, kind: HandleKind, owner: str, resource: Any) -> ResourceHandle:
        """Store ``resource`` in a free slot and return its handle."""
        with self._lock:
            if self._free:
                index = self._free.pop()
            else:
                index = len(self._slots)
                self._slots.append(_Slot())
            slot = self._slots[index]
            if slot.handle is not None:
                raise KernelInvariantError(
                    f"Free list returned occupied slot {index}"
                )
            handle = ResourceHandle(HandleId(index, slot.generation), kind, owner)
            slot.handle = handle
            slot.resource = resource
        logger.debug("Allocated %s handle %s for %s", kind, handle.id, owner)
        return handle

    def resolve(self, handle_id: HandleId, kind: HandleKind | None = None) -> Any:
        """
        Return the resource behind ``handle_id``.

        Raises
        ------
        InvalidHandle
            If the id is stale, unknown or of a different kind.
        """
        with self._lock:
            return self._live_slot(handle_id, kind).resource

    def handle(self, handle_id: HandleId, kind: HandleKind | None = None) -> ResourceHandle:
        """Return the live :class:`ResourceHandle` record for ``handle_id``."""
        with self._lock:
            # _live_slot rejects empty slots.
            return cast(ResourceHandle, self._live_slot(handle_id, kind).handle)

    def release(self, handle_id: HandleId) -> Any:
        """Free the slot, bump its generation and return the resource."""
        with self._lock:
            slot = self._live_slot(handle_id, None)
            index = handle_id.index
            if index in self._free:
                raise KernelInvariantError(f"Slot {index} is live and on free list")
            resource = slot.resource
            slot.handle = None
            slot.resource = None
            slot.generation += 1
            self._free.append(index)
        logger.debug("Released handle %s", handle_id)
        return resource

    def owned_by(self, owner: str) -> list[ResourceHandle]:
        """Live handles belonging to ``owner``."""
        with self._lock:
            return [
                s.handle
                for s in self._slots
                if s.handle is not None and s.handle.owner == owner
            ]

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for s in self._slots if s.handle is not None)

    def _live_slot(self, handle_id: HandleId, kind: HandleKind | None) -> _Slot:
        if not isinstance(handle_id, HandleId):
            raise InvalidHandle(handle_id, "not a handle id")
        if not 0 <= handle_id.index < len(self._slots):
            raise InvalidHandle(handle_id)
        slot = self._slots[handle_id.index]
        if slot.handle is None or slot.generation != handle_id.generation:
            raise InvalidHandle(handle_id, "stale handle")
        if kind is not None and slot.handle.kind is not kind:
            raise InvalidHandle(
                handle_id, f"expected {kind} handle, got {slot.handle.kind}"
            )
        return slot
