# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Device time as a schedulable resource.

Every job slice needs a lease on its device. A device offers a fixed
number of concurrent leases (``slots``). When a lease is released and
jobs are waiting, it is handed directly to the longest waiter, which
gives round-robin sharing between jobs contending for one device.

The manager holds no lock of its own; the scheduler calls it under its
condition lock.
"""

from __future__ import annotations

import logging
from collections import deque


logger = logging.getLogger(__name__)


class DeviceTimeManager:
    """Lease bookkeeping for every registered device."""

    def __init__(self) -> None:
        self._slots: dict[str, int] = {}
        self._holders: dict[str, set[str]] = {}
        self._waiters: dict[str, deque[str]] = {}

    def register(self, device_id: str, slots: int = 1) -> None:
        if slots < 1:
            raise ValueError("A device needs at least one slot")
        self._slots[device_id] = slots
        self._holders.setdefault(device_id, set())
        self._waiters.setdefault(device_id, deque())

    def unregister(self, device_id: str) -> None:
        self._slots.pop(device_id, None)
        self._holders.pop(device_id, None)
        self._waiters.pop(device_id, None)

    def _ensure(self, device_id: str) -> None:
        if device_id not in self._slots:
            self.register(device_id)

    def try_acquire(self, device_id: str, entity_id: str) -> bool:
        """
        Take a lease for ``entity_id`` or join the waiter queue.

        Returns
        -------
        bool
            True if ``entity_id`` holds a lease on return.
        """
        self._ensure(device_id)
        holders = self._holders[device_id]
        waiters = self._waiters[device_id]
        if entity_id in holders:
            return True
        free = len(holders) < self._slots[device_id]
        if free and (not waiters or waiters[0] == entity_id):
            if waiters and waiters[0] == entity_id:
                waiters.popleft()
            holders.add(entity_id)
            return True
        if entity_id not in waiters:
            waiters.append(entity_id)
            logger.debug("%s waiting for device %s", entity_id, device_id)
        return False

    def release(self, device_id: str, entity_id: str) -> str | None:
        """
        Give up ``entity_id``'s lease.

        Returns
        -------
        str or None
            The waiter the lease was handed to, which the scheduler must
            make ready.
        """
        holders = self._holders.get(device_id)
        if holders is None or entity_id not in holders:
            return None
        holders.discard(entity_id)
        waiters = self._waiters[device_id]
        if waiters and len(holders) < self._slots[device_id]:
            nxt = waiters.popleft()
            holders.add(nxt)
            logger.debug("Device %s lease handed %s -> %s", device_id, entity_id, nxt)
            return nxt
        return None

    def forget(self, device_id: str, entity_id: str) -> str | None:
        """Drop ``entity_id`` from the waiters and release any lease it holds."""
        waiters = self._waiters.get(device_id)
        if waiters is not None and entity_id in waiters:
            waiters.remove(entity_id)
        return self.release(device_id, entity_id)

    def holders(self, device_id: str) -> frozenset[str]:
        return frozenset(self._holders.get(device_id, ()))

    def waiters(self, device_id: str) -> tuple[str, ...]:
        return tuple(self._waiters.get(device_id, ()))
