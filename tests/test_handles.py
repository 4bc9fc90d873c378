# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""Tests for the generational handle table."""

from __future__ import annotations

import threading

import pytest

from qhybrid.errors import InvalidHandle, KernelInvariantError
from qhybrid.kernel.handles import HandleId, HandleKind, HandleTable


class TestHandleTable:
    """Tests for allocation, resolution and release."""

    def test_allocate_and_resolve(self) -> None:
        table = HandleTable()
        handle = table.allocate(HandleKind.DEVICE, "p1", "device-object")
        assert handle.kind is HandleKind.DEVICE
        assert handle.owner == "p1"
        assert table.resolve(handle.id) == "device-object"
        assert table.resolve(handle.id, HandleKind.DEVICE) == "device-object"
        assert len(table) == 1

    def test_kind_mismatch(self) -> None:
        table = HandleTable()
        handle = table.allocate(HandleKind.JOB, "p1", object())
        with pytest.raises(InvalidHandle, match="expected device"):
            table.resolve(handle.id, HandleKind.DEVICE)

    def test_stale_after_release(self) -> None:
        table = HandleTable()
        handle = table.allocate(HandleKind.DEVICE, "p1", "x")
        assert table.release(handle.id) == "x"
        with pytest.raises(InvalidHandle, match="stale"):
            table.resolve(handle.id)
        with pytest.raises(InvalidHandle):
            table.release(handle.id)

    def test_reused_slot_gets_new_generation(self) -> None:
        table = HandleTable(initial_capacity=1)
        first = table.allocate(HandleKind.DEVICE, "p1", "a")
        table.release(first.id)
        second = table.allocate(HandleKind.DEVICE, "p1", "b")
        assert second.id.index == first.id.index
        assert second.id.generation == first.id.generation + 1
        with pytest.raises(InvalidHandle):
            table.resolve(first.id)
        assert table.resolve(second.id) == "b"

    def test_unknown_and_malformed_ids(self) -> None:
        table = HandleTable(initial_capacity=2)
        with pytest.raises(InvalidHandle):
            table.resolve(HandleId(99, 0))
        with pytest.raises(InvalidHandle, match="not a handle id"):
            table.resolve("0:0")  # type: ignore[arg-type]

    def test_grows_past_initial_capacity(self) -> None:
        table = HandleTable(initial_capacity=2)
        handles = [table.allocate(HandleKind.JOB, "p", i) for i in range(5)]
        assert [table.resolve(h.id) for h in handles] == list(range(5))
        assert len({h.id for h in handles}) == 5

    def test_owned_by(self) -> None:
        table = HandleTable()
        a = table.allocate(HandleKind.DEVICE, "p1", 1)
        table.allocate(HandleKind.DEVICE, "p2", 2)
        assert table.owned_by("p1") == [a]

    def test_corrupt_free_list_is_invariant_violation(self) -> None:
        table = HandleTable(initial_capacity=1)
        handle = table.allocate(HandleKind.DEVICE, "p1", 1)
        table._free.append(handle.id.index)
        with pytest.raises(KernelInvariantError):
            table.allocate(HandleKind.DEVICE, "p1", 2)

    def test_handle_record_lookup(self) -> None:
        table = HandleTable()
        handle = table.allocate(HandleKind.JOB, "p1", object())
        assert table.handle(handle.id) == handle
        assert table.handle(handle.id, HandleKind.JOB).owner == "p1"
        table.release(handle.id)
        with pytest.raises(InvalidHandle, match="stale"):
            table.handle(handle.id)

    def test_handle_id_str(self) -> None:
        assert str(HandleId(3, 7)) == "3:7"

    def test_concurrent_allocation_unique(self) -> None:
        table = HandleTable(initial_capacity=4)
        results: list = []
        lock = threading.Lock()

        def worker() -> None:
            local = [table.allocate(HandleKind.JOB, "p", None).id for _ in range(50)]
            with lock:
                results.extend(local)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(set(results)) == 200
        assert len(table) == 200
