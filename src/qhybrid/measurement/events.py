# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Measurement events and per-job measurement streams.

A :class:`MeasurementStream` receives exactly one event per shot, in shot
order. Readers drain it once through :meth:`MeasurementStream.drain`;
:meth:`MeasurementStream.replay` copies every event seen so far into an
explicit caller buffer without moving the read cursor.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, MutableSequence

import numpy as np
from numpy.typing import NDArray

from qhybrid.errors import KernelInvariantError
from qhybrid.utils.common import monotonic_ns
from qhybrid.utils.distributions import bits_to_string


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MeasurementEvent:
    """
    Outcome of a single shot.

    Attributes
    ----------
    job_id : str
        Job that produced the shot.
    shot_index : int
        Zero-based shot number, unique within the job.
    bits : tuple of int
        Measured bits, qubit 0 first.
    timestamp_ns : int
        Monotonic time the batch containing the shot was recorded.
    """

    job_id: str
    shot_index: int
    bits: tuple[int, ...]
    timestamp_ns: int

    @property
    def bitstring(self) -> str:
        return bits_to_string(self.bits)

    def to_dict(self) -> dict[str, object]:
        return {
            "job_id": self.job_id,
            "shot_index": self.shot_index,
            "bits": self.bitstring,
            "timestamp_ns": self.timestamp_ns,
        }


class MeasurementStream:
    """
    Append-only, finite stream of one job's measurement events.

    Parameters
    ----------
    job_id : str
        Owning job.
    total_shots : int
        Number of events the stream will hold once complete.
    """

    def __init__(self, job_id: str, total_shots: int) -> None:
        self.job_id = job_id
        self.total_shots = total_shots
        self._events: list[MeasurementEvent] = []
        self._counts: Counter[str] = Counter()
        self._cursor = 0
        self._closed = False
        self._cond = threading.Condition()

    def append_bits(self, bits: NDArray[np.uint8]) -> list[MeasurementEvent]:
        """
        Record a batch of shots as consecutive events.

        Raises
        ------
        KernelInvariantError
            If the stream is closed or would exceed ``total_shots``.
        """
        stamp = monotonic_ns()
        with self._cond:
            if self._closed:
                raise KernelInvariantError(f"Append to closed stream of {self.job_id}")
            start = len(self._events)
            if start + len(bits) > self.total_shots:
                raise KernelInvariantError(
                    f"Stream of {self.job_id} would exceed {self.total_shots} shots"
                )
            batch = [
                MeasurementEvent(self.job_id, start + i, tuple(int(b) for b in row), stamp)
                for i, row in enumerate(bits)
            ]
            self._events.extend(batch)
            self._counts.update(e.bitstring for e in batch)
            self._cond.notify_all()
        return batch

    def drain(self, max_events: int | None = None) -> list[MeasurementEvent]:
        """Take unread events, oldest first; each event is returned once."""
        with self._cond:
            end = len(self._events)
            if max_events is not None:
                end = min(end, self._cursor + max(max_events, 0))
            events = self._events[self._cursor : end]
            self._cursor = end
            return events

    def replay(self, out_buffer: MutableSequence[MeasurementEvent], start: int = 0) -> int:
        """Append events ``start..`` (read or not) to ``out_buffer``."""
        with self._cond:
            events = self._events[start:]
        out_buffer.extend(events)
        return len(events)

    def counts(self) -> dict[str, int]:
        """Outcome counts over every recorded event."""
        with self._cond:
            return dict(self._counts)

    def events(self) -> list[MeasurementEvent]:
        with self._cond:
            return list(self._events)

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the stream is complete or closed."""
        with self._cond:
            return self._cond.wait_for(
                lambda: self._closed or len(self._events) >= self.total_shots, timeout
            )

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    @property
    def complete(self) -> bool:
        with self._cond:
            return len(self._events) >= self.total_shots

    @property
    def pending(self) -> int:
        """Events recorded but not yet drained."""
        with self._cond:
            return len(self._events) - self._cursor

    def __len__(self) -> int:
        with self._cond:
            return len(self._events)

    def __repr__(self) -> str:
        return (
            f"MeasurementStream(job_id={self.job_id!r}, "
            f"recorded={len(self)}/{self.total_shots}, closed={self.closed})"
        )


def events_to_bits(events: Iterable[MeasurementEvent], num_qubits: int) -> NDArray[np.uint8]:
    """Stack event bits into a ``(shots, num_qubits)`` array."""
    rows = [e.bits for e in events]
    if not rows:
        return np.zeros((0, num_qubits), dtype=np.uint8)
    return np.asarray(rows, dtype=np.uint8)
