# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""Incremental statistics over a stream of measurement events."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from typing import Iterable

from qhybrid.measurement.events import MeasurementEvent
from qhybrid.measurement.observables import Observable
from qhybrid.measurement.statistics import MeasurementStatistics


logger = logging.getLogger(__name__)


class StreamAggregator:
    """
    Accumulate outcome counts and emit a snapshot every ``emit_interval``
    events.

    Parameters
    ----------
    observable : Observable, optional
        Observable for the snapshot moments.
    emit_interval : int
        Events between snapshots; ``0`` never emits from :meth:`add`.
    """

    def __init__(self, observable: Observable | None = None, emit_interval: int = 0) -> None:
        self.observable = observable
        self.emit_interval = max(emit_interval, 0)
        self._counts: Counter[str] = Counter()
        self._seen = 0
        self._lock = threading.Lock()

    def add(self, events: Iterable[MeasurementEvent]) -> list[MeasurementStatistics]:
        """Fold ``events`` in; return the snapshots whose boundary was crossed."""
        snapshots: list[MeasurementStatistics] = []
        with self._lock:
            for event in events:
                self._counts[event.bitstring] += 1
                self._seen += 1
                if self.emit_interval and self._seen % self.emit_interval == 0:
                    snapshots.append(
                        MeasurementStatistics.from_counts(self._counts, self.observable)
                    )
        if snapshots:
            logger.debug("Aggregator emitted %d snapshot(s) at %d events", len(snapshots), self._seen)
        return snapshots

    def snapshot(self) -> MeasurementStatistics:
        with self._lock:
            return MeasurementStatistics.from_counts(self._counts, self.observable)

    @property
    def seen(self) -> int:
        with self._lock:
            return self._seen

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
            self._seen = 0
