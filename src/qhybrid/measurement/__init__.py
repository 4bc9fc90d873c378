# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""Measurement events, streams, observables and statistics."""

from qhybrid.measurement.aggregator import StreamAggregator
from qhybrid.measurement.events import MeasurementEvent, MeasurementStream
from qhybrid.measurement.observables import DiagonalHamiltonian, Observable, ZObservable
from qhybrid.measurement.statistics import MeasurementStatistics


__all__ = [
    "DiagonalHamiltonian",
    "MeasurementEvent",
    "MeasurementStatistics",
    "MeasurementStream",
    "Observable",
    "StreamAggregator",
    "ZObservable",
]
