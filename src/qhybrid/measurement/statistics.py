# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Measurement statistics.

:class:`MeasurementStatistics` summarizes sampled outcomes: outcome
counts, the sample mean and sample variance of an observable, and the
Shannon entropy of the empirical outcome distribution.

Notes
-----
- The variance is the unbiased sample variance (``ddof=1``); it is ``0``
  for fewer than two shots.
- The entropy is in bits and lies in ``[0, min(num_qubits, log2(shots))]``.
- The default observable is Z on every qubit (the parity of the outcome).
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

import numpy as np

from qhybrid.measurement.events import MeasurementEvent
from qhybrid.measurement.observables import Observable, ZObservable
from qhybrid.utils.distributions import normalize_counts, shannon_entropy


def _bits_of(outcomes: list[str]) -> np.ndarray:
    return (np.array([list(o) for o in outcomes]) == "1").astype(np.uint8)


@dataclass(frozen=True)
class MeasurementStatistics:
    """
    Summary of sampled outcomes.

    Attributes
    ----------
    shot_count : int
        Number of shots summarized. Equals the sum of ``outcome_counts``.
    expectation_value : float
        Sample mean of the observable.
    variance : float
        Unbiased sample variance of the observable.
    entropy : float
        Shannon entropy of the empirical distribution, in bits.
    outcome_counts : dict
        Bitstring (qubit 0 leftmost) to count.
    observable : str
        Name of the observable the moments refer to.
    """

    shot_count: int
    expectation_value: float
    variance: float
    entropy: float
    outcome_counts: dict[str, int] = field(default_factory=dict)
    observable: str = "Z_all"

    @classmethod
    def from_counts(
        cls, counts: Mapping[str, int], observable: Observable | None = None
    ) -> MeasurementStatistics:
        """
        Build statistics from outcome counts.

        Parameters
        ----------
        counts : mapping
            Bitstring to count. Zero counts are dropped.
        observable : Observable, optional
            Defaults to :class:`ZObservable` over every qubit.
        """
        observable = observable or ZObservable()
        clean = {k: int(v) for k, v in counts.items() if v > 0}
        total = sum(clean.values())
        if total == 0:
            return cls(0, 0.0, 0.0, 0.0, {}, observable.name)

        outcomes = sorted(clean)
        weights = np.array([clean[o] for o in outcomes], dtype=np.float64)
        values = observable.evaluate(_bits_of(outcomes))
        mean = float(np.dot(weights, values) / total)
        if total > 1:
            variance = float(np.dot(weights, (values - mean) ** 2) / (total - 1))
        else:
            variance = 0.0

        return cls(
            shot_count=total,
            expectation_value=mean,
            variance=variance,
            entropy=shannon_entropy(clean),
            outcome_counts=clean,
            observable=observable.name,
        )

    @classmethod
    def from_events(
        cls, events: Iterable[MeasurementEvent], observable: Observable | None = None
    ) -> MeasurementStatistics:
        """Build statistics from measurement events."""
        return cls.from_counts(Counter(e.bitstring for e in events), observable)

    @property
    def std_error(self) -> float:
        """Standard error of the mean."""
        if self.shot_count == 0:
            return 0.0
        return math.sqrt(self.variance / self.shot_count)

    def probabilities(self) -> dict[str, float]:
        return normalize_counts(self.outcome_counts)

    def most_frequent(self) -> str | None:
        """Most frequent outcome; ties go to the smallest bitstring."""
        if not self.outcome_counts:
            return None
        return min(self.outcome_counts, key=lambda k: (-self.outcome_counts[k], k))

    def to_dict(self) -> dict[str, Any]:
        return {
            "shot_count": self.shot_count,
            "expectation_value": self.expectation_value,
            "variance": self.variance,
            "std_error": self.std_error,
            "entropy": self.entropy,
            "observable": self.observable,
            "outcome_counts": dict(sorted(self.outcome_counts.items())),
        }
