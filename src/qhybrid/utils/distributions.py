# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Probability distribution utilities for measurement outcomes.

This module provides vectorized helpers for working with sampled
outcome distributions: normalization, distance metrics, Shannon entropy
and conversion between basis indices and bitstrings.
"""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import NDArray


logger = logging.getLogger(__name__)


def normalize_counts(counts: dict[str, int]) -> dict[str, float]:
    """
    Normalize raw shot counts into probabilities.

    Parameters
    ----------
    counts : dict
        Raw counts mapping outcome bitstrings to shot counts.

    Returns
    -------
    dict
        Probabilities in [0, 1]. Empty dict if total is zero.
    """
    total = sum(counts.values())
    if total <= 0:
        return {}
    return {k: v / total for k, v in counts.items()}


def counts_to_arrays(
    counts_a: dict[str, int],
    counts_b: dict[str, int],
) -> tuple[NDArray[np.float64], NDArray[np.float64], list[str]]:
    """
    Convert two count dictionaries to aligned probability arrays.

    Parameters
    ----------
    counts_a : dict
        First count distribution.
    counts_b : dict
        Second count distribution.

    Returns
    -------
    p_a : ndarray
        Probability array for counts_a.
    p_b : ndarray
        Probability array for counts_b.
    keys : list of str
        Sorted outcome keys (shared order).
    """
    all_keys = sorted(set(counts_a) | set(counts_b))
    if not all_keys:
        return np.array([], dtype=np.float64), np.array([], dtype=np.float64), []

    def _probs(counts: dict[str, int]) -> NDArray[np.float64]:
        total = sum(counts.values())
        if total <= 0:
            return np.zeros(len(all_keys), dtype=np.float64)
        return np.array([counts.get(k, 0) / total for k in all_keys], dtype=np.float64)

    return _probs(counts_a), _probs(counts_b), all_keys


def total_variation_distance(
    p: dict[str, float] | NDArray[np.float64],
    q: dict[str, float] | NDArray[np.float64],
) -> float:
    """
    Compute Total Variation Distance between two distributions.

    The TVD is defined as::

        TVD(p, q) = 0.5 * sum(|p(x) - q(x)|)

    Parameters
    ----------
    p : dict or ndarray
        First probability distribution.
    q : dict or ndarray
        Second probability distribution (must be same type as p).

    Returns
    -------
    float
        TVD in [0, 1]. 0 = identical, 1 = disjoint support.

    Raises
    ------
    TypeError
        If p and q are not both dicts or both ndarrays.
    """
    if isinstance(p, np.ndarray) and isinstance(q, np.ndarray):
        return 0.5 * float(np.sum(np.abs(p - q)))

    if isinstance(p, dict) and isinstance(q, dict):
        all_keys = set(p) | set(q)
        if not all_keys:
            return 0.0
        return 0.5 * sum(abs(p.get(k, 0.0) - q.get(k, 0.0)) for k in all_keys)

    raise TypeError("Both p and q must be either dicts or ndarrays")


def tvd_from_counts(counts_a: dict[str, int], counts_b: dict[str, int]) -> float:
    """Compute TVD directly from count dictionaries."""
    p_a, p_b, _ = counts_to_arrays(counts_a, counts_b)
    if p_a.size == 0:
        return 0.0
    return total_variation_distance(p_a, p_b)


def shannon_entropy(counts: dict[str, int]) -> float:
    """
    Shannon entropy, in bits, of the empirical distribution of ``counts``.

    Parameters
    ----------
    counts : dict
        Outcome counts. Zero-count outcomes contribute nothing.

    Returns
    -------
    float
        Entropy in ``[0, log2(len(counts))]``; ``0.0`` for empty counts.
    """
    values = np.fromiter(counts.values(), dtype=np.float64, count=len(counts))
    total = values.sum()
    if total <= 0:
        return 0.0
    p = values[values > 0] / total
    return float(-np.sum(p * np.log2(p)) + 0.0)


def bitstrings_from_indices(
    indices: NDArray[np.int64], num_qubits: int
) -> NDArray[np.uint8]:
    """
    Expand basis indices into bit rows, qubit 0 first (most significant).

    Parameters
    ----------
    indices : ndarray
        Basis indices in ``[0, 2**num_qubits)``.
    num_qubits : int
        Register width.

    Returns
    -------
    ndarray
        ``uint8`` array of shape ``(len(indices), num_qubits)``.
    """
    shifts = np.arange(num_qubits - 1, -1, -1, dtype=np.int64)
    return ((np.asarray(indices, dtype=np.int64)[:, None] >> shifts) & 1).astype(
        np.uint8
    )


def bits_to_string(bits: tuple[int, ...] | NDArray[np.uint8]) -> str:
    """Render a bit tuple as a bitstring, qubit 0 leftmost."""
    return "".join("1" if b else "0" for b in bits)
