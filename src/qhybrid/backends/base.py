# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
State backend interface.

Both the dense state vector and the matrix product state implement
:class:`StateBackend`, so the execution engine drives them identically.
A backend is owned by exactly one job for the job's lifetime and is never
shared between threads concurrently.
"""

from __future__ import annotations

import logging
import math
from typing import Protocol, Sequence, runtime_checkable

import numpy as np
from numpy.typing import NDArray

from qhybrid.errors import SimulationNumericalError


logger = logging.getLogger(__name__)


@runtime_checkable
class StateBackend(Protocol):
    """
    Protocol for quantum state simulators.

    Attributes
    ----------
    name : str
        Backend identifier (``"dense"`` or ``"mps"``).
    num_qubits : int
        Register width.
    """

    name: str
    num_qubits: int

    @property
    def fidelity_estimate(self) -> float:
        """Lower-bound estimate of fidelity with the exact state."""
        ...

    def apply_gate(self, matrix: NDArray[np.complex128], targets: Sequence[int]) -> None:
        """Apply a ``2**k x 2**k`` unitary to ``k`` target qubits."""
        ...

    def norm(self) -> float:
        """Euclidean norm of the state."""
        ...

    def sample(self, shots: int, rng: np.random.Generator) -> NDArray[np.uint8]:
        """Draw ``shots`` independent outcomes as a ``(shots, n)`` bit array."""
        ...

    def expectation_z(self, qubits: Sequence[int]) -> float:
        """Exact expectation of the product of Z on ``qubits``."""
        ...

    def release(self) -> None:
        """Free the state. The backend is unusable afterwards."""
        ...


def renormalization_scale(
    norm: float, tolerance: float, failure_tolerance: float
) -> float | None:
    """
    Decide how to react to norm drift after a gate.

    Parameters
    ----------
    norm : float
        Current state norm.
    tolerance : float
        Drift above this is corrected by rescaling.
    failure_tolerance : float
        Drift above this is unrecoverable.

    Returns
    -------
    float or None
        Factor to multiply the state by, or ``None`` when no correction is
        needed.

    Raises
    ------
    SimulationNumericalError
        If the norm is not finite or drifted beyond ``failure_tolerance``.
    """
    if not math.isfinite(norm) or abs(norm - 1.0) > failure_tolerance:
        raise SimulationNumericalError(norm, failure_tolerance)
    if abs(norm - 1.0) > tolerance:
        logger.debug("Renormalizing state with norm %.15f", norm)
        return 1.0 / norm
    return None


def validate_targets(targets: Sequence[int], num_qubits: int, matrix_dim: int) -> tuple[int, ...]:
    """Check a target list against the register and the gate dimension."""
    t = tuple(int(q) for q in targets)
    if 2 ** len(t) != matrix_dim:
        raise ValueError(f"Gate of dimension {matrix_dim} applied to {len(t)} target(s)")
    if len(set(t)) != len(t) or any(not 0 <= q < num_qubits for q in t):
        raise ValueError(f"Invalid targets {t} for {num_qubits} qubit(s)")
    return t
