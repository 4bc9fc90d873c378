# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Dense state-vector backend.

The state is a complex128 tensor of shape ``(2,) * n`` whose axis ``q`` is
qubit ``q``. Flattened in C order, qubit 0 is therefore the most
significant bit of the basis index.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from qhybrid.backends.base import renormalization_scale, validate_targets
from qhybrid.errors import KernelInvariantError
from qhybrid.utils.distributions import bitstrings_from_indices


logger = logging.getLogger(__name__)


class DenseBackend:
    """
    Exact state-vector simulator.

    Parameters
    ----------
    num_qubits : int
        Register width. Memory use is ``16 * 2**num_qubits`` bytes.
    normalization_tolerance : float
        Norm drift above this is rescaled after a gate.
    numerical_failure_tolerance : float
        Norm drift above this raises
        :class:`~qhybrid.errors.SimulationNumericalError`.
    """

    name = "dense"

    def __init__(
        self,
        num_qubits: int,
        normalization_tolerance: float = 1e-10,
        numerical_failure_tolerance: float = 1e-3,
    ) -> None:
        if num_qubits < 1:
            raise ValueError("num_qubits must be >= 1")
        self.num_qubits = num_qubits
        self.normalization_tolerance = normalization_tolerance
        self.numerical_failure_tolerance = numerical_failure_tolerance
        state = np.zeros((2,) * num_qubits, dtype=np.complex128)
        state[(0,) * num_qubits] = 1.0
        self._state: NDArray[np.complex128] | None = state

    @property
    def fidelity_estimate(self) -> float:
        return 1.0

    @property
    def state(self) -> NDArray[np.complex128]:
        if self._state is None:
            raise KernelInvariantError("Dense backend used after release")
        return self._state

    def apply_gate(self, matrix: NDArray[np.complex128], targets: Sequence[int]) -> None:
        targets = validate_targets(targets, self.num_qubits, matrix.shape[0])
        k = len(targets)
        gate = np.asarray(matrix, dtype=np.complex128).reshape((2,) * (2 * k))
        # Contract the gate's input axes with the target axes; the gate's
        # output axes land first and are moved back into place.
        out = np.tensordot(gate, self.state, axes=(list(range(k, 2 * k)), list(targets)))
        self._state = np.moveaxis(out, list(range(k)), list(targets))

        scale = renormalization_scale(
            self.norm(), self.normalization_tolerance, self.numerical_failure_tolerance
        )
        if scale is not None:
            self._state *= scale

    def norm(self) -> float:
        return float(np.linalg.norm(self.state))

    def probabilities(self) -> NDArray[np.float64]:
        """Born-rule probabilities over basis indices."""
        probs = np.abs(self.state.ravel()) ** 2
        return probs / probs.sum()

    def sample(self, shots: int, rng: np.random.Generator) -> NDArray[np.uint8]:
        if shots <= 0:
            return np.zeros((0, self.num_qubits), dtype=np.uint8)
        probs = self.probabilities()
        indices = rng.choice(probs.size, size=shots, p=probs)
        return bitstrings_from_indices(indices, self.num_qubits)

    def expectation_z(self, qubits: Sequence[int]) -> float:
        probs = np.abs(self.state) ** 2
        z = np.array([1.0, -1.0])
        for q in qubits:
            shape = [1] * self.num_qubits
            shape[q] = 2
            probs = probs * z.reshape(shape)
        return float(probs.sum() / (self.norm() ** 2))

    def statevector(self) -> NDArray[np.complex128]:
        """Copy of the flattened amplitudes, qubit 0 most significant."""
        return self.state.ravel().copy()

    def release(self) -> None:
        self._state = None

    def __repr__(self) -> str:
        return f"DenseBackend(num_qubits={self.num_qubits})"
