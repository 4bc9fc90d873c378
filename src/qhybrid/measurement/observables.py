# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Diagonal observables evaluated on measured bitstrings.

All observables here are diagonal in the computational basis, so they can
be estimated from shot outcomes and computed exactly from a backend's
``expectation_z``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Sequence, runtime_checkable

import numpy as np
from numpy.typing import NDArray


if TYPE_CHECKING:
    from qhybrid.backends.base import StateBackend


@runtime_checkable
class Observable(Protocol):
    """Anything with a per-shot value and an exact backend expectation."""

    @property
    def name(self) -> str: ...

    def evaluate(self, bits: NDArray[np.uint8]) -> NDArray[np.float64]:
        """Per-shot eigenvalues for a ``(shots, n)`` bit array."""
        ...

    def exact(self, backend: StateBackend) -> float:
        """Exact expectation on the backend's current state."""
        ...


def _parity(bits: NDArray[np.uint8], qubits: Sequence[int] | None) -> NDArray[np.float64]:
    if bits.size == 0:
        return np.zeros(bits.shape[0], dtype=np.float64)
    cols = bits if qubits is None else bits[:, list(qubits)]
    ones = np.sum(cols, axis=1, dtype=np.int64)
    return 1.0 - 2.0 * (ones % 2)


@dataclass(frozen=True)
class ZObservable:
    """
    Product of Pauli Z on ``qubits``; all qubits when ``qubits`` is None.

    The eigenvalue of a bitstring is ``(-1) ** (number of ones)`` over the
    selected qubits.
    """

    qubits: tuple[int, ...] | None = None

    @property
    def name(self) -> str:
        if self.qubits is None:
            return "Z_all"
        return "".join(f"Z{q}" for q in self.qubits) or "I"

    def evaluate(self, bits: NDArray[np.uint8]) -> NDArray[np.float64]:
        return _parity(bits, self.qubits)

    def exact(self, backend: StateBackend) -> float:
        qubits = range(backend.num_qubits) if self.qubits is None else self.qubits
        return backend.expectation_z(list(qubits))


@dataclass(frozen=True)
class DiagonalHamiltonian:
    """
    Weighted sum of Z-string terms plus a constant offset.

    Attributes
    ----------
    terms : tuple of (float, tuple of int)
        ``(coefficient, qubits)`` pairs; an empty qubit tuple is identity.
    offset : float
        Constant added to every shot.
    label : str
        Display name.
    """

    terms: tuple[tuple[float, tuple[int, ...]], ...]
    offset: float = 0.0
    label: str = "hamiltonian"

    @property
    def name(self) -> str:
        return self.label

    @classmethod
    def ising_zz(cls, num_qubits: int, coupling: float = 1.0) -> DiagonalHamiltonian:
        """``coupling * sum_i Z_i Z_{i+1}`` over an open chain."""
        terms = tuple((float(coupling), (i, i + 1)) for i in range(num_qubits - 1))
        return cls(terms=terms, label="ising_zz")

    def evaluate(self, bits: NDArray[np.uint8]) -> NDArray[np.float64]:
        values = np.full(bits.shape[0], self.offset, dtype=np.float64)
        for coeff, qubits in self.terms:
            values += coeff * _parity(bits, qubits)
        return values

    def exact(self, backend: StateBackend) -> float:
        return self.offset + sum(
            coeff * backend.expectation_z(list(qubits)) for coeff, qubits in self.terms
        )
