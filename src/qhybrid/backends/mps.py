# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Matrix product state backend.

The state is a chain of rank-3 tensors ``A[q]`` of shape
``(left_bond, 2, right_bond)``, one per qubit, kept in mixed canonical
form around an orthogonality center: every tensor left of the center is a
left isometry and every tensor right of it is a right isometry, so the
state norm is the norm of the center tensor alone.

Gates
-----
Single-qubit gates act on one tensor and preserve canonical form.
A k-qubit gate first routes its targets onto adjacent sites with SWAPs,
contracts the k tensors, applies the gate and splits the block again
left to right with truncated SVDs. The routing SWAPs are then undone.

Truncation
----------
At every split, singular values below ``svd_cutoff * s_max`` are dropped,
then at most ``max_bond_dimension`` are kept. The discarded weight
``eps`` (fraction of squared singular values) multiplies the fidelity
estimate by ``1 - eps`` and the kept values are rescaled so the norm is
preserved.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from qhybrid.backends.base import renormalization_scale, validate_targets
from qhybrid.circuit.gates import GateKind, get_gate
from qhybrid.errors import KernelInvariantError, SimulationNumericalError


logger = logging.getLogger(__name__)

Tensor = NDArray[np.complex128]

_SWAP = get_gate(GateKind.SWAP).matrix()


class MPSBackend:
    """
    Bond-dimension-bounded MPS simulator.

    Parameters
    ----------
    num_qubits : int
        Register width.
    max_bond_dimension : int or None
        Cap on every bond. ``None`` keeps all singular values above the
        cutoff, which makes the simulation exact.
    svd_cutoff : float
        Relative singular value cutoff.
    normalization_tolerance : float
        Norm drift above this is rescaled after a gate.
    numerical_failure_tolerance : float
        Norm drift above this raises
        :class:`~qhybrid.errors.SimulationNumericalError`.
    """

    name = "mps"

    def __init__(
        self,
        num_qubits: int,
        max_bond_dimension: int | None = 64,
        svd_cutoff: float = 1e-12,
        normalization_tolerance: float = 1e-10,
        numerical_failure_tolerance: float = 1e-3,
    ) -> None:
        if num_qubits < 1:
            raise ValueError("num_qubits must be >= 1")
        self.num_qubits = num_qubits
        self.max_bond_dimension = max_bond_dimension
        self.svd_cutoff = svd_cutoff
        self.normalization_tolerance = normalization_tolerance
        self.numerical_failure_tolerance = numerical_failure_tolerance

        tensors = []
        for _ in range(num_qubits):
            t = np.zeros((1, 2, 1), dtype=np.complex128)
            t[0, 0, 0] = 1.0
            tensors.append(t)
        self._tensors: list[Tensor] | None = tensors
        self._center = 0
        self._fidelity = 1.0
        self.truncation_count = 0

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def tensors(self) -> list[Tensor]:
        if self._tensors is None:
            raise KernelInvariantError("MPS backend used after release")
        return self._tensors

    @property
    def fidelity_estimate(self) -> float:
        return self._fidelity

    @property
    def center(self) -> int:
        return self._center

    def bond_dimensions(self) -> list[int]:
        """Dimensions of the ``n - 1`` internal bonds."""
        return [t.shape[2] for t in self.tensors[:-1]]

    def max_bond(self) -> int:
        return max(self.bond_dimensions(), default=1)

    def norm(self) -> float:
        return float(np.linalg.norm(self.tensors[self._center]))

    # -------------------------------------------------------------------------
    # Canonical form
    # -------------------------------------------------------------------------

    def _move_center(self, site: int) -> None:
        tensors = self.tensors
        while self._center < site:
            c = self._center
            dl, _, dr = tensors[c].shape
            q, r = np.linalg.qr(tensors[c].reshape(dl * 2, dr))
            tensors[c] = q.reshape(dl, 2, q.shape[1])
            tensors[c + 1] = np.einsum("ab,bsc->asc", r, tensors[c + 1])
            self._center = c + 1
        while self._center > site:
            c = self._center
            dl, _, dr = tensors[c].shape
            q, r = np.linalg.qr(tensors[c].reshape(dl, 2 * dr).T)
            tensors[c] = q.T.reshape(q.shape[1], 2, dr)
            tensors[c - 1] = np.einsum("asb,bc->asc", tensors[c - 1], r.T)
            self._center = c - 1

    def _truncated_svd(self, m: NDArray[np.complex128]) -> tuple[Tensor, Tensor, Tensor]:
        try:
            u, s, vh = np.linalg.svd(m, full_matrices=False)
        except np.linalg.LinAlgError as exc:
            raise SimulationNumericalError(float("nan"), self.numerical_failure_tolerance) from exc

        total = float(np.sum(s**2))
        if total == 0.0 or not np.isfinite(total):
            raise SimulationNumericalError(float(np.sqrt(total)), self.numerical_failure_tolerance)

        keep = max(1, int(np.count_nonzero(s > self.svd_cutoff * s[0])))
        capped = False
        if self.max_bond_dimension is not None and keep > self.max_bond_dimension:
            keep = self.max_bond_dimension
            capped = True

        if keep < s.size:
            kept = float(np.sum(s[:keep] ** 2))
            eps = 1.0 - kept / total
            if eps > 0.0:
                self._fidelity *= 1.0 - eps
                self.truncation_count += 1
                if capped:
                    logger.warning(
                        "Bond dimension capped at %d (discarded weight %.3e, "
                        "fidelity estimate %.6f)",
                        keep,
                        eps,
                        self._fidelity,
                    )
            s = s[:keep] * np.sqrt(total / kept)
            u = u[:, :keep]
            vh = vh[:keep, :]
        return u, s, vh

    # -------------------------------------------------------------------------
    # Gates
    # -------------------------------------------------------------------------

    def _apply_local(self, matrix: NDArray[np.complex128], site: int) -> None:
        self.tensors[site] = np.einsum("ts,asb->atb", matrix, self.tensors[site])

    def _apply_block(self, matrix: NDArray[np.complex128], first: int, k: int) -> None:
        """Apply a ``2**k`` gate to sites ``first .. first + k - 1``."""
        tensors = self.tensors
        self._move_center(first)

        theta = tensors[first]
        for j in range(1, k):
            theta = np.tensordot(theta, tensors[first + j], axes=([theta.ndim - 1], [0]))
        dl = theta.shape[0]
        dr = theta.shape[-1]
        theta = theta.reshape(dl, 2**k, dr)
        theta = np.einsum("ts,asb->atb", matrix, theta)

        left = dl
        rest = theta.reshape(dl, -1)
        for j in range(k - 1):
            m = rest.reshape(left * 2, -1)
            u, s, vh = self._truncated_svd(m)
            tensors[first + j] = u.reshape(left, 2, u.shape[1])
            left = u.shape[1]
            rest = s[:, None] * vh
        tensors[first + k - 1] = rest.reshape(left, 2, dr)
        self._center = first + k - 1

    def _swap_adjacent(self, site: int) -> None:
        self._apply_block(_SWAP, site, 2)

    def apply_gate(self, matrix: NDArray[np.complex128], targets: Sequence[int]) -> None:
        targets = validate_targets(targets, self.num_qubits, matrix.shape[0])
        matrix = np.asarray(matrix, dtype=np.complex128)
        k = len(targets)

        if k == 1:
            self._apply_local(matrix, targets[0])
        else:
            order = sorted(range(k), key=lambda j: targets[j])
            sites = [targets[j] for j in order]
            if order != list(range(k)):
                perm = order + [k + j for j in order]
                matrix = (
                    matrix.reshape((2,) * (2 * k)).transpose(perm).reshape(2**k, 2**k)
                )

            # Route sorted targets onto first, first+1, ... with adjacent swaps.
            first = sites[0]
            swaps: list[int] = []
            for j in range(1, k):
                pos = sites[j]
                while pos > first + j:
                    self._swap_adjacent(pos - 1)
                    swaps.append(pos - 1)
                    pos -= 1

            self._apply_block(matrix, first, k)

            for site in reversed(swaps):
                self._swap_adjacent(site)

        scale = renormalization_scale(
            self.norm(), self.normalization_tolerance, self.numerical_failure_tolerance
        )
        if scale is not None:
            self.tensors[self._center] = self.tensors[self._center] * scale

    # -------------------------------------------------------------------------
    # Measurement
    # -------------------------------------------------------------------------

    def sample(self, shots: int, rng: np.random.Generator) -> NDArray[np.uint8]:
        """
        Sequential sampling, left to right, vectorized over shots.

        With the center on site 0 every other tensor is a right isometry,
        so the marginal of each site given the bits drawn so far is read
        directly off the propagated left vectors.
        """
        n = self.num_qubits
        bits = np.zeros((max(shots, 0), n), dtype=np.uint8)
        if shots <= 0:
            return bits

        self._move_center(0)
        left = np.ones((shots, 1), dtype=np.complex128)
        for q, a in enumerate(self.tensors):
            v = np.einsum("na,asb->nsb", left, a)
            weights = np.sum(np.abs(v) ** 2, axis=2)
            totals = weights.sum(axis=1)
            p1 = np.divide(weights[:, 1], totals, out=np.zeros(shots), where=totals > 0)
            outcome = (rng.random(shots) < p1).astype(np.uint8)
            bits[:, q] = outcome
            chosen = v[np.arange(shots), outcome, :]
            norms = np.sqrt(weights[np.arange(shots), outcome])
            norms[norms == 0] = 1.0
            left = chosen / norms[:, None]
        return bits

    def expectation_z(self, qubits: Sequence[int]) -> float:
        z_sites = set()
        for q in qubits:
            z_sites ^= {q}
        z = np.array([1.0, -1.0], dtype=np.complex128)

        env = np.ones((1, 1), dtype=np.complex128)
        norm_env = np.ones((1, 1), dtype=np.complex128)
        for q, a in enumerate(self.tensors):
            op = a * z[None, :, None] if q in z_sites else a
            env = np.einsum("ab,asc,bsd->cd", env, a.conj(), op)
            norm_env = np.einsum("ab,asc,bsd->cd", norm_env, a.conj(), a)
        return float(env[0, 0].real / norm_env[0, 0].real)

    def to_statevector(self) -> NDArray[np.complex128]:
        """Contract the chain into a dense vector, qubit 0 most significant."""
        psi = self.tensors[0]
        for a in self.tensors[1:]:
            psi = np.tensordot(psi, a, axes=([psi.ndim - 1], [0]))
        return psi.reshape(-1)

    def release(self) -> None:
        self._tensors = None

    def __repr__(self) -> str:
        return (
            f"MPSBackend(num_qubits={self.num_qubits}, "
            f"max_bond_dimension={self.max_bond_dimension})"
        )
