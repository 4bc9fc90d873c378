# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Execution engine: backend selection and incremental circuit runs.

The engine chooses a backend for a circuit's width and wraps the chosen
backend in a :class:`CircuitRun`, which the scheduler advances a bounded
number of gates at a time so jobs can be preempted between slices.
:meth:`ExecutionEngine.run` drives a whole program synchronously.

Backend Selection
-----------------
=========  ===========================================================
Hint       Result
=========  ===========================================================
``auto``   Dense when ``n <= dense_threshold``, else MPS when enabled
           and ``n <= max_mps_qubits``.
``dense``  Dense when ``n <= dense_threshold``.
``mps``    MPS when enabled and ``n <= max_mps_qubits``.
=========  ===========================================================

Anything else raises :class:`~qhybrid.errors.BackendCapacityExceeded`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import numpy as np
from numpy.typing import NDArray

from qhybrid.backends.base import StateBackend
from qhybrid.backends.dense import DenseBackend
from qhybrid.backends.mps import MPSBackend
from qhybrid.circuit.program import CircuitProgram
from qhybrid.config import Config, get_config
from qhybrid.errors import (
    BackendCapacityExceeded,
    CircuitValidationError,
    JobCancelled,
    KernelInvariantError,
)
from qhybrid.measurement.observables import Observable, ZObservable
from qhybrid.measurement.statistics import MeasurementStatistics
from qhybrid.utils.distributions import bits_to_string, tvd_from_counts


logger = logging.getLogger(__name__)

#: TVD above which dense and MPS samples of one program are reported as diverging.
CONSISTENCY_TVD = 0.05


class BackendKind(str, Enum):
    """Backend selection hint."""

    DENSE = "dense"
    MPS = "mps"
    AUTO = "auto"

    def __str__(self) -> str:
        return self.value


def parse_backend_hint(hint: BackendKind | str | None) -> BackendKind:
    """Normalize a user-supplied hint; ``None`` means ``AUTO``."""
    if hint is None:
        return BackendKind.AUTO
    try:
        return BackendKind(str(hint).strip().lower())
    except ValueError:
        raise CircuitValidationError(
            f"Unknown backend hint {hint!r}; expected one of "
            f"{', '.join(k.value for k in BackendKind)}"
        ) from None


# =============================================================================
# Circuit run
# =============================================================================


class CircuitRun:
    """
    One program bound to one backend, advanced incrementally.

    Parameters
    ----------
    program : CircuitProgram
        Fully bound program.
    backend : StateBackend
        Backend exclusively owned by this run.
    job_id : str, optional
        Reported in :class:`~qhybrid.errors.JobCancelled`.
    """

    def __init__(
        self, program: CircuitProgram, backend: StateBackend, job_id: str | None = None
    ) -> None:
        self.program = program
        self.backend = backend
        self.job_id = job_id or program.program_id
        self.position = 0
        self._released = False

    @property
    def done(self) -> bool:
        return self.position >= len(self.program.gates)

    @property
    def released(self) -> bool:
        return self._released

    def advance(
        self,
        max_gates: int | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> int:
        """
        Apply up to ``max_gates`` further gates.

        ``should_cancel`` is consulted before every gate.

        Returns
        -------
        int
            Gates applied by this call.

        Raises
        ------
        JobCancelled
            If ``should_cancel`` returns true at a gate boundary.
        SimulationNumericalError
            If normalization drift is unrecoverable.
        """
        self._check_live()
        gates = self.program.gates
        end = len(gates) if max_gates is None else min(len(gates), self.position + max_gates)
        applied = 0
        while self.position < end:
            if should_cancel is not None and should_cancel():
                raise JobCancelled(self.job_id)
            app = gates[self.position]
            self.backend.apply_gate(app.matrix(), app.targets)
            self.position += 1
            applied += 1
        return applied

    def sample(self, shots: int, rng: np.random.Generator) -> NDArray[np.uint8]:
        """Sample ``shots`` outcomes of the finished state."""
        self._check_live()
        if not self.done:
            raise KernelInvariantError(
                f"Sampling {self.job_id} before all gates were applied"
            )
        return self.backend.sample(shots, rng)

    def expectation(self, observable: Observable | None = None) -> float:
        self._check_live()
        return (observable or ZObservable()).exact(self.backend)

    def teardown(self) -> None:
        """Release the backend. Safe to call more than once."""
        if not self._released:
            self._released = True
            self.backend.release()

    def _check_live(self) -> None:
        if self._released:
            raise KernelInvariantError(f"Run {self.job_id} used after teardown")


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of a synchronous :meth:`ExecutionEngine.run`."""

    program_id: str
    backend: str
    shots: int
    statistics: MeasurementStatistics
    fidelity_estimate: float
    duration_s: float

    @property
    def counts(self) -> dict[str, int]:
        return self.statistics.outcome_counts

    def to_dict(self) -> dict[str, object]:
        return {
            "program_id": self.program_id,
            "backend": self.backend,
            "shots": self.shots,
            "fidelity_estimate": self.fidelity_estimate,
            "duration_s": self.duration_s,
            "statistics": self.statistics.to_dict(),
        }


@dataclass(frozen=True)
class BackendComparison:
    """Sampled counts of one program on both backends, and their distance."""

    dense: ExecutionResult
    mps: ExecutionResult
    tvd: float

    def consistent(self, tolerance: float = CONSISTENCY_TVD) -> bool:
        """True when the two sampled distributions are within ``tolerance`` TVD."""
        return self.tvd <= tolerance

    def to_dict(self) -> dict[str, object]:
        return {
            "tvd": self.tvd,
            "dense": self.dense.to_dict(),
            "mps": self.mps.to_dict(),
        }


# =============================================================================
# Engine
# =============================================================================


class ExecutionEngine:
    """
    Chooses backends and runs circuits.

    Parameters
    ----------
    config : Config, optional
        Backend limits and numerical tolerances. Defaults to
        :func:`~qhybrid.config.get_config`.
    """

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or get_config()

    def select_backend(
        self, qubit_count: int, hint: BackendKind | str | None = None
    ) -> BackendKind:
        """
        Resolve ``hint`` to a concrete backend for ``qubit_count`` qubits.

        Raises
        ------
        BackendCapacityExceeded
            If no allowed backend can hold ``qubit_count`` qubits.
        CircuitValidationError
            If ``hint`` is not a known backend name.
        """
        cfg = self.config
        kind = parse_backend_hint(hint)
        dense_ok = qubit_count <= cfg.dense_threshold
        mps_ok = cfg.enable_mps and qubit_count <= cfg.max_mps_qubits

        if kind is BackendKind.DENSE:
            if not dense_ok:
                raise BackendCapacityExceeded(qubit_count, cfg.dense_threshold, "dense")
            return BackendKind.DENSE
        if kind is BackendKind.MPS:
            if not mps_ok:
                limit = cfg.max_mps_qubits if cfg.enable_mps else 0
                raise BackendCapacityExceeded(qubit_count, limit, "mps")
            return BackendKind.MPS
        if dense_ok:
            return BackendKind.DENSE
        if mps_ok:
            return BackendKind.MPS
        limit = cfg.max_mps_qubits if cfg.enable_mps else cfg.dense_threshold
        raise BackendCapacityExceeded(qubit_count, limit, "auto")

    def create_backend(self, kind: BackendKind, qubit_count: int) -> StateBackend:
        cfg = self.config
        if kind is BackendKind.DENSE:
            return DenseBackend(
                qubit_count,
                normalization_tolerance=cfg.normalization_tolerance,
                numerical_failure_tolerance=cfg.numerical_failure_tolerance,
            )
        if kind is BackendKind.MPS:
            return MPSBackend(
                qubit_count,
                max_bond_dimension=cfg.max_bond_dimension,
                svd_cutoff=cfg.svd_cutoff,
                normalization_tolerance=cfg.normalization_tolerance,
                numerical_failure_tolerance=cfg.numerical_failure_tolerance,
            )
        raise KernelInvariantError(f"Cannot instantiate backend {kind}")

    def prepare(
        self,
        program: CircuitProgram,
        hint: BackendKind | str | None = None,
        job_id: str | None = None,
    ) -> CircuitRun:
        """
        Select and create a backend for ``program``.

        Raises
        ------
        CircuitValidationError
            If the program still has free parameters.
        BackendCapacityExceeded
            If the program is too wide for every allowed backend.
        """
        if not program.is_bound:
            names = ", ".join(p.name for p in program.free_parameters)
            raise CircuitValidationError(f"Program has unbound parameter(s): {names}")
        kind = self.select_backend(program.qubit_count, hint)
        backend = self.create_backend(kind, program.qubit_count)
        logger.debug(
            "Prepared %s backend for %s (%d qubits, %d gates)",
            kind,
            job_id or program.program_id,
            program.qubit_count,
            len(program),
        )
        return CircuitRun(program, backend, job_id)

    def run(
        self,
        program: CircuitProgram,
        shots: int,
        hint: BackendKind | str | None = None,
        *,
        rng: np.random.Generator | None = None,
        observable: Observable | None = None,
    ) -> ExecutionResult:
        """Execute ``program`` to completion and sample ``shots`` shots."""
        if shots < 1:
            raise CircuitValidationError(f"shots must be >= 1, got {shots}")
        rng = rng or np.random.default_rng(self.config.seed)
        start = time.perf_counter()
        run = self.prepare(program, hint)
        try:
            run.advance()
            counts: dict[str, int] = {}
            remaining = shots
            while remaining > 0:
                batch = min(remaining, self.config.shot_batch)
                for row in run.sample(batch, rng):
                    key = bits_to_string(row)
                    counts[key] = counts.get(key, 0) + 1
                remaining -= batch
            fidelity = run.backend.fidelity_estimate
            backend_name = run.backend.name
        finally:
            run.teardown()

        return ExecutionResult(
            program_id=program.program_id,
            backend=backend_name,
            shots=shots,
            statistics=MeasurementStatistics.from_counts(counts, observable),
            fidelity_estimate=fidelity,
            duration_s=time.perf_counter() - start,
        )

    def expectation(
        self,
        program: CircuitProgram,
        observable: Observable | None = None,
        hint: BackendKind | str | None = None,
    ) -> float:
        """Exact expectation of ``observable`` on the program's final state."""
        run = self.prepare(program, hint)
        try:
            run.advance()
            return run.expectation(observable)
        finally:
            run.teardown()

    def compare_backends(
        self,
        program: CircuitProgram,
        shots: int,
        *,
        rng: np.random.Generator | None = None,
    ) -> BackendComparison:
        """
        Run ``program`` on the dense and the MPS backend and compare counts.

        The total variation distance between the two sampled distributions
        bounds how far MPS truncation moved the outcome distribution, up to
        sampling noise of order ``1 / sqrt(shots)``.

        Raises
        ------
        BackendCapacityExceeded
            If the program is too wide for the dense backend, or MPS is
            disabled.
        """
        rng = rng or np.random.default_rng(self.config.seed)
        dense = self.run(program, shots, BackendKind.DENSE, rng=rng)
        mps = self.run(program, shots, BackendKind.MPS, rng=rng)
        tvd = tvd_from_counts(dense.counts, mps.counts)
        if tvd > CONSISTENCY_TVD:
            logger.warning(
                "Dense and MPS counts of %s differ by TVD %.4f (MPS fidelity %.6f)",
                program.program_id,
                tvd,
                mps.fidelity_estimate,
            )
        return BackendComparison(dense=dense, mps=mps, tvd=tvd)
