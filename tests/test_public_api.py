# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Tests for qhybrid public Python API.

Tests the user-facing API exposed through the qhybrid package.
"""

from __future__ import annotations

import pytest


class TestModuleExports:
    """Tests that public API exports are correct."""

    def test_top_level_exports(self) -> None:
        """All documented exports are accessible."""
        import qhybrid

        for name in qhybrid.__all__:
            assert hasattr(qhybrid, name), name

    def test_lazy_attribute_is_cached(self) -> None:
        import qhybrid
        from qhybrid.kernel.session import KernelSession

        assert qhybrid.KernelSession is KernelSession
        assert "KernelSession" in vars(qhybrid)

    def test_unknown_attribute(self) -> None:
        import qhybrid

        with pytest.raises(AttributeError):
            qhybrid.does_not_exist  # noqa: B018

    def test_dir(self) -> None:
        import qhybrid

        assert "run_circuit" in dir(qhybrid)
        assert "ExecutionEngine" in dir(qhybrid)

    def test_version(self) -> None:
        """Version is accessible."""
        import qhybrid

        assert isinstance(qhybrid.__version__, str)

    def test_errors_share_base(self) -> None:
        from qhybrid import errors

        for name in ("PermissionDenied", "ChannelFull", "JobTimeout", "SimulationNumericalError"):
            assert issubclass(getattr(errors, name), errors.QHybridError)


class TestRunCircuit:
    """Tests for the one-call entry point."""

    def test_bell(self, config) -> None:
        from qhybrid import CircuitBuilder, run_circuit

        program = CircuitBuilder(2).h(0).cx(0, 1).build("bell")
        stats = run_circuit(program, shots=400, config=config)
        assert stats.shot_count == 400
        assert set(stats.outcome_counts) <= {"00", "11"}

    def test_seed_override(self, config) -> None:
        from qhybrid import CircuitBuilder, run_circuit

        program = CircuitBuilder(1).h(0).build()
        a = run_circuit(program, shots=100, seed=5, config=config)
        b = run_circuit(program, shots=100, seed=5, config=config)
        assert a.outcome_counts == b.outcome_counts

    def test_observable(self, config) -> None:
        from qhybrid import DiagonalHamiltonian, parse_circuit, run_circuit

        program = parse_circuit("h 0\ncx 0 1\ncx 1 2")
        stats = run_circuit(
            program, shots=300, observable=DiagonalHamiltonian.ising_zz(3), config=config
        )
        assert stats.expectation_value == pytest.approx(2.0)

    def test_errors_propagate(self, config) -> None:
        from qhybrid import CircuitBuilder, run_circuit
        from qhybrid.errors import BackendCapacityExceeded

        program = CircuitBuilder(14).h(0).build()
        with pytest.raises(BackendCapacityExceeded):
            run_circuit(program, shots=1, backend="dense", config=config)
