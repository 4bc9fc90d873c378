# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""Tests for the gate registry, circuit programs and the text format."""

from __future__ import annotations

import math

import numpy as np
import pytest

from qhybrid.circuit import (
    GATE_REGISTRY,
    CircuitBuilder,
    CircuitProgram,
    GateKind,
    Parameter,
    get_gate,
    parse_circuit,
)
from qhybrid.errors import CircuitValidationError


class TestGateRegistry:
    """Tests for gate descriptors and lookups."""

    @pytest.mark.parametrize("descriptor", GATE_REGISTRY, ids=lambda d: d.name)
    def test_matrices_are_unitary(self, descriptor) -> None:
        params = [0.37] * descriptor.num_params
        m = descriptor.matrix(params)
        dim = 2**descriptor.arity
        assert m.shape == (dim, dim)
        np.testing.assert_allclose(m @ m.conj().T, np.eye(dim), atol=1e-12)

    def test_aliases(self) -> None:
        assert get_gate("cx").kind is GateKind.CNOT
        assert get_gate("CCX").kind is GateKind.TOFFOLI
        assert get_gate("p").kind is GateKind.PHASE
        assert get_gate(GateKind.H).name == "h"

    def test_unknown_gate(self) -> None:
        with pytest.raises(CircuitValidationError, match="Unknown gate"):
            get_gate("frobnicate")

    def test_shift_rule_gates(self) -> None:
        shiftable = {d.kind for d in GATE_REGISTRY if d.shift_rule}
        assert shiftable == {GateKind.RX, GateKind.RY, GateKind.RZ, GateKind.PHASE}

    def test_cnot_control_is_first_target(self) -> None:
        m = get_gate("cnot").matrix(())
        # |10> -> |11> with qubit order (control, target), control most significant.
        state = np.zeros(4)
        state[0b10] = 1
        assert np.argmax(np.abs(m @ state)) == 0b11


class TestCircuitBuilder:
    """Tests for validation at build time."""

    def test_builds_program(self) -> None:
        program = CircuitBuilder(3).h(0).cx(0, 1).ccx(0, 1, 2).build("demo")
        assert program.qubit_count == 3
        assert len(program) == 3
        assert program.name == "demo"
        assert program.gate_counts() == {"h": 1, "cnot": 1, "toffoli": 1}
        assert program.is_bound

    def test_target_out_of_range(self) -> None:
        with pytest.raises(CircuitValidationError, match="out of range"):
            CircuitBuilder(2).cx(0, 2)

    def test_duplicate_targets(self) -> None:
        with pytest.raises(CircuitValidationError, match="distinct"):
            CircuitBuilder(2).cx(1, 1)

    def test_wrong_arity(self) -> None:
        with pytest.raises(CircuitValidationError, match="acts on 2"):
            CircuitBuilder(2).append("cx", [0])

    def test_wrong_param_count(self) -> None:
        with pytest.raises(CircuitValidationError, match="takes 1 parameter"):
            CircuitBuilder(1).append("rx", 0, ())

    @pytest.mark.parametrize("bad", [math.nan, math.inf, "0.5", True])
    def test_bad_parameter_values(self, bad) -> None:
        with pytest.raises(CircuitValidationError):
            CircuitBuilder(1).append("rx", 0, [bad])

    def test_zero_qubits(self) -> None:
        with pytest.raises(CircuitValidationError):
            CircuitBuilder(0)
        with pytest.raises(CircuitValidationError):
            CircuitProgram(0)

    def test_program_rejects_out_of_range_gates(self) -> None:
        wide = CircuitBuilder(3).cx(0, 2).build()
        with pytest.raises(CircuitValidationError):
            CircuitProgram(2, wide.gates)


class TestParameters:
    """Tests for symbolic parameters and binding."""

    def test_free_parameters_in_order(self) -> None:
        program = (
            CircuitBuilder(2)
            .ry(0, Parameter("b"))
            .rx(1, Parameter("a"))
            .rz(0, Parameter("b"))
            .build()
        )
        assert [p.name for p in program.free_parameters] == ["b", "a"]
        assert not program.is_bound

    def test_bind(self) -> None:
        program = CircuitBuilder(1).ry(0, Parameter("theta")).build()
        bound = program.bind({"theta": 0.5})
        assert bound.is_bound
        assert bound.gates[0].params == (0.5,)
        assert bound.program_id != program.program_id
        assert not program.is_bound

    def test_partial_bind(self) -> None:
        program = CircuitBuilder(1).rx(0, Parameter("a")).ry(0, Parameter("b")).build()
        partial = program.bind({Parameter("a"): 1.0})
        assert [p.name for p in partial.free_parameters] == ["b"]

    def test_bind_unknown_name(self) -> None:
        program = CircuitBuilder(1).ry(0, Parameter("theta")).build()
        with pytest.raises(CircuitValidationError, match="Unknown parameter"):
            program.bind({"phi": 1.0})

    def test_unbound_matrix(self) -> None:
        program = CircuitBuilder(1).ry(0, Parameter("theta")).build()
        with pytest.raises(CircuitValidationError, match="unbound"):
            program.gates[0].matrix()

    def test_empty_parameter_name(self) -> None:
        with pytest.raises(CircuitValidationError):
            Parameter(" ")

    def test_replace_param(self) -> None:
        program = CircuitBuilder(1).rx(0, 0.1).build()
        shifted = program.replace_param(0, 0, 0.9)
        assert shifted.gates[0].params == (0.9,)
        assert program.gates[0].params == (0.1,)


class TestSerialization:
    """Tests for to_dict / from_dict."""

    def test_dict_form_keeps_symbols(self) -> None:
        program = CircuitBuilder(2).h(0).cry(0, 1, Parameter("t")).build("x")
        data = program.to_dict()
        assert data["gates"][1] == {"gate": "cry", "targets": [0, 1], "params": [{"parameter": "t"}]}
        restored = CircuitProgram.from_dict(data)
        assert restored.program_id == program.program_id
        assert restored.gates == program.gates

    def test_from_dict_revalidates(self) -> None:
        data = {"qubit_count": 1, "gates": [{"gate": "cx", "targets": [0, 1]}]}
        with pytest.raises(CircuitValidationError):
            CircuitProgram.from_dict(data)

    def test_from_dict_malformed(self) -> None:
        with pytest.raises(CircuitValidationError, match="Malformed"):
            CircuitProgram.from_dict({"gates": []})


class TestTextFormat:
    """Tests for parse_circuit."""

    def test_parse_bell(self) -> None:
        program = parse_circuit("# bell\nh 0\ncx 0, 1\n", name="bell")
        assert program.qubit_count == 2
        assert [g.gate for g in program] == [GateKind.H, GateKind.CNOT]
        assert program.name == "bell"

    def test_header_and_override(self) -> None:
        text = "qubits 4\nh 0\n"
        assert parse_circuit(text).qubit_count == 4
        assert parse_circuit(text, qubit_count=6).qubit_count == 6

    @pytest.mark.parametrize(
        "token, expected",
        [
            ("0.25", 0.25),
            ("pi", math.pi),
            ("-pi/2", -math.pi / 2),
            ("2*pi/3", 2 * math.pi / 3),
            ("3pi/4", 3 * math.pi / 4),
        ],
    )
    def test_numeric_parameters(self, token: str, expected: float) -> None:
        program = parse_circuit(f"rx 0 {token}")
        assert program.gates[0].params[0] == pytest.approx(expected)

    def test_symbolic_parameter(self) -> None:
        program = parse_circuit("ry 0 theta\ncphase 0 1 phi")
        assert [p.name for p in program.free_parameters] == ["theta", "phi"]

    def test_errors_carry_line_number(self) -> None:
        with pytest.raises(CircuitValidationError, match="line 2"):
            parse_circuit("h 0\nnope 1\n")
        with pytest.raises(CircuitValidationError, match="line 1"):
            parse_circuit("cx 0")
        with pytest.raises(CircuitValidationError, match="line 1"):
            parse_circuit("rx 0 1.2.3")

    def test_out_of_range_with_header(self) -> None:
        with pytest.raises(CircuitValidationError, match="line 2"):
            parse_circuit("qubits 2\ncx 0 2\n")

    def test_empty(self) -> None:
        with pytest.raises(CircuitValidationError, match="no qubits"):
            parse_circuit("# nothing\n")
