# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""Circuit IR: gate registry, programs, builder and text parser."""

from qhybrid.circuit.gates import GATE_REGISTRY, GateDescriptor, GateKind, get_gate
from qhybrid.circuit.program import (
    CircuitBuilder,
    CircuitProgram,
    GateApplication,
    Parameter,
)
from qhybrid.circuit.text import parse_circuit


__all__ = [
    "GATE_REGISTRY",
    "CircuitBuilder",
    "CircuitProgram",
    "GateApplication",
    "GateDescriptor",
    "GateKind",
    "Parameter",
    "get_gate",
    "parse_circuit",
]
