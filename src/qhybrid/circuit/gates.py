# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Gate set and gate registry.

Gate Registration
-----------------
Adding a gate requires two steps in this module:

1. Add an entry to :class:`GateKind`.
2. Add a single :class:`GateDescriptor` row to :data:`GATE_REGISTRY`.

Name and alias lookups are derived from ``GATE_REGISTRY`` at import time.

Matrix Convention
-----------------
A k-qubit gate matrix has shape ``(2**k, 2**k)`` and its row/column index
takes the *first* target as the most significant bit. For ``CNOT`` the
targets are ``(control, target)``; for ``TOFFOLI`` they are
``(control, control, target)``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import numpy as np
from numpy.typing import NDArray

from qhybrid.errors import CircuitValidationError


Matrix = NDArray[np.complex128]


class GateKind(str, Enum):
    """Gates understood by the execution engine."""

    I = "i"  # noqa: E741
    H = "h"
    X = "x"
    Y = "y"
    Z = "z"
    S = "s"
    SDG = "sdg"
    T = "t"
    TDG = "tdg"
    RX = "rx"
    RY = "ry"
    RZ = "rz"
    PHASE = "phase"
    CNOT = "cnot"
    CZ = "cz"
    CPHASE = "cphase"
    CRY = "cry"
    SWAP = "swap"
    TOFFOLI = "toffoli"

    def __str__(self) -> str:
        return self.value


# =============================================================================
# Matrix factories
# =============================================================================

_SQRT1_2 = 1.0 / math.sqrt(2.0)

_I = np.eye(2, dtype=np.complex128)
_H = np.array([[1, 1], [1, -1]], dtype=np.complex128) * _SQRT1_2
_X = np.array([[0, 1], [1, 0]], dtype=np.complex128)
_Y = np.array([[0, -1j], [1j, 0]], dtype=np.complex128)
_Z = np.array([[1, 0], [0, -1]], dtype=np.complex128)
_S = np.diag([1, 1j]).astype(np.complex128)
_T = np.diag([1, np.exp(1j * math.pi / 4)]).astype(np.complex128)
_SWAP = np.array(
    [[1, 0, 0, 0], [0, 0, 1, 0], [0, 1, 0, 0], [0, 0, 0, 1]], dtype=np.complex128
)


def _controlled(u: Matrix, controls: int = 1) -> Matrix:
    """Block-diagonal controlled-U with the controls as the leading bits."""
    dim = 2 ** (controls + 1)
    out = np.eye(dim, dtype=np.complex128)
    out[dim - 2 :, dim - 2 :] = u
    return out


def _const(m: Matrix) -> Callable[[], Matrix]:
    m.setflags(write=False)
    return lambda: m


def _rx(theta: float) -> Matrix:
    c, s = math.cos(theta / 2), math.sin(theta / 2)
    return np.array([[c, -1j * s], [-1j * s, c]], dtype=np.complex128)


def _ry(theta: float) -> Matrix:
    c, s = math.cos(theta / 2), math.sin(theta / 2)
    return np.array([[c, -s], [s, c]], dtype=np.complex128)


def _rz(theta: float) -> Matrix:
    return np.diag(
        [np.exp(-0.5j * theta), np.exp(0.5j * theta)]
    ).astype(np.complex128)


def _phase(theta: float) -> Matrix:
    return np.diag([1.0, np.exp(1j * theta)]).astype(np.complex128)


def _cphase(theta: float) -> Matrix:
    return np.diag([1.0, 1.0, 1.0, np.exp(1j * theta)]).astype(np.complex128)


def _cry(theta: float) -> Matrix:
    return _controlled(_ry(theta))


# =============================================================================
# Registry
# =============================================================================


@dataclass(frozen=True, slots=True)
class GateDescriptor:
    """
    Metadata for one gate.

    Parameters
    ----------
    kind : GateKind
        Enum member identifying the gate.
    arity : int
        Number of target qubits.
    num_params : int
        Number of real parameters.
    factory : callable
        Builds the unitary from the gate's parameters.
    shift_rule : bool
        Whether the two-term parameter-shift rule with shift pi/2 gives the
        exact derivative for this gate's parameter.
    aliases : tuple of str
        Extra names accepted by the builder and the text parser.
    """

    kind: GateKind
    arity: int
    num_params: int
    factory: Callable[..., Matrix]
    shift_rule: bool = False
    aliases: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.kind.value

    def matrix(self, params: tuple[float, ...] = ()) -> Matrix:
        """Return the unitary for concrete ``params``."""
        if len(params) != self.num_params:
            raise CircuitValidationError(
                f"{self.name} takes {self.num_params} parameter(s), got {len(params)}"
            )
        return self.factory(*params)


GATE_REGISTRY: tuple[GateDescriptor, ...] = (
    GateDescriptor(GateKind.I, 1, 0, _const(_I), aliases=("id",)),
    GateDescriptor(GateKind.H, 1, 0, _const(_H)),
    GateDescriptor(GateKind.X, 1, 0, _const(_X)),
    GateDescriptor(GateKind.Y, 1, 0, _const(_Y)),
    GateDescriptor(GateKind.Z, 1, 0, _const(_Z)),
    GateDescriptor(GateKind.S, 1, 0, _const(_S)),
    GateDescriptor(GateKind.SDG, 1, 0, _const(_S.conj().T.copy())),
    GateDescriptor(GateKind.T, 1, 0, _const(_T)),
    GateDescriptor(GateKind.TDG, 1, 0, _const(_T.conj().T.copy())),
    GateDescriptor(GateKind.RX, 1, 1, _rx, shift_rule=True),
    GateDescriptor(GateKind.RY, 1, 1, _ry, shift_rule=True),
    GateDescriptor(GateKind.RZ, 1, 1, _rz, shift_rule=True),
    GateDescriptor(GateKind.PHASE, 1, 1, _phase, shift_rule=True, aliases=("p",)),
    GateDescriptor(GateKind.CNOT, 2, 0, _const(_controlled(_X)), aliases=("cx",)),
    GateDescriptor(GateKind.CZ, 2, 0, _const(_controlled(_Z))),
    GateDescriptor(GateKind.CPHASE, 2, 1, _cphase, aliases=("cp",)),
    GateDescriptor(GateKind.CRY, 2, 1, _cry),
    GateDescriptor(GateKind.SWAP, 2, 0, _const(_SWAP)),
    GateDescriptor(
        GateKind.TOFFOLI, 3, 0, _const(_controlled(_X, 2)), aliases=("ccx", "ccnot")
    ),
)


# =============================================================================
# Derived lookup tables
# =============================================================================

#: GateKind => descriptor.
_BY_KIND: dict[GateKind, GateDescriptor] = {d.kind: d for d in GATE_REGISTRY}

#: Lower-case name or alias => descriptor.
_BY_NAME: dict[str, GateDescriptor] = {
    name: d for d in GATE_REGISTRY for name in (d.name, *d.aliases)
}


def get_gate(gate: GateKind | str) -> GateDescriptor:
    """
    Look up a gate by kind, name or alias (case-insensitive).

    Raises
    ------
    CircuitValidationError
        If the gate is unknown.
    """
    if isinstance(gate, GateKind):
        return _BY_KIND[gate]
    descriptor = _BY_NAME.get(str(gate).strip().lower())
    if descriptor is None:
        raise CircuitValidationError(f"Unknown gate: {gate!r}")
    return descriptor


def gate_names() -> list[str]:
    """All accepted gate names and aliases, sorted."""
    return sorted(_BY_NAME)
