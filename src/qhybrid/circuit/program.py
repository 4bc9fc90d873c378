# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Circuit intermediate representation.

A :class:`CircuitProgram` is an immutable, validated sequence of
:class:`GateApplication` over a fixed register. Programs are built with a
:class:`CircuitBuilder`, which validates every gate as it is appended, so
malformed programs are rejected before they reach a scheduler.

Parameters may be symbolic (:class:`Parameter`) and bound later with
:meth:`CircuitProgram.bind`; a program must be fully bound to execute.

Examples
--------
>>> theta = Parameter("theta")
>>> program = CircuitBuilder(2).h(0).cx(0, 1).ry(1, theta).build("ansatz")
>>> bound = program.bind({"theta": 0.25})
>>> bound.free_parameters
()
"""

from __future__ import annotations

import math
import numbers
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any, Iterator, Mapping, Sequence, Union

from qhybrid.circuit.gates import GateKind, Matrix, get_gate
from qhybrid.errors import CircuitValidationError
from qhybrid.utils.common import generate_ulid


@dataclass(frozen=True, slots=True)
class Parameter:
    """Named symbolic gate parameter."""

    name: str

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise CircuitValidationError("Parameter name must be non-empty")

    def __str__(self) -> str:
        return self.name


ParamValue = Union[float, Parameter]


@dataclass(frozen=True, slots=True)
class GateApplication:
    """
    One gate applied to specific qubits.

    Attributes
    ----------
    gate : GateKind
        Gate identity.
    targets : tuple of int
        Qubit indices, in the gate's matrix order.
    params : tuple
        Concrete floats or symbolic :class:`Parameter` values.
    """

    gate: GateKind
    targets: tuple[int, ...]
    params: tuple[ParamValue, ...] = ()

    @property
    def is_bound(self) -> bool:
        return not any(isinstance(p, Parameter) for p in self.params)

    def bound_params(self) -> tuple[float, ...]:
        if not self.is_bound:
            free = ", ".join(str(p) for p in self.params if isinstance(p, Parameter))
            raise CircuitValidationError(f"{self.gate} has unbound parameter(s): {free}")
        return tuple(float(p) for p in self.params)  # type: ignore[arg-type]

    def matrix(self) -> Matrix:
        """Unitary for this application; parameters must be bound."""
        return get_gate(self.gate).matrix(self.bound_params())

    def to_dict(self) -> dict[str, Any]:
        return {
            "gate": self.gate.value,
            "targets": list(self.targets),
            "params": [
                {"parameter": p.name} if isinstance(p, Parameter) else float(p)
                for p in self.params
            ],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GateApplication:
        params: list[ParamValue] = []
        for raw in data.get("params", ()):
            if isinstance(raw, Mapping):
                params.append(Parameter(str(raw["parameter"])))
            else:
                params.append(raw)
        return _make_application(data["gate"], data.get("targets", ()), params)


def _make_application(
    gate: GateKind | str,
    targets: Sequence[int] | int,
    params: Sequence[ParamValue] | ParamValue = (),
) -> GateApplication:
    descriptor = get_gate(gate)
    if isinstance(targets, numbers.Integral):
        targets = (int(targets),)
    if isinstance(params, (numbers.Real, Parameter)):
        params = (params,)

    targets_t = tuple(targets)
    if len(targets_t) != descriptor.arity:
        raise CircuitValidationError(
            f"{descriptor.name} acts on {descriptor.arity} qubit(s), "
            f"got {len(targets_t)} target(s)"
        )
    for t in targets_t:
        if isinstance(t, bool) or not isinstance(t, numbers.Integral):
            raise CircuitValidationError(f"Qubit index must be an integer, got {t!r}")
    if len(set(targets_t)) != len(targets_t):
        raise CircuitValidationError(
            f"{descriptor.name} targets must be distinct, got {targets_t}"
        )

    params_t = tuple(params)
    if len(params_t) != descriptor.num_params:
        raise CircuitValidationError(
            f"{descriptor.name} takes {descriptor.num_params} parameter(s), "
            f"got {len(params_t)}"
        )
    clean: list[ParamValue] = []
    for p in params_t:
        if isinstance(p, Parameter):
            clean.append(p)
            continue
        if isinstance(p, bool) or not isinstance(p, numbers.Real):
            raise CircuitValidationError(
                f"{descriptor.name} parameter must be a real number, got {p!r}"
            )
        if not math.isfinite(float(p)):
            raise CircuitValidationError(
                f"{descriptor.name} parameter must be finite, got {p!r}"
            )
        clean.append(float(p))

    return GateApplication(
        gate=descriptor.kind,
        targets=tuple(int(t) for t in targets_t),
        params=tuple(clean),
    )


def _check_range(app: GateApplication, qubit_count: int) -> None:
    for t in app.targets:
        if not 0 <= t < qubit_count:
            raise CircuitValidationError(
                f"{app.gate} target {t} out of range for {qubit_count} qubit(s)"
            )


# =============================================================================
# Program
# =============================================================================


@dataclass(frozen=True)
class CircuitProgram:
    """
    Immutable, validated circuit.

    Attributes
    ----------
    qubit_count : int
        Register width.
    gates : tuple of GateApplication
        Gates in application order.
    name : str
        Human-readable label.
    program_id : str
        ULID, unique per built program.
    """

    qubit_count: int
    gates: tuple[GateApplication, ...] = ()
    name: str = ""
    program_id: str = field(default_factory=generate_ulid)

    def __post_init__(self) -> None:
        if isinstance(self.qubit_count, bool) or self.qubit_count < 1:
            raise CircuitValidationError(
                f"qubit_count must be >= 1, got {self.qubit_count!r}"
            )
        for app in self.gates:
            _check_range(app, self.qubit_count)

    def __len__(self) -> int:
        return len(self.gates)

    def __iter__(self) -> Iterator[GateApplication]:
        return iter(self.gates)

    @property
    def free_parameters(self) -> tuple[Parameter, ...]:
        """Symbolic parameters in order of first appearance."""
        seen: dict[str, Parameter] = {}
        for app in self.gates:
            for p in app.params:
                if isinstance(p, Parameter):
                    seen.setdefault(p.name, p)
        return tuple(seen.values())

    @property
    def is_bound(self) -> bool:
        return all(app.is_bound for app in self.gates)

    def bind(self, values: Mapping[str | Parameter, float]) -> CircuitProgram:
        """
        Return a copy with the given parameters replaced by floats.

        Parameters not mentioned stay symbolic.

        Raises
        ------
        CircuitValidationError
            If a name is not a parameter of this program or a value is not
            finite.
        """
        by_name = {str(k): v for k, v in values.items()}
        known = {p.name for p in self.free_parameters}
        unknown = sorted(set(by_name) - known)
        if unknown:
            raise CircuitValidationError(f"Unknown parameter(s): {', '.join(unknown)}")

        gates = []
        for app in self.gates:
            if app.is_bound:
                gates.append(app)
                continue
            params = [
                by_name.get(p.name, p) if isinstance(p, Parameter) else p
                for p in app.params
            ]
            gates.append(_make_application(app.gate, app.targets, params))
        return replace(self, gates=tuple(gates), program_id=generate_ulid())

    def replace_param(self, gate_index: int, slot: int, value: ParamValue) -> CircuitProgram:
        """Return a copy with one parameter of one gate replaced."""
        app = self.gates[gate_index]
        params = list(app.params)
        params[slot] = value
        gates = list(self.gates)
        gates[gate_index] = _make_application(app.gate, app.targets, params)
        return replace(self, gates=tuple(gates), program_id=generate_ulid())

    def gate_counts(self) -> dict[str, int]:
        """Gate name => number of applications."""
        return dict(Counter(app.gate.value for app in self.gates))

    def to_dict(self) -> dict[str, Any]:
        return {
            "program_id": self.program_id,
            "name": self.name,
            "qubit_count": self.qubit_count,
            "gates": [app.to_dict() for app in self.gates],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CircuitProgram:
        """
        Rebuild a program from :meth:`to_dict` output, re-validating it.

        Raises
        ------
        CircuitValidationError
            If any gate is malformed.
        """
        try:
            qubit_count = int(data["qubit_count"])
            raw_gates = data.get("gates", ())
        except (KeyError, TypeError, ValueError) as exc:
            raise CircuitValidationError(f"Malformed program: {exc}") from exc
        builder = CircuitBuilder(qubit_count)
        for raw in raw_gates:
            try:
                app = GateApplication.from_dict(raw)
            except (KeyError, TypeError) as exc:
                raise CircuitValidationError(f"Malformed gate {raw!r}: {exc}") from exc
            builder.append(app.gate, app.targets, app.params)
        kwargs: dict[str, Any] = {}
        if data.get("program_id"):
            kwargs["program_id"] = str(data["program_id"])
        return builder.build(str(data.get("name", "")), **kwargs)


# =============================================================================
# Builder
# =============================================================================


class CircuitBuilder:
    """
    Validating builder for :class:`CircuitProgram`.

    Every ``append`` (and every named helper) raises
    :class:`~qhybrid.errors.CircuitValidationError` immediately on an
    out-of-range or duplicate target, the wrong number of targets or
    parameters, or a non-finite parameter.

    Parameters
    ----------
    qubit_count : int
        Register width, at least 1.
    """

    def __init__(self, qubit_count: int) -> None:
        if isinstance(qubit_count, bool) or qubit_count < 1:
            raise CircuitValidationError(f"qubit_count must be >= 1, got {qubit_count!r}")
        self.qubit_count = qubit_count
        self._gates: list[GateApplication] = []

    def append(
        self,
        gate: GateKind | str,
        targets: Sequence[int] | int,
        params: Sequence[ParamValue] | ParamValue = (),
    ) -> CircuitBuilder:
        app = _make_application(gate, targets, params)
        _check_range(app, self.qubit_count)
        self._gates.append(app)
        return self

    def extend(self, program: CircuitProgram) -> CircuitBuilder:
        """Append every gate of ``program`` (which must fit this register)."""
        for app in program.gates:
            self.append(app.gate, app.targets, app.params)
        return self

    def build(self, name: str = "", **kwargs: Any) -> CircuitProgram:
        return CircuitProgram(self.qubit_count, tuple(self._gates), name, **kwargs)

    def __len__(self) -> int:
        return len(self._gates)

    # -- single-qubit helpers ----------------------------------------------

    def i(self, q: int) -> CircuitBuilder:
        return self.append(GateKind.I, q)

    def h(self, q: int) -> CircuitBuilder:
        return self.append(GateKind.H, q)

    def x(self, q: int) -> CircuitBuilder:
        return self.append(GateKind.X, q)

    def y(self, q: int) -> CircuitBuilder:
        return self.append(GateKind.Y, q)

    def z(self, q: int) -> CircuitBuilder:
        return self.append(GateKind.Z, q)

    def s(self, q: int) -> CircuitBuilder:
        return self.append(GateKind.S, q)

    def sdg(self, q: int) -> CircuitBuilder:
        return self.append(GateKind.SDG, q)

    def t(self, q: int) -> CircuitBuilder:
        return self.append(GateKind.T, q)

    def tdg(self, q: int) -> CircuitBuilder:
        return self.append(GateKind.TDG, q)

    def rx(self, q: int, theta: ParamValue) -> CircuitBuilder:
        return self.append(GateKind.RX, q, theta)

    def ry(self, q: int, theta: ParamValue) -> CircuitBuilder:
        return self.append(GateKind.RY, q, theta)

    def rz(self, q: int, theta: ParamValue) -> CircuitBuilder:
        return self.append(GateKind.RZ, q, theta)

    def phase(self, q: int, theta: ParamValue) -> CircuitBuilder:
        return self.append(GateKind.PHASE, q, theta)

    # -- multi-qubit helpers -----------------------------------------------

    def cx(self, control: int, target: int) -> CircuitBuilder:
        return self.append(GateKind.CNOT, (control, target))

    def cz(self, control: int, target: int) -> CircuitBuilder:
        return self.append(GateKind.CZ, (control, target))

    def cphase(self, control: int, target: int, theta: ParamValue) -> CircuitBuilder:
        return self.append(GateKind.CPHASE, (control, target), theta)

    def cry(self, control: int, target: int, theta: ParamValue) -> CircuitBuilder:
        return self.append(GateKind.CRY, (control, target), theta)

    def swap(self, a: int, b: int) -> CircuitBuilder:
        return self.append(GateKind.SWAP, (a, b))

    def ccx(self, c1: int, c2: int, target: int) -> CircuitBuilder:
        return self.append(GateKind.TOFFOLI, (c1, c2, target))
