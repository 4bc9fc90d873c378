# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Line-based text form of circuits.

One gate per line: the gate name, its target qubits, then its parameters.
Commas are treated as whitespace and ``#`` starts a comment::

    qubits 2
    h 0
    cx 0, 1
    ry 1 pi/4
    rz 0 theta

Parameters are floats, multiples or fractions of ``pi`` (``pi``, ``-pi/2``,
``0.5*pi``, ``3pi/4``), or identifiers, which become symbolic
:class:`~qhybrid.circuit.program.Parameter` values.
"""

from __future__ import annotations

import math
import re

from qhybrid.circuit.gates import get_gate
from qhybrid.circuit.program import CircuitBuilder, CircuitProgram, ParamValue, Parameter
from qhybrid.errors import CircuitValidationError


_PI_EXPR = re.compile(
    r"^(?P<sign>[-+])?(?P<coef>\d+(\.\d*)?|\.\d+)?\*?pi(/(?P<den>\d+(\.\d*)?))?$"
)
_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _parse_param(token: str) -> ParamValue:
    try:
        return float(token)
    except ValueError:
        pass
    m = _PI_EXPR.match(token.lower())
    if m:
        value = math.pi * float(m.group("coef") or 1.0)
        if m.group("den"):
            value /= float(m.group("den"))
        return -value if m.group("sign") == "-" else value
    if _IDENT.match(token):
        return Parameter(token)
    raise CircuitValidationError(f"Cannot parse parameter {token!r}")


def parse_circuit(
    text: str, qubit_count: int | None = None, name: str = ""
) -> CircuitProgram:
    """
    Parse the text form into a validated :class:`CircuitProgram`.

    Parameters
    ----------
    text : str
        Circuit source.
    qubit_count : int, optional
        Register width. Overrides a ``qubits`` header; when neither is
        given the width is one more than the largest target.
    name : str
        Program name.

    Raises
    ------
    CircuitValidationError
        On an unknown gate or malformed line, with the line number.
    """
    header: int | None = None
    rows: list[tuple[int, str, list[int], list[ParamValue]]] = []

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.split("#", 1)[0].replace(",", " ").strip()
        if not line:
            continue
        tokens = line.split()
        op = tokens[0].lower()
        try:
            if op == "qubits":
                if len(tokens) != 2:
                    raise CircuitValidationError("expected 'qubits <n>'")
                header = int(tokens[1])
                continue
            descriptor = get_gate(op)
            arity = descriptor.arity
            if len(tokens) - 1 < arity:
                raise CircuitValidationError(
                    f"{descriptor.name} needs {arity} target(s)"
                )
            targets = [int(t) for t in tokens[1 : 1 + arity]]
            params = [_parse_param(t) for t in tokens[1 + arity :]]
        except (CircuitValidationError, ValueError) as exc:
            raise CircuitValidationError(f"line {lineno}: {exc}") from exc
        rows.append((lineno, op, targets, params))

    width = qubit_count or header
    if width is None:
        width = max((max(t) for _, _, t, _ in rows if t), default=-1) + 1
    if width < 1:
        raise CircuitValidationError("Circuit has no qubits")

    builder = CircuitBuilder(width)
    for lineno, op, targets, params in rows:
        try:
            builder.append(op, targets, params)
        except CircuitValidationError as exc:
            raise CircuitValidationError(f"line {lineno}: {exc}") from exc
    return builder.build(name)
