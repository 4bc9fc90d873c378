# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Parameter-shift gradients.

For a parameter entering a gate ``exp(-i theta G / 2)`` with ``G``
having eigenvalues ``+-1`` (``rx``, ``ry``, ``rz``; ``phase`` up to a
global phase), the exact derivative of an expectation value is::

    dE/dtheta = (E(theta + pi/2) - E(theta - pi/2)) / 2

When a parameter appears in several gates, the contributions of its
occurrences add. Every shifted evaluation is a full independent execution.
"""

from __future__ import annotations

import logging
import math
from typing import Mapping

import numpy as np

from qhybrid.circuit.gates import get_gate
from qhybrid.circuit.program import CircuitProgram, Parameter
from qhybrid.errors import CircuitValidationError
from qhybrid.execution.engine import BackendKind, ExecutionEngine
from qhybrid.measurement.observables import Observable


logger = logging.getLogger(__name__)

SHIFT = math.pi / 2


def parameter_occurrences(program: CircuitProgram, name: str) -> list[tuple[int, int]]:
    """``(gate_index, param_slot)`` of every use of parameter ``name``."""
    return [
        (i, j)
        for i, app in enumerate(program.gates)
        for j, p in enumerate(app.params)
        if isinstance(p, Parameter) and p.name == name
    ]


def parameter_shift_gradient(
    program: CircuitProgram,
    values: Mapping[str, float],
    observable: Observable | None = None,
    *,
    engine: ExecutionEngine | None = None,
    hint: BackendKind | str | None = None,
    shots: int | None = None,
    rng: np.random.Generator | None = None,
) -> dict[str, float]:
    """
    Gradient of ``<observable>`` with respect to every free parameter.

    Parameters
    ----------
    program : CircuitProgram
        Program with symbolic parameters.
    values : mapping
        Point at which to differentiate; must bind every free parameter.
    observable : Observable, optional
        Defaults to Z on every qubit.
    engine : ExecutionEngine, optional
        Engine used for the shifted executions.
    hint : str, optional
        Backend hint for the shifted executions.
    shots : int, optional
        Estimate each expectation from this many shots instead of
        computing it exactly.
    rng : numpy.random.Generator, optional
        Sampling source when ``shots`` is given.

    Returns
    -------
    dict
        Parameter name to partial derivative.

    Raises
    ------
    CircuitValidationError
        If a value is missing or a parameter feeds a gate the shift rule
        does not apply to.
    """
    engine = engine or ExecutionEngine()
    names = [p.name for p in program.free_parameters]
    missing = [n for n in names if n not in values]
    if missing:
        raise CircuitValidationError(f"Missing value(s) for: {', '.join(missing)}")

    occurrences = {n: parameter_occurrences(program, n) for n in names}
    for name, where in occurrences.items():
        for i, _ in where:
            gate = get_gate(program.gates[i].gate)
            if not gate.shift_rule:
                raise CircuitValidationError(
                    f"Parameter {name!r} feeds {gate.name}, which has no "
                    "two-term shift rule"
                )

    bound = program.bind({n: values[n] for n in names})
    if shots is not None and rng is None:
        rng = np.random.default_rng(engine.config.seed)

    def _evaluate(p: CircuitProgram) -> float:
        if shots is None:
            return engine.expectation(p, observable, hint)
        return engine.run(p, shots, hint, rng=rng, observable=observable).statistics.expectation_value

    gradient: dict[str, float] = {}
    for name in names:
        total = 0.0
        for i, j in occurrences[name]:
            theta = float(values[name])
            plus = _evaluate(bound.replace_param(i, j, theta + SHIFT))
            minus = _evaluate(bound.replace_param(i, j, theta - SHIFT))
            total += (plus - minus) / 2.0
        gradient[name] = total
        logger.debug("d<O>/d%s = %.6f over %d occurrence(s)", name, total, len(occurrences[name]))
    return gradient
