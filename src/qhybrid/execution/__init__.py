# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""Backend selection, incremental circuit runs and gradients."""

from qhybrid.execution.engine import (
    BackendComparison,
    BackendKind,
    CircuitRun,
    ExecutionEngine,
    ExecutionResult,
)
from qhybrid.execution.gradient import parameter_shift_gradient


__all__ = [
    "BackendComparison",
    "BackendKind",
    "CircuitRun",
    "ExecutionEngine",
    "ExecutionResult",
    "parameter_shift_gradient",
]
