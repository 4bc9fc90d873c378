# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
qhybrid: a hybrid classical/quantum execution kernel.

Classical processes hold capabilities, open handles on simulated quantum
devices and submit circuit programs, which a shared scheduler runs on a
dense state-vector or MPS backend while classical tasks keep running.

Quick Start
-----------
>>> from qhybrid import CircuitBuilder, run_circuit
>>> program = CircuitBuilder(2).h(0).cx(0, 1).build("bell")
>>> stats = run_circuit(program, shots=1000, seed=7)
>>> sorted(stats.outcome_counts)
['00', '11']

Through a Kernel Session
------------------------
>>> from qhybrid import HandleKind, KernelSession, Permission
>>> with KernelSession() as kernel:
...     client = kernel.connect("analysis")
...     device = kernel.devices.get("simulator")
...     cap = kernel.grant(client, device.device_id, Permission.READ | Permission.EXECUTE)
...     handle = client.open(HandleKind.DEVICE, {"device": "simulator"}, cap)
...     job_id = client.submit_circuit(handle, program, shots=1000)
...     client.wait(job_id)
...     stats = client.statistics(job_id)

Gradients
---------
>>> from qhybrid import parameter_shift_gradient, parse_circuit
>>> ansatz = parse_circuit("ry 0 theta\\ncx 0 1")
>>> parameter_shift_gradient(ansatz, {"theta": 0.3})

Submodules
----------
- qhybrid.kernel: Capabilities, handles, channels and sessions
- qhybrid.scheduler: Hybrid scheduler and dispatch policies
- qhybrid.circuit: Gate set, circuit programs and the text format
- qhybrid.backends: Dense and MPS simulation backends
- qhybrid.execution: Backend selection, execution and gradients
- qhybrid.measurement: Measurement events, observables and statistics
- qhybrid.config: Configuration management
- qhybrid.errors: Public exception types
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version
from typing import TYPE_CHECKING, Any


__all__ = [
    # Version
    "__version__",
    # Kernel
    "KernelSession",
    "ProcessClient",
    "Permission",
    "HandleKind",
    "Channel",
    # Circuits
    "CircuitBuilder",
    "CircuitProgram",
    "Parameter",
    "parse_circuit",
    # Execution
    "ExecutionEngine",
    "parameter_shift_gradient",
    "run_circuit",
    # Measurement
    "MeasurementStatistics",
    "ZObservable",
    "DiagonalHamiltonian",
    # Config
    "Config",
    "get_config",
    "set_config",
]


try:
    __version__ = version("qhybrid")
except PackageNotFoundError:
    __version__ = "0.0.0"


if TYPE_CHECKING:
    from qhybrid.circuit.program import CircuitBuilder, CircuitProgram, Parameter
    from qhybrid.circuit.text import parse_circuit
    from qhybrid.config import Config, get_config, set_config
    from qhybrid.execution.engine import ExecutionEngine
    from qhybrid.execution.gradient import parameter_shift_gradient
    from qhybrid.kernel.capability import Permission
    from qhybrid.kernel.channel import Channel
    from qhybrid.kernel.handles import HandleKind
    from qhybrid.kernel.session import KernelSession, ProcessClient
    from qhybrid.measurement.observables import (
        DiagonalHamiltonian,
        Observable,
        ZObservable,
    )
    from qhybrid.measurement.statistics import MeasurementStatistics


_LAZY_IMPORTS = {
    # Kernel
    "KernelSession": ("qhybrid.kernel.session", "KernelSession"),
    "ProcessClient": ("qhybrid.kernel.session", "ProcessClient"),
    "Permission": ("qhybrid.kernel.capability", "Permission"),
    "HandleKind": ("qhybrid.kernel.handles", "HandleKind"),
    "Channel": ("qhybrid.kernel.channel", "Channel"),
    # Circuits
    "CircuitBuilder": ("qhybrid.circuit.program", "CircuitBuilder"),
    "CircuitProgram": ("qhybrid.circuit.program", "CircuitProgram"),
    "Parameter": ("qhybrid.circuit.program", "Parameter"),
    "parse_circuit": ("qhybrid.circuit.text", "parse_circuit"),
    # Execution
    "ExecutionEngine": ("qhybrid.execution.engine", "ExecutionEngine"),
    "parameter_shift_gradient": ("qhybrid.execution.gradient", "parameter_shift_gradient"),
    # Measurement
    "MeasurementStatistics": ("qhybrid.measurement.statistics", "MeasurementStatistics"),
    "ZObservable": ("qhybrid.measurement.observables", "ZObservable"),
    "DiagonalHamiltonian": ("qhybrid.measurement.observables", "DiagonalHamiltonian"),
    # Config
    "Config": ("qhybrid.config", "Config"),
    "get_config": ("qhybrid.config", "get_config"),
    "set_config": ("qhybrid.config", "set_config"),
}


def run_circuit(
    program: CircuitProgram,
    shots: int,
    *,
    backend: str | None = None,
    observable: Observable | None = None,
    seed: int | None = None,
    timeout: float | None = None,
    config: Config | None = None,
) -> MeasurementStatistics:
    """
    Run one program through a short-lived kernel session.

    This is the recommended entry point when no long-running session is
    needed: a process is attached, granted ``READ | EXECUTE`` on the
    default device, and the job is submitted, awaited and summarized.

    Parameters
    ----------
    program : CircuitProgram
        Fully bound program.
    shots : int
        Number of shots.
    backend : str, optional
        ``"dense"``, ``"mps"`` or ``"auto"`` (default).
    observable : Observable, optional
        Observable for the expectation value; Z on every qubit by default.
    seed : int, optional
        Sampling seed, overriding ``config.seed``.
    timeout : float, optional
        Job timeout in seconds.
    config : Config, optional
        Session configuration; defaults to the global configuration.

    Returns
    -------
    MeasurementStatistics
        Statistics over every shot.

    Raises
    ------
    CircuitValidationError
        If the program is not bound or ``shots`` is invalid.
    BackendCapacityExceeded
        If no backend can hold the program.
    JobTimeout
        If ``timeout`` elapses first.

    Examples
    --------
    >>> from qhybrid import CircuitBuilder, DiagonalHamiltonian, run_circuit
    >>> program = CircuitBuilder(3).h(0).cx(0, 1).cx(1, 2).build("ghz")
    >>> stats = run_circuit(
    ...     program,
    ...     shots=2000,
    ...     observable=DiagonalHamiltonian.ising_zz(3),
    ... )
    >>> round(stats.expectation_value, 3)
    2.0
    """
    from dataclasses import replace

    from qhybrid.config import get_config
    from qhybrid.kernel.capability import Permission
    from qhybrid.kernel.handles import HandleKind
    from qhybrid.kernel.session import KernelSession

    cfg = config or get_config()
    if seed is not None:
        cfg = replace(cfg, seed=seed)

    with KernelSession(cfg) as kernel:
        client = kernel.connect("run_circuit")
        device = kernel.devices.get("simulator")
        cap = kernel.grant(client, device.device_id, Permission.READ | Permission.EXECUTE)
        handle = client.open(HandleKind.DEVICE, {"device": device.name}, cap)
        job_id = client.submit_circuit(handle, program, shots, backend, timeout=timeout)
        client.wait(job_id)
        return client.statistics(job_id, observable)


def __getattr__(name: str) -> Any:
    """Lazy import handler for module-level attributes."""
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = __import__(module_path, fromlist=[attr_name])
        value = getattr(module, attr_name)
        globals()[name] = value
        return value
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    """List available attributes for autocomplete."""
    return sorted(set(__all__) | set(_LAZY_IMPORTS.keys()))
