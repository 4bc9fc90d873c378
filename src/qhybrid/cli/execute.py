# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Circuit execution commands.

Commands
--------
run
    Submit a circuit through a kernel session and print its statistics.
gradient
    Parameter-shift gradient of an expectation value.
crosscheck
    Sample a circuit on both backends and compare the distributions.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

import click

from qhybrid.cli._utils import echo, format_counts_table, parse_assignments, print_json


def register(cli: click.Group) -> None:
    """Register execution commands with CLI."""
    cli.add_command(run_command)
    cli.add_command(gradient_command)
    cli.add_command(crosscheck_command)


_OBSERVABLES = ("z", "ising")


def _load_program(source: str, qubits: int | None, params: tuple[str, ...]) -> Any:
    """Read a circuit from a file path or ``-`` (stdin) and bind ``params``."""
    from qhybrid.circuit import parse_circuit

    with click.open_file(source, "r") as fh:
        text = fh.read()
    name = "stdin" if source == "-" else source
    program = parse_circuit(text, qubit_count=qubits, name=name)
    if params:
        program = program.bind(parse_assignments(params))
    return program


def _observable(kind: str, num_qubits: int) -> Any:
    from qhybrid.measurement import DiagonalHamiltonian, ZObservable

    if kind == "ising":
        return DiagonalHamiltonian.ising_zz(num_qubits)
    return ZObservable()


# =============================================================================
# run
# =============================================================================


@click.command("run")
@click.argument("source", type=click.Path(allow_dash=True))
@click.option("--qubits", "-q", type=int, default=None, help="Register width.")
@click.option("--shots", "-s", type=click.IntRange(min=1), default=1024, show_default=True)
@click.option(
    "--backend",
    "-b",
    type=click.Choice(["auto", "dense", "mps"]),
    default="auto",
    show_default=True,
)
@click.option("--param", "-p", "params", multiple=True, help="Bind NAME=VALUE.")
@click.option("--seed", type=int, default=None, help="Sampling seed.")
@click.option("--timeout", type=float, default=None, help="Job timeout in seconds.")
@click.option("--observable", type=click.Choice(_OBSERVABLES), default="z", show_default=True)
@click.option("--top", type=int, default=10, show_default=True, help="Outcomes to show.")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["pretty", "json"]),
    default="pretty",
)
def run_command(
    source: str,
    qubits: int | None,
    shots: int,
    backend: str,
    params: tuple[str, ...],
    seed: int | None,
    timeout: float | None,
    observable: str,
    top: int,
    fmt: str,
) -> None:
    """
    Run the circuit in SOURCE (a file, or - for stdin).

    The circuit goes through a kernel session exactly as a process would
    submit it: a capability is granted on the default device, a device
    handle is opened and the job is scheduled.
    """
    from qhybrid.config import load_config
    from qhybrid.errors import QHybridError
    from qhybrid.kernel import HandleKind, KernelSession, Permission

    config = load_config()
    if seed is not None:
        config = replace(config, seed=seed)

    try:
        program = _load_program(source, qubits, params)
        obs = _observable(observable, program.qubit_count)
        with KernelSession(config) as kernel:
            client = kernel.connect("cli")
            device = kernel.devices.get("simulator")
            cap = kernel.grant(
                client, device.device_id, Permission.READ | Permission.EXECUTE
            )
            handle = client.open(HandleKind.DEVICE, {"device": device.name}, cap)
            job_id = client.submit_circuit(
                handle, program, shots, backend, timeout=timeout
            )
            client.wait(job_id)
            progress = client.job_progress(job_id)
            stats = client.statistics(job_id, obs)
    except QHybridError as exc:
        raise click.ClickException(str(exc)) from exc

    if fmt == "json":
        print_json(
            {
                "job_id": job_id,
                "program": program.name,
                "qubits": program.qubit_count,
                "gates": len(program),
                "backend": progress["backend"],
                "fidelity_estimate": progress["fidelity_estimate"],
                "statistics": stats.to_dict(),
            }
        )
        return

    echo(f"Job:          {job_id}")
    echo(f"Program:      {program.name} ({program.qubit_count} qubits, {len(program)} gates)")
    echo(f"Backend:      {progress['backend']}")
    echo(f"Fidelity:     {progress['fidelity_estimate']:.6f}")
    echo(f"<{stats.observable}>: {stats.expectation_value:+.6f} +/- {stats.std_error:.6f}")
    echo(f"Variance:     {stats.variance:.6f}")
    echo(f"Entropy:      {stats.entropy:.6f} bits")
    echo("")
    echo(format_counts_table(stats.outcome_counts, top_k=top))


# =============================================================================
# gradient
# =============================================================================


@click.command("gradient")
@click.argument("source", type=click.Path(allow_dash=True))
@click.option("--param", "-p", "params", multiple=True, required=True, help="Point NAME=VALUE.")
@click.option("--qubits", "-q", type=int, default=None, help="Register width.")
@click.option("--shots", "-s", type=click.IntRange(min=1), default=None, help="Sampled estimate.")
@click.option(
    "--backend",
    "-b",
    type=click.Choice(["auto", "dense", "mps"]),
    default="auto",
    show_default=True,
)
@click.option("--seed", type=int, default=None, help="Sampling seed.")
@click.option("--observable", type=click.Choice(_OBSERVABLES), default="z", show_default=True)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["pretty", "json"]),
    default="pretty",
)
def gradient_command(
    source: str,
    params: tuple[str, ...],
    qubits: int | None,
    shots: int | None,
    backend: str,
    seed: int | None,
    observable: str,
    fmt: str,
) -> None:
    """Parameter-shift gradient of the circuit in SOURCE at the given point."""
    from qhybrid.circuit import parse_circuit
    from qhybrid.config import load_config
    from qhybrid.errors import QHybridError
    from qhybrid.execution import ExecutionEngine, parameter_shift_gradient

    config = load_config()
    if seed is not None:
        config = replace(config, seed=seed)
    values = parse_assignments(params)

    try:
        with click.open_file(source, "r") as fh:
            program = parse_circuit(fh.read(), qubit_count=qubits, name=source)
        grad = parameter_shift_gradient(
            program,
            values,
            _observable(observable, program.qubit_count),
            engine=ExecutionEngine(config),
            hint=backend,
            shots=shots,
        )
    except QHybridError as exc:
        raise click.ClickException(str(exc)) from exc

    if fmt == "json":
        print_json(grad)
        return
    for name in sorted(grad):
        echo(f"d/d{name} = {grad[name]:+.6f}")


# =============================================================================
# crosscheck
# =============================================================================


@click.command("crosscheck")
@click.argument("source", type=click.Path(allow_dash=True))
@click.option("--qubits", "-q", type=int, default=None, help="Register width.")
@click.option("--shots", "-s", type=click.IntRange(min=1), default=4096, show_default=True)
@click.option("--param", "-p", "params", multiple=True, help="Bind NAME=VALUE.")
@click.option("--seed", type=int, default=None, help="Sampling seed.")
@click.option(
    "--tolerance",
    type=click.FloatRange(min=0.0, max=1.0),
    default=0.05,
    show_default=True,
    help="Largest acceptable TVD.",
)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["pretty", "json"]),
    default="pretty",
)
def crosscheck_command(
    source: str,
    qubits: int | None,
    shots: int,
    params: tuple[str, ...],
    seed: int | None,
    tolerance: float,
    fmt: str,
) -> None:
    """
    Sample SOURCE on the dense and MPS backends and compare the counts.

    Exits with status 1 when the total variation distance exceeds
    --tolerance.
    """
    from qhybrid.config import load_config
    from qhybrid.errors import QHybridError
    from qhybrid.execution import ExecutionEngine

    config = load_config()
    if seed is not None:
        config = replace(config, seed=seed)

    try:
        program = _load_program(source, qubits, params)
        comparison = ExecutionEngine(config).compare_backends(program, shots)
    except QHybridError as exc:
        raise click.ClickException(str(exc)) from exc

    consistent = comparison.consistent(tolerance)
    if fmt == "json":
        print_json({**comparison.to_dict(), "consistent": consistent})
    else:
        echo(f"Program:       {program.name} ({program.qubit_count} qubits)")
        echo(f"TVD:           {comparison.tvd:.6f}")
        echo(f"MPS fidelity:  {comparison.mps.fidelity_estimate:.6f}")
        echo(f"Consistent:    {'yes' if consistent else 'no'}")
    if not consistent:
        raise SystemExit(1)
