# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Administrative CLI commands.

Commands
--------
config
    Display the configuration read from the environment.
devices
    List the devices a default session exposes and their limits.
gates
    List the gate set.
"""

from __future__ import annotations

import click

from qhybrid.cli._utils import echo, print_json, print_table


def register(cli: click.Group) -> None:
    """Register admin commands with CLI."""
    cli.add_command(config_cmd)
    cli.add_command(devices_cmd)
    cli.add_command(gates_cmd)


@click.command("config")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["pretty", "json"]),
    default="pretty",
)
def config_cmd(fmt: str) -> None:
    """Show current configuration."""
    from qhybrid.config import load_config

    try:
        config = load_config()
    except ValueError as exc:
        raise click.ClickException(f"Invalid configuration: {exc}") from exc

    data = config.to_dict()
    if fmt == "json":
        print_json(data)
        return

    width = max(len(k) for k in data)
    echo("qhybrid configuration")
    echo("=" * 21)
    for key, value in data.items():
        echo(f"{key:<{width}}  {value}")


@click.command("devices")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["pretty", "json"]),
    default="pretty",
)
def devices_cmd(fmt: str) -> None:
    """List devices and what they accept."""
    from qhybrid.config import load_config
    from qhybrid.kernel import KernelSession

    config = load_config()
    kernel = KernelSession(config)
    rows = []
    for device in kernel.devices:
        caps = device.capabilities(config)
        rows.append(
            {
                "name": device.name,
                "device_id": device.device_id,
                "slots": device.slots,
                "max_shots": device.shot_limit(config),
                **caps.to_dict(),
            }
        )

    if fmt == "json":
        print_json(rows)
        return

    print_table(
        ["Name", "Max qubits", "Dense up to", "MPS", "Bond cap", "Max shots", "Slots"],
        [
            [
                r["name"],
                r["max_qubits"],
                r["max_qubits_dense"],
                "yes" if r["supports_mps"] else "no",
                r["max_bond_dimension"] if r["max_bond_dimension"] is not None else "-",
                f"{r['max_shots']:,}",
                r["slots"],
            ]
            for r in rows
        ],
        title="Devices",
    )


@click.command("gates")
def gates_cmd() -> None:
    """List supported gates."""
    from qhybrid.circuit import GATE_REGISTRY

    print_table(
        ["Gate", "Qubits", "Params", "Shift rule", "Aliases"],
        [
            [
                d.name,
                d.arity,
                d.num_params,
                "yes" if d.shift_rule else "no",
                ", ".join(d.aliases) or "-",
            ]
            for d in GATE_REGISTRY
        ],
        title="Gates",
    )
