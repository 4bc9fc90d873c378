# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Shared CLI utilities.

Output helpers used across commands for consistent formatting.
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Sequence

import click


def echo(msg: str, *, err: bool = False) -> None:
    """
    Print message to stdout or stderr.

    Parameters
    ----------
    msg : str
        Message to print.
    err : bool, default=False
        If True, print to stderr instead of stdout.
    """
    click.echo(msg, err=err)


def print_json(obj: Any) -> None:
    """Print ``obj`` as indented JSON; unknown types are stringified."""
    click.echo(json.dumps(obj, indent=2, default=str))


def print_table(
    headers: Sequence[str],
    rows: Sequence[Sequence[Any]],
    title: str = "",
) -> None:
    """
    Print formatted ASCII table.

    Parameters
    ----------
    headers : sequence of str
        Column headers.
    rows : sequence of sequence
        Table rows, each as long as ``headers``.
    title : str, optional
        Title printed above the table.
    """
    if title:
        echo(f"\n{title}\n{'=' * len(title)}")

    if not rows:
        echo("(empty)")
        return

    widths = [len(str(h)) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            if i < len(widths):
                widths[i] = max(widths[i], len(str(cell)))

    fmt = "  ".join(f"{{:<{w}}}" for w in widths)
    echo(fmt.format(*headers))
    echo(fmt.format(*["-" * w for w in widths]))
    for row in rows:
        echo(fmt.format(*[str(c) for c in row]))


def format_counts_table(counts: Mapping[str, int], top_k: int = 10) -> str:
    """Format measurement counts as ASCII table, most frequent first."""
    total = sum(counts.values())
    ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    width = max([len("Outcome"), *(len(k) for k in counts)])
    lines = [
        f"Total shots: {total:,}",
        f"Unique outcomes: {len(counts)}",
        "",
        f"{'Outcome':<{width}} {'Count':>10} {'Prob':>10}",
        "-" * (width + 22),
    ]

    for bitstring, count in ordered[:top_k]:
        prob = count / total if total else 0.0
        lines.append(f"{bitstring:<{width}} {count:>10,} {prob:>10.4f}")

    if len(counts) > top_k:
        lines.append(f"... and {len(counts) - top_k} more outcomes")

    return "\n".join(lines)


def parse_assignments(values: Sequence[str]) -> dict[str, float]:
    """
    Parse ``name=value`` pairs given on the command line.

    Raises
    ------
    click.BadParameter
        If a pair is malformed or the value is not a number.
    """
    result: dict[str, float] = {}
    for item in values:
        name, sep, raw = item.partition("=")
        if not sep or not name.strip():
            raise click.BadParameter(f"expected NAME=VALUE, got {item!r}")
        try:
            result[name.strip()] = float(raw)
        except ValueError:
            raise click.BadParameter(f"{name.strip()}: {raw!r} is not a number") from None
    return result
