# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Command-line interface.

Registered as the ``qhybrid`` console script. Commands are grouped by
module and attached to the root group through each module's
``register`` function.
"""

from __future__ import annotations

import logging

import click

from qhybrid.cli import admin, execute


@click.group()
@click.option("--verbose", "-v", count=True, help="Increase log verbosity (-v, -vv).")
@click.version_option(package_name="qhybrid", message="%(prog)s %(version)s")
def cli(verbose: int) -> None:
    """Hybrid quantum/classical execution kernel."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


execute.register(cli)
admin.register(cli)


def main() -> None:
    """Run the ``qhybrid`` CLI."""
    cli()


if __name__ == "__main__":
    main()
