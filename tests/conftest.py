# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Shared test fixtures.

Sessions are built with ``workers=0`` unless a test needs threads, so
scheduling is deterministic: ``wait`` and ``dispatch_once`` step the
scheduler on the calling thread.
"""

from __future__ import annotations

import os
from typing import Any, Callable, Iterator

import numpy as np
import pytest
from click.testing import CliRunner

from qhybrid.circuit import CircuitBuilder, CircuitProgram
from qhybrid.cli import cli
from qhybrid.config import Config, reset_config
from qhybrid.kernel import (
    HandleKind,
    KernelSession,
    Permission,
    ProcessClient,
    ResourceHandle,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Strip QHYBRID_* variables and reset the cached config."""
    for key in list(os.environ):
        if key.startswith("QHYBRID_"):
            monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config() -> Config:
    """Single-threaded, seeded configuration."""
    return Config(workers=0, seed=1234, tick_interval=0.01)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(2024)


@pytest.fixture
def bell() -> CircuitProgram:
    """Two-qubit Bell-state preparation."""
    return CircuitBuilder(2).h(0).cx(0, 1).build("bell")


@pytest.fixture
def ghz() -> Callable[[int], CircuitProgram]:
    """Factory for n-qubit GHZ programs."""

    def _make(n: int) -> CircuitProgram:
        builder = CircuitBuilder(n).h(0)
        for q in range(n - 1):
            builder.cx(q, q + 1)
        return builder.build(f"ghz{n}")

    return _make


@pytest.fixture
def kernel(config: Config) -> Iterator[KernelSession]:
    """Started kernel session with the default simulator device."""
    with KernelSession(config) as session:
        yield session


@pytest.fixture
def client(kernel: KernelSession) -> ProcessClient:
    return kernel.connect("test-process")


@pytest.fixture
def device_handle(kernel: KernelSession, client: ProcessClient) -> ResourceHandle:
    """Open DEVICE handle on the simulator with READ | EXECUTE."""
    device = kernel.devices.get("simulator")
    cap = kernel.grant(client, device.device_id, Permission.READ | Permission.EXECUTE)
    return client.open(HandleKind.DEVICE, {"device": "simulator"}, cap)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def invoke(cli_runner: CliRunner) -> Callable[..., Any]:
    """
    Invoke CLI commands.

    Usage:
        result = invoke("run", "bell.qc", "--shots", "100")
    """

    def _invoke(*args: str, input: str | None = None):
        return cli_runner.invoke(
            cli, list(args), catch_exceptions=False, input=input, prog_name="qhybrid"
        )

    return _invoke
