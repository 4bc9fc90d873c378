# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Configuration management.

Configuration is read from ``QHYBRID_*`` environment variables into an
immutable :class:`Config`. A process-wide cached instance is available
through :func:`get_config`; sessions and engines also accept an explicit
``Config`` so tests never depend on the environment.

Environment Variables
---------------------
QHYBRID_DENSE_THRESHOLD
    Largest qubit count simulated on the dense backend (default 12).
QHYBRID_MAX_MPS_QUBITS
    Largest qubit count accepted by the MPS backend (default 128).
QHYBRID_MAX_BOND_DIMENSION
    MPS bond dimension cap; ``0`` or ``none`` disables the cap (default 64).
QHYBRID_SVD_CUTOFF
    Relative singular value cutoff for MPS truncation (default 1e-12).
QHYBRID_WORKERS
    Number of scheduler worker threads (default 2).
QHYBRID_SCHEDULER_POLICY
    ``aging`` (default) or ``strict``.
QHYBRID_CHANNEL_POLICY
    ``block`` (default) or ``reject``.
QHYBRID_SEED
    Seed for shot sampling; unset means nondeterministic.

Examples
--------
>>> from qhybrid.config import Config, set_config
>>> set_config(Config(workers=4, dense_threshold=10))
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import asdict, dataclass
from typing import Any


logger = logging.getLogger(__name__)

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_NONE_VALUES = frozenset({"", "0", "none", "unbounded"})

SCHEDULER_POLICIES = ("aging", "strict")
CHANNEL_POLICIES = ("block", "reject")


@dataclass(frozen=True)
class Config:
    """
    Runtime configuration for a kernel session.

    Attributes
    ----------
    dense_threshold : int
        Auto-selection ceiling (and hard limit) for the dense backend.
    enable_mps : bool
        Whether the MPS backend may be selected.
    max_mps_qubits : int
        Hard qubit limit for the MPS backend.
    max_bond_dimension : int or None
        MPS bond cap. ``None`` means unbounded.
    svd_cutoff : float
        Singular values below ``svd_cutoff * s_max`` are discarded.
    normalization_tolerance : float
        Norm drift above this is silently rescaled after a gate.
    numerical_failure_tolerance : float
        Norm drift above this is unrecoverable.
    workers : int
        Scheduler worker threads. ``0`` means callers step the
        scheduler with ``dispatch_once``.
    scheduler_policy : str
        Ready queue policy name.
    aging_interval : int
        Dispatches a waiting entity needs to gain one priority level.
    gate_quantum : int
        Gate applications per job slice.
    shot_batch : int
        Shots sampled per job slice.
    max_shots : int
        Largest shot count accepted at submission.
    channel_capacity : int
        Default per-direction channel capacity.
    channel_policy : str
        Default backpressure policy.
    reply_timeout : float
        Seconds the kernel waits to push a reply into a full channel.
    audit_log_size : int
        Capability denials retained for audit.
    snapshot_interval : int
        Emit incremental statistics every N shots (``0`` disables).
    tick_interval : float
        Idle wake-up period of workers, used for deadline sweeps.
    seed : int or None
        Base seed for sampling.
    """

    dense_threshold: int = 12
    enable_mps: bool = True
    max_mps_qubits: int = 128
    max_bond_dimension: int | None = 64
    svd_cutoff: float = 1e-12
    normalization_tolerance: float = 1e-10
    numerical_failure_tolerance: float = 1e-3
    workers: int = 2
    scheduler_policy: str = "aging"
    aging_interval: int = 8
    gate_quantum: int = 32
    shot_batch: int = 256
    max_shots: int = 1_000_000
    channel_capacity: int = 64
    channel_policy: str = "block"
    reply_timeout: float = 5.0
    audit_log_size: int = 1024
    snapshot_interval: int = 0
    tick_interval: float = 0.05
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.scheduler_policy not in SCHEDULER_POLICIES:
            raise ValueError(
                f"scheduler_policy must be one of {SCHEDULER_POLICIES}, "
                f"got {self.scheduler_policy!r}"
            )
        if self.channel_policy not in CHANNEL_POLICIES:
            raise ValueError(
                f"channel_policy must be one of {CHANNEL_POLICIES}, "
                f"got {self.channel_policy!r}"
            )
        if self.dense_threshold < 1:
            raise ValueError("dense_threshold must be >= 1")
        if self.max_bond_dimension is not None and self.max_bond_dimension < 1:
            raise ValueError("max_bond_dimension must be >= 1 or None")
        if self.workers < 0:
            raise ValueError("workers must be >= 0")
        if self.gate_quantum < 1 or self.shot_batch < 1:
            raise ValueError("gate_quantum and shot_batch must be >= 1")
        if self.channel_capacity < 1:
            raise ValueError("channel_capacity must be >= 1")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Parsing helpers
# =============================================================================


def _parse_bool(value: str | None, default: bool = True) -> bool:
    """Parse a boolean environment value; empty or missing gives ``default``."""
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUTHY


def _parse_int(value: str | None, default: int) -> int:
    """Parse an integer environment value, falling back on bad input."""
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError:
        logger.warning("Ignoring invalid integer value %r", value)
        return default


def _parse_float(value: str | None, default: float) -> float:
    """Parse a float environment value, falling back on bad input."""
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError:
        logger.warning("Ignoring invalid float value %r", value)
        return default


def _parse_optional_int(value: str | None, default: int | None) -> int | None:
    """Parse an int where ``0``/``none``/``unbounded`` mean ``None``."""
    if value is None:
        return default
    if value.strip().lower() in _NONE_VALUES:
        return None
    return _parse_int(value, default if default is not None else 0) or None


def load_config() -> Config:
    """
    Build a :class:`Config` from ``QHYBRID_*`` environment variables.

    Returns
    -------
    Config
        Fresh configuration; unset variables keep their defaults.
    """
    env = os.environ
    defaults = Config()
    seed_raw = env.get("QHYBRID_SEED")

    return Config(
        dense_threshold=_parse_int(
            env.get("QHYBRID_DENSE_THRESHOLD"), defaults.dense_threshold
        ),
        enable_mps=_parse_bool(env.get("QHYBRID_ENABLE_MPS"), defaults.enable_mps),
        max_mps_qubits=_parse_int(
            env.get("QHYBRID_MAX_MPS_QUBITS"), defaults.max_mps_qubits
        ),
        max_bond_dimension=_parse_optional_int(
            env.get("QHYBRID_MAX_BOND_DIMENSION"), defaults.max_bond_dimension
        ),
        svd_cutoff=_parse_float(env.get("QHYBRID_SVD_CUTOFF"), defaults.svd_cutoff),
        workers=_parse_int(env.get("QHYBRID_WORKERS"), defaults.workers),
        scheduler_policy=(
            env.get("QHYBRID_SCHEDULER_POLICY", defaults.scheduler_policy)
            .strip()
            .lower()
        ),
        aging_interval=_parse_int(
            env.get("QHYBRID_AGING_INTERVAL"), defaults.aging_interval
        ),
        gate_quantum=_parse_int(env.get("QHYBRID_GATE_QUANTUM"), defaults.gate_quantum),
        shot_batch=_parse_int(env.get("QHYBRID_SHOT_BATCH"), defaults.shot_batch),
        channel_capacity=_parse_int(
            env.get("QHYBRID_CHANNEL_CAPACITY"), defaults.channel_capacity
        ),
        channel_policy=(
            env.get("QHYBRID_CHANNEL_POLICY", defaults.channel_policy).strip().lower()
        ),
        snapshot_interval=_parse_int(
            env.get("QHYBRID_SNAPSHOT_INTERVAL"), defaults.snapshot_interval
        ),
        seed=_parse_int(seed_raw, 0) if seed_raw and seed_raw.strip() else None,
    )


# =============================================================================
# Process-wide instance
# =============================================================================

_config: Config | None = None
_config_lock = threading.Lock()


def get_config() -> Config:
    """Return the cached configuration, loading it on first use."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_config()
    return _config


def set_config(config: Config) -> None:
    """Replace the cached configuration."""
    global _config
    with _config_lock:
        _config = config


def reset_config() -> None:
    """Clear the cached configuration; the next ``get_config`` reloads."""
    global _config
    with _config_lock:
        _config = None
