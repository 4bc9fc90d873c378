# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Simulated quantum devices.

A :class:`QuantumDevice` is the resource behind a ``DEVICE`` handle. It
names a simulator instance, limits what may be submitted to it and, when
present, carries a :class:`CalibrationProfile` readable through a
``CALIBRATION_PROFILE`` handle.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Iterator

from qhybrid.config import Config
from qhybrid.errors import ResourceOpenError
from qhybrid.utils.common import generate_ulid, utc_now_iso


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalibrationProfile:
    """
    Descriptive calibration data of a device.

    The simulators are noiseless; the profile is informational only.
    """

    gate_fidelities: dict[str, float] = field(default_factory=dict)
    coherence_time_us: float = 0.0
    readout_fidelity: float = 1.0
    recorded_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "gate_fidelities": dict(self.gate_fidelities),
            "coherence_time_us": self.coherence_time_us,
            "readout_fidelity": self.readout_fidelity,
            "recorded_at": self.recorded_at,
        }


@dataclass(frozen=True)
class DeviceCapabilities:
    """What a device accepts, as reported to processes."""

    max_qubits_dense: int
    supports_mps: bool
    max_bond_dimension: int | None
    max_qubits: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_qubits_dense": self.max_qubits_dense,
            "supports_mps": self.supports_mps,
            "max_bond_dimension": self.max_bond_dimension,
            "max_qubits": self.max_qubits,
        }


@dataclass(frozen=True)
class QuantumDevice:
    """
    A simulated device.

    Attributes
    ----------
    name : str
        Unique human-readable name.
    max_qubits : int or None
        Device qubit limit; ``None`` defers to the engine limits.
    max_shots : int or None
        Device shot limit; ``None`` defers to ``Config.max_shots``.
    slots : int
        Concurrent job slices the device serves.
    supports_mps : bool
        Whether the MPS backend may run on this device.
    calibration : CalibrationProfile or None
        Calibration data.
    device_id : str
        Resource id that capabilities are bound to.
    """

    name: str
    max_qubits: int | None = None
    max_shots: int | None = None
    slots: int = 1
    supports_mps: bool = True
    calibration: CalibrationProfile | None = None
    device_id: str = field(default_factory=generate_ulid)

    def engine_config(self, config: Config) -> Config:
        """Session config narrowed to what this device allows."""
        return replace(config, enable_mps=config.enable_mps and self.supports_mps)

    def capabilities(self, config: Config) -> DeviceCapabilities:
        cfg = self.engine_config(config)
        engine_max = cfg.max_mps_qubits if cfg.enable_mps else cfg.dense_threshold
        max_qubits = engine_max if self.max_qubits is None else min(engine_max, self.max_qubits)
        return DeviceCapabilities(
            max_qubits_dense=min(cfg.dense_threshold, max_qubits),
            supports_mps=cfg.enable_mps,
            max_bond_dimension=cfg.max_bond_dimension if cfg.enable_mps else None,
            max_qubits=max_qubits,
        )

    def shot_limit(self, config: Config) -> int:
        if self.max_shots is None:
            return config.max_shots
        return min(self.max_shots, config.max_shots)


class DeviceRegistry:
    """Devices known to a session, by id and by name."""

    def __init__(self) -> None:
        self._by_id: dict[str, QuantumDevice] = {}
        self._lock = threading.Lock()

    def register(self, device: QuantumDevice) -> QuantumDevice:
        with self._lock:
            if device.device_id in self._by_id:
                raise ValueError(f"Device already registered: {device.device_id}")
            if any(d.name == device.name for d in self._by_id.values()):
                raise ValueError(f"Device name already in use: {device.name}")
            self._by_id[device.device_id] = device
        logger.info("Registered device %s (%s)", device.name, device.device_id)
        return device

    def get(self, key: str) -> QuantumDevice:
        """
        Find a device by id or name.

        Raises
        ------
        ResourceOpenError
            If no device matches.
        """
        with self._lock:
            device = self._by_id.get(key)
            if device is None:
                device = next((d for d in self._by_id.values() if d.name == key), None)
        if device is None:
            raise ResourceOpenError(f"Unknown device: {key!r}")
        return device

    def __iter__(self) -> Iterator[QuantumDevice]:
        with self._lock:
            return iter(list(self._by_id.values()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)
