# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""Capabilities, handles, channels and the process-facing kernel session."""

from qhybrid.kernel.capability import (
    AuditEntry,
    Capability,
    CapabilityAuthority,
    CapabilitySet,
    LogicalClock,
    Permission,
)
from qhybrid.kernel.channel import BackpressurePolicy, Channel, ChannelEndpoint
from qhybrid.kernel.devices import (
    CalibrationProfile,
    DeviceCapabilities,
    DeviceRegistry,
    QuantumDevice,
)
from qhybrid.kernel.handles import HandleId, HandleKind, HandleTable, ResourceHandle
from qhybrid.kernel.messages import (
    Acknowledge,
    AckStatus,
    CircuitProgramSubmit,
    ControlKind,
    ControlSignal,
    ErrorReply,
    MeasurementBatch,
    MeasurementRequest,
    Message,
    StatisticsSnapshot,
)
from qhybrid.kernel.server import ChannelServer
from qhybrid.kernel.session import KernelSession, ProcessClient


__all__ = [
    "AckStatus",
    "Acknowledge",
    "AuditEntry",
    "BackpressurePolicy",
    "CalibrationProfile",
    "Capability",
    "CapabilityAuthority",
    "CapabilitySet",
    "Channel",
    "ChannelEndpoint",
    "ChannelServer",
    "CircuitProgramSubmit",
    "ControlKind",
    "ControlSignal",
    "DeviceCapabilities",
    "DeviceRegistry",
    "ErrorReply",
    "HandleId",
    "HandleKind",
    "HandleTable",
    "KernelSession",
    "LogicalClock",
    "MeasurementBatch",
    "MeasurementRequest",
    "Message",
    "Permission",
    "ProcessClient",
    "QuantumDevice",
    "ResourceHandle",
    "StatisticsSnapshot",
]
