# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Messages exchanged over channels.

Every message is a frozen dataclass deriving from :class:`Message`, so a
message cannot change after it is sent. Requests flow from a process to
the kernel; replies flow back on the other direction of the same channel.

Requests
--------
- :class:`CircuitProgramSubmit`
- :class:`MeasurementRequest`
- :class:`ControlSignal`

Replies
-------
- :class:`Acknowledge`
- :class:`StatisticsSnapshot`
- :class:`MeasurementBatch`
- :class:`ErrorReply`
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from qhybrid.utils.common import generate_ulid, monotonic_ns


if TYPE_CHECKING:
    from qhybrid.circuit.program import CircuitProgram
    from qhybrid.errors import QHybridError
    from qhybrid.kernel.handles import HandleId
    from qhybrid.measurement.events import MeasurementEvent
    from qhybrid.measurement.statistics import MeasurementStatistics


@dataclass(frozen=True, kw_only=True)
class Message:
    """Base of every channel message."""

    sender: str = ""
    message_id: str = field(default_factory=generate_ulid)
    timestamp_ns: int = field(default_factory=monotonic_ns)


# =============================================================================
# Requests
# =============================================================================


@dataclass(frozen=True, kw_only=True)
class CircuitProgramSubmit(Message):
    """Submit ``program`` for ``shots`` shots on the device behind ``device``."""

    device: HandleId
    program: CircuitProgram
    shots: int
    backend_hint: str | None = None
    priority: int = 2
    timeout: float | None = None


@dataclass(frozen=True, kw_only=True)
class MeasurementRequest(Message):
    """Drain up to ``max_events`` measurement events of a job."""

    job_id: str
    max_events: int | None = None


class ControlKind(str, Enum):
    """Out-of-band control signals."""

    CANCEL = "cancel"
    TIMEOUT = "timeout"


@dataclass(frozen=True, kw_only=True)
class ControlSignal(Message):
    """Cancel a job, or report that the sender gave up waiting on it."""

    job_id: str
    kind: ControlKind = ControlKind.CANCEL


# =============================================================================
# Replies
# =============================================================================


class AckStatus(str, Enum):
    """Acknowledgement states for a request."""

    RECEIVED = "received"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    PROCESSING = "processing"
    COMPLETED = "completed"


@dataclass(frozen=True, kw_only=True)
class Acknowledge(Message):
    """Request accepted; carries the job id when a job was created."""

    original_message_id: str
    status: AckStatus = AckStatus.ACCEPTED
    job_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class StatisticsSnapshot(Message):
    """Statistics over the shots a job has completed so far."""

    job_id: str
    statistics: MeasurementStatistics
    completed_shots: int
    total_shots: int
    final: bool = False


@dataclass(frozen=True, kw_only=True)
class MeasurementBatch(Message):
    """Events drained in answer to a :class:`MeasurementRequest`."""

    job_id: str
    events: tuple[MeasurementEvent, ...]
    final: bool = False


@dataclass(frozen=True, kw_only=True)
class ErrorReply(Message):
    """A failed request, described by its error code and type name."""

    original_message_id: str
    code: int
    error_type: str
    description: str
    job_id: str | None = None

    @classmethod
    def from_exception(
        cls,
        exc: QHybridError,
        original_message_id: str,
        sender: str = "kernel",
        job_id: str | None = None,
    ) -> ErrorReply:
        info: dict[str, Any] = exc.to_dict()
        return cls(
            sender=sender,
            original_message_id=original_message_id,
            code=info["code"],
            error_type=info["type"],
            description=info["message"],
            job_id=job_id,
        )
