# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Exception hierarchy for qhybrid.

All public exceptions raised by qhybrid inherit from :class:`QHybridError`,
enabling catch-all error handling at the package boundary.

Hierarchy
---------
::

    QHybridError
    ├── KernelError
    │   ├── PermissionDenied
    │   ├── NotDelegatable
    │   ├── InsufficientGrant
    │   ├── InvalidHandle
    │   ├── ResourceOpenError
    │   └── KernelInvariantError
    ├── ChannelError
    │   ├── ChannelClosed
    │   ├── ChannelFull
    │   └── ChannelTimeout
    ├── CircuitValidationError
    ├── BackendCapacityExceeded
    ├── JobError
    │   ├── JobNotFound
    │   ├── JobTimeout
    │   └── JobCancelled
    └── SimulationNumericalError

Examples
--------
>>> from qhybrid.errors import QHybridError, PermissionDenied
>>> try:
...     client.submit_circuit(device, program, shots=100)
... except PermissionDenied as exc:
...     print(f"denied on {exc.resource_id}")
... except QHybridError:
...     print("other qhybrid error")
"""

from __future__ import annotations

from typing import Any


class QHybridError(Exception):
    """
    Base exception for all qhybrid operations.

    Every public exception in qhybrid is a subclass of this type, so
    ``except QHybridError`` is guaranteed to intercept any error
    originating from the core.
    """

    #: Stable numeric code used when the error crosses a channel.
    code: int = 1

    def to_dict(self) -> dict[str, Any]:
        """Describe the error for an IPC reply."""
        return {"code": self.code, "type": type(self).__name__, "message": str(self)}


# =============================================================================
# Kernel errors
# =============================================================================


class KernelError(QHybridError):
    """Base exception for capability, handle and session operations."""

    code = 100


class PermissionDenied(KernelError):
    """
    Raised when a capability check fails.

    Parameters
    ----------
    resource_id : str
        Resource the caller tried to access.
    required : Any
        Permission bits that were required.
    reason : str
        Short human-readable reason (expired, revoked, missing bits...).
    """

    code = 101

    def __init__(self, resource_id: str, required: Any, reason: str) -> None:
        self.resource_id = resource_id
        self.required = required
        self.reason = reason
        super().__init__(f"Permission denied on {resource_id}: {reason}")


class NotDelegatable(KernelError):
    """Raised when delegating from a capability that cannot be delegated."""

    code = 102

    def __init__(self, capability_id: str) -> None:
        self.capability_id = capability_id
        super().__init__(f"Capability is not delegatable: {capability_id}")


class InsufficientGrant(KernelError):
    """Raised when a delegation asks for bits outside the parent's."""

    code = 103

    def __init__(self, capability_id: str, requested: Any, held: Any) -> None:
        self.capability_id = capability_id
        self.requested = requested
        self.held = held
        super().__init__(
            f"Cannot delegate {requested!r} from {capability_id}: holds {held!r}"
        )


class InvalidHandle(KernelError):
    """
    Raised when a handle id is stale, unknown, or of the wrong kind.

    Parameters
    ----------
    handle_id : Any
        The offending handle id.
    reason : str
        Why the id was rejected.
    """

    code = 104

    def __init__(self, handle_id: Any, reason: str = "unknown handle") -> None:
        self.handle_id = handle_id
        self.reason = reason
        super().__init__(f"Invalid handle {handle_id}: {reason}")


class ResourceOpenError(KernelError):
    """Raised when a resource cannot be opened from the given arguments."""

    code = 105


class KernelInvariantError(KernelError):
    """
    Raised on handle-table or capability corruption.

    This can never be caused by a correct caller. It is fatal to the
    kernel-side session of the owning process.
    """

    code = 199


# =============================================================================
# Channel errors
# =============================================================================


class ChannelError(QHybridError):
    """Base exception for channel operations."""

    code = 200


class ChannelClosed(ChannelError):
    """Raised when sending to or receiving from a closed channel."""

    code = 201

    def __init__(self, channel_id: str) -> None:
        self.channel_id = channel_id
        super().__init__(f"Channel closed: {channel_id}")


class ChannelFull(ChannelError):
    """Raised when a bounded channel direction cannot accept a message."""

    code = 202

    def __init__(self, channel_id: str, capacity: int) -> None:
        self.channel_id = channel_id
        self.capacity = capacity
        super().__init__(f"Channel full: {channel_id} (capacity {capacity})")


class ChannelTimeout(ChannelError):
    """Raised when a blocking receive times out."""

    code = 203

    def __init__(self, channel_id: str, timeout: float) -> None:
        self.channel_id = channel_id
        self.timeout = timeout
        super().__init__(f"No message on {channel_id} within {timeout}s")


# =============================================================================
# Circuit, backend and simulation errors
# =============================================================================


class CircuitValidationError(QHybridError):
    """Raised for out-of-range targets, malformed parameters and similar."""

    code = 300


class BackendCapacityExceeded(QHybridError):
    """
    Raised when no available backend can hold the requested circuit.

    Parameters
    ----------
    qubit_count : int
        Qubits requested.
    limit : int
        Largest qubit count the selected (or any) backend accepts.
    backend : str
        Backend that was considered.
    """

    code = 301

    def __init__(self, qubit_count: int, limit: int, backend: str) -> None:
        self.qubit_count = qubit_count
        self.limit = limit
        self.backend = backend
        super().__init__(
            f"{qubit_count} qubits exceeds {backend} backend limit of {limit}"
        )


class SimulationNumericalError(QHybridError):
    """Raised when normalization drift is beyond recoverable tolerance."""

    code = 302

    def __init__(self, norm: float, tolerance: float) -> None:
        self.norm = norm
        self.tolerance = tolerance
        super().__init__(
            f"State norm {norm!r} drifted beyond recoverable tolerance {tolerance}"
        )


# =============================================================================
# Job errors
# =============================================================================


class JobError(QHybridError):
    """Base exception for job lifecycle errors."""

    code = 400


class JobNotFound(JobError):
    """Raised when a job id is unknown to the session."""

    code = 401

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class JobTimeout(JobError):
    """Raised (and recorded on the job) when a job's deadline passes."""

    code = 402

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job deadline exceeded: {job_id}")


class JobCancelled(JobError):
    """Raised when a job was cancelled before producing its results."""

    code = 403

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job cancelled: {job_id}")
