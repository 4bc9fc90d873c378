# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Kernel session and the process-facing IPC surface.

A :class:`KernelSession` owns every kernel-wide structure: the handle
table, the capability authority, the device registry, the scheduler and
one execution engine per device. Classical processes attach with
:meth:`KernelSession.connect` and get a :class:`ProcessClient`, through
which every operation is capability-checked against the capabilities
*that process* holds.

Quick Start
-----------
>>> with KernelSession() as kernel:
...     client = kernel.connect("analysis")
...     device = kernel.devices.get("simulator")
...     cap = kernel.grant(client, device.device_id, Permission.READ | Permission.EXECUTE)
...     handle = client.open(HandleKind.DEVICE, {"device": "simulator"}, cap)
...     program = CircuitBuilder(2).h(0).cx(0, 1).build("bell")
...     job_id = client.submit_circuit(handle, program, shots=1000)
...     client.wait(job_id)
...     stats = client.statistics(job_id)

Ownership
---------
Handles and jobs record their owner as a process id. A process that trips
a :class:`~qhybrid.errors.KernelInvariantError` is terminated: its jobs are
cancelled, its handles closed, and further calls are refused.
"""

from __future__ import annotations

import functools
import logging
import numbers
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, MutableSequence, TypeVar

import numpy as np

from qhybrid.circuit.program import CircuitProgram
from qhybrid.config import Config, get_config
from qhybrid.errors import (
    BackendCapacityExceeded,
    CircuitValidationError,
    InvalidHandle,
    JobCancelled,
    JobNotFound,
    KernelInvariantError,
    PermissionDenied,
    ResourceOpenError,
)
from qhybrid.execution.engine import ExecutionEngine
from qhybrid.kernel.capability import (
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
from qhybrid.measurement.events import MeasurementEvent, MeasurementStream
from qhybrid.measurement.observables import Observable
from qhybrid.measurement.statistics import MeasurementStatistics
from qhybrid.scheduler.context import (
    EntityState,
    Priority,
    QuantumJobContext,
    SchedulableEntity,
    TaskContext,
    TaskStep,
)
from qhybrid.scheduler.core import HybridScheduler, ProgressCallback
from qhybrid.utils.common import generate_ulid


if TYPE_CHECKING:
    from qhybrid.kernel.server import ChannelServer


logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

#: ``callback(finished_jobs, total_jobs)`` for :meth:`ProcessClient.submit_batch`.
BatchProgressCallback = Callable[[int, int], None]


@dataclass
class _ProcessRecord:
    process_id: str
    name: str
    capabilities: CapabilitySet = field(default_factory=CapabilitySet)
    alive: bool = True
    terminated_reason: str | None = None
    servers: list[ChannelServer] = field(default_factory=list)


@dataclass
class _JobRecord:
    job_id: str
    owner: str
    device_id: str
    context: QuantumJobContext
    stream: MeasurementStream
    job_handle: ResourceHandle | None = None
    stream_handle: ResourceHandle | None = None


@dataclass(frozen=True)
class _Submission:
    """A validated submission that has not been queued yet."""

    device: QuantumDevice
    engine: ExecutionEngine
    program: CircuitProgram
    shots: int
    backend_hint: str | None
    priority: Priority
    timeout: float | None


class _BatchTracker:
    """Counts finished jobs of one batch and reports each step."""

    def __init__(self, total: int, callback: BatchProgressCallback) -> None:
        self.total = total
        self.finished = 0
        self._callback = callback
        self._lock = threading.Lock()

    def job_done(self, entity: SchedulableEntity) -> None:
        with self._lock:
            self.finished += 1
            finished = self.finished
        self._callback(finished, self.total)


# =============================================================================
# Session
# =============================================================================


class KernelSession:
    """
    Kernel-side state shared by every attached process.

    Parameters
    ----------
    config : Config, optional
        Session configuration. Defaults to :func:`~qhybrid.config.get_config`.
    default_device : bool
        Register a device named ``"simulator"`` at construction.
    """

    def __init__(self, config: Config | None = None, *, default_device: bool = True) -> None:
        self.config = config or get_config()
        self.clock = LogicalClock()
        self.authority = CapabilityAuthority(self.clock, self.config.audit_log_size)
        self.handles = HandleTable()
        self.devices = DeviceRegistry()
        self.scheduler = HybridScheduler(self.config, clock=self.clock)
        self._engines: dict[str, ExecutionEngine] = {}
        self._processes: dict[str, _ProcessRecord] = {}
        self._jobs: dict[str, _JobRecord] = {}
        self._seeds = np.random.SeedSequence(self.config.seed)
        self._lock = threading.RLock()
        if default_device:
            self.register_device(QuantumDevice("simulator"))

    # -- lifecycle ------------------------------------------------------------

    def start(self) -> KernelSession:
        self.scheduler.start()
        return self

    def shutdown(self) -> None:
        """Stop channel servers and the scheduler, cancelling pending work."""
        with self._lock:
            servers = [s for p in self._processes.values() for s in p.servers]
        for server in servers:
            server.stop()
        self.scheduler.shutdown()
        logger.debug("Kernel session shut down")

    def __enter__(self) -> KernelSession:
        return self.start()

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

    # -- administration -------------------------------------------------------

    def register_device(self, device: QuantumDevice) -> QuantumDevice:
        self.devices.register(device)
        self.scheduler.device_time.register(device.device_id, device.slots)
        self._engines[device.device_id] = ExecutionEngine(device.engine_config(self.config))
        return device

    def connect(self, name: str = "") -> ProcessClient:
        """Attach a new classical process and return its client."""
        process_id = generate_ulid()
        with self._lock:
            self._processes[process_id] = _ProcessRecord(process_id, name or process_id)
        logger.info("Process %s (%s) connected", process_id, name)
        return ProcessClient(self, process_id)

    def grant(
        self,
        process: ProcessClient | str,
        resource_id: str,
        permissions: Permission,
        expires_at: int | None = None,
        delegatable: bool = False,
    ) -> Capability:
        """Mint a root capability and place it in the process's set."""
        record = self._process(process)
        cap = self.authority.mint(resource_id, permissions, expires_at, delegatable)
        record.capabilities.add(cap)
        return cap

    def revoke(self, capability: Capability | str) -> None:
        self.authority.revoke(capability)

    def process_alive(self, process: ProcessClient | str) -> bool:
        return self._process(process).alive

    def terminate_process(self, process: ProcessClient | str, reason: str) -> None:
        """Tear down a process session: cancel its jobs and close its handles."""
        record = self._process(process)
        with self._lock:
            if not record.alive:
                return
            record.alive = False
            record.terminated_reason = reason
            servers, record.servers = record.servers, []
        logger.critical("Terminating process session %s: %s", record.process_id, reason)
        self._release_owned(record.process_id)
        for server in servers:
            server.stop()

    def job_ids(self) -> list[str]:
        with self._lock:
            return list(self._jobs)

    # -- internals used by ProcessClient -------------------------------------

    def _process(self, process: ProcessClient | str) -> _ProcessRecord:
        process_id = process.process_id if isinstance(process, ProcessClient) else process
        with self._lock:
            record = self._processes.get(process_id)
        if record is None:
            raise KernelInvariantError(f"Unknown process {process_id}")
        return record

    def _job(self, job_id: str) -> _JobRecord:
        with self._lock:
            record = self._jobs.get(job_id)
        if record is None:
            raise JobNotFound(job_id)
        return record

    def _require(self, record: _ProcessRecord, resource_id: str, required: Permission) -> Capability:
        """Return a held capability granting ``required`` or deny."""
        cap = record.capabilities.find(resource_id, required, self.authority)
        if cap is not None:
            return cap
        candidate = next(
            (c for c in record.capabilities if c.resource_id == resource_id), None
        )
        if candidate is None:
            self.authority.deny(None, resource_id, required, "no capability held")
        self.authority.check(candidate, resource_id, required)
        # A held token may pass check yet lack bits another held token covers.
        self.authority.deny(candidate, resource_id, required, "no capability held")

    def _release_owned(self, process_id: str) -> None:
        for handle in self.handles.owned_by(process_id):
            try:
                self._close(process_id, handle.id)
            except InvalidHandle:
                logger.debug("Handle %s already released", handle.id)

    def _close(self, process_id: str, handle_id: HandleId) -> None:
        handle = self.handles.handle(handle_id)
        if handle.owner != process_id:
            raise InvalidHandle(handle_id, "not owned by caller")
        if handle.kind is HandleKind.JOB:
            job: _JobRecord = self.handles.resolve(handle_id, HandleKind.JOB)
            if not job.context.state.terminal:
                self.scheduler.cancel(job.job_id)
        self.handles.release(handle_id)

    def _on_job_done(self, entity: SchedulableEntity) -> None:
        if isinstance(entity.error, KernelInvariantError):
            self.terminate_process(entity.owner, str(entity.error))


# =============================================================================
# Process client
# =============================================================================


def _kernel_call(method: F) -> F:
    """Refuse calls from terminated processes; terminate on invariant failure."""

    @functools.wraps(method)
    def wrapper(self: ProcessClient, *args: Any, **kwargs: Any) -> Any:
        record = self._record
        if not record.alive:
            raise PermissionDenied(
                record.process_id, None, f"process terminated: {record.terminated_reason}"
            )
        try:
            return method(self, *args, **kwargs)
        except KernelInvariantError as exc:
            self._session.terminate_process(record.process_id, str(exc))
            raise

    return wrapper  # type: ignore[return-value]


def _handle_id(handle: ResourceHandle | HandleId) -> HandleId:
    return handle.id if isinstance(handle, ResourceHandle) else handle


def _check_priority(priority: Any) -> Priority:
    """Coerce a priority level, rejecting non-integers and unknown levels."""
    if isinstance(priority, bool) or not isinstance(priority, numbers.Integral):
        raise CircuitValidationError(f"priority must be an integer level, got {priority!r}")
    try:
        return Priority(int(priority))
    except ValueError:
        levels = ", ".join(f"{p.name}={p.value}" for p in Priority)
        raise CircuitValidationError(
            f"Unknown priority {priority!r} (expected {levels})"
        ) from None


class ProcessClient:
    """
    Operations available to one classical process.

    Obtained from :meth:`KernelSession.connect`; never constructed directly.
    """

    def __init__(self, session: KernelSession, process_id: str) -> None:
        self._session = session
        self.process_id = process_id

    @property
    def _record(self) -> _ProcessRecord:
        return self._session._process(self.process_id)

    @property
    def name(self) -> str:
        return self._record.name

    @property
    def alive(self) -> bool:
        return self._record.alive

    @property
    def capabilities(self) -> list[Capability]:
        return list(self._record.capabilities)

    def __repr__(self) -> str:
        return f"ProcessClient(process_id={self.process_id!r})"

    # -------------------------------------------------------------------------
    # Handles
    # -------------------------------------------------------------------------

    @_kernel_call
    def open(
        self,
        kind: HandleKind | str,
        init_args: Mapping[str, Any],
        capability: Capability,
    ) -> ResourceHandle:
        """
        Open a kernel resource.

        Parameters
        ----------
        kind : HandleKind
            ``DEVICE`` and ``CALIBRATION_PROFILE`` take ``{"device": name
            or id}``; ``JOB`` and ``MEASUREMENT_STREAM`` take
            ``{"job_id": ...}``.
        init_args : mapping
            Kind-specific arguments.
        capability : Capability
            Token held by this process granting ``READ`` on the resource.

        Raises
        ------
        PermissionDenied
            If the token is not held by this process or does not grant
            ``READ``.
        ResourceOpenError
            If the arguments do not name an openable resource.
        """
        session = self._session
        record = self._record
        try:
            kind = HandleKind(kind)
        except ValueError:
            raise ResourceOpenError(f"Unknown handle kind {kind!r}") from None

        if kind in (HandleKind.DEVICE, HandleKind.CALIBRATION_PROFILE):
            key = init_args.get("device")
            if not key:
                raise ResourceOpenError(f"{kind} requires a 'device' argument")
            device = session.devices.get(str(key))
            resource_id = device.device_id
        else:
            job_id = init_args.get("job_id")
            if not job_id:
                raise ResourceOpenError(f"{kind} requires a 'job_id' argument")
            job = session._job(str(job_id))
            resource_id = job.job_id

        if capability not in record.capabilities:
            session.authority.deny(
                capability, resource_id, Permission.READ, "capability not held by caller"
            )
        session.authority.check(capability, resource_id, Permission.READ)

        if kind is HandleKind.DEVICE:
            resource: Any = device
        elif kind is HandleKind.CALIBRATION_PROFILE:
            if device.calibration is None:
                raise ResourceOpenError(f"Device {device.name} has no calibration profile")
            resource = device.calibration
        elif kind is HandleKind.JOB:
            resource = job
        else:
            resource = job.stream
        return session.handles.allocate(kind, self.process_id, resource)

    @_kernel_call
    def close(self, handle: ResourceHandle | HandleId) -> None:
        """
        Release a handle. Closing a job handle of an unfinished job cancels
        the job first.

        Raises
        ------
        InvalidHandle
            If the handle is stale, unknown or owned by another process.
        """
        self._session._close(self.process_id, _handle_id(handle))

    def _owned(self, handle: ResourceHandle | HandleId, kind: HandleKind) -> Any:
        session = self._session
        handle_id = _handle_id(handle)
        record = session.handles.handle(handle_id, kind)
        if record.owner != self.process_id:
            raise InvalidHandle(handle_id, "not owned by caller")
        return session.handles.resolve(handle_id, kind)

    @_kernel_call
    def device_capabilities(self, handle: ResourceHandle | HandleId) -> DeviceCapabilities:
        device: QuantumDevice = self._owned(handle, HandleKind.DEVICE)
        self._session._require(self._record, device.device_id, Permission.READ)
        return device.capabilities(self._session.config)

    @_kernel_call
    def calibration(self, handle: ResourceHandle | HandleId) -> CalibrationProfile:
        return self._owned(handle, HandleKind.CALIBRATION_PROFILE)

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------

    @_kernel_call
    def submit_circuit(
        self,
        handle: ResourceHandle | HandleId,
        program: CircuitProgram,
        shots: int,
        backend_hint: str | None = None,
        *,
        priority: int = Priority.NORMAL,
        timeout: float | None = None,
    ) -> str:
        """
        Submit ``program`` for execution on the device behind ``handle``.

        Validation happens before anything is queued.

        Parameters
        ----------
        handle : ResourceHandle
            Open ``DEVICE`` handle owned by this process.
        program : CircuitProgram
            Fully bound program.
        shots : int
            Number of shots, at least 1.
        backend_hint : str, optional
            ``"dense"``, ``"mps"`` or ``"auto"``.
        priority : int
            Dispatch priority.
        timeout : float, optional
            Seconds from submission after which the job fails with
            :class:`~qhybrid.errors.JobTimeout`.

        Returns
        -------
        str
            Job id. The process receives a delegatable ``FULL`` capability
            on it, plus job and measurement stream handles.

        Raises
        ------
        PermissionDenied
            Without ``EXECUTE`` on the device.
        CircuitValidationError
            On bad shots, priority, timeout or unbound parameters.
        BackendCapacityExceeded
            If the program is too wide for the device or any backend.
        """
        submission = self._validate_submission(
            handle, program, shots, backend_hint, priority, timeout
        )
        return self._admit(submission)

    @_kernel_call
    def submit_batch(
        self,
        handle: ResourceHandle | HandleId,
        programs: Iterable[CircuitProgram | tuple[CircuitProgram, int]],
        shots: int | None = None,
        backend_hint: str | None = None,
        *,
        priority: int = Priority.NORMAL,
        timeout: float | None = None,
        on_progress: BatchProgressCallback | None = None,
    ) -> list[str]:
        """
        Submit several programs to one device as a batch.

        Every entry is validated before any job is queued, so a rejected
        entry leaves nothing behind.

        Parameters
        ----------
        handle : ResourceHandle
            Open ``DEVICE`` handle owned by this process.
        programs : iterable
            Programs, or ``(program, shots)`` pairs overriding ``shots``.
        shots : int, optional
            Shots for entries given without their own count.
        on_progress : callable, optional
            Called as ``on_progress(finished, total)`` each time a job of the
            batch reaches a terminal state, whatever that state is.

        Returns
        -------
        list of str
            Job ids in submission order.

        Raises
        ------
        CircuitValidationError
            For an empty batch, a missing shot count, or any entry that
            :meth:`submit_circuit` would reject.
        """
        entries = []
        for entry in programs:
            program, count = entry if isinstance(entry, tuple) else (entry, shots)
            if count is None:
                raise CircuitValidationError("Batch entry has no shot count")
            entries.append(
                self._validate_submission(handle, program, count, backend_hint, priority, timeout)
            )
        if not entries:
            raise CircuitValidationError("Batch is empty")

        job_ids = [self._admit(entry) for entry in entries]
        logger.info("Process %s submitted a batch of %d job(s)", self.process_id, len(job_ids))
        if on_progress is not None:
            tracker = _BatchTracker(len(job_ids), on_progress)
            for job_id in job_ids:
                self._session.scheduler.add_done_callback(job_id, tracker.job_done)
        return job_ids

    @_kernel_call
    def wait_all(
        self, job_ids: Iterable[str], timeout: float | None = None
    ) -> dict[str, EntityState]:
        """
        Wait for every job in ``job_ids``; ``timeout`` bounds the whole wait.

        Returns
        -------
        dict
            Job id to the state on return. Jobs still running when the
            timeout elapsed report their non-terminal state.
        """
        job_ids = list(job_ids)
        for job_id in job_ids:
            self._job_for(job_id, Permission.READ)
        end = None if timeout is None else time.monotonic() + timeout
        states: dict[str, EntityState] = {}
        for job_id in job_ids:
            remaining = None if end is None else max(0.0, end - time.monotonic())
            states[job_id] = self._session.scheduler.wait(job_id, remaining)
        return states

    def _validate_submission(
        self,
        handle: ResourceHandle | HandleId,
        program: CircuitProgram,
        shots: int,
        backend_hint: str | None,
        priority: Any,
        timeout: Any,
    ) -> _Submission:
        session = self._session
        device: QuantumDevice = self._owned(handle, HandleKind.DEVICE)
        session._require(self._record, device.device_id, Permission.EXECUTE)

        if not isinstance(program, CircuitProgram):
            raise CircuitValidationError(f"Expected a CircuitProgram, got {type(program)!r}")
        if isinstance(shots, bool) or not isinstance(shots, int) or shots < 1:
            raise CircuitValidationError(f"shots must be a positive integer, got {shots!r}")
        limit = device.shot_limit(session.config)
        if shots > limit:
            raise CircuitValidationError(f"shots {shots} exceeds device limit {limit}")
        priority = _check_priority(priority)
        if timeout is not None:
            if isinstance(timeout, bool) or not isinstance(timeout, numbers.Real):
                raise CircuitValidationError(f"timeout must be a number, got {timeout!r}")
            if not timeout > 0:
                raise CircuitValidationError(f"timeout must be positive, got {timeout!r}")
        if not program.is_bound:
            names = ", ".join(p.name for p in program.free_parameters)
            raise CircuitValidationError(f"Program has unbound parameter(s): {names}")

        caps = device.capabilities(session.config)
        if program.qubit_count > caps.max_qubits:
            raise BackendCapacityExceeded(program.qubit_count, caps.max_qubits, device.name)
        engine = session._engines[device.device_id]
        engine.select_backend(program.qubit_count, backend_hint)
        return _Submission(device, engine, program, shots, backend_hint, priority, timeout)

    def _admit(self, submission: _Submission) -> str:
        session = self._session
        record = self._record
        device = submission.device
        now = time.monotonic()
        job = QuantumJobContext(
            priority=submission.priority,
            owner=self.process_id,
            program=submission.program,
            shots=submission.shots,
            backend_hint=submission.backend_hint,
            device_id=device.device_id,
            submitted_at=now,
            deadline=None if submission.timeout is None else now + submission.timeout,
        )
        stream = MeasurementStream(job.job_id, submission.shots)
        job_record = _JobRecord(job.job_id, self.process_id, device.device_id, job, stream)
        job_record.job_handle = session.handles.allocate(
            HandleKind.JOB, self.process_id, job_record
        )
        job_record.stream_handle = session.handles.allocate(
            HandleKind.MEASUREMENT_STREAM, self.process_id, stream
        )
        job.stream_handle = job_record.stream_handle.id
        record.capabilities.add(
            session.authority.mint(job.job_id, Permission.FULL, delegatable=True)
        )
        with session._lock:
            session._jobs[job.job_id] = job_record
            rng = np.random.default_rng(session._seeds.spawn(1)[0])

        session.scheduler.admit_job(job, engine=submission.engine, sink=stream, rng=rng)
        session.scheduler.add_done_callback(job.job_id, session._on_job_done)
        return job.job_id

    def _job_for(self, job_id: str, required: Permission) -> _JobRecord:
        job = self._session._job(job_id)
        self._session._require(self._record, job.job_id, required)
        return job

    @_kernel_call
    def job_status(self, job_id: str) -> EntityState:
        return self._job_for(job_id, Permission.READ).context.state

    @_kernel_call
    def job_progress(self, job_id: str) -> dict[str, Any]:
        job = self._job_for(job_id, Permission.READ)
        info = job.context.progress()
        info["state"] = job.context.state.value
        info["backend"] = job.context.backend_name
        info["fidelity_estimate"] = job.context.fidelity_estimate
        return info

    @_kernel_call
    def job_handle(self, job_id: str) -> ResourceHandle | None:
        job = self._job_for(job_id, Permission.READ)
        return job.job_handle if job.owner == self.process_id else None

    @_kernel_call
    def stream_handle(self, job_id: str) -> ResourceHandle | None:
        job = self._job_for(job_id, Permission.READ)
        return job.stream_handle if job.owner == self.process_id else None

    @_kernel_call
    def read_results(
        self,
        job_id: str,
        out_buffer: MutableSequence[MeasurementEvent],
        max_events: int | None = None,
    ) -> int:
        """
        Drain unread measurement events of ``job_id`` into ``out_buffer``.

        Each event is delivered once. Returns immediately with whatever is
        available, possibly nothing.

        Returns
        -------
        int
            Number of events appended.

        Raises
        ------
        JobCancelled
            If the job was cancelled.
        QHybridError
            The job's recorded error, if it failed.
        """
        job = self._job_for(job_id, Permission.READ)
        self._raise_for_job(job)
        events = job.stream.drain(max_events)
        out_buffer.extend(events)
        return len(events)

    @_kernel_call
    def pending_events(self, job_id: str) -> int:
        """Events recorded but not yet read."""
        return self._job_for(job_id, Permission.READ).stream.pending

    @_kernel_call
    def statistics(self, job_id: str, observable: Observable | None = None) -> MeasurementStatistics:
        """Statistics over every shot recorded so far (no events are consumed)."""
        job = self._job_for(job_id, Permission.READ)
        self._raise_for_job(job)
        return MeasurementStatistics.from_counts(job.stream.counts(), observable)

    @_kernel_call
    def cancel(self, job_id: str) -> bool:
        self._job_for(job_id, Permission.WRITE)
        return self._session.scheduler.cancel(job_id)

    @_kernel_call
    def wait(self, job_id: str, timeout: float | None = None) -> EntityState:
        self._job_for(job_id, Permission.READ)
        return self._session.scheduler.wait(job_id, timeout)

    @_kernel_call
    def add_done_callback(self, job_id: str, callback: Callable[[SchedulableEntity], None]) -> None:
        self._job_for(job_id, Permission.READ)
        self._session.scheduler.add_done_callback(job_id, callback)

    @_kernel_call
    def add_progress_callback(self, job_id: str, callback: ProgressCallback) -> None:
        self._job_for(job_id, Permission.READ)
        self._session.scheduler.add_progress_callback(job_id, callback)

    @staticmethod
    def _raise_for_job(job: _JobRecord) -> None:
        state = job.context.state
        if state is EntityState.CANCELLED:
            raise JobCancelled(job.job_id)
        if state is EntityState.FAILED and job.context.error is not None:
            raise job.context.error

    # -------------------------------------------------------------------------
    # Classical tasks, delegation and channels
    # -------------------------------------------------------------------------

    @_kernel_call
    def spawn_task(
        self,
        body: Callable[[TaskContext], TaskStep],
        priority: int = Priority.NORMAL,
        name: str = "",
    ) -> str:
        """Schedule a classical task body; returns its entity id."""
        task = TaskContext(
            priority=_check_priority(priority), owner=self.process_id, name=name, body=body
        )
        return self._session.scheduler.admit_task(task)

    @_kernel_call
    def delegate(
        self,
        capability: Capability,
        subset: Permission,
        to: ProcessClient | str | None = None,
        expires_at: int | None = None,
    ) -> Capability:
        """
        Derive a narrower capability and hand it to ``to`` (default: self).

        Raises
        ------
        PermissionDenied
            If this process does not hold ``capability``.
        NotDelegatable, InsufficientGrant
            As for :meth:`CapabilityAuthority.delegate`.
        """
        session = self._session
        if capability not in self._record.capabilities:
            session.authority.deny(
                capability, capability.resource_id, subset, "capability not held by caller"
            )
        child = session.authority.delegate(capability, subset, expires_at)
        target = session._process(to if to is not None else self.process_id)
        target.capabilities.add(child)
        return child

    @_kernel_call
    def open_channel(
        self,
        capacity: int | None = None,
        policy: BackpressurePolicy | str | None = None,
    ) -> ChannelEndpoint:
        """
        Open a message channel to the kernel.

        Returns the process-side endpoint; a kernel server answers requests
        sent on it until the channel closes.
        """
        from qhybrid.kernel.server import ChannelServer

        cfg = self._session.config
        channel = Channel(capacity or cfg.channel_capacity, policy or cfg.channel_policy)
        server = ChannelServer(self, channel.endpoint_b, cfg)
        with self._session._lock:
            self._record.servers.append(server)
        server.start()
        return channel.endpoint_a

    def disconnect(self) -> None:
        """Close every handle, cancel unfinished jobs and stop channel servers."""
        session = self._session
        record = self._record
        with session._lock:
            if not record.alive:
                return
            record.alive = False
            record.terminated_reason = "disconnected"
            servers, record.servers = record.servers, []
        session._release_owned(self.process_id)
        for server in servers:
            server.stop()
        logger.info("Process %s disconnected", self.process_id)
