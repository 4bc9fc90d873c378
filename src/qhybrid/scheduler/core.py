# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Hybrid classical/quantum scheduler.

One shared ready queue, ordered by a :class:`~qhybrid.scheduler.policy.DispatchPolicy`,
feeds ``config.workers`` worker threads. Classical tasks and quantum jobs
are dispatched the same way; a job runs in slices of at most
``gate_quantum`` gates or ``shot_batch`` shots, so preemption happens only
at those boundaries. Simulation runs outside the scheduler lock.

Every job slice holds a lease on its device (see
:class:`~qhybrid.scheduler.device_time.DeviceTimeManager`); a job that
cannot get one is Blocked until a lease is handed to it.

Every terminal transition goes through one teardown path, which releases
the job's backend, its device lease and its measurement stream, then runs
the done callbacks outside the lock.

With ``workers=0`` no threads are started and callers step the scheduler
with :meth:`HybridScheduler.dispatch_once` (``wait`` does so itself).

Examples
--------
>>> with HybridScheduler(Config(workers=2)) as scheduler:
...     job_id = scheduler.admit_job(job, engine=engine, sink=stream)
...     scheduler.wait(job_id)
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from typing import Any, Callable, Protocol, cast

import numpy as np

from qhybrid.config import Config, get_config
from qhybrid.errors import (
    JobCancelled,
    JobNotFound,
    JobTimeout,
    KernelInvariantError,
)
from qhybrid.measurement.events import MeasurementEvent
from qhybrid.scheduler.context import (
    EntityState,
    QuantumJobContext,
    SchedulableEntity,
    TaskContext,
    TaskStep,
)
from qhybrid.scheduler.device_time import DeviceTimeManager
from qhybrid.scheduler.policy import DispatchPolicy, make_policy


logger = logging.getLogger(__name__)

DoneCallback = Callable[[SchedulableEntity], None]
TaskBody = Callable[[TaskContext], TaskStep]
ProgressCallback = Callable[[QuantumJobContext, list[MeasurementEvent]], None]


class TickSource(Protocol):
    """Logical clock advanced once per dispatch."""

    def now(self) -> int: ...

    def advance(self, ticks: int = 1) -> int: ...


class HybridScheduler:
    """
    Dispatches classical tasks and quantum jobs from one ready queue.

    Parameters
    ----------
    config : Config, optional
        Worker count, slice sizes, policy and tick interval.
    policy : DispatchPolicy, optional
        Overrides the policy named in ``config``.
    device_time : DeviceTimeManager, optional
        Shared lease manager; one is created when omitted.
    clock : TickSource, optional
        Logical clock advanced on every dispatch. A kernel session passes
        the clock its capability authority checks expiry against, so
        scheduled work moves capability time forward.
    """

    def __init__(
        self,
        config: Config | None = None,
        policy: DispatchPolicy | None = None,
        device_time: DeviceTimeManager | None = None,
        clock: TickSource | None = None,
    ) -> None:
        self.config = config or get_config()
        self.policy = policy or make_policy(
            self.config.scheduler_policy, self.config.aging_interval
        )
        self.device_time = device_time or DeviceTimeManager()

        self._cond = threading.Condition(threading.RLock())
        self._entities: dict[str, SchedulableEntity] = {}
        self._deadlined: set[str] = set()
        self._wakeups: set[str] = set()
        self._done_callbacks: dict[str, list[DoneCallback]] = {}
        self._progress_callbacks: dict[str, list[ProgressCallback]] = {}
        self._pending: list[tuple[DoneCallback, SchedulableEntity]] = []
        self._stats: Counter[str] = Counter()
        self.clock = clock
        self._tick = clock.now() if clock is not None else 0
        self._running = False
        self._workers: list[threading.Thread] = []

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the worker threads (none when ``config.workers == 0``)."""
        with self._cond:
            if self._running:
                return
            self._running = True
            for i in range(self.config.workers):
                thread = threading.Thread(
                    target=self._worker_loop, name=f"qhybrid-worker-{i}", daemon=True
                )
                self._workers.append(thread)
                thread.start()
        logger.debug("Scheduler started with %d worker(s)", self.config.workers)

    def shutdown(self, wait: bool = True, cancel_pending: bool = True) -> None:
        """
        Stop the workers.

        Parameters
        ----------
        wait : bool
            Join worker threads before returning.
        cancel_pending : bool
            Cancel every entity that is not terminal. Running jobs are
            cancelled cooperatively at their next gate boundary.
        """
        with self._cond:
            self._running = False
            if cancel_pending:
                for entity in list(self._entities.values()):
                    if entity.state.terminal:
                        continue
                    if entity.state is EntityState.RUNNING:
                        entity.cancel_requested = True
                    else:
                        self._finalize(entity, EntityState.CANCELLED, JobCancelled(entity.entity_id))
            self._cond.notify_all()
            workers, self._workers = self._workers, []
        self._drain_callbacks()
        if wait:
            for thread in workers:
                thread.join()
        logger.debug("Scheduler shut down")

    def __enter__(self) -> HybridScheduler:
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

    @property
    def running(self) -> bool:
        with self._cond:
            return self._running

    # =========================================================================
    # Admission
    # =========================================================================

    def admit_task(self, task: TaskContext) -> str:
        """Queue a classical task; returns its entity id."""
        if task.body is None:
            raise ValueError("TaskContext.body is required")
        return self._admit(task)

    def admit_job(
        self,
        job: QuantumJobContext,
        *,
        engine: Any,
        sink: Any,
        rng: np.random.Generator | None = None,
    ) -> str:
        """
        Queue a quantum job.

        Parameters
        ----------
        job : QuantumJobContext
            Job in the ``CREATED`` state.
        engine : ExecutionEngine
            Engine that prepares the job's backend.
        sink : MeasurementStream
            Stream receiving one event per shot.
        rng : numpy.random.Generator, optional
            Sampling source. Defaults to one seeded from ``config.seed``.
        """
        job.engine = engine
        job.sink = sink
        job.rng = rng or np.random.default_rng(self.config.seed)
        return self._admit(job)

    def _admit(self, entity: SchedulableEntity) -> str:
        with self._cond:
            if entity.entity_id in self._entities:
                raise KernelInvariantError(f"Entity admitted twice: {entity.entity_id}")
            self._entities[entity.entity_id] = entity
            entity.transition(EntityState.READY)
            self.policy.push(entity.entity_id, int(entity.priority), self._tick)
            if isinstance(entity, QuantumJobContext) and entity.deadline is not None:
                self._deadlined.add(entity.entity_id)
            self._stats["admitted"] += 1
            self._cond.notify()
        logger.info(
            "Admitted %s %s (priority %d)", entity.kind, entity.entity_id, entity.priority
        )
        return entity.entity_id

    # =========================================================================
    # Control
    # =========================================================================

    def cancel(self, entity_id: str) -> bool:
        """
        Cancel a task or job.

        Ready and Blocked entities are cancelled immediately; a Running
        one is flagged and stops at its next gate boundary or slice end.

        Returns
        -------
        bool
            False if the entity had already terminated.

        Raises
        ------
        JobNotFound
            If ``entity_id`` is unknown.
        """
        with self._cond:
            entity = self._get(entity_id)
            if entity.state.terminal:
                return False
            if entity.state is EntityState.RUNNING:
                entity.cancel_requested = True
                logger.debug("Cancellation requested for running %s", entity_id)
            else:
                self._finalize(entity, EntityState.CANCELLED, JobCancelled(entity_id))
        self._drain_callbacks()
        return True

    def unblock(self, entity_id: str) -> bool:
        """
        Make a task that returned ``TaskStep.BLOCK`` ready again.

        A wake-up that arrives while the task is still running is kept and
        applied when the task blocks.
        """
        with self._cond:
            entity = self._get(entity_id)
            if entity.state is EntityState.BLOCKED and isinstance(entity, TaskContext):
                self._make_ready(entity)
                return True
            if entity.state is EntityState.RUNNING:
                self._wakeups.add(entity_id)
                return True
            return False

    # =========================================================================
    # Queries
    # =========================================================================

    def entity(self, entity_id: str) -> SchedulableEntity:
        with self._cond:
            return self._get(entity_id)

    def state(self, entity_id: str) -> EntityState:
        with self._cond:
            return self._get(entity_id).state

    def error(self, entity_id: str) -> BaseException | None:
        with self._cond:
            return self._get(entity_id).error

    def wait(self, entity_id: str, timeout: float | None = None) -> EntityState:
        """
        Block until the entity terminates or ``timeout`` elapses.

        Without worker threads, the calling thread dispatches slices itself.

        Returns
        -------
        EntityState
            The state on return, terminal unless the timeout elapsed.
        """
        end = None if timeout is None else time.monotonic() + timeout
        tick = self.config.tick_interval
        while True:
            with self._cond:
                entity = self._get(entity_id)
                if entity.state.terminal:
                    return entity.state
                remaining = None if end is None else end - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return entity.state
                inline = not self._workers
                if not inline:
                    self._cond.wait(remaining if remaining is not None else tick)
                    continue
            if not self.dispatch_once():
                with self._cond:
                    self._cond.wait(tick if remaining is None else min(tick, remaining))

    def add_done_callback(self, entity_id: str, callback: DoneCallback) -> None:
        """Run ``callback(entity)`` once the entity terminates."""
        with self._cond:
            entity = self._get(entity_id)
            if not entity.state.terminal:
                self._done_callbacks.setdefault(entity_id, []).append(callback)
                return
        self._invoke(callback, entity)

    def add_progress_callback(self, entity_id: str, callback: ProgressCallback) -> None:
        """Run ``callback(job, events)`` after every sampled shot batch."""
        with self._cond:
            entity = self._get(entity_id)
            if not entity.state.terminal:
                self._progress_callbacks.setdefault(entity_id, []).append(callback)

    def active_backend_count(self) -> int:
        """Jobs currently holding a live simulation backend."""
        with self._cond:
            return sum(
                1
                for e in self._entities.values()
                if isinstance(e, QuantumJobContext) and e.run is not None
            )

    def stats(self) -> dict[str, Any]:
        with self._cond:
            by_state = Counter(e.state.value for e in self._entities.values())
            return {
                "tick": self._tick,
                "ready": len(self.policy),
                "policy": getattr(self.policy, "name", type(self.policy).__name__),
                "workers": len(self._workers),
                "states": dict(by_state),
                **dict(self._stats),
            }

    # =========================================================================
    # Dispatch
    # =========================================================================

    def dispatch_once(self) -> bool:
        """
        Run at most one slice of the next ready entity.

        Returns
        -------
        bool
            False when nothing was ready.
        """
        with self._cond:
            self._sweep_deadlines()
            entity = self._next_ready()
            dispatched = entity is not None
            if entity is not None:
                entity.transition(EntityState.RUNNING)
                entity.slices += 1
                if self.clock is not None:
                    self._tick = self.clock.advance()
                else:
                    self._tick += 1
                self._stats["dispatched"] += 1
                if isinstance(entity, QuantumJobContext) and not self._acquire_lease(entity):
                    entity = None

        if entity is not None:
            if isinstance(entity, TaskContext):
                self._run_task_slice(entity)
            elif isinstance(entity, QuantumJobContext):
                self._run_job_slice(entity)
            else:
                raise KernelInvariantError(f"Unknown entity type dispatched: {entity!r}")
        self._drain_callbacks()
        return dispatched

    def _worker_loop(self) -> None:
        while True:
            with self._cond:
                if not self._running:
                    return
            try:
                progressed = self.dispatch_once()
            except KernelInvariantError:
                logger.critical("Scheduler invariant violated", exc_info=True)
                progressed = False
            if not progressed:
                with self._cond:
                    if not self._running:
                        return
                    self._cond.wait_for(
                        lambda: not self._running or len(self.policy) > 0,
                        timeout=self.config.tick_interval,
                    )

    def _next_ready(self) -> SchedulableEntity | None:
        while True:
            entity_id = self.policy.pop(self._tick)
            if entity_id is None:
                return None
            entity = self._entities.get(entity_id)
            if entity is not None and entity.state is EntityState.READY:
                return entity

    def _acquire_lease(self, job: QuantumJobContext) -> bool:
        if job.device_id is None:
            return True
        if self.device_time.try_acquire(job.device_id, job.job_id):
            return True
        job.transition(EntityState.BLOCKED)
        self._stats["blocked_on_device"] += 1
        return False

    def _make_ready(self, entity: SchedulableEntity) -> None:
        entity.transition(EntityState.READY)
        self.policy.push(entity.entity_id, int(entity.priority), self._tick)
        self._cond.notify()

    def _wake(self, entity_id: str | None) -> None:
        if entity_id is None:
            return
        entity = self._entities.get(entity_id)
        if entity is not None and entity.state is EntityState.BLOCKED:
            self._make_ready(entity)

    def _sweep_deadlines(self) -> None:
        if not self._deadlined:
            return
        now = time.monotonic()
        for entity_id in list(self._deadlined):
            job = self._entities.get(entity_id)
            if not isinstance(job, QuantumJobContext):
                self._deadlined.discard(entity_id)
                continue
            if job.state in (EntityState.READY, EntityState.BLOCKED) and job.deadline_passed(now):
                self._stats["timeouts"] += 1
                self._finalize(job, EntityState.FAILED, JobTimeout(entity_id))

    # =========================================================================
    # Slices
    # =========================================================================

    def _run_task_slice(self, task: TaskContext) -> None:
        step: TaskStep | None = None
        failure: Exception | None = None
        try:
            body = cast(TaskBody, task.body)
            step = TaskStep(body(task))
        except Exception as exc:
            logger.error("Task %s (%s) raised", task.entity_id, task.name, exc_info=True)
            failure = exc

        with self._cond:
            if failure is not None:
                self._finalize(task, EntityState.FAILED, failure)
            elif task.cancel_requested:
                self._finalize(task, EntityState.CANCELLED, JobCancelled(task.entity_id))
            elif step is TaskStep.DONE:
                self._finalize(task, EntityState.COMPLETED)
            elif step is TaskStep.BLOCK and task.entity_id not in self._wakeups:
                task.transition(EntityState.BLOCKED)
            else:
                self._wakeups.discard(task.entity_id)
                self._stats["yields"] += 1
                self._make_ready(task)

    def _run_job_slice(self, job: QuantumJobContext) -> None:
        cfg = self.config
        failure: Exception | None = None
        events: list[MeasurementEvent] = []

        def should_stop() -> bool:
            return job.cancel_requested or job.deadline_passed()

        try:
            if job.run is None:
                job.run = job.engine.prepare(job.program, job.backend_hint, job.job_id)
                job.backend_name = job.run.backend.name
            if not job.run.done:
                job.run.advance(cfg.gate_quantum, should_cancel=should_stop)
                job.gates_applied = job.run.position
            if job.run.done and job.shots_completed < job.shots and not should_stop():
                batch = min(cfg.shot_batch, job.shots - job.shots_completed)
                bits = job.run.sample(batch, job.rng)
                events = job.sink.append_bits(bits)
            job.fidelity_estimate = job.run.backend.fidelity_estimate
        except JobCancelled:
            pass
        except Exception as exc:
            logger.error("Job %s failed", job.job_id, exc_info=True)
            failure = exc

        if events:
            with self._cond:
                job.shots_completed += len(events)
                callbacks = list(self._progress_callbacks.get(job.job_id, ()))
            for callback in callbacks:
                try:
                    callback(job, events)
                except Exception:
                    logger.error("Progress callback for %s raised", job.job_id, exc_info=True)

        with self._cond:
            if job.device_id is not None:
                self._wake(self.device_time.release(job.device_id, job.job_id))
            if job.cancel_requested:
                self._finalize(job, EntityState.CANCELLED, JobCancelled(job.job_id))
            elif job.deadline_passed():
                self._stats["timeouts"] += 1
                self._finalize(job, EntityState.FAILED, JobTimeout(job.job_id))
            elif failure is not None:
                self._finalize(job, EntityState.FAILED, failure)
            elif job.run is not None and job.run.done and job.shots_completed >= job.shots:
                self._finalize(job, EntityState.COMPLETED)
            else:
                self._stats["preemptions"] += 1
                self._make_ready(job)

    # =========================================================================
    # Teardown
    # =========================================================================

    def _finalize(
        self,
        entity: SchedulableEntity,
        state: EntityState,
        error: BaseException | None = None,
    ) -> None:
        """Single teardown path for every terminal transition; lock held."""
        entity.transition(state)
        entity.error = error
        entity_id = entity.entity_id
        self.policy.remove(entity_id)
        self._deadlined.discard(entity_id)
        self._wakeups.discard(entity_id)
        self._stats[state.value] += 1

        if isinstance(entity, QuantumJobContext):
            if entity.run is not None:
                entity.run.teardown()
                entity.run = None
            if entity.device_id is not None:
                self._wake(self.device_time.forget(entity.device_id, entity_id))
            if entity.sink is not None:
                entity.sink.close()
            entity.engine = None
            entity.rng = None

        if state is EntityState.COMPLETED:
            logger.info("%s %s completed", entity.kind.capitalize(), entity_id)
        else:
            logger.info("%s %s %s: %s", entity.kind.capitalize(), entity_id, state, error)

        self._progress_callbacks.pop(entity_id, None)
        for callback in self._done_callbacks.pop(entity_id, ()):
            self._pending.append((callback, entity))
        self._cond.notify_all()

    def _drain_callbacks(self) -> None:
        with self._cond:
            pending, self._pending = self._pending, []
        for callback, entity in pending:
            self._invoke(callback, entity)

    @staticmethod
    def _invoke(callback: DoneCallback, entity: SchedulableEntity) -> None:
        try:
            callback(entity)
        except Exception:
            logger.error("Done callback for %s raised", entity.entity_id, exc_info=True)

    def _get(self, entity_id: str) -> SchedulableEntity:
        entity = self._entities.get(entity_id)
        if entity is None:
            raise JobNotFound(entity_id)
        return entity
