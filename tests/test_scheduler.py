# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""Tests for the hybrid scheduler, dispatch policies and device time."""

from __future__ import annotations

import time
from typing import Callable

import pytest

from qhybrid.circuit import CircuitProgram
from qhybrid.config import Config
from qhybrid.errors import (
    BackendCapacityExceeded,
    JobCancelled,
    JobNotFound,
    JobTimeout,
    KernelInvariantError,
)
from qhybrid.execution import ExecutionEngine
from qhybrid.kernel.capability import LogicalClock
from qhybrid.measurement import MeasurementStream
from qhybrid.scheduler import (
    AgingPriorityPolicy,
    DeviceTimeManager,
    EntityState,
    HybridScheduler,
    Priority,
    QuantumJobContext,
    SchedulableEntity,
    StrictPriorityPolicy,
    TaskContext,
    TaskStep,
    make_policy,
)


def _counting_task(
    log: list[str], name: str, steps: int = 1, priority: int = Priority.NORMAL
) -> TaskContext:
    """Task that appends ``name`` to ``log`` each slice and finishes after ``steps``."""

    def body(ctx: TaskContext) -> TaskStep:
        log.append(name)
        ctx.data["n"] = ctx.data.get("n", 0) + 1
        return TaskStep.DONE if ctx.data["n"] >= steps else TaskStep.YIELD

    return TaskContext(priority=priority, name=name, body=body)


def _drain(scheduler: HybridScheduler, limit: int = 1000) -> int:
    n = 0
    while n < limit and scheduler.dispatch_once():
        n += 1
    return n


@pytest.fixture
def scheduler(config: Config) -> HybridScheduler:
    return HybridScheduler(config)


@pytest.fixture
def make_job() -> Callable[..., QuantumJobContext]:
    def _make(
        scheduler: HybridScheduler,
        program: CircuitProgram,
        shots: int = 10,
        **kwargs,
    ) -> QuantumJobContext:
        job = QuantumJobContext(program=program, shots=shots, **kwargs)
        engine = ExecutionEngine(scheduler.config)
        stream = MeasurementStream(job.job_id, total_shots=shots)
        scheduler.admit_job(job, engine=engine, sink=stream)
        return job

    return _make


class TestPolicies:
    """Tests for ready-queue ordering."""

    def test_strict_fifo_within_priority(self) -> None:
        policy = StrictPriorityPolicy()
        policy.push("a", Priority.NORMAL, 0)
        policy.push("b", Priority.HIGH, 0)
        policy.push("c", Priority.NORMAL, 0)
        assert [policy.pop(0) for _ in range(4)] == ["b", "a", "c", None]

    def test_lazy_removal(self) -> None:
        policy = StrictPriorityPolicy()
        policy.push("a", 1, 0)
        policy.push("b", 1, 0)
        policy.remove("a")
        assert len(policy) == 1
        assert policy.pop(0) == "b"
        assert policy.pop(0) is None

    def test_requeue_supersedes_old_entry(self) -> None:
        policy = StrictPriorityPolicy()
        policy.push("a", Priority.LOW, 0)
        policy.push("b", Priority.NORMAL, 0)
        policy.push("a", Priority.HIGH, 0)
        assert [policy.pop(0), policy.pop(0), policy.pop(0)] == ["a", "b", None]

    def test_aging_promotes_waiters(self) -> None:
        policy = AgingPriorityPolicy(interval=1)
        policy.push("low", Priority.LOW, 0)
        policy.push("high", Priority.HIGH, 3)
        # By tick 3 "low" has aged one level past "high".
        assert policy.pop(3) == "low"

    def test_make_policy(self) -> None:
        assert make_policy("strict").name == "strict"
        assert make_policy("aging", 4).interval == 4
        with pytest.raises(ValueError):
            make_policy("lottery")
        with pytest.raises(ValueError):
            AgingPriorityPolicy(0)


class TestTaskScheduling:
    """Tests for classical task dispatch."""

    def test_priority_order(self, scheduler: HybridScheduler) -> None:
        log: list[str] = []
        scheduler.admit_task(_counting_task(log, "low", priority=Priority.LOW))
        scheduler.admit_task(_counting_task(log, "rt", priority=Priority.REALTIME))
        scheduler.admit_task(_counting_task(log, "normal"))
        _drain(scheduler)
        assert log == ["rt", "normal", "low"]

    def test_strict_policy_starves_low(self, config: Config) -> None:
        scheduler = HybridScheduler(config, policy=StrictPriorityPolicy())
        log: list[str] = []
        scheduler.admit_task(_counting_task(log, "low", priority=Priority.LOW))
        scheduler.admit_task(_counting_task(log, "high", steps=10, priority=Priority.HIGH))
        _drain(scheduler)
        assert log == ["high"] * 10 + ["low"]

    def test_aging_policy_lets_low_run(self, config: Config) -> None:
        scheduler = HybridScheduler(config, policy=AgingPriorityPolicy(interval=1))
        log: list[str] = []
        scheduler.admit_task(_counting_task(log, "low", priority=Priority.LOW))
        scheduler.admit_task(_counting_task(log, "high", steps=10, priority=Priority.HIGH))
        _drain(scheduler)
        assert log.index("low") < 10
        assert log.count("high") == 10

    def test_yield_round_robin(self, scheduler: HybridScheduler) -> None:
        log: list[str] = []
        a = scheduler.admit_task(_counting_task(log, "a", steps=3))
        b = scheduler.admit_task(_counting_task(log, "b", steps=3))
        _drain(scheduler)
        assert log == ["a", "b"] * 3
        assert scheduler.state(a) is EntityState.COMPLETED
        assert scheduler.entity(b).slices == 3
        assert scheduler.stats()["yields"] == 4

    def test_block_and_unblock(self, scheduler: HybridScheduler) -> None:
        def body(ctx: TaskContext) -> TaskStep:
            ctx.data["calls"] = ctx.data.get("calls", 0) + 1
            return TaskStep.BLOCK if ctx.data["calls"] == 1 else TaskStep.DONE

        task_id = scheduler.admit_task(TaskContext(body=body))
        assert scheduler.dispatch_once()
        assert scheduler.state(task_id) is EntityState.BLOCKED
        assert not scheduler.dispatch_once()
        assert scheduler.unblock(task_id)
        assert scheduler.state(task_id) is EntityState.READY
        scheduler.dispatch_once()
        assert scheduler.state(task_id) is EntityState.COMPLETED
        assert not scheduler.unblock(task_id)

    def test_unblock_while_running_is_kept(self, scheduler: HybridScheduler) -> None:
        def body(ctx: TaskContext) -> TaskStep:
            if "woken" not in ctx.data:
                ctx.data["woken"] = scheduler.unblock(ctx.entity_id)
                return TaskStep.BLOCK
            return TaskStep.DONE

        task_id = scheduler.admit_task(TaskContext(body=body))
        scheduler.dispatch_once()
        assert scheduler.state(task_id) is EntityState.READY
        scheduler.dispatch_once()
        assert scheduler.state(task_id) is EntityState.COMPLETED

    def test_failing_task(self, scheduler: HybridScheduler) -> None:
        def body(ctx: TaskContext) -> TaskStep:
            raise ValueError("boom")

        task_id = scheduler.admit_task(TaskContext(body=body, name="bad"))
        assert scheduler.wait(task_id) is EntityState.FAILED
        assert isinstance(scheduler.error(task_id), ValueError)

    def test_task_requires_body(self, scheduler: HybridScheduler) -> None:
        with pytest.raises(ValueError):
            scheduler.admit_task(TaskContext())

    def test_admit_twice(self, scheduler: HybridScheduler) -> None:
        task = _counting_task([], "t")
        scheduler.admit_task(task)
        with pytest.raises(KernelInvariantError):
            scheduler.admit_task(task)

    def test_unknown_entity(self, scheduler: HybridScheduler) -> None:
        with pytest.raises(JobNotFound):
            scheduler.state("nope")
        with pytest.raises(JobNotFound):
            scheduler.cancel("nope")


class TestCancellation:
    """Tests for cancel and shutdown."""

    def test_cancel_ready_task(self, scheduler: HybridScheduler) -> None:
        log: list[str] = []
        task_id = scheduler.admit_task(_counting_task(log, "t"))
        assert scheduler.cancel(task_id)
        assert scheduler.state(task_id) is EntityState.CANCELLED
        assert isinstance(scheduler.error(task_id), JobCancelled)
        assert not scheduler.cancel(task_id)
        assert not scheduler.dispatch_once()
        assert log == []

    def test_cancel_running_task_is_cooperative(self, scheduler: HybridScheduler) -> None:
        def body(ctx: TaskContext) -> TaskStep:
            scheduler.cancel(ctx.entity_id)
            return TaskStep.YIELD

        task_id = scheduler.admit_task(TaskContext(body=body))
        scheduler.dispatch_once()
        assert scheduler.state(task_id) is EntityState.CANCELLED

    def test_cancel_job_between_slices(self, make_job: Callable, ghz: Callable) -> None:
        scheduler = HybridScheduler(Config(workers=0, seed=1, gate_quantum=1))
        job = make_job(scheduler, ghz(4))
        scheduler.dispatch_once()
        assert scheduler.active_backend_count() == 1
        assert scheduler.cancel(job.job_id)
        assert job.state is EntityState.CANCELLED
        assert job.run is None
        assert scheduler.active_backend_count() == 0
        assert job.sink is not None and job.sink.closed

    def test_shutdown_cancels_pending(self, scheduler: HybridScheduler) -> None:
        scheduler.start()
        task_id = scheduler.admit_task(_counting_task([], "t"))
        scheduler.shutdown()
        assert scheduler.state(task_id) is EntityState.CANCELLED
        assert not scheduler.running


class TestJobScheduling:
    """Tests for quantum job slices."""

    def test_job_runs_to_completion(
        self, scheduler: HybridScheduler, make_job: Callable, bell: CircuitProgram
    ) -> None:
        job = make_job(scheduler, bell, shots=100)
        assert scheduler.wait(job.job_id) is EntityState.COMPLETED
        assert job.shots_completed == 100
        assert job.gates_applied == 2
        assert job.backend_name == "dense"
        assert set(job.sink.counts()) <= {"00", "11"}
        assert scheduler.active_backend_count() == 0

    def test_slices_respect_quanta(self, make_job: Callable, ghz: Callable) -> None:
        scheduler = HybridScheduler(Config(workers=0, seed=1, gate_quantum=1, shot_batch=4))
        job = make_job(scheduler, ghz(4), shots=10)
        scheduler.dispatch_once()
        assert job.gates_applied == 1
        assert job.state is EntityState.READY
        _drain(scheduler)
        assert job.state is EntityState.COMPLETED
        # Four gate slices (the last also samples 4 shots), then 4 and 2 shots.
        assert job.slices == 6
        assert scheduler.stats()["preemptions"] == 5

    def test_jobs_interleave(self, make_job: Callable, ghz: Callable) -> None:
        scheduler = HybridScheduler(Config(workers=0, seed=1, gate_quantum=1))
        a = make_job(scheduler, ghz(3))
        b = make_job(scheduler, ghz(3))
        scheduler.dispatch_once()
        assert (a.gates_applied, b.gates_applied) == (1, 0)
        scheduler.dispatch_once()
        assert (a.gates_applied, b.gates_applied) == (1, 1)

    def test_progress_callback(
        self, scheduler: HybridScheduler, make_job: Callable, bell: CircuitProgram
    ) -> None:
        batches: list[int] = []
        job = make_job(scheduler, bell, shots=600)
        scheduler.add_progress_callback(job.job_id, lambda j, events: batches.append(len(events)))
        scheduler.wait(job.job_id)
        assert sum(batches) == 600
        assert max(batches) <= scheduler.config.shot_batch

    def test_done_callbacks(
        self, scheduler: HybridScheduler, make_job: Callable, bell: CircuitProgram
    ) -> None:
        seen: list[SchedulableEntity] = []
        job = make_job(scheduler, bell)
        scheduler.add_done_callback(job.job_id, seen.append)
        scheduler.wait(job.job_id)
        assert seen == [job]
        scheduler.add_done_callback(job.job_id, seen.append)
        assert seen == [job, job]

    def test_deadline_timeout(
        self, scheduler: HybridScheduler, make_job: Callable, bell: CircuitProgram
    ) -> None:
        job = make_job(scheduler, bell, deadline=time.monotonic() - 1)
        assert not scheduler.dispatch_once()
        assert job.state is EntityState.FAILED
        assert isinstance(job.error, JobTimeout)
        assert scheduler.stats()["timeouts"] == 1

    def test_backend_failure_fails_job(self, make_job: Callable, ghz: Callable) -> None:
        scheduler = HybridScheduler(Config(workers=0, dense_threshold=2))
        job = make_job(scheduler, ghz(3), backend_hint="dense")
        assert scheduler.wait(job.job_id) is EntityState.FAILED
        assert isinstance(job.error, BackendCapacityExceeded)

    def test_threaded_workers(self, make_job: Callable, ghz: Callable) -> None:
        with HybridScheduler(Config(workers=2, seed=3, gate_quantum=2)) as scheduler:
            jobs = [make_job(scheduler, ghz(5), shots=50) for _ in range(4)]
            for job in jobs:
                assert scheduler.wait(job.job_id, timeout=30) is EntityState.COMPLETED
        assert all(j.shots_completed == 50 for j in jobs)


class TestDeviceTime:
    """Tests for device leases."""

    def test_handoff_is_round_robin(self) -> None:
        manager = DeviceTimeManager()
        manager.register("qpu")
        assert manager.try_acquire("qpu", "a")
        assert not manager.try_acquire("qpu", "b")
        assert not manager.try_acquire("qpu", "c")
        assert manager.waiters("qpu") == ("b", "c")
        assert manager.release("qpu", "a") == "b"
        assert manager.holders("qpu") == frozenset({"b"})
        assert not manager.try_acquire("qpu", "a")
        assert manager.release("qpu", "b") == "c"
        assert manager.waiters("qpu") == ("a",)

    def test_multiple_slots(self) -> None:
        manager = DeviceTimeManager()
        manager.register("qpu", slots=2)
        assert manager.try_acquire("qpu", "a")
        assert manager.try_acquire("qpu", "b")
        assert not manager.try_acquire("qpu", "c")

    def test_forget_waiter(self) -> None:
        manager = DeviceTimeManager()
        manager.try_acquire("qpu", "a")
        manager.try_acquire("qpu", "b")
        assert manager.forget("qpu", "b") is None
        assert manager.release("qpu", "a") is None

    def test_job_blocks_without_lease(
        self, scheduler: HybridScheduler, make_job: Callable, bell: CircuitProgram
    ) -> None:
        scheduler.device_time.try_acquire("qpu", "other")
        job = make_job(scheduler, bell, device_id="qpu")
        scheduler.dispatch_once()
        assert job.state is EntityState.BLOCKED
        assert job.run is None
        assert scheduler.stats()["blocked_on_device"] == 1
        assert scheduler.cancel(job.job_id)
        assert job.state is EntityState.CANCELLED
        assert isinstance(job.error, JobCancelled)
        assert job.sink.closed
        assert scheduler.device_time.waiters("qpu") == ()

        # Freeing the device must not bring the cancelled job back.
        assert scheduler.device_time.release("qpu", "other") is None
        assert not scheduler.dispatch_once()
        assert job.slices == 1
        assert job.run is None
        assert scheduler.active_backend_count() == 0

    def test_job_releases_lease_each_slice(
        self, scheduler: HybridScheduler, make_job: Callable, bell: CircuitProgram
    ) -> None:
        job = make_job(scheduler, bell, device_id="qpu")
        scheduler.wait(job.job_id)
        assert job.state is EntityState.COMPLETED
        assert scheduler.device_time.holders("qpu") == frozenset()


class TestEntityLifecycle:
    def test_illegal_transition(self) -> None:
        entity = SchedulableEntity()
        with pytest.raises(KernelInvariantError):
            entity.transition(EntityState.COMPLETED)

    def test_terminal_states(self) -> None:
        assert EntityState.FAILED.terminal
        assert not EntityState.BLOCKED.terminal

    def test_unknown_entity_kind_is_invariant_violation(
        self, scheduler: HybridScheduler
    ) -> None:
        scheduler._admit(SchedulableEntity())
        with pytest.raises(KernelInvariantError, match="Unknown entity type"):
            scheduler.dispatch_once()


class TestLogicalTime:
    """The scheduler drives a shared logical clock."""

    def test_clock_advances_per_dispatch(self, config: Config) -> None:
        clock = LogicalClock(10)
        scheduler = HybridScheduler(config, clock=clock)
        log: list[str] = []
        scheduler.admit_task(_counting_task(log, "a", steps=3))
        scheduler.admit_task(_counting_task(log, "b"))
        assert _drain(scheduler) == 4
        assert clock.now() == 14
        assert scheduler.stats()["tick"] == 14

    def test_private_counter_without_clock(self, scheduler: HybridScheduler) -> None:
        log: list[str] = []
        scheduler.admit_task(_counting_task(log, "a", steps=2))
        _drain(scheduler)
        assert scheduler.stats()["tick"] == 2
