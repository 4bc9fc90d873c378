# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Schedulable entities and their lifecycle.

Lifecycle
---------
::

    CREATED -> READY -> RUNNING -> COMPLETED
                 ^        |  |
                 |        |  +--> CANCELLED / FAILED
                 +--------+
                 |        v
                 +---- BLOCKED

``CREATED``, ``READY`` and ``BLOCKED`` entities may be cancelled directly;
``READY`` and ``BLOCKED`` jobs may also fail on a passed deadline. Any
other transition is a kernel bug and raises
:class:`~qhybrid.errors.KernelInvariantError`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any, Callable

from qhybrid.errors import KernelInvariantError
from qhybrid.utils.common import generate_ulid


if TYPE_CHECKING:
    import numpy as np

    from qhybrid.circuit.program import CircuitProgram
    from qhybrid.execution.engine import CircuitRun, ExecutionEngine
    from qhybrid.kernel.handles import HandleId
    from qhybrid.measurement.events import MeasurementStream


logger = logging.getLogger(__name__)


class Priority(IntEnum):
    """Dispatch priority; higher runs first."""

    IDLE = 0
    LOW = 1
    NORMAL = 2
    HIGH = 3
    REALTIME = 4


class EntityState(str, Enum):
    """Lifecycle state of a task or job."""

    CREATED = "created"
    READY = "ready"
    RUNNING = "running"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL

    def __str__(self) -> str:
        return self.value


_TERMINAL = frozenset(
    {EntityState.COMPLETED, EntityState.CANCELLED, EntityState.FAILED}
)

_TRANSITIONS: dict[EntityState, frozenset[EntityState]] = {
    EntityState.CREATED: frozenset({EntityState.READY, EntityState.CANCELLED}),
    EntityState.READY: frozenset(
        {EntityState.RUNNING, EntityState.CANCELLED, EntityState.FAILED}
    ),
    EntityState.RUNNING: frozenset(
        {
            EntityState.READY,
            EntityState.BLOCKED,
            EntityState.COMPLETED,
            EntityState.CANCELLED,
            EntityState.FAILED,
        }
    ),
    EntityState.BLOCKED: frozenset(
        {EntityState.READY, EntityState.CANCELLED, EntityState.FAILED}
    ),
    EntityState.COMPLETED: frozenset(),
    EntityState.CANCELLED: frozenset(),
    EntityState.FAILED: frozenset(),
}


class TaskStep(str, Enum):
    """What a classical task body asks for after one step."""

    DONE = "done"
    YIELD = "yield"
    BLOCK = "block"


@dataclass(eq=False)
class SchedulableEntity:
    """
    State shared by classical tasks and quantum jobs.

    Mutable fields are only touched while holding the scheduler lock,
    except by the single worker currently running the entity.
    """

    priority: int = Priority.NORMAL
    entity_id: str = field(default_factory=generate_ulid)
    owner: str = ""
    state: EntityState = EntityState.CREATED
    error: BaseException | None = None
    cancel_requested: bool = False
    created_at: float = field(default_factory=time.monotonic)
    finished_at: float | None = None
    slices: int = 0

    def transition(self, target: EntityState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise KernelInvariantError(
                f"Illegal transition {self.state} -> {target} for {self.entity_id}"
            )
        logger.debug("%s: %s -> %s", self.entity_id, self.state, target)
        self.state = target
        if target.terminal:
            self.finished_at = time.monotonic()

    @property
    def kind(self) -> str:
        return "entity"


@dataclass(eq=False)
class TaskContext(SchedulableEntity):
    """
    A classical task.

    ``body`` is called once per slice with the context and returns a
    :class:`TaskStep`. State the task needs across slices lives in
    ``data``.
    """

    name: str = ""
    body: Callable[[TaskContext], TaskStep] | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> str:
        return "task"


@dataclass(eq=False)
class QuantumJobContext(SchedulableEntity):
    """
    A quantum circuit execution.

    Attributes
    ----------
    program : CircuitProgram
        Bound program to execute.
    shots : int
        Shots to sample once every gate has been applied.
    backend_hint : str or None
        Backend requested at submission.
    device_id : str or None
        Device whose time the job consumes; ``None`` needs no lease.
    submitted_at : float
        Monotonic submission time.
    deadline : float or None
        Monotonic time after which the job fails with ``JobTimeout``.
    gates_applied : int
        Gates applied so far.
    shots_completed : int
        Shots sampled so far.
    stream_handle : HandleId or None
        Handle of the measurement stream receiving the events.
    """

    program: CircuitProgram | None = None
    shots: int = 0
    backend_hint: str | None = None
    device_id: str | None = None
    submitted_at: float = field(default_factory=time.monotonic)
    deadline: float | None = None
    gates_applied: int = 0
    shots_completed: int = 0
    stream_handle: HandleId | None = None
    backend_name: str | None = None
    fidelity_estimate: float = 1.0

    # Runtime attachments, set at admission and cleared by teardown.
    run: CircuitRun | None = field(default=None, repr=False)
    engine: ExecutionEngine | None = field(default=None, repr=False)
    sink: MeasurementStream | None = field(default=None, repr=False)
    rng: np.random.Generator | None = field(default=None, repr=False)

    @property
    def job_id(self) -> str:
        return self.entity_id

    @property
    def kind(self) -> str:
        return "job"

    @property
    def total_gates(self) -> int:
        return len(self.program.gates) if self.program is not None else 0

    @property
    def finished_gates(self) -> bool:
        return self.gates_applied >= self.total_gates

    def deadline_passed(self, now: float | None = None) -> bool:
        return self.deadline is not None and (now or time.monotonic()) >= self.deadline

    def progress(self) -> dict[str, Any]:
        return {
            "gates_applied": self.gates_applied,
            "total_gates": self.total_gates,
            "shots_completed": self.shots_completed,
            "total_shots": self.shots,
        }
