# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""Hybrid scheduler: entities, dispatch policies and device time."""

from qhybrid.scheduler.context import (
    EntityState,
    Priority,
    QuantumJobContext,
    SchedulableEntity,
    TaskContext,
    TaskStep,
)
from qhybrid.scheduler.core import HybridScheduler
from qhybrid.scheduler.device_time import DeviceTimeManager
from qhybrid.scheduler.policy import (
    AgingPriorityPolicy,
    DispatchPolicy,
    StrictPriorityPolicy,
    make_policy,
)


__all__ = [
    "AgingPriorityPolicy",
    "DeviceTimeManager",
    "DispatchPolicy",
    "EntityState",
    "HybridScheduler",
    "Priority",
    "QuantumJobContext",
    "SchedulableEntity",
    "StrictPriorityPolicy",
    "TaskContext",
    "TaskStep",
    "make_policy",
]
