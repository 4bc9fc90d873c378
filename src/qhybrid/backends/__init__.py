# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""State simulation backends."""

from qhybrid.backends.base import StateBackend
from qhybrid.backends.dense import DenseBackend
from qhybrid.backends.mps import MPSBackend


__all__ = ["DenseBackend", "MPSBackend", "StateBackend"]
