# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Common utilities.

This module provides small, shared utility functions:
- Time utilities (UTC timestamps, monotonic nanoseconds)
- ULID generation
"""

from __future__ import annotations

import time
from datetime import datetime, timezone


def utc_now_iso() -> str:
    """
    Return current UTC time as an ISO 8601 string.

    Returns
    -------
    str
        ISO 8601 formatted UTC timestamp (e.g., "2026-01-15T10:30:00Z").
    """
    return (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def monotonic_ns() -> int:
    """Return a monotonic timestamp in nanoseconds for event ordering."""
    return time.monotonic_ns()


def generate_ulid() -> str:
    """
    Generate a ULID string.

    Returns
    -------
    str
        A new ULID as a 26-character Crockford Base32 string.
    """
    from ulid import ULID

    return str(ULID())
