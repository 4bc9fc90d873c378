# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Capability tokens and access control.

A :class:`Capability` is an unforgeable grant of permission bits over one
resource. Tokens are only ever produced by a :class:`CapabilityAuthority`,
which keeps the minted record of every token; a presented token that does
not match its record exactly is rejected as forged.

Delegation produces a child token with a subset of the parent's bits. A
delegated token is never itself delegatable and never outlives its parent.
Revoking a token invalidates every token delegated from it.

Examples
--------
>>> authority = CapabilityAuthority()
>>> cap = authority.mint("qdev-0", Permission.FULL, delegatable=True)
>>> child = authority.delegate(cap, Permission.READ)
>>> authority.check(child, "qdev-0", Permission.READ)
>>> authority.revoke(cap)
>>> authority.is_valid(child, "qdev-0", Permission.READ)
False
"""

from __future__ import annotations

import enum
import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Iterator, NoReturn

from qhybrid.errors import (
    InsufficientGrant,
    KernelInvariantError,
    NotDelegatable,
    PermissionDenied,
)
from qhybrid.utils.common import generate_ulid, utc_now_iso


logger = logging.getLogger(__name__)


class Permission(enum.Flag):
    """Permission bits carried by a capability."""

    NONE = 0
    READ = 1
    WRITE = 2
    EXECUTE = 4
    GRANT = 8

    READ_ONLY = 1
    READ_WRITE = 3
    FULL = 15


_SINGLE_BITS = (Permission.READ, Permission.WRITE, Permission.EXECUTE, Permission.GRANT)


def _fmt_perms(perms: Permission) -> str:
    return "|".join(p.name for p in _SINGLE_BITS if p & perms) or "NONE"


class LogicalClock:
    """
    Monotonic logical clock used for capability expiry.

    Expiry is expressed in ticks rather than wall time. A kernel session
    hands its clock to the scheduler, which advances it once per dispatched
    slice; tests may also advance it directly.
    """

    def __init__(self, start: int = 0) -> None:
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            return self._now

    def advance(self, ticks: int = 1) -> int:
        """Advance the clock and return the new time."""
        if ticks < 0:
            raise ValueError("LogicalClock cannot move backwards")
        with self._lock:
            self._now += ticks
            return self._now


@dataclass(frozen=True, slots=True)
class Capability:
    """
    Grant of permission bits over one resource.

    Attributes
    ----------
    capability_id : str
        ULID identifying this token.
    resource_id : str
        Resource this token grants access to.
    permissions : Permission
        Granted bits.
    expires_at : int or None
        Logical tick at which the token stops being valid. ``None`` never
        expires.
    delegatable : bool
        Whether child tokens may be derived from this one.
    parent_id : str or None
        Token this one was delegated from.
    """

    capability_id: str
    resource_id: str
    permissions: Permission
    expires_at: int | None = None
    delegatable: bool = False
    parent_id: str | None = None

    def allows(self, required: Permission) -> bool:
        return (self.permissions & required) == required

    def is_expired(self, now: int) -> bool:
        return self.expires_at is not None and now >= self.expires_at


# =============================================================================
# Audit
# =============================================================================


@dataclass(frozen=True)
class AuditEntry:
    """One denied capability check."""

    timestamp: str
    tick: int
    capability_id: str | None
    resource_id: str
    required: Permission
    reason: str


class AuditLog:
    """Bounded, thread-safe log of capability denials."""

    def __init__(self, maxlen: int = 1024) -> None:
        self._entries: deque[AuditEntry] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def append(self, entry: AuditEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(self) -> list[AuditEntry]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# Authority
# =============================================================================


class CapabilityAuthority:
    """
    Mints, checks, delegates and revokes capabilities.

    Parameters
    ----------
    clock : LogicalClock, optional
        Clock consulted for expiry at check time.
    audit_log_size : int
        Number of denials retained in :attr:`audit`.
    """

    def __init__(
        self, clock: LogicalClock | None = None, audit_log_size: int = 1024
    ) -> None:
        self.clock = clock or LogicalClock()
        self.audit = AuditLog(audit_log_size)
        self._records: dict[str, Capability] = {}
        self._revoked: set[str] = set()
        self._lock = threading.RLock()

    def mint(
        self,
        resource_id: str,
        permissions: Permission,
        expires_at: int | None = None,
        delegatable: bool = False,
    ) -> Capability:
        """Create and register a root capability."""
        cap = Capability(
            capability_id=generate_ulid(),
            resource_id=resource_id,
            permissions=permissions,
            expires_at=expires_at,
            delegatable=delegatable,
        )
        with self._lock:
            self._records[cap.capability_id] = cap
        logger.debug(
            "Minted capability %s on %s (%s)",
            cap.capability_id,
            resource_id,
            _fmt_perms(permissions),
        )
        return cap

    def check(
        self, capability: Capability | None, resource_id: str, required: Permission
    ) -> None:
        """
        Verify ``capability`` grants ``required`` on ``resource_id``.

        Raises
        ------
        PermissionDenied
            If the token is missing, unknown or forged, revoked (directly
            or through an ancestor), expired, bound to another resource,
            or lacks a required bit.
        """
        reason = self._denial_reason(capability, resource_id, required)
        if reason is None:
            return
        self.deny(capability, resource_id, required, reason)

    def deny(
        self,
        capability: Capability | None,
        resource_id: str,
        required: Permission,
        reason: str,
    ) -> NoReturn:
        """Record a denial in the audit log and raise ``PermissionDenied``."""
        entry = AuditEntry(
            timestamp=utc_now_iso(),
            tick=self.clock.now(),
            capability_id=capability.capability_id if capability else None,
            resource_id=resource_id,
            required=required,
            reason=reason,
        )
        self.audit.append(entry)
        logger.warning(
            "Capability denied on %s (required %s): %s",
            resource_id,
            _fmt_perms(required),
            reason,
        )
        raise PermissionDenied(resource_id, required, reason)

    def is_valid(
        self, capability: Capability | None, resource_id: str, required: Permission
    ) -> bool:
        """Like :meth:`check` but returns a bool and records nothing."""
        return self._denial_reason(capability, resource_id, required) is None

    def delegate(
        self,
        capability: Capability,
        subset: Permission,
        expires_at: int | None = None,
    ) -> Capability:
        """
        Derive a child capability with ``subset`` of the parent's bits.

        Expiry is not checked here; the child is capped at the parent's
        expiry so it becomes unusable no later than the parent.

        Raises
        ------
        PermissionDenied
            If the parent is unknown, forged or revoked.
        NotDelegatable
            If the parent is not delegatable or lacks ``GRANT``.
        InsufficientGrant
            If ``subset`` is not within the parent's bits.
        """
        with self._lock:
            record = self._records.get(capability.capability_id)
            if record is None or record != capability:
                raise PermissionDenied(
                    capability.resource_id, subset, "unknown or forged capability"
                )
            if self._is_revoked(capability.capability_id):
                raise PermissionDenied(capability.resource_id, subset, "revoked")
            if not capability.delegatable or not capability.allows(Permission.GRANT):
                raise NotDelegatable(capability.capability_id)
            if not capability.allows(subset):
                raise InsufficientGrant(
                    capability.capability_id, subset, capability.permissions
                )

            expiry = capability.expires_at
            if expires_at is not None:
                expiry = expires_at if expiry is None else min(expiry, expires_at)

            child = Capability(
                capability_id=generate_ulid(),
                resource_id=capability.resource_id,
                permissions=subset,
                expires_at=expiry,
                delegatable=False,
                parent_id=capability.capability_id,
            )
            self._records[child.capability_id] = child

        logger.debug(
            "Delegated %s -> %s (%s)",
            capability.capability_id,
            child.capability_id,
            _fmt_perms(subset),
        )
        return child

    def revoke(self, capability: Capability | str) -> None:
        """Invalidate a token and, transitively, everything delegated from it."""
        cap_id = (
            capability.capability_id
            if isinstance(capability, Capability)
            else capability
        )
        with self._lock:
            if cap_id not in self._records:
                logger.debug("Ignoring revoke of unknown capability %s", cap_id)
                return
            self._revoked.add(cap_id)
        logger.info("Revoked capability %s", cap_id)

    def revoke_resource(self, resource_id: str) -> int:
        """Revoke every root token bound to ``resource_id``."""
        with self._lock:
            roots = [
                c.capability_id
                for c in self._records.values()
                if c.resource_id == resource_id and c.parent_id is None
            ]
            self._revoked.update(roots)
        return len(roots)

    def _is_revoked(self, cap_id: str) -> bool:
        seen: set[str] = set()
        current: str | None = cap_id
        while current is not None:
            if current in self._revoked:
                return True
            if current in seen:
                raise KernelInvariantError(f"Capability ancestry cycle at {current}")
            seen.add(current)
            record = self._records.get(current)
            if record is None:
                raise KernelInvariantError(f"Dangling capability parent {current}")
            current = record.parent_id
        return False

    def _denial_reason(
        self, capability: Capability | None, resource_id: str, required: Permission
    ) -> str | None:
        if capability is None:
            return "no capability presented"
        with self._lock:
            record = self._records.get(capability.capability_id)
            if record is None or record != capability:
                return "unknown or forged capability"
            if self._is_revoked(capability.capability_id):
                return "revoked"
        if capability.resource_id != resource_id:
            return f"capability is bound to {capability.resource_id}"
        if capability.is_expired(self.clock.now()):
            return "expired"
        if not capability.allows(required):
            return f"missing {_fmt_perms(required & ~capability.permissions)}"
        return None


# =============================================================================
# Per-process capability set
# =============================================================================


class CapabilitySet:
    """
    Capabilities held by one process.

    Holding a token in the set is what lets a process present it; a token
    absent from the caller's set is rejected by the session even if it is
    otherwise valid.
    """

    def __init__(self) -> None:
        self._caps: dict[str, Capability] = {}
        self._lock = threading.Lock()

    def add(self, capability: Capability) -> None:
        with self._lock:
            self._caps[capability.capability_id] = capability

    def remove(self, capability_id: str) -> Capability | None:
        with self._lock:
            return self._caps.pop(capability_id, None)

    def find(
        self,
        resource_id: str,
        required: Permission,
        authority: CapabilityAuthority,
    ) -> Capability | None:
        """Return a held token that currently grants ``required``, if any."""
        for cap in self:
            if authority.is_valid(cap, resource_id, required):
                return cap
        return None

    def prune_expired(self, clock: LogicalClock) -> int:
        """Drop expired tokens and return how many were removed."""
        now = clock.now()
        with self._lock:
            expired = [cid for cid, c in self._caps.items() if c.is_expired(now)]
            for cid in expired:
                del self._caps[cid]
        return len(expired)

    def __contains__(self, capability: object) -> bool:
        if not isinstance(capability, Capability):
            return False
        with self._lock:
            return self._caps.get(capability.capability_id) == capability

    def __iter__(self) -> Iterator[Capability]:
        with self._lock:
            return iter(list(self._caps.values()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._caps)
