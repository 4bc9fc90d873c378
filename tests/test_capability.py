# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""Tests for capability minting, checking, delegation and revocation."""

from __future__ import annotations

import dataclasses

import pytest

from qhybrid.errors import (
    InsufficientGrant,
    KernelInvariantError,
    NotDelegatable,
    PermissionDenied,
)
from qhybrid.kernel.capability import (
    Capability,
    CapabilityAuthority,
    CapabilitySet,
    LogicalClock,
    Permission,
)


@pytest.fixture
def authority() -> CapabilityAuthority:
    return CapabilityAuthority(LogicalClock(), audit_log_size=8)


class TestPermission:
    """Tests for permission bit arithmetic."""

    def test_aliases(self) -> None:
        assert Permission.READ_ONLY == Permission.READ
        assert Permission.READ_WRITE == Permission.READ | Permission.WRITE
        assert Permission.FULL == (
            Permission.READ | Permission.WRITE | Permission.EXECUTE | Permission.GRANT
        )

    def test_allows_requires_every_bit(self) -> None:
        cap = Capability("c", "r", Permission.READ | Permission.EXECUTE)
        assert cap.allows(Permission.READ)
        assert cap.allows(Permission.READ | Permission.EXECUTE)
        assert not cap.allows(Permission.READ | Permission.WRITE)
        assert cap.allows(Permission.NONE)


class TestCheck:
    """Tests for CapabilityAuthority.check."""

    def test_valid(self, authority: CapabilityAuthority) -> None:
        cap = authority.mint("dev", Permission.READ | Permission.EXECUTE)
        authority.check(cap, "dev", Permission.EXECUTE)
        assert authority.is_valid(cap, "dev", Permission.READ)
        assert len(authority.audit) == 0

    def test_missing_capability(self, authority: CapabilityAuthority) -> None:
        with pytest.raises(PermissionDenied, match="no capability presented"):
            authority.check(None, "dev", Permission.READ)

    def test_missing_bits(self, authority: CapabilityAuthority) -> None:
        cap = authority.mint("dev", Permission.READ)
        with pytest.raises(PermissionDenied) as exc_info:
            authority.check(cap, "dev", Permission.EXECUTE)
        assert exc_info.value.resource_id == "dev"
        assert "EXECUTE" in exc_info.value.reason

    def test_wrong_resource(self, authority: CapabilityAuthority) -> None:
        cap = authority.mint("dev-a", Permission.FULL)
        with pytest.raises(PermissionDenied, match="bound to dev-a"):
            authority.check(cap, "dev-b", Permission.READ)

    def test_forged_token_rejected(self, authority: CapabilityAuthority) -> None:
        cap = authority.mint("dev", Permission.READ)
        forged = dataclasses.replace(cap, permissions=Permission.FULL)
        with pytest.raises(PermissionDenied, match="forged"):
            authority.check(forged, "dev", Permission.WRITE)

    def test_token_from_other_authority_rejected(self, authority: CapabilityAuthority) -> None:
        other = CapabilityAuthority()
        cap = other.mint("dev", Permission.FULL)
        assert not authority.is_valid(cap, "dev", Permission.READ)

    def test_expiry_follows_logical_clock(self, authority: CapabilityAuthority) -> None:
        cap = authority.mint("dev", Permission.READ, expires_at=3)
        authority.clock.advance(2)
        authority.check(cap, "dev", Permission.READ)
        authority.clock.advance(1)
        with pytest.raises(PermissionDenied, match="expired"):
            authority.check(cap, "dev", Permission.READ)

    def test_denials_are_audited(self, authority: CapabilityAuthority) -> None:
        cap = authority.mint("dev", Permission.READ)
        with pytest.raises(PermissionDenied):
            authority.check(cap, "dev", Permission.WRITE)
        entries = authority.audit.entries()
        assert len(entries) == 1
        assert entries[0].capability_id == cap.capability_id
        assert entries[0].required == Permission.WRITE

    def test_audit_log_is_bounded(self, authority: CapabilityAuthority) -> None:
        for _ in range(20):
            with pytest.raises(PermissionDenied):
                authority.check(None, "dev", Permission.READ)
        assert len(authority.audit) == 8


class TestDelegation:
    """Tests for CapabilityAuthority.delegate."""

    def test_subset(self, authority: CapabilityAuthority) -> None:
        parent = authority.mint("dev", Permission.FULL, delegatable=True)
        child = authority.delegate(parent, Permission.READ)
        assert child.permissions == Permission.READ
        assert child.parent_id == parent.capability_id
        assert not child.delegatable
        authority.check(child, "dev", Permission.READ)
        assert not authority.is_valid(child, "dev", Permission.WRITE)

    def test_not_delegatable(self, authority: CapabilityAuthority) -> None:
        cap = authority.mint("dev", Permission.FULL, delegatable=False)
        with pytest.raises(NotDelegatable):
            authority.delegate(cap, Permission.READ)

    def test_requires_grant_bit(self, authority: CapabilityAuthority) -> None:
        cap = authority.mint("dev", Permission.READ_WRITE, delegatable=True)
        with pytest.raises(NotDelegatable):
            authority.delegate(cap, Permission.READ)

    def test_cannot_widen(self, authority: CapabilityAuthority) -> None:
        cap = authority.mint("dev", Permission.READ | Permission.GRANT, delegatable=True)
        with pytest.raises(InsufficientGrant):
            authority.delegate(cap, Permission.READ | Permission.WRITE)

    def test_child_is_not_further_delegatable(self, authority: CapabilityAuthority) -> None:
        parent = authority.mint("dev", Permission.FULL, delegatable=True)
        child = authority.delegate(parent, Permission.FULL)
        with pytest.raises(NotDelegatable):
            authority.delegate(child, Permission.READ)

    def test_child_never_outlives_parent(self, authority: CapabilityAuthority) -> None:
        parent = authority.mint("dev", Permission.FULL, expires_at=5, delegatable=True)
        assert authority.delegate(parent, Permission.READ).expires_at == 5
        assert authority.delegate(parent, Permission.READ, expires_at=10).expires_at == 5
        assert authority.delegate(parent, Permission.READ, expires_at=2).expires_at == 2

    def test_forged_parent(self, authority: CapabilityAuthority) -> None:
        parent = authority.mint("dev", Permission.READ, delegatable=True)
        forged = dataclasses.replace(parent, permissions=Permission.FULL)
        with pytest.raises(PermissionDenied):
            authority.delegate(forged, Permission.READ)


class TestRevocation:
    """Tests for revocation and its propagation to delegated tokens."""

    def test_revoke_propagates_to_children(self, authority: CapabilityAuthority) -> None:
        parent = authority.mint("dev", Permission.FULL, delegatable=True)
        child = authority.delegate(parent, Permission.READ)
        authority.revoke(parent)
        with pytest.raises(PermissionDenied, match="revoked"):
            authority.check(child, "dev", Permission.READ)
        with pytest.raises(PermissionDenied, match="revoked"):
            authority.delegate(parent, Permission.READ)

    def test_revoke_child_leaves_parent(self, authority: CapabilityAuthority) -> None:
        parent = authority.mint("dev", Permission.FULL, delegatable=True)
        child = authority.delegate(parent, Permission.READ)
        authority.revoke(child.capability_id)
        assert authority.is_valid(parent, "dev", Permission.READ)
        assert not authority.is_valid(child, "dev", Permission.READ)

    def test_revoke_is_idempotent(self, authority: CapabilityAuthority) -> None:
        cap = authority.mint("dev", Permission.READ)
        authority.revoke(cap)
        authority.revoke(cap)
        authority.revoke("never-minted")
        assert not authority.is_valid(cap, "dev", Permission.READ)

    def test_revoke_resource(self, authority: CapabilityAuthority) -> None:
        a = authority.mint("dev", Permission.READ)
        b = authority.mint("dev", Permission.WRITE)
        other = authority.mint("other", Permission.READ)
        assert authority.revoke_resource("dev") == 2
        assert not authority.is_valid(a, "dev", Permission.READ)
        assert not authority.is_valid(b, "dev", Permission.WRITE)
        assert authority.is_valid(other, "other", Permission.READ)

    def test_ancestry_cycle_is_invariant_violation(self, authority: CapabilityAuthority) -> None:
        a = authority.mint("dev", Permission.READ)
        looped = dataclasses.replace(a, parent_id=a.capability_id)
        authority._records[a.capability_id] = looped
        with pytest.raises(KernelInvariantError):
            authority.is_valid(looped, "dev", Permission.READ)


class TestCapabilitySet:
    """Tests for the per-process capability set."""

    def test_find_returns_valid_token(self, authority: CapabilityAuthority) -> None:
        caps = CapabilitySet()
        weak = authority.mint("dev", Permission.READ)
        strong = authority.mint("dev", Permission.READ | Permission.EXECUTE)
        caps.add(weak)
        caps.add(strong)
        assert caps.find("dev", Permission.EXECUTE, authority) == strong
        assert caps.find("other", Permission.READ, authority) is None

    def test_membership_is_exact(self, authority: CapabilityAuthority) -> None:
        caps = CapabilitySet()
        cap = authority.mint("dev", Permission.READ)
        caps.add(cap)
        assert cap in caps
        assert dataclasses.replace(cap, permissions=Permission.FULL) not in caps
        assert "not-a-cap" not in caps

    def test_prune_expired(self, authority: CapabilityAuthority) -> None:
        caps = CapabilitySet()
        caps.add(authority.mint("dev", Permission.READ, expires_at=1))
        caps.add(authority.mint("dev", Permission.READ))
        authority.clock.advance(1)
        assert caps.prune_expired(authority.clock) == 1
        assert len(caps) == 1


class TestLogicalClock:
    def test_cannot_go_backwards(self) -> None:
        clock = LogicalClock(5)
        assert clock.advance(2) == 7
        with pytest.raises(ValueError):
            clock.advance(-1)
