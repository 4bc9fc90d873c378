# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""Tests for environment-driven configuration."""

from __future__ import annotations

import pytest

from qhybrid.config import (
    Config,
    _parse_bool,
    _parse_optional_int,
    get_config,
    load_config,
    reset_config,
    set_config,
)


class TestDefaults:
    def test_defaults(self) -> None:
        config = load_config()
        assert config == Config()
        assert config.scheduler_policy == "aging"
        assert config.max_bond_dimension == 64
        assert config.seed is None

    def test_to_dict(self) -> None:
        data = Config(seed=3).to_dict()
        assert data["seed"] == 3
        assert data["channel_policy"] == "block"


class TestEnvironment:
    """Tests for QHYBRID_* parsing."""

    def test_integers_and_floats(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("QHYBRID_DENSE_THRESHOLD", "10")
        monkeypatch.setenv("QHYBRID_WORKERS", "0")
        monkeypatch.setenv("QHYBRID_SVD_CUTOFF", "1e-8")
        monkeypatch.setenv("QHYBRID_SEED", "17")
        config = load_config()
        assert config.dense_threshold == 10
        assert config.workers == 0
        assert config.svd_cutoff == 1e-8
        assert config.seed == 17

    def test_policies_are_normalized(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("QHYBRID_SCHEDULER_POLICY", " Strict ")
        monkeypatch.setenv("QHYBRID_CHANNEL_POLICY", "REJECT")
        config = load_config()
        assert config.scheduler_policy == "strict"
        assert config.channel_policy == "reject"

    def test_bad_numbers_fall_back(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("QHYBRID_GATE_QUANTUM", "many")
        monkeypatch.setenv("QHYBRID_SVD_CUTOFF", "tiny")
        config = load_config()
        assert config.gate_quantum == Config().gate_quantum
        assert config.svd_cutoff == Config().svd_cutoff

    def test_disable_mps(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("QHYBRID_ENABLE_MPS", "off")
        assert not load_config().enable_mps

    @pytest.mark.parametrize("raw", ["0", "none", "Unbounded", ""])
    def test_unbounded_bond(self, monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
        monkeypatch.setenv("QHYBRID_MAX_BOND_DIMENSION", raw)
        assert load_config().max_bond_dimension is None

    def test_invalid_policy(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("QHYBRID_SCHEDULER_POLICY", "lottery")
        with pytest.raises(ValueError, match="scheduler_policy"):
            load_config()


class TestValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"dense_threshold": 0},
            {"max_bond_dimension": 0},
            {"workers": -1},
            {"gate_quantum": 0},
            {"shot_batch": 0},
            {"channel_capacity": 0},
            {"channel_policy": "drop"},
        ],
    )
    def test_rejected(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            Config(**kwargs)


class TestHelpers:
    @pytest.mark.parametrize(
        "raw, expected",
        [(None, True), ("", True), ("1", True), ("yes", True), ("false", False), ("0", False)],
    )
    def test_parse_bool(self, raw, expected: bool) -> None:
        assert _parse_bool(raw) is expected

    def test_parse_optional_int(self) -> None:
        assert _parse_optional_int(None, 5) == 5
        assert _parse_optional_int("none", 5) is None
        assert _parse_optional_int("12", 5) == 12
        assert _parse_optional_int("junk", 5) == 5


class TestCachedConfig:
    """Tests for get_config / set_config / reset_config."""

    def test_cached_until_reset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        first = get_config()
        assert get_config() is first
        monkeypatch.setenv("QHYBRID_WORKERS", "7")
        assert get_config().workers == first.workers
        reset_config()
        assert get_config().workers == 7

    def test_set_config(self) -> None:
        custom = Config(dense_threshold=3)
        set_config(custom)
        assert get_config() is custom
