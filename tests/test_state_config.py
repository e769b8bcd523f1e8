from __future__ import annotations

import pytest

from livejump.config import DEFAULT_CONFIG, CalibrationConfig, PllConfig
from livejump.errors import CalibrationLockedError, ConfigError, SuspendedError, UncalibratedError
from livejump.state import UNCALIBRATED, Calibrated, CalibrationState


class TestConfig:
    def test_defaults(self) -> None:
        config = DEFAULT_CONFIG
        assert config.latency_sec == 20.0
        assert config.guard_sec == 3.0
        assert config.edge_backoff_sec == 0.75
        assert config.prefer_buffered_threshold_sec == 120.0
        assert config.pll.hys_sec == 2.5
        assert config.pll.consec_n == 5
        assert config.pll.alpha == 0.02
        assert config.pll.outlier_e_sec == 4000.0
        assert config.pll.max_step_sec == pytest.approx(0.5 / 60)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"consec_n": 0},
            {"max_rate_per_sec": 0},
            {"alpha": 0},
            {"alpha": 1.5},
            {"hys_sec": -1},
            {"outlier_e_sec": 1.0},
            {"interval_ms": 0},
        ],
    )
    def test_pll_validation(self, kwargs: dict[str, float]) -> None:
        with pytest.raises(ConfigError):
            PllConfig(**kwargs)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"latency_sec": -1},
            {"guard_sec": -0.1},
            {"lead_band_min_sec": 5000},
            {"lead_sample_count": 0},
            {"edge_monitor_interval_ms": 0},
            {"d_fallback_ttl_sec": 0},
        ],
    )
    def test_calibration_validation(self, kwargs: dict[str, float]) -> None:
        with pytest.raises(ConfigError):
            CalibrationConfig(**kwargs)

    def test_config_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            PllConfig(consec_n=0)

    def test_overrides_merge_nested_pll(self) -> None:
        config = DEFAULT_CONFIG.with_overrides({"latency_sec": 30, "pll": {"alpha": 0.05}})
        assert config.latency_sec == 30
        assert config.pll.alpha == 0.05
        assert config.pll.consec_n == 5
        assert DEFAULT_CONFIG.latency_sec == 20.0

    def test_overrides_reject_unknown_keys(self) -> None:
        with pytest.raises(ConfigError, match="bogus"):
            DEFAULT_CONFIG.with_overrides({"bogus": 1})
        with pytest.raises(ConfigError, match="gain"):
            DEFAULT_CONFIG.with_overrides({"pll": {"gain": 1}})

    def test_overrides_are_validated(self) -> None:
        with pytest.raises(ConfigError):
            DEFAULT_CONFIG.with_overrides({"pll": {"consec_n": 0}})

    def test_empty_overrides_return_same_object(self) -> None:
        assert DEFAULT_CONFIG.with_overrides({}) is DEFAULT_CONFIG
        assert DEFAULT_CONFIG.with_overrides(None) is DEFAULT_CONFIG

    def test_to_dict(self) -> None:
        data = DEFAULT_CONFIG.to_dict()
        assert data["latency_sec"] == 20.0
        assert data["pll"]["consec_n"] == 5


class TestCalibrationState:
    def test_starts_uncalibrated(self) -> None:
        state = CalibrationState()
        assert state.offset is UNCALIBRATED
        assert not state.is_calibrated
        assert state.c is None
        with pytest.raises(UncalibratedError):
            state.require_c()

    def test_snap_overwrites_and_resets_counter(self) -> None:
        state = CalibrationState()
        state.consecutive_error_count = 3
        state.snap_offset(12.5)
        assert state.offset == Calibrated(12.5)
        assert state.consecutive_error_count == 0
        state.snap_offset(-4.0)
        assert state.require_c() == -4.0

    def test_mutators_refuse_while_locked(self) -> None:
        state = CalibrationState()
        state.snap_offset(1.0)
        state.locked = True
        with pytest.raises(CalibrationLockedError) as excinfo:
            state.snap_offset(2.0)
        assert isinstance(excinfo.value, SuspendedError)
        assert excinfo.value.reason == "locked"
        with pytest.raises(CalibrationLockedError):
            state.adjust_offset(0.1)
        with pytest.raises(CalibrationLockedError):
            state.set_skew(-10.0)
        assert state.c == 1.0

    def test_adjust_requires_calibration(self) -> None:
        with pytest.raises(UncalibratedError):
            CalibrationState().adjust_offset(0.1)

    def test_non_finite_offsets_rejected(self) -> None:
        state = CalibrationState()
        with pytest.raises(ValueError):
            state.snap_offset(float("nan"))

    def test_effective_skew_precedence(self) -> None:
        state = CalibrationState()
        assert state.effective_skew(0.0) == 0.0

        state.d_fallback.value = -3600.0
        state.d_fallback.until_ms = 1000.0
        assert state.effective_skew(500.0) == -3600.0
        assert state.effective_skew(1500.0) == 0.0

        state.set_skew(-3500.0)
        assert state.effective_skew(500.0) == -3500.0

    def test_effective_skew_without_fallback_value(self) -> None:
        state = CalibrationState()
        state.d_fallback.until_ms = 1e12
        assert state.effective_skew(0.0) == 0.0
        state.d_fallback.value = -3600.0
        assert state.effective_skew(1e12) == -3600.0
        assert state.effective_skew(1e12 + 1) == 0.0

    def test_reset_and_snapshot(self) -> None:
        state = CalibrationState()
        state.snap_offset(10.0)
        state.set_skew(-1.0)
        state.lead_samples.append(3600.0)
        state.provisional_offset = 5.0
        snapshot = state.snapshot().to_dict()
        assert snapshot == {
            "C": 10.0,
            "D": -1.0,
            "locked": False,
            "consecutiveErrorCount": 0,
            "dFallback": None,
            "provisionalOffset": 5.0,
        }

        state.reset()
        assert state.c is None
        assert state.d == 0.0
        assert len(state.lead_samples) == 0
        assert state.provisional_offset is None
