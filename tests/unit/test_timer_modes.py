"""Unit tests for timer modes and the registry."""

import pytest

from session_tracker.config import TrackerConfig
from session_tracker.timer_modes import (
    CUSTOM_MODE_NAME,
    DEFAULT_MODE_NAME,
    HOUR_MS,
    MINUTE_MS,
    TimerModeConfig,
    TimerModeRegistry,
    ValidationError,
    create_custom_timer,
    warning_label,
)


class TestWarningLabel:
    def test_whole_minutes(self):
        assert warning_label(30 * MINUTE_MS) == "30min"
        assert warning_label(5 * MINUTE_MS) == "5min"

    def test_seconds(self):
        assert warning_label(90_000) == "90s"

    def test_sub_second_offsets_stay_distinct(self):
        assert warning_label(90_500) == "90500ms"
        assert warning_label(400) != warning_label(900)


class TestTimerModeConfig:
    def test_warnings_sorted_and_deduplicated(self):
        mode = TimerModeConfig(name="x", duration=HOUR_MS, warnings=(5 * MINUTE_MS, 30 * MINUTE_MS, 5 * MINUTE_MS))
        assert mode.warnings == (30 * MINUTE_MS, 5 * MINUTE_MS)
        assert mode.warning_labels == ["30min", "5min"]

    def test_from_dict_reads_camel_case(self):
        mode = TimerModeConfig.from_dict(
            "sprint",
            {"name": "Sprint", "duration": 20 * MINUTE_MS, "warnings": [2 * MINUTE_MS], "autoEnd": True},
        )
        assert mode.name == "sprint"
        assert mode.label == "Sprint"
        assert mode.auto_end is True

    def test_snapshot_round_trip(self):
        mode = TimerModeRegistry().get("pomodoro")
        again = TimerModeConfig.from_dict("pomodoro", mode.to_snapshot())
        assert again.duration == mode.duration
        assert again.warnings == mode.warnings
        assert again.auto_end == mode.auto_end
        assert again.break_duration == 5 * MINUTE_MS

    @pytest.mark.parametrize(
        "raw",
        [
            {"duration": 0, "warnings": []},
            {"duration": -5, "warnings": []},
            {"duration": "long", "warnings": []},
            {"duration": HOUR_MS, "warnings": [HOUR_MS]},
            {"duration": HOUR_MS, "warnings": [-1]},
            {"duration": HOUR_MS, "warnings": "5min"},
            {"duration": 0.5, "warnings": []},
            {"duration": float("nan"), "warnings": []},
            {"duration": float("inf"), "warnings": []},
            {"duration": HOUR_MS, "warnings": [float("nan")]},
            {"duration": HOUR_MS, "warnings": [], "breakDuration": "soon"},
        ],
    )
    def test_invalid_values_rejected(self, raw):
        with pytest.raises(ValidationError):
            TimerModeConfig.from_dict("bad", raw)

    def test_not_a_mapping(self):
        with pytest.raises(ValidationError):
            TimerModeConfig.from_dict("bad", [1, 2])


class TestRegistry:
    def test_builtins_present(self):
        registry = TimerModeRegistry()
        for name in ("claude-max", "pomodoro", "deep-work", "quick-fix", "custom"):
            assert name in registry

    def test_default_mode_shape(self):
        mode = TimerModeRegistry().get(DEFAULT_MODE_NAME)
        assert mode.duration == 5 * HOUR_MS
        assert mode.warnings == (30 * MINUTE_MS, 10 * MINUTE_MS)
        assert mode.auto_end is False

    def test_unknown_name_falls_back_to_default(self):
        registry = TimerModeRegistry()
        assert registry.get("does-not-exist").name == DEFAULT_MODE_NAME
        assert registry.get(None).name == DEFAULT_MODE_NAME

    def test_register_renames_to_key(self):
        registry = TimerModeRegistry()
        registry.register("sprint", TimerModeConfig(name="other", duration=10 * MINUTE_MS))
        assert registry.get("sprint").name == "sprint"

    def test_register_rejects_empty_name(self):
        with pytest.raises(ValidationError):
            TimerModeRegistry().register("  ", TimerModeConfig(name="x", duration=MINUTE_MS))

    def test_register_rejects_invalid_mode(self):
        registry = TimerModeRegistry()
        with pytest.raises(ValidationError):
            registry.register("bad", TimerModeConfig(name="bad", duration=MINUTE_MS, warnings=(MINUTE_MS,)))
        assert "bad" not in registry

    def test_from_config_skips_invalid_modes(self):
        config = TrackerConfig(
            {
                "timerModes": {
                    "sprint": {"name": "Sprint", "duration": 20 * MINUTE_MS, "warnings": [MINUTE_MS]},
                    "broken": {"duration": -1},
                }
            }
        )
        registry = TimerModeRegistry.from_config(config)
        assert "sprint" in registry
        assert "broken" not in registry
        assert "pomodoro" in registry


class TestCustomDuration:
    def test_resolve_custom_duration(self):
        mode = TimerModeRegistry().resolve(CUSTOM_MODE_NAME, 45)
        assert mode.duration == 45 * MINUTE_MS
        assert mode.warnings == (15 * MINUTE_MS, 5 * MINUTE_MS)

    def test_short_custom_has_no_warnings(self):
        assert create_custom_timer(5).warnings == ()

    def test_duration_ignored_for_named_mode(self):
        mode = TimerModeRegistry().resolve("pomodoro", 45)
        assert mode.duration == 25 * MINUTE_MS

    @pytest.mark.parametrize("minutes", [0, -10, 0.00001, float("nan"), float("inf")])
    def test_non_positive_duration_rejected(self, minutes):
        with pytest.raises(ValidationError):
            TimerModeRegistry().resolve(CUSTOM_MODE_NAME, minutes)

    def test_non_finite_mode_skipped_by_from_config(self):
        config = TrackerConfig({"timerModes": {"forever": {"duration": float("inf"), "warnings": []}}})
        assert "forever" not in TimerModeRegistry.from_config(config)
