"""
Unit tests for ConfigManager and the configuration dataclasses.
"""

import pytest
import json
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from config.config_manager import (
    ConfigManager, AppConfig, DefaultSchedule, IdentitySettings,
    ParserSettings, Paths, SummarySettings, DEFAULT_SUMMARY_COLUMNS,
)


class TestDefaults:
    """Tests for dataclass defaults."""

    def test_default_schedule(self):
        shift = DefaultSchedule().to_fixed_shift()
        assert shift.start == 480
        assert shift.end == 1020
        assert shift.grace_minutes == 0

    def test_invalid_default_schedule(self):
        with pytest.raises(ValueError):
            DefaultSchedule(start="8am").to_fixed_shift()

    def test_identity_settings(self):
        settings = IdentitySettings()
        assert settings.chunk_size == 2000
        assert settings.token_pad_length == 0

    def test_summary_settings(self):
        settings = SummarySettings()
        assert settings.percent_mode == "days"
        assert settings.columns == DEFAULT_SUMMARY_COLUMNS
        assert settings.columns is not DEFAULT_SUMMARY_COLUMNS


class TestConfigManager:
    """Tests for JSON persistence."""

    def test_missing_file_gives_defaults(self, tmp_path):
        manager = ConfigManager(tmp_path / "config.json")
        assert manager.load() == AppConfig()

    def test_round_trip(self, tmp_path):
        path = tmp_path / "config.json"
        manager = ConfigManager(path)
        manager.load()
        manager.update(
            paths=Paths(employees_csv="employees.csv", schedules_json="schedules.json"),
            default_schedule=DefaultSchedule(start="07:30", end="16:30", grace_minutes=5),
            parser=ParserSettings(concurrency=2),
            summary=SummarySettings(percent_mode="minutes", sort_by="lateDays", columns=["employeeName"]),
        )

        config = ConfigManager(path).load()
        assert config.paths.employees_csv == "employees.csv"
        assert config.default_schedule.start == "07:30"
        assert config.default_schedule.grace_minutes == 5
        assert config.parser.concurrency == 2
        assert config.summary.percent_mode == "minutes"
        assert config.summary.columns == ["employeeName"]

    def test_partial_file_keeps_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"identity": {"chunk_size": 500}}), encoding="utf-8")
        config = ConfigManager(path).load()
        assert config.identity.chunk_size == 500
        assert config.identity.timeout_seconds == 30.0
        assert config.default_schedule.end == "17:00"

    def test_invalid_json_gives_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{broken", encoding="utf-8")
        assert ConfigManager(path).load() == AppConfig()
