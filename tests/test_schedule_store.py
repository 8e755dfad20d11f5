"""
Unit tests for JsonScheduleStore.
"""

import json
import sys
from datetime import date
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from domain.entities import (
    ExclusionMode, FixedShift, FlexSchedule, ScheduleSource, WeeklyPattern,
)
from domain.errors import AttendanceError, ScheduleConfigError
from infrastructure.schedule_store import JsonScheduleStore, parse_exclusion, parse_schedule

DEFAULT = FixedShift(start=480, end=1020)

DATA = {
    "employees": {
        "E-1": {
            "schedules": [
                {"type": "FIXED", "start": "07:00", "end": "16:00", "grace_minutes": 10,
                 "effective_from": "2025-01-01"},
                {"type": "WEEKLY_PATTERN", "effective_from": "2025-04-10",
                 "days": {"mon": {"windows": [{"start": "08:00", "end": "12:00"}], "required_minutes": 240}}},
            ],
            "exceptions": [
                {"date": "2025-04-15", "schedule": {"type": "FIXED", "start": "10:00", "end": "14:00"}},
            ],
            "weekly_exclusions": [
                {"weekday": 3, "mode": "EXCUSED", "effective_from": "2025-01-01"},
                {"weekday": 3, "mode": "IGNORE_LATE_UNTIL", "ignore_until": "09:30",
                 "effective_from": "2025-04-01"},
            ],
        }
    }
}


@pytest.fixture
def store():
    return JsonScheduleStore(DEFAULT).load_dict(DATA)


class TestScheduleFor:
    """Tests for schedule resolution order."""

    def test_unknown_employee_gets_default(self, store):
        assignment = store.schedule_for("E-404", date(2025, 4, 1))
        assert assignment.schedule is DEFAULT
        assert assignment.source == ScheduleSource.DEFAULT

    def test_no_employee_gets_default(self, store):
        assert store.schedule_for(None, date(2025, 4, 1)).source == ScheduleSource.DEFAULT

    def test_effective_schedule(self, store):
        assignment = store.schedule_for("E-1", date(2025, 4, 1))
        assert assignment.source == ScheduleSource.WORKSCHEDULE
        assert isinstance(assignment.schedule, FixedShift)
        assert assignment.schedule.start == 420
        assert assignment.schedule.grace_minutes == 10

    def test_latest_effective_schedule_wins(self, store):
        assignment = store.schedule_for("E-1", date(2025, 4, 14))
        assert isinstance(assignment.schedule, WeeklyPattern)
        assert assignment.schedule.days[0].required_minutes == 240

    def test_exception_wins(self, store):
        assignment = store.schedule_for("E-1", date(2025, 4, 15))
        assert assignment.source == ScheduleSource.EXCEPTION
        assert assignment.schedule.start == 600

    def test_latest_exclusion_applies(self, store):
        wednesday = store.schedule_for("E-1", date(2025, 4, 2))
        assert wednesday.exclusion.mode == ExclusionMode.IGNORE_LATE_UNTIL
        assert wednesday.exclusion.ignore_until == 570

        earlier = store.schedule_for("E-1", date(2025, 3, 5))
        assert earlier.exclusion.mode == ExclusionMode.EXCUSED

        tuesday = store.schedule_for("E-1", date(2025, 4, 1))
        assert tuesday.exclusion is None

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "schedules.json"
        path.write_text(json.dumps(DATA), encoding="utf-8")
        store = JsonScheduleStore(DEFAULT, path).load()
        assert store.schedule_for("E-1", date(2025, 4, 1)).source == ScheduleSource.WORKSCHEDULE

    def test_missing_file(self, tmp_path):
        store = JsonScheduleStore(DEFAULT, tmp_path / "none.json").load()
        assert store.schedule_for("E-1", date(2025, 4, 1)).source == ScheduleSource.DEFAULT

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "schedules.json"
        path.write_text("{\"employees\": ", encoding="utf-8")
        with pytest.raises(ScheduleConfigError) as exc_info:
            JsonScheduleStore(DEFAULT, path).load()
        assert isinstance(exc_info.value, AttendanceError)
        assert str(path) in exc_info.value.message

    def test_malformed_entry(self, tmp_path):
        path = tmp_path / "schedules.json"
        path.write_text(json.dumps({"employees": {"E-1": {"exceptions": [{"schedule": {}}]}}}), encoding="utf-8")
        store = JsonScheduleStore(DEFAULT, path)
        with pytest.raises(ScheduleConfigError):
            store.load()
        assert store.schedule_for("E-1", date(2025, 4, 1)).source == ScheduleSource.DEFAULT


class TestParsing:
    def test_weekday_keys(self):
        pattern = parse_schedule({"type": "weekly_pattern", "days": {
            "Friday": {"windows": [{"start": "22:00", "end": "06:00"}]},
            "6": {"windows": []},
        }})
        assert pattern.days[4].windows[0].is_overnight
        assert pattern.days[6].windows == []

    def test_invalid_time(self):
        with pytest.raises(ValueError):
            parse_schedule({"type": "FIXED", "start": "25:00", "end": "17:00"})

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            parse_schedule({"type": "ROTATING"})

    def test_invalid_weekday(self):
        with pytest.raises(ValueError):
            parse_exclusion({"weekday": 0, "mode": "EXCUSED"})

    def test_flex_schedule(self):
        flex = parse_schedule({
            "type": "flex", "core_start": "10:00", "core_end": "15:00",
            "bandwidth_start": "06:00", "bandwidth_end": "20:00", "required_minutes": 480,
        })
        assert isinstance(flex, FlexSchedule)
        assert (flex.core_start, flex.core_end) == (600, 900)
        assert (flex.bandwidth_start, flex.bandwidth_end) == (360, 1200)
        assert flex.break_minutes == 60
        assert flex.weekly_pattern is None

    def test_flex_schedule_with_weekly_windows(self):
        flex = parse_schedule({
            "type": "FLEX", "core_start": "10:00", "core_end": "15:00",
            "bandwidth_start": "06:00", "bandwidth_end": "20:00",
            "required_minutes": 480, "break_minutes": 0,
            "days": {"tue": {"windows": [{"start": "15:00", "end": "19:00"}], "required_minutes": 240}},
        })
        assert flex.break_minutes == 0
        assert flex.weekly_pattern.days[1].required_minutes == 240

    def test_flex_schedule_needs_required_minutes(self):
        with pytest.raises(ValueError):
            parse_schedule({"type": "FLEX", "core_start": "10:00", "core_end": "15:00",
                            "bandwidth_start": "06:00", "bandwidth_end": "20:00"})

    def test_flex_core_cannot_wrap(self):
        with pytest.raises(ValueError):
            parse_schedule({"type": "FLEX", "core_start": "15:00", "core_end": "10:00",
                            "bandwidth_start": "06:00", "bandwidth_end": "20:00", "required_minutes": 480})
