"""
Schedule Store Module

Answers "which schedule applies to this employee on this date".

JsonScheduleStore file format:

    {
      "employees": {
        "<employee id>": {
          "schedules": [
            {"type": "FIXED", "start": "08:00", "end": "17:00",
             "grace_minutes": 5, "break_minutes": 60,
             "effective_from": "2024-01-01", "effective_to": null},
            {"type": "WEEKLY_PATTERN", "grace_minutes": 0,
             "effective_from": "2024-06-01",
             "days": {"mon": {"windows": [{"start": "08:00", "end": "12:00"}],
                              "required_minutes": 240}}},
            {"type": "FLEX", "core_start": "10:00", "core_end": "15:00",
             "bandwidth_start": "06:00", "bandwidth_end": "20:00",
             "required_minutes": 480, "break_minutes": 60,
             "effective_from": "2024-09-01"}
          ],
          "exceptions": [{"date": "2024-03-15", "schedule": {...}}],
          "weekly_exclusions": [
            {"weekday": 3, "mode": "IGNORE_LATE_UNTIL", "ignore_until": "09:30",
             "effective_from": "2024-01-01", "effective_to": null}
          ]
        }
      }
    }

A FLEX entry may also carry "days" in the WEEKLY_PATTERN form; those weekdays
are evaluated against their windows.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional

from domain.entities import (
    ExclusionMode, FixedShift, FlexSchedule, Schedule, ScheduleAssignment, ScheduleSource,
    WeeklyExclusion, WeeklyPattern, WeeklyPatternDay, WeeklyPatternWindow,
)
from domain.errors import ScheduleConfigError
from domain.time_utils import parse_hhmm
from infrastructure.logger import get_logger

logger = get_logger("ScheduleStore")


WEEKDAY_KEYS = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]


class ScheduleService(ABC):
    """Interface of the external schedule service."""

    @abstractmethod
    def schedule_for(self, employee_id: Optional[str], day: Optional[date]) -> ScheduleAssignment:
        """Schedule (and weekly exclusion, if any) in effect for an employee-day."""
        pass


def _minutes(value, label: str) -> int:
    minutes = parse_hhmm(value)
    if minutes is None:
        raise ValueError(f"Invalid {label} time: {value!r}")
    return minutes


def _date(value) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _parse_days(days_data: dict) -> Dict[int, WeeklyPatternDay]:
    days: Dict[int, WeeklyPatternDay] = {}
    for key, day_data in (days_data or {}).items():
        weekday = WEEKDAY_KEYS.index(key.lower()[:3]) if isinstance(key, str) and not key.isdigit() else int(key)
        windows = [
            WeeklyPatternWindow(
                day_of_week=weekday,
                start=_minutes(window.get("start"), "window start"),
                end=_minutes(window.get("end"), "window end"),
            )
            for window in day_data.get("windows", [])
        ]
        required = day_data.get("required_minutes")
        days[weekday] = WeeklyPatternDay(
            windows=windows,
            required_minutes=int(required) if required is not None else None,
        )
    return days


def parse_schedule(data: dict) -> Schedule:
    """
    Build a schedule variant from its JSON form.

    Raises:
        ValueError: If the type is unknown or a time is invalid
    """
    schedule_type = str(data.get("type", "FIXED")).upper()
    grace = int(data.get("grace_minutes", 0))
    if schedule_type == FixedShift.type_name:
        return FixedShift(
            start=_minutes(data.get("start"), "start"),
            end=_minutes(data.get("end"), "end"),
            grace_minutes=grace,
            break_minutes=int(data.get("break_minutes", 0)),
        )
    if schedule_type == WeeklyPattern.type_name:
        return WeeklyPattern(days=_parse_days(data.get("days")), grace_minutes=grace)
    if schedule_type == FlexSchedule.type_name:
        if data.get("required_minutes") is None:
            raise ValueError("Flexible schedules need required_minutes")
        flex = FlexSchedule(
            core_start=_minutes(data.get("core_start"), "core start"),
            core_end=_minutes(data.get("core_end"), "core end"),
            bandwidth_start=_minutes(data.get("bandwidth_start"), "bandwidth start"),
            bandwidth_end=_minutes(data.get("bandwidth_end"), "bandwidth end"),
            required_minutes=int(data.get("required_minutes")),
            break_minutes=int(data.get("break_minutes", 60)),
            grace_minutes=grace,
        )
        if flex.core_end <= flex.core_start or flex.bandwidth_end <= flex.bandwidth_start:
            raise ValueError("Flexible core and bandwidth windows must end after they start")
        if data.get("days"):
            flex.weekly_pattern = WeeklyPattern(days=_parse_days(data["days"]), grace_minutes=grace)
        return flex
    raise ValueError(f"Unknown schedule type: {schedule_type}")


def parse_exclusion(data: dict) -> WeeklyExclusion:
    mode = ExclusionMode(str(data.get("mode", "EXCUSED")).upper())
    ignore_until = None
    if mode == ExclusionMode.IGNORE_LATE_UNTIL:
        ignore_until = _minutes(data.get("ignore_until"), "ignore-until")
    weekday = int(data["weekday"])
    if not 1 <= weekday <= 7:
        raise ValueError(f"Weekday must be 1 (Mon) to 7 (Sun), got {weekday}")
    return WeeklyExclusion(
        weekday=weekday,
        mode=mode,
        effective_from=_date(data.get("effective_from")) or date.min,
        ignore_until=ignore_until,
        effective_to=_date(data.get("effective_to")),
    )


@dataclass
class _DatedSchedule:
    schedule: Schedule
    effective_from: date
    effective_to: Optional[date] = None

    def covers(self, day: date) -> bool:
        return self.effective_from <= day and (self.effective_to is None or day <= self.effective_to)


@dataclass
class _EmployeeSchedules:
    schedules: List[_DatedSchedule] = field(default_factory=list)
    exceptions: Dict[date, Schedule] = field(default_factory=dict)
    exclusions: List[WeeklyExclusion] = field(default_factory=list)


class JsonScheduleStore(ScheduleService):
    """
    Schedule service backed by a JSON file.

    Resolution order: date exception, then the schedule effective on the
    date (latest effective_from wins), then the default fixed shift.
    """

    def __init__(self, default_shift: FixedShift, path: Optional[Path] = None):
        self.default_shift = default_shift
        self.path = Path(path) if path else None
        self._employees: Dict[str, _EmployeeSchedules] = {}

    def load(self) -> "JsonScheduleStore":
        """
        Load schedules from disk.

        Raises:
            ScheduleConfigError: If the file is not valid JSON or an entry is malformed
        """
        self._employees = {}
        if self.path is None or not self.path.exists():
            return self
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            self.load_dict(data)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            self._employees = {}
            logger.error(f"Failed to load schedules from {self.path}: {e}")
            raise ScheduleConfigError(self.path, str(e)) from e
        logger.info(f"Loaded schedules for {len(self._employees)} employee(s)")
        return self

    def load_dict(self, data: dict) -> "JsonScheduleStore":
        for employee_id, entry in (data.get("employees") or {}).items():
            schedules = _EmployeeSchedules()
            for item in entry.get("schedules", []):
                schedules.schedules.append(_DatedSchedule(
                    schedule=parse_schedule(item),
                    effective_from=_date(item.get("effective_from")) or date.min,
                    effective_to=_date(item.get("effective_to")),
                ))
            schedules.schedules.sort(key=lambda s: s.effective_from)
            for item in entry.get("exceptions", []):
                schedules.exceptions[date.fromisoformat(item["date"])] = parse_schedule(item["schedule"])
            for item in entry.get("weekly_exclusions", []):
                schedules.exclusions.append(parse_exclusion(item))
            schedules.exclusions.sort(key=lambda e: e.effective_from)
            self._employees[str(employee_id)] = schedules
        return self

    def schedule_for(self, employee_id: Optional[str], day: Optional[date]) -> ScheduleAssignment:
        entry = self._employees.get(employee_id) if employee_id else None
        if entry is None or day is None:
            return ScheduleAssignment(self.default_shift, ScheduleSource.DEFAULT)

        exclusion = None
        for candidate in reversed(entry.exclusions):
            if candidate.applies_to(day):
                exclusion = candidate
                break

        if day in entry.exceptions:
            return ScheduleAssignment(entry.exceptions[day], ScheduleSource.EXCEPTION, exclusion)

        for dated in reversed(entry.schedules):
            if dated.covers(day):
                return ScheduleAssignment(dated.schedule, ScheduleSource.WORKSCHEDULE, exclusion)

        return ScheduleAssignment(self.default_shift, ScheduleSource.DEFAULT, exclusion)
