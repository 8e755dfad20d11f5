"""
Domain Entities Module

Core domain entities using dataclasses for the attendance pipeline.
These entities represent the core business concepts independent of infrastructure.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple, Union

from .time_utils import format_hhmm, parse_hhmm

UNMATCHED_LABEL = "(Unmatched)"
UNKNOWN_OFFICE_LABEL = "(Unknown)"
UNASSIGNED_OFFICE_LABEL = "(Unassigned)"

MAX_WARNING_SAMPLE_COUNT = 10


class ParserType(str, Enum):
    """Source spreadsheet layout."""
    LEGACY = "legacy"            # one row per punch (or per day)
    GRID_REPORT = "grid-report"  # day columns with employee blocks


class IdentityStatus(str, Enum):
    """Outcome of matching a biometric token against the directory."""
    MATCHED = "matched"
    AMBIGUOUS = "ambiguous"
    UNMATCHED = "unmatched"
    PENDING = "pending"      # lookup still in flight


class DayStatus(str, Enum):
    """Evaluation state of one employee-day."""
    PRESENT = "present"
    NO_PUNCH = "no_punch"
    EXCUSED = "excused"


class ExclusionMode(str, Enum):
    """Weekly exclusion behaviour."""
    EXCUSED = "EXCUSED"
    IGNORE_LATE_UNTIL = "IGNORE_LATE_UNTIL"


class ScheduleSource(str, Enum):
    """Where a schedule assignment came from."""
    WORKSCHEDULE = "WORKSCHEDULE"
    EXCEPTION = "EXCEPTION"
    DEFAULT = "DEFAULT"


class WarningLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"


class ExclusionReason(str, Enum):
    OUTSIDE_PERIOD = "outside-period"
    INVALID_DAY = "invalid-day"


# ==============================================================================
# Punches and per-day rows
# ==============================================================================
@dataclass(frozen=True)
class DayPunch:
    """A single punch on a day. minute_of_day always matches time."""
    time: str
    minute_of_day: int

    @classmethod
    def from_hhmm(cls, value: str) -> "DayPunch":
        minutes = parse_hhmm(value)
        if minutes is None:
            raise ValueError(f"Invalid punch time: {value!r}")
        return cls(time=format_hhmm(minutes), minute_of_day=minutes)

    def sort_key(self) -> Tuple[int, str]:
        return (self.minute_of_day, self.time)


@dataclass
class ParsedPerDayRow:
    """
    One employee's punches on one day, before identity resolution.

    Attributes:
        employee_token: Normalized biometric token (merge/identity key)
        employee_id: Identifier as printed in the export
        employee_name: Name as printed in the export
        employee_dept: Department/office hint printed in the export
        date_iso: Calendar date (YYYY-MM-DD), None for day-only rows
        day: Day of month
        composed_from_day_only: True while the date still needs a period
        punches: Chronological punches
        source_files: Files that contributed punches, first-seen order
        punches_out_of_order: The export listed times out of clock order
            (a time-in after its time-out), which points at a midnight span
    """
    employee_token: str
    employee_name: str
    day: int
    date_iso: Optional[str] = None
    employee_id: Optional[str] = None
    employee_dept: Optional[str] = None
    composed_from_day_only: bool = False
    punches: List[DayPunch] = field(default_factory=list)
    all_times: List[str] = field(default_factory=list)
    earliest: Optional[str] = None
    latest: Optional[str] = None
    source_files: List[str] = field(default_factory=list)
    parser_type: ParserType = ParserType.LEGACY
    punches_out_of_order: bool = False

    def __post_init__(self):
        self.normalize()

    def normalize(self) -> "ParsedPerDayRow":
        """Sort punches and rebuild all_times/earliest/latest from them."""
        unique = {punch.time: punch for punch in self.punches}
        self.punches = sorted(unique.values(), key=DayPunch.sort_key)
        self.all_times = [punch.time for punch in self.punches]
        self.earliest = self.all_times[0] if self.all_times else None
        self.latest = self.all_times[-1] if self.all_times else None
        return self

    @property
    def date_key(self) -> str:
        """Merge key for the day: the ISO date or a day-only marker."""
        if self.date_iso:
            return self.date_iso
        return f"day:{self.day:02d}"

    @property
    def month(self) -> Optional[str]:
        return self.date_iso[:7] if self.date_iso else None

    @property
    def has_punches(self) -> bool:
        return bool(self.punches)


# ==============================================================================
# Identity
# ==============================================================================
@dataclass
class IdentityRecord:
    """Directory identity for a token."""
    status: IdentityStatus
    employee_name: str = UNMATCHED_LABEL
    employee_id: Optional[str] = None
    office_id: Optional[str] = None
    office_name: str = UNKNOWN_OFFICE_LABEL
    employee_no: Optional[str] = None
    candidates: List[str] = field(default_factory=list)
    missing_office: bool = False

    @classmethod
    def unmatched(cls, employee_name: str = UNMATCHED_LABEL) -> "IdentityRecord":
        return cls(status=IdentityStatus.UNMATCHED, employee_name=employee_name)

    @classmethod
    def pending(cls) -> "IdentityRecord":
        return cls(status=IdentityStatus.PENDING)


@dataclass
class DirectoryEmployee:
    """Employee entry returned by the directory search."""
    id: str
    name: str
    employee_no: Optional[str] = None
    office_id: Optional[str] = None
    office_name: Optional[str] = None


# ==============================================================================
# Schedules
# ==============================================================================
@dataclass
class FixedShift:
    """Single daily shift. Times are minutes of day."""
    start: int
    end: int
    grace_minutes: int = 0
    break_minutes: int = 0

    type_name = "FIXED"


@dataclass(frozen=True)
class WeeklyPatternWindow:
    """Expected work window on a weekday (0=Mon .. 6=Sun)."""
    day_of_week: int
    start: int
    end: int

    @property
    def is_overnight(self) -> bool:
        return self.end < self.start

    def label(self) -> str:
        return f"{format_hhmm(self.start)}-{format_hhmm(self.end)}"


@dataclass
class WeeklyPatternDay:
    windows: List[WeeklyPatternWindow] = field(default_factory=list)
    required_minutes: Optional[int] = None


@dataclass
class WeeklyPattern:
    """Per-weekday windows used instead of a single fixed shift."""
    days: Dict[int, WeeklyPatternDay] = field(default_factory=dict)
    grace_minutes: int = 0

    type_name = "WEEKLY_PATTERN"

    def day_for(self, day: date) -> Optional[WeeklyPatternDay]:
        pattern_day = self.days.get(day.weekday())
        if pattern_day and pattern_day.windows:
            return pattern_day
        return None


@dataclass
class FlexSchedule:
    """
    Flexible hours around a core window.

    Attributes:
        core_start: Start of the hours the employee must overlap
        core_end: End of the core window
        bandwidth_start: Earliest time that counts as work
        bandwidth_end: Latest time that counts as work
        required_minutes: Daily minutes owed after the break
        break_minutes: Deducted from the time inside the bandwidth
        grace_minutes: Tolerance after core_start before arrival is late
        weekly_pattern: Optional per-weekday windows; days that have
            windows are evaluated as a weekly pattern instead
    """
    core_start: int
    core_end: int
    bandwidth_start: int
    bandwidth_end: int
    required_minutes: int
    break_minutes: int = 60
    grace_minutes: int = 0
    weekly_pattern: Optional[WeeklyPattern] = None

    type_name = "FLEX"


Schedule = Union[FixedShift, WeeklyPattern, FlexSchedule]


@dataclass
class WeeklyExclusion:
    """
    Weekly exemption rule.

    Attributes:
        weekday: ISO weekday (1=Mon .. 7=Sun)
        mode: EXCUSED or IGNORE_LATE_UNTIL
        ignore_until: Minutes of day, only for IGNORE_LATE_UNTIL
        effective_from: First date the rule applies
        effective_to: Last date the rule applies (None = open ended)
    """
    weekday: int
    mode: ExclusionMode
    effective_from: date
    ignore_until: Optional[int] = None
    effective_to: Optional[date] = None

    def applies_to(self, day: date) -> bool:
        if day.isoweekday() != self.weekday:
            return False
        if day < self.effective_from:
            return False
        return self.effective_to is None or day <= self.effective_to


@dataclass
class ScheduleAssignment:
    """Schedule in effect for one employee on one date."""
    schedule: Schedule
    source: ScheduleSource = ScheduleSource.DEFAULT
    exclusion: Optional[WeeklyExclusion] = None


# ==============================================================================
# Evaluated rows
# ==============================================================================
@dataclass
class PerDayRow(ParsedPerDayRow):
    """A per-day row after identity resolution and schedule evaluation."""
    resolved_employee_id: Optional[str] = None
    office_id: Optional[str] = None
    office_name: Optional[str] = None
    identity_status: IdentityStatus = IdentityStatus.PENDING
    schedule_type: Optional[str] = None
    schedule_source: Optional[str] = None
    schedule_start: Optional[str] = None
    schedule_end: Optional[str] = None
    schedule_grace_minutes: Optional[int] = None
    required_minutes: Optional[int] = None
    worked_minutes: Optional[int] = None
    late_minutes: Optional[int] = None
    undertime_minutes: Optional[int] = None
    is_late: bool = False
    is_undertime: bool = False
    status: DayStatus = DayStatus.NO_PUNCH
    weekly_pattern_applied: bool = False
    weekly_pattern_windows: List[str] = field(default_factory=list)
    weekly_pattern_presence: List[str] = field(default_factory=list)
    weekly_exclusion_mode: Optional[ExclusionMode] = None
    weekly_exclusion_ignore_until: Optional[str] = None
    anomalies: List[str] = field(default_factory=list)

    @property
    def aggregate_key(self) -> str:
        return self.resolved_employee_id or self.employee_token

    def to_record(self) -> Dict[str, object]:
        """Flat, export-ready representation (no nested structures)."""
        return {
            "employeeToken": self.employee_token,
            "employeeId": self.employee_id or "",
            "employeeName": self.employee_name,
            "resolvedEmployeeId": self.resolved_employee_id or "",
            "officeId": self.office_id or "",
            "officeName": self.office_name or "",
            "identityStatus": self.identity_status.value,
            "date": self.date_iso or "",
            "day": self.day,
            "earliest": self.earliest or "",
            "latest": self.latest or "",
            "allTimes": " ".join(self.all_times),
            "sourceFiles": ", ".join(self.source_files),
            "status": self.status.value,
            "scheduleType": self.schedule_type or "",
            "scheduleSource": self.schedule_source or "",
            "scheduleStart": self.schedule_start or "",
            "scheduleEnd": self.schedule_end or "",
            "graceMinutes": self.schedule_grace_minutes,
            "requiredMinutes": self.required_minutes,
            "workedMinutes": self.worked_minutes,
            "lateMinutes": self.late_minutes,
            "undertimeMinutes": self.undertime_minutes,
            "isLate": self.is_late,
            "isUndertime": self.is_undertime,
            "weeklyPatternApplied": self.weekly_pattern_applied,
            "weeklyPatternWindows": ", ".join(self.weekly_pattern_windows),
            "weeklyPatternPresence": ", ".join(self.weekly_pattern_presence),
            "weeklyExclusionMode": self.weekly_exclusion_mode.value if self.weekly_exclusion_mode else "",
            "weeklyExclusionIgnoreUntil": self.weekly_exclusion_ignore_until or "",
            "anomalies": ", ".join(self.anomalies),
        }


@dataclass
class PerEmployeeRow:
    """
    Per-employee summary of evaluated days.

    Rates are percentages and stay None when their denominator is zero.
    """
    employee_id: str
    employee_name: str
    employee_token: str = ""
    office_id: Optional[str] = None
    office_name: str = UNKNOWN_OFFICE_LABEL
    employee_no: Optional[str] = None
    schedule_types: Set[str] = field(default_factory=set)
    days_with_logs: int = 0
    no_punch_days: int = 0
    excused_days: int = 0
    late_days: int = 0
    undertime_days: int = 0
    total_late_minutes: int = 0
    total_undertime_minutes: int = 0
    total_required_minutes: int = 0
    late_rate: Optional[float] = None
    undertime_rate: Optional[float] = None
    identity_status: IdentityStatus = IdentityStatus.UNMATCHED
    resolved_employee_id: Optional[str] = None

    def to_record(self) -> Dict[str, object]:
        return {
            "employeeId": self.employee_id,
            "employeeName": self.employee_name,
            "employeeToken": self.employee_token,
            "employeeNo": self.employee_no or "",
            "officeId": self.office_id or "",
            "officeName": self.office_name,
            "scheduleTypes": ", ".join(sorted(self.schedule_types)),
            "daysWithLogs": self.days_with_logs,
            "noPunchDays": self.no_punch_days,
            "excusedDays": self.excused_days,
            "lateDays": self.late_days,
            "undertimeDays": self.undertime_days,
            "totalLateMinutes": self.total_late_minutes,
            "totalUndertimeMinutes": self.total_undertime_minutes,
            "totalRequiredMinutes": self.total_required_minutes,
            "lateRate": self.late_rate,
            "undertimeRate": self.undertime_rate,
            "identityStatus": self.identity_status.value,
            "resolvedEmployeeId": self.resolved_employee_id or "",
        }


@dataclass
class OfficeSummary:
    """Roll-up of PerEmployeeRow entries sharing an office."""
    office_key: str
    office_name: str
    employees: int = 0
    days_with_logs: int = 0
    late_days: int = 0
    undertime_days: int = 0
    total_late_minutes: int = 0
    total_undertime_minutes: int = 0
    total_required_minutes: int = 0
    late_rate: Optional[float] = None
    undertime_rate: Optional[float] = None


# ==============================================================================
# Warnings, merge and parse results
# ==============================================================================
@dataclass
class UnmatchedIdentityDetail:
    token: str
    employee_ids: List[str] = field(default_factory=list)


@dataclass
class ParseWarning:
    """Non-fatal problem surfaced to the operator."""
    type: str
    message: str
    level: WarningLevel = WarningLevel.WARNING
    count: Optional[int] = None
    samples: List[str] = field(default_factory=list)
    unmatched_identities: List[UnmatchedIdentityDetail] = field(default_factory=list)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.type, self.message)


@dataclass
class ParsedWorkbook:
    """Result of parsing one uploaded workbook."""
    file_name: str
    parser_type: ParserType
    parser_types: List[ParserType] = field(default_factory=list)
    per_day: List[ParsedPerDayRow] = field(default_factory=list)
    warnings: List[ParseWarning] = field(default_factory=list)
    month_hints: List[str] = field(default_factory=list)
    normalized_xlsx: Optional[bytes] = None

    @property
    def employee_count(self) -> int:
        return len({row.employee_token for row in self.per_day})

    @property
    def total_punches(self) -> int:
        return sum(len(row.punches) for row in self.per_day)


@dataclass
class MergeResult:
    """Chronologically ordered union of several parsed workbooks."""
    per_day: List[ParsedPerDayRow] = field(default_factory=list)
    months: List[str] = field(default_factory=list)
    date_range: Optional[Tuple[str, str]] = None
    warnings: List[ParseWarning] = field(default_factory=list)
    merged_duplicates: int = 0

    @property
    def requires_confirmation(self) -> bool:
        """True when the batch spans more than one calendar month."""
        return len(self.months) > 1


@dataclass
class OutOfPeriodRow:
    """A row excluded by the manual period, kept for operator review."""
    employee_token: str
    employee_name: str
    day: int
    date_iso: Optional[str]
    source_files: List[str]
    reason: ExclusionReason
