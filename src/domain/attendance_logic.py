"""
Attendance Logic Module

Implements Strategy pattern for evaluating an employee-day against the
schedule in effect (fixed shift, weekly pattern or flexible hours).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Callable, List, Optional, Sequence

from .entities import (
    DayStatus, ExclusionMode, FixedShift, FlexSchedule, ParseWarning, PerDayRow,
    Schedule, ScheduleAssignment, ScheduleSource, WeeklyPattern, WeeklyPatternDay,
    MAX_WARNING_SAMPLE_COUNT,
)
from .time_utils import (
    MINUTES_IN_DAY, Segment, format_hhmm, intersect_segments,
    normalize_segments, parse_hhmm, total_minutes,
)

EVALUATION_ANOMALY = "EVALUATION_ANOMALY"

# Anomaly markers attached to PerDayRow.anomalies
MIDNIGHT_SPAN = "midnight-span"
OVERNIGHT_SCHEDULE = "overnight-schedule"


@dataclass
class ShiftOutcome:
    """Minutes computed by a strategy for one day with punches."""
    schedule_start: int
    schedule_end: int
    grace_minutes: int
    required_minutes: int
    worked_minutes: int
    late_minutes: int
    weekly_pattern_applied: bool = False
    windows: List[str] = field(default_factory=list)
    presence: List[str] = field(default_factory=list)
    anomalies: List[str] = field(default_factory=list)


def compute_late(earliest: int, start: int, grace: int, ignore_until: Optional[int] = None) -> int:
    """
    Late minutes for an arrival.

    With an ignore-until time, arrivals at or before it are never late and
    later ones are measured from the later of it and start + grace.
    """
    threshold = start + grace
    if ignore_until is not None:
        if earliest <= ignore_until:
            return 0
        threshold = max(ignore_until, threshold)
    return max(0, earliest - threshold)


def _segment_labels(segments: Sequence[Segment]) -> List[str]:
    return [f"{format_hhmm(start)}-{format_hhmm(end)}" for start, end in segments]


class AttendanceStrategy(ABC):
    """Abstract base class for schedule evaluation strategies."""

    @abstractmethod
    def evaluate(
        self,
        minutes: List[int],
        day: Optional[date],
        schedule: Schedule,
        ignore_until: Optional[int] = None,
    ) -> ShiftOutcome:
        """
        Evaluate a day's punches.

        Args:
            minutes: Chronological punch minutes (at least one)
            day: Calendar date of the row, None for day-only rows
            schedule: The schedule variant this strategy handles
            ignore_until: IGNORE_LATE_UNTIL time in minutes, if active

        Returns:
            The computed ShiftOutcome
        """
        pass


class FixedShiftStrategy(AttendanceStrategy):
    """
    Single daily shift.

    Rules:
    - late = earliest - (start + grace)
    - worked = (latest - earliest) - break
    - required = (end - start) - break
    """

    def evaluate(self, minutes, day, schedule: FixedShift, ignore_until=None) -> ShiftOutcome:
        anomalies = []
        start, end = schedule.start, schedule.end
        if end <= start:
            anomalies.append(OVERNIGHT_SCHEDULE)
            end += MINUTES_IN_DAY

        earliest, latest = minutes[0], minutes[-1]
        required = max(0, (end - start) - schedule.break_minutes)
        worked = max(0, (latest - earliest) - schedule.break_minutes)
        return ShiftOutcome(
            schedule_start=schedule.start,
            schedule_end=schedule.end,
            grace_minutes=schedule.grace_minutes,
            required_minutes=required,
            worked_minutes=worked,
            late_minutes=compute_late(earliest, start, schedule.grace_minutes, ignore_until),
            anomalies=anomalies,
        )


class WeeklyPatternStrategy(AttendanceStrategy):
    """
    Per-weekday windows.

    Presence is built from consecutive punch pairs and only counts inside
    the day's windows. When a day has an overnight window, times are read
    on a timeline that starts in the middle of the longest stretch no
    window covers, so morning punches belong to the previous evening's
    shift and no window is cut by the start of the timeline.
    """

    def __init__(self, fallback: FixedShiftStrategy, default_shift: FixedShift):
        self._fallback = fallback
        self._default_shift = default_shift

    @staticmethod
    def pivot_for(pattern_day: WeeklyPatternDay) -> int:
        if not any(window.is_overnight for window in pattern_day.windows):
            return 0
        covered = normalize_segments((w.start, w.end) for w in pattern_day.windows)
        if not covered:
            return 0
        gaps = [(covered[i][1], covered[i + 1][0]) for i in range(len(covered) - 1)]
        gaps.append((covered[-1][1], covered[0][0] + MINUTES_IN_DAY))
        gap_start, gap_end = max(gaps, key=lambda gap: gap[1] - gap[0])
        return (gap_start + (gap_end - gap_start) // 2) % MINUTES_IN_DAY

    def evaluate(self, minutes, day, schedule: WeeklyPattern, ignore_until=None) -> ShiftOutcome:
        pattern_day = schedule.day_for(day) if day is not None else None
        if pattern_day is None:
            return self._fallback.evaluate(minutes, day, self._default_shift, ignore_until)

        pivot = self.pivot_for(pattern_day)

        def rotate(value: int) -> int:
            return (value - pivot) % MINUTES_IN_DAY

        windows = normalize_segments((rotate(w.start), rotate(w.end)) for w in pattern_day.windows)
        shifted = sorted(rotate(m) for m in minutes)
        pairs = [(shifted[i], shifted[i + 1]) for i in range(0, len(shifted) - 1, 2)]
        presence = intersect_segments(normalize_segments(pairs), windows)

        window_length = total_minutes(windows)
        required = pattern_day.required_minutes
        if required is None:
            required = window_length

        first_start = windows[0][0] if windows else 0
        rotated_ignore = rotate(ignore_until) if ignore_until is not None else None
        late = compute_late(shifted[0], first_start, schedule.grace_minutes, rotated_ignore)

        last_end = windows[-1][1] if windows else 0
        return ShiftOutcome(
            schedule_start=(first_start + pivot) % MINUTES_IN_DAY,
            schedule_end=(last_end + pivot) % MINUTES_IN_DAY,
            grace_minutes=schedule.grace_minutes,
            required_minutes=max(0, required),
            worked_minutes=total_minutes(presence),
            late_minutes=late,
            weekly_pattern_applied=True,
            windows=[w.label() for w in pattern_day.windows],
            presence=_segment_labels(self._unrotate(presence, pivot)),
        )

    @staticmethod
    def _unrotate(segments: Sequence[Segment], pivot: int) -> List[Segment]:
        """Map rotated segments back to clock time, splitting at midnight."""
        result: List[Segment] = []
        for start, end in segments:
            real_start = start + pivot
            real_end = end + pivot
            if real_start >= MINUTES_IN_DAY:
                result.append((real_start - MINUTES_IN_DAY, real_end - MINUTES_IN_DAY))
            elif real_end > MINUTES_IN_DAY:
                result.append((real_start, MINUTES_IN_DAY))
                result.append((0, real_end - MINUTES_IN_DAY))
            else:
                result.append((real_start, real_end))
        return sorted(result)


class FlexScheduleStrategy(AttendanceStrategy):
    """
    Flexible hours around a core window.

    Rules:
    - presence is earliest..latest clamped to the bandwidth
    - worked = clamped presence - break
    - late = arrival after core_start + grace; an employee who never
      overlaps the core window is late by the whole core length
    - required = the schedule's daily required minutes
    - a weekday with weekly-pattern windows is evaluated as a weekly pattern
    """

    def __init__(self, weekly: WeeklyPatternStrategy):
        self._weekly = weekly

    def evaluate(self, minutes, day, schedule: FlexSchedule, ignore_until=None) -> ShiftOutcome:
        pattern = schedule.weekly_pattern
        if pattern is not None and day is not None and pattern.day_for(day) is not None:
            return self._weekly.evaluate(minutes, day, pattern, ignore_until)

        core_length = max(0, schedule.core_end - schedule.core_start)
        effective_start = max(minutes[0], schedule.bandwidth_start)
        effective_end = min(minutes[-1], schedule.bandwidth_end)

        if effective_end <= effective_start:
            worked = 0
            late = core_length
        else:
            worked = max(0, (effective_end - effective_start) - schedule.break_minutes)
            in_core = min(effective_end, schedule.core_end) > max(effective_start, schedule.core_start)
            late = compute_late(effective_start, schedule.core_start, schedule.grace_minutes, ignore_until)
            if not in_core:
                late = max(late, core_length)

        return ShiftOutcome(
            schedule_start=schedule.core_start,
            schedule_end=schedule.core_end,
            grace_minutes=schedule.grace_minutes,
            required_minutes=max(0, schedule.required_minutes),
            worked_minutes=worked,
            late_minutes=late,
        )


class AttendanceLogicFactory:
    """Factory for creating the strategy that handles a schedule variant."""

    def __init__(self, default_shift: FixedShift):
        fixed = FixedShiftStrategy()
        weekly = WeeklyPatternStrategy(fixed, default_shift)
        self._strategies = {
            FixedShift: fixed,
            WeeklyPattern: weekly,
            FlexSchedule: FlexScheduleStrategy(weekly),
        }

    def get_strategy(self, schedule: Schedule) -> AttendanceStrategy:
        """Get the appropriate strategy for a schedule."""
        strategy = self._strategies.get(type(schedule))
        if strategy is None:
            raise TypeError(f"Unsupported schedule type: {type(schedule).__name__}")
        return strategy


class AttendanceEvaluator:
    """
    Evaluates per-day rows. Pure: input rows are never modified.

    States:
    - no_punch: no punches, zero minutes, no required minutes
    - excused: an EXCUSED weekly exclusion applies; never late or undertime
    - present: evaluated against the schedule
    """

    def __init__(self, default_shift: FixedShift):
        self.default_shift = default_shift
        self._factory = AttendanceLogicFactory(default_shift)

    @staticmethod
    def _row_date(row: PerDayRow) -> Optional[date]:
        if not row.date_iso:
            return None
        return date.fromisoformat(row.date_iso)

    @staticmethod
    def _has_midnight_span(row: PerDayRow) -> bool:
        """Time-in after time-out in the export, or an earliest later than latest."""
        if row.punches_out_of_order:
            return True
        earliest = parse_hhmm(row.earliest)
        latest = parse_hhmm(row.latest)
        return earliest is not None and latest is not None and earliest > latest

    def evaluate_row(self, row: PerDayRow, assignment: Optional[ScheduleAssignment] = None) -> PerDayRow:
        """
        Evaluate one row against its schedule assignment.

        Args:
            row: Identity-enriched row
            assignment: Schedule in effect, None to use the default shift

        Returns:
            A new PerDayRow with schedule and minute fields filled in
        """
        if assignment is None:
            assignment = ScheduleAssignment(self.default_shift, ScheduleSource.DEFAULT)

        anomalies = [a for a in row.anomalies if a != OVERNIGHT_SCHEDULE]
        if self._has_midnight_span(row) and MIDNIGHT_SPAN not in anomalies:
            anomalies.append(MIDNIGHT_SPAN)
        result = replace(row, anomalies=anomalies, source_files=list(row.source_files))  # re-sorts punches

        day = self._row_date(result)
        schedule = assignment.schedule
        exclusion = assignment.exclusion
        if exclusion is not None and (day is None or not exclusion.applies_to(day)):
            exclusion = None

        result.schedule_type = schedule.type_name
        result.schedule_source = assignment.source.value
        result.schedule_grace_minutes = schedule.grace_minutes
        result.weekly_exclusion_mode = exclusion.mode if exclusion else None
        result.weekly_exclusion_ignore_until = None
        result.weekly_pattern_applied = False
        result.weekly_pattern_windows = []
        result.weekly_pattern_presence = []
        if isinstance(schedule, FixedShift):
            result.schedule_start = format_hhmm(schedule.start)
            result.schedule_end = format_hhmm(schedule.end)
        elif isinstance(schedule, FlexSchedule):
            result.schedule_start = format_hhmm(schedule.core_start)
            result.schedule_end = format_hhmm(schedule.core_end)

        if not result.punches:
            result.status = DayStatus.NO_PUNCH
            result.worked_minutes = 0
            result.late_minutes = 0
            result.undertime_minutes = 0
            result.required_minutes = None
            result.is_late = False
            result.is_undertime = False
            return result

        ignore_until = None
        if exclusion is not None and exclusion.mode == ExclusionMode.IGNORE_LATE_UNTIL:
            ignore_until = exclusion.ignore_until

        minutes = [punch.minute_of_day for punch in result.punches]
        outcome = self._factory.get_strategy(schedule).evaluate(minutes, day, schedule, ignore_until)

        result.schedule_start = format_hhmm(outcome.schedule_start)
        result.schedule_end = format_hhmm(outcome.schedule_end)
        result.schedule_grace_minutes = outcome.grace_minutes
        result.weekly_pattern_applied = outcome.weekly_pattern_applied
        result.weekly_pattern_windows = outcome.windows
        result.weekly_pattern_presence = outcome.presence
        result.required_minutes = outcome.required_minutes
        result.worked_minutes = outcome.worked_minutes
        for anomaly in outcome.anomalies:
            if anomaly not in result.anomalies:
                result.anomalies.append(anomaly)

        if ignore_until is not None:
            result.schedule_start = format_hhmm(ignore_until)
            result.weekly_exclusion_ignore_until = format_hhmm(ignore_until)

        if exclusion is not None and exclusion.mode == ExclusionMode.EXCUSED:
            result.status = DayStatus.EXCUSED
            result.late_minutes = 0
            result.undertime_minutes = 0
        else:
            result.status = DayStatus.PRESENT
            result.late_minutes = outcome.late_minutes
            result.undertime_minutes = max(0, outcome.required_minutes - outcome.worked_minutes)

        result.is_late = result.late_minutes > 0
        result.is_undertime = result.undertime_minutes > 0
        return result

    def evaluate_rows(
        self,
        rows: Sequence[PerDayRow],
        schedule_for: Callable[[PerDayRow], Optional[ScheduleAssignment]],
    ) -> List[PerDayRow]:
        """Evaluate rows, asking schedule_for(row) for each assignment."""
        return [self.evaluate_row(row, schedule_for(row)) for row in rows]


def anomaly_warnings(rows: Sequence[PerDayRow]) -> List[ParseWarning]:
    """One EVALUATION_ANOMALY warning per anomaly kind found in the rows."""
    samples = {}
    counts = {}
    for row in rows:
        for anomaly in row.anomalies:
            counts[anomaly] = counts.get(anomaly, 0) + 1
            bucket = samples.setdefault(anomaly, [])
            if len(bucket) < MAX_WARNING_SAMPLE_COUNT:
                bucket.append(f"{row.employee_token} {row.date_key}")

    messages = {
        MIDNIGHT_SPAN: "Punches were out of order (possible midnight span); times were re-sorted.",
        OVERNIGHT_SCHEDULE: "Overnight fixed schedules were evaluated with the end time on the next day.",
    }
    return [
        ParseWarning(
            type=EVALUATION_ANOMALY,
            message=messages.get(anomaly, f"Evaluation anomaly: {anomaly}"),
            count=count,
            samples=samples[anomaly],
        )
        for anomaly, count in counts.items()
    ]
