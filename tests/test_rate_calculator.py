"""
Unit tests for RateCalculator aggregation and summary sorting.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from domain.attendance_logic import AttendanceEvaluator
from domain.entities import (
    DayPunch, FixedShift, IdentityStatus, PerDayRow, PerEmployeeRow,
)
from domain.rate_calculator import PercentMode, RateCalculator
from domain.sorting import sort_summary

EVALUATOR = AttendanceEvaluator(FixedShift(start=480, end=1020, grace_minutes=5))


def evaluated(token, date_iso, times, resolved=None, status=IdentityStatus.MATCHED, office=("O-1", "Finance")):
    row = PerDayRow(
        employee_token=token,
        employee_name=f"Employee {token}",
        day=int(date_iso[-2:]),
        date_iso=date_iso,
        punches=[DayPunch.from_hhmm(t) for t in times],
        identity_status=status,
        resolved_employee_id=resolved,
        office_id=office[0],
        office_name=office[1],
    )
    return EVALUATOR.evaluate_row(row)


class TestRateCalculator:
    """Tests for per-employee aggregation."""

    def test_counts_and_rates_by_days(self):
        rows = [
            evaluated("1001", "2025-04-01", ["07:58", "17:10"], "E-1"),
            evaluated("1001", "2025-04-02", ["08:45"], "E-1"),
            evaluated("1001", "2025-04-03", [], "E-1"),
        ]
        summary = RateCalculator(PercentMode.DAYS).summarize(rows)[0]

        assert summary.employee_id == "E-1"
        assert summary.days_with_logs == 2
        assert summary.no_punch_days == 1
        assert summary.late_days == 1
        assert summary.undertime_days == 1
        assert summary.total_late_minutes == 40
        assert summary.total_undertime_minutes == 540
        assert summary.total_required_minutes == 1080
        assert summary.late_rate == pytest.approx(50.0)
        assert summary.undertime_rate == pytest.approx(50.0)
        assert summary.schedule_types == {"FIXED"}

    def test_rates_by_minutes(self):
        rows = [
            evaluated("1001", "2025-04-01", ["07:58", "17:10"], "E-1"),
            evaluated("1001", "2025-04-02", ["08:45"], "E-1"),
        ]
        summary = RateCalculator(PercentMode.MINUTES).summarize(rows)[0]
        assert summary.late_rate == pytest.approx(40 / 1080 * 100)
        assert summary.undertime_rate == pytest.approx(540 / 1080 * 100)

    def test_zero_denominator_gives_none(self):
        summary = RateCalculator().summarize([evaluated("1001", "2025-04-01", [], "E-1")])[0]
        assert summary.days_with_logs == 0
        assert summary.late_rate is None
        assert summary.undertime_rate is None

    def test_unmatched_tokens_group_by_token(self):
        rows = [
            evaluated("9999", "2025-04-01", ["08:00", "17:00"], status=IdentityStatus.UNMATCHED),
            evaluated("9999", "2025-04-02", ["08:00", "17:00"], status=IdentityStatus.UNMATCHED),
        ]
        result = RateCalculator().summarize(rows)
        assert len(result) == 1
        assert result[0].employee_token == "9999"
        assert result[0].resolved_employee_id is None

    def test_pending_rows_are_skipped(self):
        rows = [evaluated("1001", "2025-04-01", ["08:00"], status=IdentityStatus.PENDING)]
        assert RateCalculator().summarize(rows) == []

    def test_office_summary(self):
        rows = [
            evaluated("1001", "2025-04-01", ["08:45"], "E-1"),
            evaluated("1002", "2025-04-01", ["07:55", "17:00"], "E-2"),
            evaluated("1003", "2025-04-01", ["07:55", "17:00"], "E-3", office=("O-2", "Admin")),
        ]
        calculator = RateCalculator()
        offices = calculator.summarize_offices(calculator.summarize(rows))

        assert [o.office_name for o in offices] == ["Admin", "Finance"]
        finance = offices[1]
        assert finance.employees == 2
        assert finance.late_days == 1
        assert finance.late_rate == pytest.approx(50.0)

    def test_record_is_flat(self):
        summary = RateCalculator().summarize([evaluated("1001", "2025-04-01", ["08:00"], "E-1")])[0]
        record = summary.to_record()
        assert record["employeeId"] == "E-1"
        assert record["scheduleTypes"] == "FIXED"
        assert all(not isinstance(v, (list, dict, set)) for v in record.values())


class TestSortSummary:
    """Tests for sort_summary."""

    def rows(self):
        return [
            PerEmployeeRow(employee_id="E-2", employee_name="bob", late_rate=10.0, late_days=1),
            PerEmployeeRow(employee_id="E-1", employee_name="Alice", late_rate=None, late_days=1),
            PerEmployeeRow(employee_id="E-3", employee_name="Carol", late_rate=30.0, late_days=3),
        ]

    def test_by_name_ignores_case(self):
        assert [r.employee_id for r in sort_summary(self.rows())] == ["E-1", "E-2", "E-3"]

    def test_none_sorts_last_in_both_directions(self):
        ascending = sort_summary(self.rows(), "latePercent")
        descending = sort_summary(self.rows(), "latePercent", descending=True)
        assert [r.employee_id for r in ascending] == ["E-2", "E-3", "E-1"]
        assert [r.employee_id for r in descending] == ["E-3", "E-2", "E-1"]

    def test_secondary_key(self):
        result = sort_summary(self.rows(), "lateDays", secondary="employeeName", secondary_descending=True)
        assert [r.employee_id for r in result] == ["E-2", "E-1", "E-3"]

    def test_unknown_field(self):
        with pytest.raises(ValueError):
            sort_summary(self.rows(), "salary")

    def test_original_list_is_unchanged(self):
        rows = self.rows()
        sort_summary(rows, "lateDays", descending=True)
        assert [r.employee_id for r in rows] == ["E-2", "E-1", "E-3"]
