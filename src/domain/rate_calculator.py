"""
Rate Calculator Module

Rolls evaluated per-day rows up into per-employee and per-office summaries
and calculates late/undertime rates.
"""

from enum import Enum
from typing import Dict, List, Optional, Sequence

from .entities import (
    DayStatus, IdentityStatus, OfficeSummary, PerDayRow, PerEmployeeRow,
    UNKNOWN_OFFICE_LABEL,
)


class PercentMode(str, Enum):
    """Denominator used for late/undertime rates."""
    DAYS = "days"        # late_days / days_with_logs
    MINUTES = "minutes"  # total_late_minutes / total_required_minutes


class RateCalculator:
    """
    Calculates per-employee statistics.

    Provides:
    - Grouping by resolved employee id (falling back to the raw token)
    - Day counts and minute totals
    - Late/undertime rates in the selected percent mode
    """

    def __init__(self, percent_mode: PercentMode = PercentMode.DAYS):
        self.percent_mode = PercentMode(percent_mode)

    @staticmethod
    def calculate_rate(numerator: int, denominator: int) -> Optional[float]:
        """
        Calculate a percentage.

        Returns:
            numerator / denominator * 100, or None when the denominator is 0
        """
        if not denominator:
            return None
        return (numerator / denominator) * 100

    def _apply_rates(self, target) -> None:
        if self.percent_mode == PercentMode.MINUTES:
            target.late_rate = self.calculate_rate(target.total_late_minutes, target.total_required_minutes)
            target.undertime_rate = self.calculate_rate(target.total_undertime_minutes, target.total_required_minutes)
        else:
            target.late_rate = self.calculate_rate(target.late_days, target.days_with_logs)
            target.undertime_rate = self.calculate_rate(target.undertime_days, target.days_with_logs)

    def summarize(self, rows: Sequence[PerDayRow]) -> List[PerEmployeeRow]:
        """
        Aggregate evaluated rows per employee.

        Rows whose identity is still pending are skipped until resolved.
        """
        summaries: Dict[str, PerEmployeeRow] = {}
        for row in rows:
            if row.identity_status == IdentityStatus.PENDING:
                continue

            key = row.aggregate_key
            summary = summaries.get(key)
            if summary is None:
                summary = PerEmployeeRow(
                    employee_id=row.resolved_employee_id or row.employee_id or row.employee_token,
                    employee_name=row.employee_name,
                    employee_token=row.employee_token,
                    office_id=row.office_id,
                    office_name=row.office_name or UNKNOWN_OFFICE_LABEL,
                    identity_status=row.identity_status,
                    resolved_employee_id=row.resolved_employee_id,
                )
                summaries[key] = summary

            if row.schedule_type:
                summary.schedule_types.add(row.schedule_type)

            if row.status == DayStatus.NO_PUNCH:
                summary.no_punch_days += 1
                continue

            summary.days_with_logs += 1
            if row.status == DayStatus.EXCUSED:
                summary.excused_days += 1
                continue

            if row.is_late:
                summary.late_days += 1
            if row.is_undertime:
                summary.undertime_days += 1
            summary.total_late_minutes += row.late_minutes or 0
            summary.total_undertime_minutes += row.undertime_minutes or 0
            summary.total_required_minutes += row.required_minutes or 0

        result = list(summaries.values())
        for summary in result:
            self._apply_rates(summary)
        return result

    def summarize_offices(self, per_employee: Sequence[PerEmployeeRow]) -> List[OfficeSummary]:
        """Roll per-employee rows up by office, ordered by office name."""
        offices: Dict[str, OfficeSummary] = {}
        for employee in per_employee:
            key = employee.office_id or employee.office_name
            office = offices.get(key)
            if office is None:
                office = OfficeSummary(office_key=key, office_name=employee.office_name)
                offices[key] = office
            office.employees += 1
            office.days_with_logs += employee.days_with_logs
            office.late_days += employee.late_days
            office.undertime_days += employee.undertime_days
            office.total_late_minutes += employee.total_late_minutes
            office.total_undertime_minutes += employee.total_undertime_minutes
            office.total_required_minutes += employee.total_required_minutes

        result = sorted(offices.values(), key=lambda o: (o.office_name.lower(), o.office_key))
        for office in result:
            self._apply_rates(office)
        return result
