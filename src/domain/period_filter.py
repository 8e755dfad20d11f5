"""
Period Filter Module

Constrains a batch to one operator-chosen month.
"""

from dataclasses import dataclass, field, replace
from datetime import date
from typing import List, Optional, Sequence

from domain.entities import ExclusionReason, OutOfPeriodRow, ParsedPerDayRow
from domain.errors import InvalidPeriodError
from infrastructure.logger import get_logger

logger = get_logger("PeriodFilter")

MIN_YEAR = 1900
MAX_YEAR = 2100


@dataclass(frozen=True)
class ManualPeriod:
    """An operator-selected month."""
    month: int
    year: int

    def __post_init__(self):
        if not isinstance(self.month, int) or not 1 <= self.month <= 12:
            raise InvalidPeriodError(f"Month must be between 1 and 12, got {self.month!r}.")
        if not isinstance(self.year, int) or not MIN_YEAR <= self.year <= MAX_YEAR:
            raise InvalidPeriodError(f"Year must be between {MIN_YEAR} and {MAX_YEAR}, got {self.year!r}.")

    @classmethod
    def parse(cls, text: str) -> "ManualPeriod":
        """Parse "YYYY-MM"."""
        try:
            year_text, month_text = str(text).strip().split("-", 1)
            return cls(month=int(month_text), year=int(year_text))
        except ValueError as e:
            raise InvalidPeriodError(f"Expected a period as YYYY-MM, got {text!r}.") from e

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass
class PeriodFilterResult:
    included: List[ParsedPerDayRow] = field(default_factory=list)
    excluded: List[OutOfPeriodRow] = field(default_factory=list)


def _excluded(row: ParsedPerDayRow, reason: ExclusionReason, date_iso: Optional[str] = None) -> OutOfPeriodRow:
    return OutOfPeriodRow(
        employee_token=row.employee_token,
        employee_name=row.employee_name,
        day=row.day,
        date_iso=date_iso if date_iso is not None else row.date_iso,
        source_files=list(row.source_files),
        reason=reason,
    )


def filter_period(
    rows: Sequence[ParsedPerDayRow],
    manual_period: Optional[ManualPeriod] = None,
) -> PeriodFilterResult:
    """
    Split rows into those inside the manual period and those outside it.

    Without a period every row is included unchanged. With one, day-only
    rows get a composed date (impossible days are excluded as invalid-day)
    and concrete dates outside the month are excluded as outside-period.
    Every input row ends up in exactly one of the two lists.
    """
    result = PeriodFilterResult()
    if manual_period is None:
        result.included = list(rows)
        return result

    for row in rows:
        if row.date_iso is None:
            try:
                composed = date(manual_period.year, manual_period.month, row.day).isoformat()
            except ValueError:
                result.excluded.append(_excluded(row, ExclusionReason.INVALID_DAY))
                continue
            result.included.append(replace(row, date_iso=composed, composed_from_day_only=True))
        elif row.month == manual_period.key:
            result.included.append(row)
        else:
            result.excluded.append(_excluded(row, ExclusionReason.OUTSIDE_PERIOD))

    if result.excluded:
        logger.info(
            f"Period {manual_period.key}: {len(result.included)} row(s) kept, "
            f"{len(result.excluded)} excluded"
        )
    return result
