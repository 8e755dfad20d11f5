"""
Sorting Utilities Module

Provides sorting functions for summary output.
"""

from functools import cmp_to_key
from typing import Any, Callable, Dict, List, Optional, Sequence

from domain.entities import PerEmployeeRow


def _text(value: Optional[str]) -> Optional[str]:
    return value.lower() if value else None


SORT_FIELDS: Dict[str, Callable[[PerEmployeeRow], Any]] = {
    "employeeName": lambda r: _text(r.employee_name),
    "employeeNo": lambda r: _text(r.employee_no),
    "office": lambda r: _text(r.office_name),
    "schedule": lambda r: _text(", ".join(sorted(r.schedule_types))),
    "days": lambda r: r.days_with_logs,
    "noPunch": lambda r: r.no_punch_days,
    "lateDays": lambda r: r.late_days,
    "undertimeDays": lambda r: r.undertime_days,
    "latePercent": lambda r: r.late_rate,
    "undertimePercent": lambda r: r.undertime_rate,
    "lateMinutes": lambda r: r.total_late_minutes,
    "undertimeMinutes": lambda r: r.total_undertime_minutes,
}


def _compare_values(a, b, descending: bool) -> int:
    """Compare two values; None always sorts last regardless of direction."""
    if a is None and b is None:
        return 0
    if a is None:
        return 1
    if b is None:
        return -1
    result = (a > b) - (a < b)
    return -result if descending else result


def sort_summary(
    rows: Sequence[PerEmployeeRow],
    primary: str = "employeeName",
    descending: bool = False,
    secondary: Optional[str] = None,
    secondary_descending: bool = False,
) -> List[PerEmployeeRow]:
    """
    Sort summary rows by a primary and optional secondary field.

    Args:
        rows: Per-employee rows
        primary: One of SORT_FIELDS
        descending: Direction of the primary key
        secondary: Optional second key from SORT_FIELDS
        secondary_descending: Direction of the secondary key

    Returns:
        Sorted list (new list, does not modify original). Ties end on the
        lower-cased name, then the employee id.

    Raises:
        ValueError: If a field name is unknown
    """
    for name in (primary, secondary):
        if name is not None and name not in SORT_FIELDS:
            raise ValueError(f"Unknown sort field: {name}")

    keys = [(SORT_FIELDS[primary], descending)]
    if secondary:
        keys.append((SORT_FIELDS[secondary], secondary_descending))

    def compare(a: PerEmployeeRow, b: PerEmployeeRow) -> int:
        for getter, is_descending in keys:
            result = _compare_values(getter(a), getter(b), is_descending)
            if result:
                return result
        result = _compare_values(_text(a.employee_name) or "", _text(b.employee_name) or "", False)
        if result:
            return result
        return _compare_values(a.employee_id, b.employee_id, False)

    return sorted(rows, key=cmp_to_key(compare))
