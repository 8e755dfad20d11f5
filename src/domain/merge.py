"""
Merge Module

Unions the per-day rows of several parsed workbooks into one batch.
"""

from typing import Dict, Iterable, List, Tuple

from domain.entities import (
    DayPunch, MergeResult, ParsedPerDayRow, ParsedWorkbook, ParseWarning,
    UnmatchedIdentityDetail, WarningLevel, MAX_WARNING_SAMPLE_COUNT,
)
from infrastructure.logger import get_logger

logger = get_logger("MergeEngine")


def merge_warnings(warnings: Iterable[ParseWarning]) -> List[ParseWarning]:
    """
    Aggregate warnings sharing (type, message).

    Counts are summed (a warning without a count stands for one once any
    entry carries a count), the level escalates to warning if any entry is a
    warning, and samples/unmatched details are capped.
    """
    merged: Dict[Tuple[str, str], ParseWarning] = {}
    for warning in warnings:
        existing = merged.get(warning.key)
        if existing is None:
            merged[warning.key] = ParseWarning(
                type=warning.type,
                message=warning.message,
                level=warning.level,
                count=warning.count,
                samples=list(warning.samples[:MAX_WARNING_SAMPLE_COUNT]),
                unmatched_identities=list(warning.unmatched_identities[:MAX_WARNING_SAMPLE_COUNT]),
            )
            continue

        if warning.count is not None or existing.count is not None:
            existing.count = (existing.count or 1) + (warning.count or 1)
        if warning.level == WarningLevel.WARNING:
            existing.level = WarningLevel.WARNING
        for sample in warning.samples:
            if len(existing.samples) >= MAX_WARNING_SAMPLE_COUNT:
                break
            if sample not in existing.samples:
                existing.samples.append(sample)
        known = {detail.token: detail for detail in existing.unmatched_identities}
        for detail in warning.unmatched_identities:
            if detail.token in known:
                ids = known[detail.token].employee_ids
                ids.extend(i for i in detail.employee_ids if i not in ids)
            elif len(existing.unmatched_identities) < MAX_WARNING_SAMPLE_COUNT:
                copy = UnmatchedIdentityDetail(detail.token, list(detail.employee_ids))
                existing.unmatched_identities.append(copy)
                known[detail.token] = copy
    return list(merged.values())


def merge_rows(rows: Iterable[ParsedPerDayRow]) -> Tuple[List[ParsedPerDayRow], int]:
    """
    Union rows keyed by (token, date key).

    Returns:
        Tuple of (merged rows sorted by date key then token, duplicate punch count)
    """
    merged: Dict[Tuple[str, str], ParsedPerDayRow] = {}
    duplicates = 0
    for row in rows:
        key = (row.employee_token, row.date_key)
        target = merged.get(key)
        if target is None:
            merged[key] = ParsedPerDayRow(
                employee_token=row.employee_token,
                employee_name=row.employee_name,
                day=row.day,
                date_iso=row.date_iso,
                employee_id=row.employee_id,
                employee_dept=row.employee_dept,
                composed_from_day_only=row.composed_from_day_only,
                punches=list(row.punches),
                source_files=list(dict.fromkeys(row.source_files)),
                parser_type=row.parser_type,
                punches_out_of_order=row.punches_out_of_order,
            )
            continue

        known = {punch.time for punch in target.punches}
        for punch in row.punches:
            if punch.time in known:
                duplicates += 1
                continue
            target.punches.append(DayPunch(punch.time, punch.minute_of_day))
            known.add(punch.time)
        for source in row.source_files:
            if source not in target.source_files:
                target.source_files.append(source)
        if not target.employee_name and row.employee_name:
            target.employee_name = row.employee_name
        if not target.employee_dept and row.employee_dept:
            target.employee_dept = row.employee_dept
        if not target.employee_id and row.employee_id:
            target.employee_id = row.employee_id
        if row.punches_out_of_order:
            target.punches_out_of_order = True

    result = sorted(merged.values(), key=lambda r: (r.date_key, r.employee_token))
    for row in result:
        row.normalize()
    return result, duplicates


def merge_workbooks(workbooks: Iterable[ParsedWorkbook]) -> MergeResult:
    """
    Merge parsed workbooks into a single chronologically ordered batch.

    Merging the same workbook twice yields the same punches as merging it once.
    """
    workbooks = list(workbooks)
    rows: List[ParsedPerDayRow] = []
    warnings: List[ParseWarning] = []
    for workbook in workbooks:
        rows.extend(workbook.per_day)
        warnings.extend(workbook.warnings)

    per_day, duplicates = merge_rows(rows)

    months = sorted({row.month for row in per_day if row.month})
    dates = [row.date_iso for row in per_day if row.date_iso]
    date_range = (min(dates), max(dates)) if dates else None

    result = MergeResult(
        per_day=per_day,
        months=months,
        date_range=date_range,
        warnings=merge_warnings(warnings),
        merged_duplicates=duplicates,
    )
    logger.info(
        f"Merged {len(workbooks)} workbook(s): {len(per_day)} day row(s), "
        f"months={months or 'none'}, duplicates collapsed={duplicates}"
    )
    if result.requires_confirmation:
        logger.warning(f"Batch spans several months: {', '.join(months)}")
    return result
