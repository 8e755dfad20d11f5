"""
Batch Service Module

Application layer that runs the attendance pipeline for one upload batch:
parse -> merge -> resolve -> filter -> evaluate -> aggregate.

All per-batch state lives in a BatchSession; sessions share nothing.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Set

from config.config_manager import AppConfig, DefaultSchedule
from domain.attendance_logic import AttendanceEvaluator, anomaly_warnings
from domain.entities import (
    FixedShift, IdentityRecord, MergeResult, OfficeSummary, OutOfPeriodRow,
    ParseWarning, PerDayRow, PerEmployeeRow,
)
from domain.errors import InvalidPeriodError, MixedPeriodError
from domain.identity_resolver import (
    AMBIGUOUS_IDENTITY, MISSING_OFFICE, UNMATCHED_IDENTITY,
    IdentityResolver, apply_identity, identity_warnings,
)
from domain.merge import merge_rows, merge_warnings, merge_workbooks
from domain.period_filter import ManualPeriod, filter_period
from domain.rate_calculator import PercentMode, RateCalculator
from application.file_queue import FileQueue, FileResult, FileStatus, Upload
from infrastructure.directory import DirectoryService
from infrastructure.excel_parser import ExcelParser
from infrastructure.logger import get_logger
from infrastructure.schedule_store import ScheduleService

logger = get_logger("BatchService")


IDENTITY_WARNING_TYPES = {UNMATCHED_IDENTITY, AMBIGUOUS_IDENTITY, MISSING_OFFICE}


@dataclass
class EvaluationResult:
    """Output of the evaluation entrypoint. Every row has a flat to_record()."""
    per_day: List[PerDayRow] = field(default_factory=list)
    per_employee: List[PerEmployeeRow] = field(default_factory=list)
    manual_mappings: List[str] = field(default_factory=list)
    warnings: List[ParseWarning] = field(default_factory=list)
    excluded: List[OutOfPeriodRow] = field(default_factory=list)
    offices: List[OfficeSummary] = field(default_factory=list)


def _default_shift(default_shift: Optional[FixedShift]) -> FixedShift:
    return default_shift or DefaultSchedule().to_fixed_shift()


def _schedule_lookup(schedules: ScheduleService):
    def lookup(row: PerDayRow):
        day = date.fromisoformat(row.date_iso) if row.date_iso else None
        return schedules.schedule_for(row.resolved_employee_id, day)
    return lookup


def _attach_employee_numbers(
    per_employee: Iterable[PerEmployeeRow],
    identities: Optional[Dict[str, IdentityRecord]],
) -> None:
    if not identities:
        return
    for summary in per_employee:
        record = identities.get(summary.employee_token)
        if record is not None and record.employee_no:
            summary.employee_no = record.employee_no


def evaluate_entries(
    rows: Sequence[PerDayRow],
    schedules: ScheduleService,
    percent_mode: PercentMode = PercentMode.DAYS,
    default_shift: Optional[FixedShift] = None,
    identities: Optional[Dict[str, IdentityRecord]] = None,
    manual_tokens: Iterable[str] = (),
) -> EvaluationResult:
    """
    Evaluate period-filtered, identity-enriched rows and aggregate them.

    Args:
        rows: Rows with identity fields attached (see apply_identity)
        schedules: Schedule service answering per employee-day
        percent_mode: Denominator used for rates
        default_shift: Shift used when no schedule applies
        identities: Optional identity map, used for employee numbers
        manual_tokens: Tokens bound manually by an operator

    Returns:
        EvaluationResult with per-day rows, per-employee rows, the manual
        mapping tokens present in the rows and anomaly warnings
    """
    evaluator = AttendanceEvaluator(_default_shift(default_shift))
    per_day = evaluator.evaluate_rows(rows, _schedule_lookup(schedules))

    calculator = RateCalculator(percent_mode)
    per_employee = calculator.summarize(per_day)
    _attach_employee_numbers(per_employee, identities)

    manual = set(manual_tokens)
    tokens_in_batch = {row.employee_token for row in per_day}
    return EvaluationResult(
        per_day=per_day,
        per_employee=per_employee,
        manual_mappings=sorted(manual & tokens_in_batch),
        warnings=anomaly_warnings(per_day),
        offices=calculator.summarize_offices(per_employee),
    )


def re_enrich(
    rows_for_token: Sequence[PerDayRow],
    identity: IdentityRecord,
    schedules: ScheduleService,
    default_shift: Optional[FixedShift] = None,
) -> List[PerDayRow]:
    """Re-attach identity and re-evaluate the rows of a single token."""
    evaluator = AttendanceEvaluator(_default_shift(default_shift))
    lookup = _schedule_lookup(schedules)
    updated = []
    for row in rows_for_token:
        enriched = apply_identity(row, identity)
        updated.append(evaluator.evaluate_row(enriched, lookup(enriched)))
    return updated


class BatchSession:
    """
    Owns the state of one upload batch.

    Typical use:
        session = BatchSession(config, directory, schedules)
        session.add_files(paths)
        session.set_manual_period(4, 2025)   # optional
        result = session.evaluate()
        session.override_identity("00123", "E-42").result()
    """

    def __init__(
        self,
        config: AppConfig,
        directory: DirectoryService,
        schedules: ScheduleService,
        parser: Optional[ExcelParser] = None,
    ):
        self.config = config
        self.schedules = schedules
        self.default_shift = config.default_schedule.to_fixed_shift()
        self.percent_mode = PercentMode(config.summary.percent_mode)
        self.parser = parser or ExcelParser(
            token_pad_length=config.identity.token_pad_length,
            max_header_search_rows=config.parser.max_header_search_rows,
        )
        self.resolver = IdentityResolver(
            directory,
            chunk_size=config.identity.chunk_size,
            timeout_seconds=config.identity.timeout_seconds,
            max_workers=config.identity.max_workers,
            token_pad_length=config.identity.token_pad_length,
        )
        self._lock = threading.RLock()
        self._override_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="re-enrich")
        self._generations: Dict[str, int] = {}
        self._pending: Dict[str, Future] = {}
        self.file_results: List[FileResult] = []
        self.merge_result: Optional[MergeResult] = None
        self.identities: Dict[str, IdentityRecord] = {}
        self.manual_tokens: Set[str] = set()
        self.manual_period: Optional[ManualPeriod] = None
        self.mixed_months_confirmed = False
        self.result: Optional[EvaluationResult] = None
        self._lookup_warnings: List[ParseWarning] = []

    def __enter__(self) -> "BatchSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._override_pool.shutdown(wait=True, cancel_futures=True)

    def reset(self) -> None:
        """Discard everything about the current batch, including the identity cache."""
        with self._lock:
            for future in self._pending.values():
                future.cancel()
            self._pending.clear()
            self._generations.clear()
            self.file_results = []
            self.merge_result = None
            self.identities = {}
            self.manual_tokens = set()
            self.manual_period = None
            self.mixed_months_confirmed = False
            self.result = None
            self._lookup_warnings = []
            self.resolver.clear()
        logger.info("Batch session reset")

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------
    def add_files(self, uploads: Iterable[Upload]) -> List[FileResult]:
        """Parse uploads concurrently and merge them into the batch."""
        results = FileQueue(self.parser, self.config.parser.concurrency).parse_all(uploads)
        with self._lock:
            self.file_results.extend(results)
            previous_months = self.merge_result.months if self.merge_result else []
            workbooks = [r.workbook for r in self.file_results if r.status == FileStatus.PARSED]
            self.merge_result = merge_workbooks(workbooks)
            if self.merge_result.months != previous_months:
                self.mixed_months_confirmed = False
            self.result = None
        return results

    def confirm_mixed_months(self) -> None:
        """Operator confirmation that a multi-month batch may be evaluated together."""
        self.mixed_months_confirmed = True

    def set_manual_period(self, month: int, year: int) -> ManualPeriod:
        """
        Restrict evaluation to one month.

        Raises:
            InvalidPeriodError: If month or year is out of range
        """
        self.manual_period = ManualPeriod(month=month, year=year)
        self.result = None
        return self.manual_period

    def clear_manual_period(self) -> None:
        self.manual_period = None
        self.result = None

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------
    def resolve_identities(self) -> Dict[str, IdentityRecord]:
        """Resolve every token of the merged batch (cached tokens are not re-queried)."""
        if self.merge_result is None:
            return {}
        tokens = sorted({row.employee_token for row in self.merge_result.per_day})
        identities = self.resolver.resolve(tokens)
        with self._lock:
            self.identities = identities
            self._lookup_warnings = list(self.resolver.last_warnings)
        return identities

    def search_employees(self, query: str, limit: int = 20):
        return self.resolver.search(query, limit)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def evaluate(self) -> EvaluationResult:
        """
        Run filter, evaluation and aggregation for the whole batch.

        Raises:
            MixedPeriodError: Several months without confirmation or manual period
            InvalidPeriodError: Day-only rows remain and no manual period is set
        """
        if self.merge_result is None:
            self.result = EvaluationResult(warnings=self._file_warnings())
            return self.result

        merged = self.merge_result
        if merged.requires_confirmation and not self.mixed_months_confirmed and self.manual_period is None:
            raise MixedPeriodError(merged.months)

        filtered = filter_period(merged.per_day, self.manual_period)
        included = filtered.included
        if self.manual_period is not None:
            # composed dates can collide with dated rows of the same employee-day
            included, collapsed = merge_rows(included)
            if collapsed:
                logger.info(f"Collapsed {collapsed} duplicate punch(es) across dated and day-only rows")
        day_only = [row for row in included if row.date_iso is None]
        if day_only:
            raise InvalidPeriodError(
                f"{len(day_only)} row(s) only carry a day of month; "
                f"choose a manual period to evaluate them."
            )

        tokens = {row.employee_token for row in included}
        if not tokens.issubset(self.identities):
            self.resolve_identities()

        enriched = [
            apply_identity(row, self.identities.get(row.employee_token, IdentityRecord.pending()))
            for row in included
        ]
        result = evaluate_entries(
            enriched,
            self.schedules,
            self.percent_mode,
            self.default_shift,
            identities=self.identities,
            manual_tokens=self.manual_tokens,
        )
        result.excluded = filtered.excluded
        result.warnings = merge_warnings(
            self._file_warnings()
            + list(merged.warnings)
            + list(self._lookup_warnings)
            + identity_warnings(included, self.identities)
            + result.warnings
        )
        with self._lock:
            self.result = result
        logger.info(
            f"Evaluated {len(result.per_day)} day row(s) for {len(result.per_employee)} employee(s); "
            f"{len(result.excluded)} row(s) outside the period"
        )
        return result

    def _file_warnings(self) -> List[ParseWarning]:
        return [w for w in (r.to_warning() for r in self.file_results) if w is not None]

    # ------------------------------------------------------------------
    # Manual override
    # ------------------------------------------------------------------
    def override_identity(self, token: str, employee_id: str) -> Future:
        """
        Bind a token to an employee and re-evaluate only that token's rows.

        The binding is persisted immediately. Re-evaluation runs in the
        background; a newer override of the same token makes older results
        stale (they are discarded and, if not started, cancelled).

        Returns:
            Future resolving to True when the update was applied, False if stale
        """
        token = self.resolver.normalize(token)
        record = self.resolver.bind(token, employee_id)
        with self._lock:
            self.identities[token] = record
            self.manual_tokens.add(token)
            generation = self._generations.get(token, 0) + 1
            self._generations[token] = generation
            previous = self._pending.pop(token, None)
            if previous is not None:
                previous.cancel()
            rows = [r for r in self.result.per_day if r.employee_token == token] if self.result else []
            future = self._override_pool.submit(self._apply_override, token, generation, rows, record)
            self._pending[token] = future
        return future

    def _apply_override(self, token: str, generation: int, rows: List[PerDayRow], record: IdentityRecord) -> bool:
        updated = re_enrich(rows, record, self.schedules, self.default_shift)
        with self._lock:
            if self._generations.get(token) != generation:
                logger.info(f"Discarding stale re-enrichment for token {token}")
                return False
            if self.result is None:
                return True
            self._commit_override(token, updated)
        logger.info(f"Re-enriched {len(updated)} row(s) for token {token}")
        return True

    def _commit_override(self, token: str, updated: List[PerDayRow]) -> None:
        result = self.result
        old_keys = {row.aggregate_key for row in result.per_day if row.employee_token == token}
        new_keys = {row.aggregate_key for row in updated}
        affected_keys = old_keys | new_keys

        replacement = iter(updated)
        result.per_day = [
            next(replacement) if row.employee_token == token else row
            for row in result.per_day
        ]

        calculator = RateCalculator(self.percent_mode)
        affected_rows = [row for row in result.per_day if row.aggregate_key in affected_keys]
        recomputed = calculator.summarize(affected_rows)
        _attach_employee_numbers(recomputed, self.identities)
        result.per_employee = [
            summary for summary in result.per_employee
            if (summary.resolved_employee_id or summary.employee_token) not in affected_keys
        ] + recomputed
        result.offices = calculator.summarize_offices(result.per_employee)

        tokens_in_batch = {row.employee_token for row in result.per_day}
        result.manual_mappings = sorted(self.manual_tokens & tokens_in_batch)
        result.warnings = [w for w in result.warnings if w.type not in IDENTITY_WARNING_TYPES]
        result.warnings += identity_warnings(result.per_day, self.identities)
