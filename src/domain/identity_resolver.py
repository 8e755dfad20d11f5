"""
Identity Resolver Module

Maps biometric tokens to directory employees.

Lookups are chunked and run concurrently; a chunk that fails or times out
leaves its tokens unmatched so evaluation can still proceed.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import fields
from typing import Dict, Iterable, List, Optional, Sequence

from domain.entities import (
    DirectoryEmployee, IdentityRecord, IdentityStatus, ParsedPerDayRow,
    ParseWarning, PerDayRow, UnmatchedIdentityDetail, WarningLevel,
    MAX_WARNING_SAMPLE_COUNT, UNASSIGNED_OFFICE_LABEL, UNKNOWN_OFFICE_LABEL,
    UNMATCHED_LABEL,
)
from domain.errors import IdentityResolutionError
from infrastructure.logger import get_logger

logger = get_logger("IdentityResolver")


UNMATCHED_IDENTITY = "UNMATCHED_IDENTITY"
AMBIGUOUS_IDENTITY = "AMBIGUOUS_IDENTITY"
MISSING_OFFICE = "MISSING_OFFICE"
IDENTITY_LOOKUP_FAILED = "IDENTITY_LOOKUP_FAILED"

DEFAULT_CHUNK_SIZE = 2000


def normalize_token(raw, pad_length: int = 0) -> str:
    """
    Normalize a biometric identifier for matching.

    Trims, upper-cases and left-pads digit-only tokens with zeros up to
    pad_length (0 disables padding).
    """
    if raw is None:
        return ""
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    token = str(raw).strip().upper()
    if pad_length > 0 and token.isdigit():
        token = token.zfill(pad_length)
    return token


def record_from_candidates(candidates: Sequence[DirectoryEmployee]) -> IdentityRecord:
    """Build an IdentityRecord from the directory candidates of one token."""
    if not candidates:
        return IdentityRecord.unmatched()
    if len(candidates) > 1:
        return IdentityRecord(
            status=IdentityStatus.AMBIGUOUS,
            candidates=[candidate.id for candidate in candidates],
        )
    employee = candidates[0]
    missing_office = not employee.office_id
    return IdentityRecord(
        status=IdentityStatus.MATCHED,
        employee_name=employee.name,
        employee_id=employee.id,
        office_id=employee.office_id,
        office_name=UNASSIGNED_OFFICE_LABEL if missing_office else (employee.office_name or UNASSIGNED_OFFICE_LABEL),
        employee_no=employee.employee_no,
        missing_office=missing_office,
    )


class IdentityResolver:
    """
    Session-scoped token to identity resolution.

    The directory object must provide resolve_identities(tokens) returning
    {token: [DirectoryEmployee, ...]} and bind_identity(token, employee_id)
    returning the bound DirectoryEmployee.
    """

    def __init__(
        self,
        directory,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timeout_seconds: float = 30.0,
        max_workers: int = 4,
        token_pad_length: int = 0,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self._directory = directory
        self.chunk_size = chunk_size
        self.timeout_seconds = timeout_seconds
        self.max_workers = max_workers
        self.token_pad_length = token_pad_length
        self._cache: Dict[str, IdentityRecord] = {}
        self._lock = threading.Lock()
        self.last_warnings: List[ParseWarning] = []

    def normalize(self, raw) -> str:
        return normalize_token(raw, self.token_pad_length)

    def cached(self, token: str) -> Optional[IdentityRecord]:
        with self._lock:
            return self._cache.get(self.normalize(token))

    def invalidate(self, token: str) -> None:
        with self._lock:
            self._cache.pop(self.normalize(token), None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
        self.last_warnings = []

    def resolve(self, tokens: Iterable[str]) -> Dict[str, IdentityRecord]:
        """
        Resolve tokens to identity records.

        Returns:
            Dictionary keyed by normalized token. Tokens of failed chunks are
            returned as unmatched and are not cached, so a later call retries them.
        """
        ordered: List[str] = []
        seen = set()
        for raw in tokens:
            token = self.normalize(raw)
            if token and token not in seen:
                seen.add(token)
                ordered.append(token)

        result: Dict[str, IdentityRecord] = {}
        with self._lock:
            missing = []
            for token in ordered:
                if token in self._cache:
                    result[token] = self._cache[token]
                else:
                    missing.append(token)

        self.last_warnings = []
        if not missing:
            return result

        chunks = [missing[i:i + self.chunk_size] for i in range(0, len(missing), self.chunk_size)]
        logger.info(f"Resolving {len(missing)} token(s) in {len(chunks)} chunk(s)")

        failed: List[str] = []
        pool = ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(chunks))))
        try:
            deadline = time.monotonic() + self.timeout_seconds
            futures = [(chunk, pool.submit(self._lookup_chunk, chunk)) for chunk in chunks]
            for chunk, future in futures:
                remaining = max(0.0, deadline - time.monotonic())
                try:
                    answer = future.result(timeout=remaining)
                except FutureTimeoutError:
                    future.cancel()
                    logger.warning(f"Identity lookup timed out for a chunk of {len(chunk)} token(s)")
                    failed.extend(chunk)
                    continue
                except IdentityResolutionError as e:
                    logger.warning(e.message)
                    failed.extend(chunk)
                    continue

                records = {token: record_from_candidates(answer.get(token, [])) for token in chunk}
                with self._lock:
                    self._cache.update(records)
                result.update(records)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        for token in failed:
            result[token] = IdentityRecord.unmatched()
        if failed:
            self.last_warnings.append(ParseWarning(
                type=IDENTITY_LOOKUP_FAILED,
                message="Directory lookup failed; affected employees are shown as unmatched.",
                count=len(failed),
                samples=failed[:MAX_WARNING_SAMPLE_COUNT],
            ))

        return {token: result[token] for token in ordered}

    def _lookup_chunk(self, chunk: List[str]) -> Dict[str, List[DirectoryEmployee]]:
        try:
            answer = self._directory.resolve_identities(chunk)
        except Exception as e:
            raise IdentityResolutionError(chunk, f"Identity lookup failed for a chunk of {len(chunk)} token(s): {e}") from e
        if not isinstance(answer, dict):
            raise IdentityResolutionError(chunk, f"Directory returned {type(answer).__name__} instead of a mapping")
        return answer

    def bind(self, token: str, employee_id: str) -> IdentityRecord:
        """
        Manually bind a token to an employee and cache the match.

        Raises:
            KeyError: If the directory does not know the employee id
        """
        token = self.normalize(token)
        employee = self._directory.bind_identity(token, employee_id)
        record = record_from_candidates([employee])
        with self._lock:
            self._cache[token] = record
        logger.info(f"Bound token {token} to employee {employee.id}")
        return record

    def search(self, query: str, limit: int = 20) -> List[DirectoryEmployee]:
        return self._directory.search_employees(query, limit)


def apply_identity(row: ParsedPerDayRow, record: IdentityRecord) -> PerDayRow:
    """Attach identity fields to a parsed (or previously enriched) row."""
    values = {f.name: getattr(row, f.name) for f in fields(ParsedPerDayRow)}
    values["punches"] = list(row.punches)
    values["source_files"] = list(row.source_files)

    matched = record.status == IdentityStatus.MATCHED
    if matched:
        values["employee_name"] = record.employee_name
    elif not row.employee_name:
        values["employee_name"] = UNMATCHED_LABEL

    return PerDayRow(
        **values,
        resolved_employee_id=record.employee_id if matched else None,
        office_id=record.office_id if matched else None,
        office_name=record.office_name if matched else UNKNOWN_OFFICE_LABEL,
        identity_status=record.status,
    )


def identity_warnings(
    rows: Sequence[ParsedPerDayRow],
    identities: Dict[str, IdentityRecord],
) -> List[ParseWarning]:
    """Unmatched, ambiguous and missing-office warnings for a batch."""
    employee_ids: Dict[str, List[str]] = {}
    for row in rows:
        ids = employee_ids.setdefault(row.employee_token, [])
        if row.employee_id and row.employee_id not in ids:
            ids.append(row.employee_id)

    unmatched = [t for t, r in identities.items() if r.status == IdentityStatus.UNMATCHED and t in employee_ids]
    ambiguous = [t for t, r in identities.items() if r.status == IdentityStatus.AMBIGUOUS and t in employee_ids]
    no_office = [t for t, r in identities.items() if r.status == IdentityStatus.MATCHED and r.missing_office]

    warnings: List[ParseWarning] = []
    if unmatched:
        warnings.append(ParseWarning(
            type=UNMATCHED_IDENTITY,
            message="Some biometric IDs did not match any employee.",
            count=len(unmatched),
            samples=unmatched[:MAX_WARNING_SAMPLE_COUNT],
            unmatched_identities=[
                UnmatchedIdentityDetail(token=t, employee_ids=employee_ids.get(t, []))
                for t in unmatched[:MAX_WARNING_SAMPLE_COUNT]
            ],
        ))
    if ambiguous:
        warnings.append(ParseWarning(
            type=AMBIGUOUS_IDENTITY,
            message="Some biometric IDs match more than one employee; bind them manually.",
            count=len(ambiguous),
            samples=[
                f"{t}: {', '.join(identities[t].candidates)}"
                for t in ambiguous[:MAX_WARNING_SAMPLE_COUNT]
            ],
        ))
    if no_office:
        warnings.append(ParseWarning(
            type=MISSING_OFFICE,
            message="Some matched employees have no office assigned.",
            level=WarningLevel.INFO,
            count=len(no_office),
            samples=[identities[t].employee_name for t in no_office[:MAX_WARNING_SAMPLE_COUNT]],
        ))
    return warnings
