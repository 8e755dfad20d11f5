"""
Unit tests for IdentityResolver and identity enrichment helpers.
"""

import sys
import threading
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from domain.entities import (
    DayPunch, DirectoryEmployee, IdentityRecord, IdentityStatus,
    ParsedPerDayRow, UNASSIGNED_OFFICE_LABEL, UNKNOWN_OFFICE_LABEL,
)
from domain.identity_resolver import (
    AMBIGUOUS_IDENTITY, IDENTITY_LOOKUP_FAILED, MISSING_OFFICE, UNMATCHED_IDENTITY,
    IdentityResolver, apply_identity, identity_warnings, normalize_token,
)


class FakeDirectory:
    """In-memory directory that records every lookup."""

    def __init__(self, by_token=None, employees=None):
        self.by_token = by_token or {}
        self.employees = employees or {}
        self.calls = []
        self.bound = {}

    def resolve_identities(self, tokens):
        self.calls.append(list(tokens))
        return {t: self.by_token[t] for t in tokens if t in self.by_token}

    def search_employees(self, query, limit=20):
        return [e for e in self.employees.values() if query.lower() in e.name.lower()][:limit]

    def bind_identity(self, token, employee_id):
        if employee_id not in self.employees:
            raise KeyError(employee_id)
        self.bound[token] = employee_id
        return self.employees[employee_id]


class BlockingDirectory(FakeDirectory):
    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def resolve_identities(self, tokens):
        self.release.wait(5)
        return {}


class FailingDirectory(FakeDirectory):
    def resolve_identities(self, tokens):
        raise RuntimeError("directory offline")


ALICE = DirectoryEmployee(id="E-1", name="Alice", employee_no="1001", office_id="O-1", office_name="Finance")
NO_OFFICE = DirectoryEmployee(id="E-5", name="Eve", employee_no="1005")


def make_row(token, employee_id=None, name="Printed Name"):
    return ParsedPerDayRow(
        employee_token=token,
        employee_id=employee_id or token,
        employee_name=name,
        day=1,
        date_iso="2025-04-01",
        punches=[DayPunch.from_hhmm("08:00")],
    )


class TestNormalizeToken:
    def test_trim_and_upper(self):
        assert normalize_token("  ab12 ") == "AB12"

    def test_padding(self):
        assert normalize_token("42", 5) == "00042"
        assert normalize_token(42.0, 5) == "00042"
        assert normalize_token("A42", 5) == "A42"

    def test_none(self):
        assert normalize_token(None) == ""


class TestResolve:
    """Tests for resolution, chunking and caching."""

    def test_matched_unmatched_and_ambiguous(self):
        twin = DirectoryEmployee(id="E-9", name="Twin", employee_no="1003")
        directory = FakeDirectory(by_token={
            "1001": [ALICE],
            "1003": [twin, DirectoryEmployee(id="E-10", name="Twin B")],
        })
        result = IdentityResolver(directory).resolve(["1001", "1002", "1003"])

        assert list(result) == ["1001", "1002", "1003"]
        assert result["1001"].status == IdentityStatus.MATCHED
        assert result["1001"].employee_name == "Alice"
        assert result["1001"].office_name == "Finance"
        assert result["1002"].status == IdentityStatus.UNMATCHED
        assert result["1003"].status == IdentityStatus.AMBIGUOUS
        assert result["1003"].candidates == ["E-9", "E-10"]

    def test_missing_office(self):
        result = IdentityResolver(FakeDirectory(by_token={"1005": [NO_OFFICE]})).resolve(["1005"])
        assert result["1005"].missing_office
        assert result["1005"].office_name == UNASSIGNED_OFFICE_LABEL

    def test_chunking(self):
        directory = FakeDirectory()
        IdentityResolver(directory, chunk_size=2).resolve(["1", "2", "3", "4", "5"])
        assert sorted(len(call) for call in directory.calls) == [1, 2, 2]

    def test_duplicates_and_cache(self):
        directory = FakeDirectory(by_token={"1001": [ALICE]})
        resolver = IdentityResolver(directory)
        resolver.resolve(["1001", " 1001", "1001"])
        resolver.resolve(["1001"])
        assert directory.calls == [["1001"]]
        assert resolver.cached("1001").employee_id == "E-1"

    def test_clear_forgets_cache(self):
        directory = FakeDirectory(by_token={"1001": [ALICE]})
        resolver = IdentityResolver(directory)
        resolver.resolve(["1001"])
        resolver.clear()
        resolver.resolve(["1001"])
        assert len(directory.calls) == 2

    def test_timeout_fails_closed(self):
        directory = BlockingDirectory()
        resolver = IdentityResolver(directory, timeout_seconds=0.1)
        try:
            result = resolver.resolve(["1001", "1002"])
        finally:
            directory.release.set()

        assert all(r.status == IdentityStatus.UNMATCHED for r in result.values())
        assert resolver.last_warnings[0].type == IDENTITY_LOOKUP_FAILED
        assert resolver.last_warnings[0].count == 2
        assert resolver.cached("1001") is None

    def test_directory_error_fails_closed(self):
        resolver = IdentityResolver(FailingDirectory())
        result = resolver.resolve(["1001"])
        assert result["1001"].status == IdentityStatus.UNMATCHED
        assert resolver.last_warnings[0].type == IDENTITY_LOOKUP_FAILED

    def test_invalid_chunk_size(self):
        with pytest.raises(ValueError):
            IdentityResolver(FakeDirectory(), chunk_size=0)


class TestBind:
    """Tests for manual binding."""

    def test_bind_caches_match(self):
        directory = FakeDirectory(employees={"E-1": ALICE})
        resolver = IdentityResolver(directory)
        resolver.resolve(["9999"])

        record = resolver.bind("9999", "E-1")

        assert record.status == IdentityStatus.MATCHED
        assert directory.bound == {"9999": "E-1"}
        assert resolver.resolve(["9999"])["9999"].employee_id == "E-1"

    def test_bind_unknown_employee(self):
        with pytest.raises(KeyError):
            IdentityResolver(FakeDirectory()).bind("9999", "E-404")


class TestApplyIdentity:
    """Tests for identity enrichment of rows."""

    def test_matched(self):
        record = IdentityResolver(FakeDirectory(by_token={"1001": [ALICE]})).resolve(["1001"])["1001"]
        row = apply_identity(make_row("1001"), record)
        assert row.employee_name == "Alice"
        assert row.resolved_employee_id == "E-1"
        assert row.office_id == "O-1"
        assert row.identity_status == IdentityStatus.MATCHED
        assert row.all_times == ["08:00"]

    def test_unmatched_keeps_printed_name(self):
        row = apply_identity(make_row("9999"), IdentityRecord.unmatched())
        assert row.employee_name == "Printed Name"
        assert row.resolved_employee_id is None
        assert row.office_name == UNKNOWN_OFFICE_LABEL

    def test_source_row_is_untouched(self):
        source = make_row("1001")
        apply_identity(source, IdentityRecord.unmatched())
        assert not hasattr(source, "resolved_employee_id")


class TestIdentityWarnings:
    def test_warning_types(self):
        identities = {
            "9999": IdentityRecord.unmatched(),
            "1003": IdentityRecord(status=IdentityStatus.AMBIGUOUS, candidates=["E-9", "E-10"]),
            "1005": IdentityRecord(status=IdentityStatus.MATCHED, employee_name="Eve", missing_office=True),
        }
        rows = [make_row("9999", employee_id="09999"), make_row("1003"), make_row("1005")]
        warnings = {w.type: w for w in identity_warnings(rows, identities)}

        unmatched = warnings[UNMATCHED_IDENTITY]
        assert unmatched.count == 1
        assert unmatched.unmatched_identities[0].token == "9999"
        assert unmatched.unmatched_identities[0].employee_ids == ["09999"]
        assert warnings[AMBIGUOUS_IDENTITY].samples == ["1003: E-9, E-10"]
        assert warnings[MISSING_OFFICE].samples == ["Eve"]
