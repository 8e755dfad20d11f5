"""
Unit tests for ExcelParser.

Workbooks are built in memory with openpyxl and parsed from bytes.
"""

import sys
from datetime import datetime
from io import BytesIO
from pathlib import Path

import pytest
from openpyxl import Workbook, load_workbook

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from domain.entities import ParserType
from domain.errors import ExcelFormatError, WorkbookParseError
from infrastructure.excel_parser import (
    INVALID_DATE, MALFORMED_TIME, MISSING_EMPLOYEE_ID, ExcelParser,
)


def to_bytes(rows, title="Sheet1"):
    wb = Workbook()
    ws = wb.active
    ws.title = title
    for row in rows:
        ws.append(row)
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def find(workbook, token, date_iso):
    for row in workbook.per_day:
        if row.employee_token == token and row.date_iso == date_iso:
            return row
    return None


@pytest.fixture
def parser():
    return ExcelParser()


@pytest.fixture
def grid_bytes():
    return to_bytes([
        ["Attendance Report 2025-04"],
        ["ID:", "1001", "Name:", "Alice", "Dept:", "HR"],
        [1, 2, 3, 4, 5, 6, 7],
        ["07:58 17:10", None, "06:3912:0012:1617:01", "25:61", None, None, None],
        ["ID:", "1002", "Name:", "Bob"],
        [None, "08:45"],
    ])


class TestGridReport:
    """Tests for the grid-report layout."""

    def test_detects_layout_and_month(self, parser, grid_bytes):
        result = parser.parse_bytes(grid_bytes, "report.xlsx")
        assert result.parser_type == ParserType.GRID_REPORT
        assert result.month_hints == ["2025-04"]
        assert result.employee_count == 2

    def test_separated_and_compact_cells(self, parser, grid_bytes):
        result = parser.parse_bytes(grid_bytes, "report.xlsx")

        day1 = find(result, "1001", "2025-04-01")
        assert day1.all_times == ["07:58", "17:10"]
        assert day1.earliest == "07:58"
        assert day1.latest == "17:10"
        assert day1.employee_name == "Alice"
        assert day1.employee_dept == "HR"
        assert day1.source_files == ["report.xlsx"]

        day3 = find(result, "1001", "2025-04-03")
        assert day3.all_times == ["06:39", "12:00", "12:16", "17:01"]

    def test_second_block_uses_header_above(self, parser, grid_bytes):
        result = parser.parse_bytes(grid_bytes, "report.xlsx")
        bob = find(result, "1002", "2025-04-02")
        assert bob.all_times == ["08:45"]

    def test_days_without_punches_are_kept(self, parser, grid_bytes):
        result = parser.parse_bytes(grid_bytes, "report.xlsx")
        assert len(result.per_day) == 14
        assert not find(result, "1001", "2025-04-02").has_punches

    def test_out_of_range_time_is_reported(self, parser, grid_bytes):
        result = parser.parse_bytes(grid_bytes, "report.xlsx")
        assert not find(result, "1001", "2025-04-04").has_punches
        warnings = {w.type: w for w in result.warnings}
        assert warnings[MALFORMED_TIME].count == 1
        assert warnings[MALFORMED_TIME].message.startswith("report.xlsx: ")

    def test_month_from_filename(self, parser):
        data = to_bytes([
            ["ID:", "1001", "Name:", "Alice"],
            [1, 2, 3, 4, 5],
            ["08:00", None, None, None, None],
        ])
        result = parser.parse_bytes(data, "logs_2025-03.xlsx")
        assert find(result, "1001", "2025-03-01").all_times == ["08:00"]

    def test_without_month_rows_are_day_only(self, parser):
        data = to_bytes([
            ["ID:", "1001", "Name:", "Alice"],
            [1, 2, 3, 4, 5],
            ["08:00", None, None, None, None],
        ])
        result = parser.parse_bytes(data, "logs.xlsx")
        row = next(r for r in result.per_day if r.day == 1)
        assert row.date_iso is None
        assert row.composed_from_day_only
        assert row.date_key == "day:01"

    def test_normalized_export(self, parser, grid_bytes):
        result = parser.parse_bytes(grid_bytes, "report.xlsx")
        wb = load_workbook(BytesIO(result.normalized_xlsx))
        ws = wb.active
        assert ws.title == "Normalized"
        assert ws.max_row == len(result.per_day) + 1


class TestLegacyLayout:
    """Tests for the tabular legacy layout."""

    def test_one_row_per_punch(self, parser):
        data = to_bytes([
            ["Employee ID", "Name", "Date", "Time"],
            ["1001", "Alice", "2025-04-01", "17:10"],
            ["1001", "Alice", "2025-04-01", "07:58"],
        ])
        result = parser.parse_bytes(data, "legacy.xlsx")

        assert result.parser_type == ParserType.LEGACY
        assert len(result.per_day) == 1
        row = result.per_day[0]
        assert row.all_times == ["07:58", "17:10"]
        assert row.date_iso == "2025-04-01"
        assert row.employee_name == "Alice"
        assert not row.punches_out_of_order

    def test_row_level_problems_become_warnings(self, parser):
        data = to_bytes([
            ["Employee ID", "Name", "Date", "Time"],
            ["1001", "Alice", "2025-04-01", "07:58"],
            [None, "Ghost", "2025-04-01", "08:00"],
            ["1002", "Bob", "not a date", "08:00"],
            ["1002", "Bob", "2025-04-02", "7.30"],
        ])
        result = parser.parse_bytes(data, "legacy.xlsx")

        types = {w.type for w in result.warnings}
        assert types == {MISSING_EMPLOYEE_ID, INVALID_DATE, MALFORMED_TIME}
        bob = find(result, "1002", "2025-04-02")
        assert bob is not None
        assert not bob.has_punches

    def test_datetime_column(self, parser):
        data = to_bytes([
            ["ID", "Date Time"],
            [1001, datetime(2025, 4, 1, 7, 58)],
            [1001, datetime(2025, 4, 1, 17, 10)],
        ])
        result = parser.parse_bytes(data, "clock.xlsx")
        row = find(result, "1001", "2025-04-01")
        assert row.all_times == ["07:58", "17:10"]

    def test_day_number_column(self, parser):
        data = to_bytes([
            ["ID", "Day", "Time In", "Time Out"],
            [1001, 5, "08:00", "17:00"],
        ])
        result = parser.parse_bytes(data, "clock.xlsx")
        row = result.per_day[0]
        assert row.date_iso is None
        assert row.day == 5
        assert row.composed_from_day_only
        assert row.all_times == ["08:00", "17:00"]
        assert not row.punches_out_of_order

    def test_time_in_after_time_out_is_flagged(self, parser):
        data = to_bytes([
            ["ID", "Date", "Time In", "Time Out"],
            [1001, "2025-04-01", "22:00", "06:00"],
            [1002, "2025-04-01", "08:00", "17:00"],
        ])
        result = parser.parse_bytes(data, "night.xlsx")
        night = find(result, "1001", "2025-04-01")
        assert night.punches_out_of_order
        assert night.all_times == ["06:00", "22:00"]
        assert not find(result, "1002", "2025-04-01").punches_out_of_order

    def test_token_padding(self):
        data = to_bytes([
            ["Employee ID", "Date", "Time"],
            ["42", "2025-04-01", "08:00"],
        ])
        result = ExcelParser(token_pad_length=5).parse_bytes(data, "legacy.xlsx")
        assert result.per_day[0].employee_token == "00042"
        assert result.per_day[0].employee_id == "42"


class TestFailures:
    """Tests for unreadable workbooks."""

    def test_corrupt_bytes(self, parser):
        with pytest.raises(WorkbookParseError) as exc_info:
            parser.parse_bytes(b"not a workbook", "bad.xlsx")
        assert exc_info.value.file_name == "bad.xlsx"

    def test_unknown_layout(self, parser):
        with pytest.raises(ExcelFormatError):
            parser.parse_bytes(to_bytes([["hello", "world"]]), "notes.xlsx")

    def test_missing_file(self, parser, tmp_path):
        with pytest.raises(WorkbookParseError):
            parser.parse_file(tmp_path / "missing.xlsx")
