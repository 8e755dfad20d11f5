"""
Excel Parser Module

Handles parsing raw biometric time-clock exports into per-day punch rows.

Two layouts are recognized:
- grid-report: a header row of day numbers (1..31) with one block of rows
  per employee, introduced by "ID:" / "Name:" / "Dept:" labels
- legacy: a tabular export with an employee id column, a date column and
  one or more time/punch columns
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from io import BytesIO
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from openpyxl import load_workbook

from domain.entities import (
    DayPunch, ParsedPerDayRow, ParsedWorkbook, ParseWarning, ParserType,
    MAX_WARNING_SAMPLE_COUNT,
)
from domain.errors import ExcelFormatError, WorkbookParseError
from domain.identity_resolver import normalize_token
from domain.time_utils import cell_to_hhmm, scan_times
from infrastructure.excel_writer import ExcelWriter
from infrastructure.filename_parser import FilenameParser
from infrastructure.logger import get_logger

logger = get_logger("ExcelParser")


# Warning types produced while parsing
MALFORMED_TIME = "MALFORMED_TIME"
MISSING_EMPLOYEE_ID = "MISSING_EMPLOYEE_ID"
INVALID_DATE = "INVALID_DATE"


# ==============================================================================
# Helpers
# ==============================================================================
@dataclass
class _WarningCollector:
    """Counts row-level problems of one workbook, keeping a few samples."""
    counts: Dict[str, int] = field(default_factory=dict)
    samples: Dict[str, List[str]] = field(default_factory=dict)

    MESSAGES = {
        MALFORMED_TIME: "Cells with unreadable times were skipped.",
        MISSING_EMPLOYEE_ID: "Rows without an employee identifier were dropped.",
        INVALID_DATE: "Rows with an unreadable or impossible date were skipped.",
    }

    def add(self, warning_type: str, sample: str) -> None:
        self.counts[warning_type] = self.counts.get(warning_type, 0) + 1
        bucket = self.samples.setdefault(warning_type, [])
        if len(bucket) < MAX_WARNING_SAMPLE_COUNT:
            bucket.append(sample)

    def to_warnings(self, file_name: str) -> List[ParseWarning]:
        return [
            ParseWarning(
                type=warning_type,
                message=f"{file_name}: {self.MESSAGES[warning_type]}",
                count=count,
                samples=list(self.samples[warning_type]),
            )
            for warning_type, count in self.counts.items()
        ]


@dataclass
class _LegacyColumns:
    """Column positions detected in a legacy header row (0-based)."""
    header_row: int
    id_col: int
    date_col: int
    time_cols: List[int]
    name_col: Optional[int] = None
    dept_col: Optional[int] = None
    date_has_time: bool = False


def _cell_text(value) -> str:
    """Cell value as trimmed text; integral floats lose their ".0"."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _as_day_number(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, float) and value.is_integer():
        number = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
    else:
        return None
    return number if 1 <= number <= 31 else None


# ==============================================================================
# ExcelParser Class
# ==============================================================================
class ExcelParser:
    """
    Parses biometric attendance exports.

    Handles:
    - Grid reports with compact multi-time cells ("06:3912:0012:1617:01")
    - Legacy column exports, one row per punch or per day
    - Month detection from sheet header text and the filename
    - Token normalization for identity matching
    """

    # Maximum rows to search for headers and month text
    MAX_HEADER_SEARCH_ROWS = 15
    MAX_HEADER_SEARCH_COLS = 10

    # Minimum consecutive day numbers that make a grid header row
    MIN_DAY_COLUMNS = 5

    GRID_LABEL_PATTERN = re.compile(
        r'^(user\s*id|id|name|dept|department)\s*[:：]\s*(.*)$', re.IGNORECASE
    )

    # Non-colon time-like text, e.g. "7.30" or "08;15"
    MALFORMED_TIME_PATTERN = re.compile(r'^\d{1,2}\s*[.;,h]\s*\d{2}$', re.IGNORECASE)

    DEPT_HEADER = re.compile(r'\b(dept|department|office|division|section)\b')
    NAME_HEADER = re.compile(r'\bname\b')
    DATE_HEADER = re.compile(r'\b(date|datetime|day)\b')
    TIME_HEADER = re.compile(r'\b(time|punch|clock|check|in|out|log)\b')
    ID_HEADER = re.compile(r'\b(id|no|number|badge|enroll\w*|code)\b')

    DATE_FORMATS = ['%Y-%m-%d', '%Y/%m/%d', '%m/%d/%Y', '%m-%d-%Y', '%d.%m.%Y']
    DATETIME_FORMATS = [
        '%Y-%m-%d %H:%M:%S', '%Y-%m-%d %H:%M', '%Y/%m/%d %H:%M:%S',
        '%Y/%m/%d %H:%M', '%m/%d/%Y %H:%M:%S', '%m/%d/%Y %H:%M',
    ]

    def __init__(self, token_pad_length: int = 0, max_header_search_rows: int = MAX_HEADER_SEARCH_ROWS):
        self.token_pad_length = token_pad_length
        self.max_header_search_rows = max_header_search_rows

    def parse_file(self, file_path: Path) -> ParsedWorkbook:
        """
        Parse an Excel file from disk.

        Raises:
            WorkbookParseError: If the file cannot be read
            ExcelFormatError: If no known layout is found
        """
        file_path = Path(file_path)
        try:
            data = file_path.read_bytes()
        except OSError as e:
            raise WorkbookParseError(file_path.name, f"Unable to read '{file_path.name}': {e}") from e
        return self.parse_bytes(data, file_path.name)

    def parse_bytes(self, data: bytes, file_name: str) -> ParsedWorkbook:
        """
        Parse an in-memory workbook.

        Args:
            data: Raw .xlsx bytes
            file_name: Original file name (used for month hints and provenance)

        Returns:
            ParsedWorkbook with per-day rows, warnings and a normalized export

        Raises:
            WorkbookParseError: If the bytes are not a readable workbook
            ExcelFormatError: If no worksheet matches a known layout
        """
        logger.info(f"Parsing workbook: {file_name}")
        try:
            wb = load_workbook(BytesIO(data), data_only=True)
        except Exception as e:
            raise WorkbookParseError(file_name, f"'{file_name}' is not a readable .xlsx workbook: {e}") from e

        try:
            sheets = [(ws.title, [tuple(row) for row in ws.iter_rows(values_only=True)]) for ws in wb.worksheets]
        finally:
            wb.close()

        filename_hint = FilenameParser.extract_month_hint(Path(file_name).stem)

        grid_sheets = []
        legacy_sheets = []
        for title, rows in sheets:
            if self._find_grid_headers(rows):
                grid_sheets.append((title, rows))
            else:
                columns = self._detect_legacy_columns(rows)
                if columns is not None:
                    legacy_sheets.append((title, rows, columns))

        parser_types = []
        if grid_sheets:
            parser_types.append(ParserType.GRID_REPORT)
        if legacy_sheets:
            parser_types.append(ParserType.LEGACY)
        if not parser_types:
            raise ExcelFormatError(
                file_name,
                f"'{file_name}': no attendance layout found in the first "
                f"{self.max_header_search_rows} rows of any worksheet."
            )

        collector = _WarningCollector()
        month_hints: List[str] = []
        if filename_hint:
            month_hints.append(filename_hint)

        day_rows: Dict[Tuple[str, str], ParsedPerDayRow] = {}
        if grid_sheets:
            parser_type = ParserType.GRID_REPORT
            for title, rows in grid_sheets:
                sheet_hints = self._scan_month_hints(rows)
                for hint in sheet_hints:
                    if hint not in month_hints:
                        month_hints.append(hint)
                month_hint = sheet_hints[0] if sheet_hints else filename_hint
                self._parse_grid_sheet(title, rows, file_name, month_hint, day_rows, collector)
        else:
            parser_type = ParserType.LEGACY
            for title, rows, columns in legacy_sheets:
                for hint in self._scan_month_hints(rows):
                    if hint not in month_hints:
                        month_hints.append(hint)
                self._parse_legacy_sheet(title, rows, columns, file_name, day_rows, collector)

        per_day = sorted(day_rows.values(), key=lambda r: (r.date_key, r.employee_token))
        for row in per_day:
            row.normalize()

        warnings = collector.to_warnings(file_name)
        for warning in warnings:
            logger.warning(f"{warning.message} ({warning.count} occurrence(s))")

        result = ParsedWorkbook(
            file_name=file_name,
            parser_type=parser_type,
            parser_types=parser_types,
            per_day=per_day,
            warnings=warnings,
            month_hints=month_hints,
            normalized_xlsx=ExcelWriter().build_normalized_workbook(per_day),
        )
        logger.info(
            f"Parsed {file_name}: layout={parser_type.value}, "
            f"{result.employee_count} employee(s), {result.total_punches} punch(es)"
        )
        return result

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------
    def _token(self, raw_id: str) -> str:
        return normalize_token(raw_id, self.token_pad_length)

    def _scan_month_hints(self, rows: Sequence[tuple]) -> List[str]:
        """Distinct "YYYY-MM" strings found in the header area of a sheet."""
        hints: List[str] = []
        for row in rows[:self.max_header_search_rows]:
            for value in row[:self.MAX_HEADER_SEARCH_COLS]:
                if not isinstance(value, str):
                    continue
                hint = FilenameParser.extract_month_hint(value)
                if hint and hint not in hints:
                    hints.append(hint)
        return hints

    def _cell_times(self, value, collector: _WarningCollector, sample: str) -> List[str]:
        """Times held by one cell; unreadable time text is reported."""
        if value is None:
            return []
        hhmm = cell_to_hhmm(value)
        if hhmm:
            return [hhmm]
        if isinstance(value, bool) or isinstance(value, int):
            return []
        if isinstance(value, float):
            if not value.is_integer():
                collector.add(MALFORMED_TIME, f"{sample}: {value}")
            return []

        text = str(value).strip()
        if not text:
            return []
        times, rejected = scan_times(text)
        if rejected or (not times and self.MALFORMED_TIME_PATTERN.match(text)):
            collector.add(MALFORMED_TIME, f"{sample}: {text}")
        return times

    @staticmethod
    def _add_punches(
        day_rows: Dict[Tuple[str, str], ParsedPerDayRow],
        template: ParsedPerDayRow,
        times: List[str],
    ) -> None:
        key = (template.employee_token, template.date_key)
        row = day_rows.get(key)
        if row is None:
            row = template
            day_rows[key] = row
        else:
            if template.employee_name and not row.employee_name:
                row.employee_name = template.employee_name
            if template.employee_dept and not row.employee_dept:
                row.employee_dept = template.employee_dept
        if times != sorted(times):
            row.punches_out_of_order = True
        known = {punch.time for punch in row.punches}
        for hhmm in times:
            if hhmm not in known:
                row.punches.append(DayPunch.from_hhmm(hhmm))
                known.add(hhmm)

    # ------------------------------------------------------------------
    # Grid report layout
    # ------------------------------------------------------------------
    def _find_day_columns(self, row: tuple) -> List[Tuple[int, int]]:
        """Longest ascending run of consecutive day numbers in a row."""
        best: List[Tuple[int, int]] = []
        current: List[Tuple[int, int]] = []
        for col, value in enumerate(row):
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            day = _as_day_number(value)
            if day is not None and current and day == current[-1][1] + 1:
                current.append((col, day))
                continue
            if len(current) > len(best):
                best = current
            current = [(col, day)] if day is not None else []
        if len(current) > len(best):
            best = current
        return best if len(best) >= self.MIN_DAY_COLUMNS else []

    def _find_grid_headers(self, rows: Sequence[tuple]) -> Dict[int, List[Tuple[int, int]]]:
        headers = {}
        for idx, row in enumerate(rows):
            columns = self._find_day_columns(row)
            if columns:
                headers[idx] = columns
        if not headers:
            return {}
        # A grid needs at least one employee label somewhere in the sheet
        if not any(self._grid_labels(row) for row in rows):
            return {}
        return headers

    def _grid_labels(self, row: tuple) -> Dict[str, str]:
        """
        Extract "ID:", "Name:" and "Dept:" labels from a row.

        The value is either inline ("ID: 2050025") or in the next non-empty cell.
        """
        labels: Dict[str, str] = {}
        cells = list(row)
        for col, value in enumerate(cells):
            if not isinstance(value, str):
                continue
            match = self.GRID_LABEL_PATTERN.match(value.strip())
            if not match:
                continue
            label = match.group(1).lower().replace(" ", "")
            label = {"userid": "id", "department": "dept"}.get(label, label)
            text = match.group(2).strip()
            if not text:
                for following in cells[col + 1:]:
                    candidate = _cell_text(following)
                    if not candidate:
                        continue
                    if not self.GRID_LABEL_PATTERN.match(candidate):
                        text = candidate
                    break
            labels.setdefault(label, text)
        return labels

    def _parse_grid_sheet(
        self,
        sheet_name: str,
        rows: Sequence[tuple],
        file_name: str,
        month_hint: Optional[str],
        day_rows: Dict[Tuple[str, str], ParsedPerDayRow],
        collector: _WarningCollector,
    ) -> None:
        headers = self._find_grid_headers(rows)
        header_indices = sorted(headers)

        blocks = []
        for idx, row in enumerate(rows):
            if idx in headers:
                continue
            labels = self._grid_labels(row)
            if "id" in labels or "name" in labels:
                blocks.append((idx, labels))

        year = month = None
        if month_hint:
            year, month = int(month_hint[:4]), int(month_hint[5:7])

        for position, (start, labels) in enumerate(blocks):
            end = blocks[position + 1][0] if position + 1 < len(blocks) else len(rows)
            raw_id = labels.get("id", "")
            if not raw_id:
                collector.add(MISSING_EMPLOYEE_ID, f"{sheet_name}!{start + 1}: {labels.get('name', '')}")
                continue

            day_columns = self._block_day_columns(start, end, header_indices, headers)
            if not day_columns:
                continue

            token = self._token(raw_id)
            name = labels.get("name") or raw_id
            dept = labels.get("dept") or None

            times_by_day: Dict[int, List[str]] = {day: [] for _, day in day_columns}
            for r in range(start, end):
                if r in headers:
                    continue
                row = rows[r]
                for col, day in day_columns:
                    if col >= len(row):
                        continue
                    sample = f"{sheet_name}!{r + 1}:{col + 1}"
                    times_by_day[day].extend(self._cell_times(row[col], collector, sample))

            for day, times in times_by_day.items():
                date_iso = None
                if month_hint:
                    try:
                        date_iso = date(year, month, day).isoformat()
                    except ValueError:
                        if times:
                            collector.add(INVALID_DATE, f"{sheet_name}: {raw_id} day {day} of {month_hint}")
                        continue
                template = ParsedPerDayRow(
                    employee_token=token,
                    employee_id=raw_id,
                    employee_name=name,
                    employee_dept=dept,
                    day=day,
                    date_iso=date_iso,
                    composed_from_day_only=date_iso is None,
                    source_files=[file_name],
                    parser_type=ParserType.GRID_REPORT,
                )
                self._add_punches(day_rows, template, times)

    @staticmethod
    def _block_day_columns(start, end, header_indices, headers) -> List[Tuple[int, int]]:
        """Header inside the block, else the nearest above, else the first below."""
        inside = [idx for idx in header_indices if start <= idx < end]
        if inside:
            return headers[inside[0]]
        above = [idx for idx in header_indices if idx < start]
        if above:
            return headers[above[-1]]
        below = [idx for idx in header_indices if idx >= end]
        return headers[below[0]] if below else []

    # ------------------------------------------------------------------
    # Legacy layout
    # ------------------------------------------------------------------
    def _classify_header(self, value) -> Tuple[str, ...]:
        text = _cell_text(value).lower()
        if not text:
            return ()
        text = re.sub(r'[_/\-]', ' ', text)
        if self.DEPT_HEADER.search(text):
            return ("dept",)
        if self.NAME_HEADER.search(text):
            return ("name",)
        roles = []
        if self.DATE_HEADER.search(text):
            roles.append("date")
        if self.TIME_HEADER.search(text):
            roles.append("time")
        if not roles and self.ID_HEADER.search(text):
            roles.append("id")
        return tuple(roles)

    def _detect_legacy_columns(self, rows: Sequence[tuple]) -> Optional[_LegacyColumns]:
        for idx, row in enumerate(rows[:self.max_header_search_rows]):
            id_col = date_col = name_col = dept_col = None
            time_cols: List[int] = []
            date_has_time = False
            for col, value in enumerate(row):
                roles = self._classify_header(value)
                if "id" in roles and id_col is None:
                    id_col = col
                elif "dept" in roles and dept_col is None:
                    dept_col = col
                elif "name" in roles and name_col is None:
                    name_col = col
                elif "date" in roles and date_col is None:
                    date_col = col
                    date_has_time = "time" in roles
                elif "time" in roles:
                    time_cols.append(col)
            if id_col is None or date_col is None:
                continue
            if not time_cols and not date_has_time:
                continue
            return _LegacyColumns(
                header_row=idx,
                id_col=id_col,
                date_col=date_col,
                time_cols=time_cols,
                name_col=name_col,
                dept_col=dept_col,
                date_has_time=date_has_time,
            )
        return None

    def _extract_date(self, value) -> Optional[Tuple[Optional[str], int, Optional[str]]]:
        """
        Extract (date_iso, day, time) from a date cell.

        A bare day-of-month number yields (None, day, None). A datetime with
        a non-midnight time also yields that time as a punch.
        """
        if value is None:
            return None
        if isinstance(value, datetime):
            hhmm = cell_to_hhmm(value)
            return value.date().isoformat(), value.day, None if hhmm == "00:00" else hhmm
        if isinstance(value, date):
            return value.isoformat(), value.day, None

        day = _as_day_number(value)
        if day is not None:
            return None, day, None

        text = _cell_text(value)
        for fmt in self.DATETIME_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
            except ValueError:
                continue
            hhmm = cell_to_hhmm(parsed)
            return parsed.date().isoformat(), parsed.day, None if hhmm == "00:00" else hhmm
        for fmt in self.DATE_FORMATS:
            try:
                parsed_date = datetime.strptime(text, fmt).date()
            except ValueError:
                continue
            return parsed_date.isoformat(), parsed_date.day, None
        return None

    def _parse_legacy_sheet(
        self,
        sheet_name: str,
        rows: Sequence[tuple],
        columns: _LegacyColumns,
        file_name: str,
        day_rows: Dict[Tuple[str, str], ParsedPerDayRow],
        collector: _WarningCollector,
    ) -> None:
        logger.debug(
            f"Sheet '{sheet_name}': header row={columns.header_row + 1}, "
            f"id col={columns.id_col + 1}, date col={columns.date_col + 1}, "
            f"time cols={[c + 1 for c in columns.time_cols]}"
        )

        def cell(row: tuple, col: Optional[int]):
            if col is None or col >= len(row):
                return None
            return row[col]

        for r in range(columns.header_row + 1, len(rows)):
            row = rows[r]
            if all(_cell_text(v) == "" for v in row):
                continue
            sample = f"{sheet_name}!{r + 1}"

            raw_id = _cell_text(cell(row, columns.id_col))
            if not raw_id:
                collector.add(MISSING_EMPLOYEE_ID, sample)
                continue

            extracted = self._extract_date(cell(row, columns.date_col))
            if extracted is None:
                collector.add(INVALID_DATE, f"{sample}: {_cell_text(cell(row, columns.date_col))}")
                continue
            date_iso, day, date_time = extracted

            times: List[str] = []
            if date_time and columns.date_has_time:
                times.append(date_time)
            for col in columns.time_cols:
                times.extend(self._cell_times(cell(row, col), collector, f"{sample}:{col + 1}"))

            name = _cell_text(cell(row, columns.name_col)) or raw_id
            dept = _cell_text(cell(row, columns.dept_col)) or None
            template = ParsedPerDayRow(
                employee_token=self._token(raw_id),
                employee_id=raw_id,
                employee_name=name,
                employee_dept=dept,
                day=day,
                date_iso=date_iso,
                composed_from_day_only=date_iso is None,
                source_files=[file_name],
                parser_type=ParserType.LEGACY,
            )
            self._add_punches(day_rows, template, times)
