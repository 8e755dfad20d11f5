"""
Excel Writer Module

Writes flat attendance tables (summary, per-day, normalized punches) to .xlsx.
Every row shape comes from the entities' to_record() methods.
"""

from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Sequence, Union

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from domain.entities import OfficeSummary, ParsedPerDayRow, PerDayRow, PerEmployeeRow


Output = Union[str, Path, BinaryIO]


class ExcelWriter:
    """
    Generates tabular Excel exports.

    Output sheets:
    - Summary: selected per-employee columns in the requested order
    - Offices: optional per-office roll-up
    - Per Day: one row per employee-day
    - Metadata: generation time, office filter and column list
    """

    COLORS = {
        'header': PatternFill(start_color='4472C4', end_color='4472C4', fill_type='solid'),
        'red': PatternFill(start_color='FF6B6B', end_color='FF6B6B', fill_type='solid'),
        'gray': PatternFill(start_color='D3D3D3', end_color='D3D3D3', fill_type='solid'),
    }

    BORDER = Border(
        left=Side(style='thin'),
        right=Side(style='thin'),
        top=Side(style='thin'),
        bottom=Side(style='thin')
    )

    SUMMARY_LABELS = {
        "employeeId": "Employee ID",
        "employeeName": "Name",
        "employeeToken": "Biometric ID",
        "employeeNo": "Employee No.",
        "officeId": "Office ID",
        "officeName": "Office",
        "scheduleTypes": "Schedule",
        "daysWithLogs": "Days",
        "noPunchDays": "No Punch",
        "excusedDays": "Excused",
        "lateDays": "Late Days",
        "undertimeDays": "Undertime Days",
        "totalLateMinutes": "Late (min)",
        "totalUndertimeMinutes": "Undertime (min)",
        "totalRequiredMinutes": "Required (min)",
        "lateRate": "Late %",
        "undertimeRate": "Undertime %",
        "identityStatus": "Identity",
        "resolvedEmployeeId": "Resolved ID",
    }

    NORMALIZED_HEADERS = [
        "Biometric ID", "Employee ID", "Name", "Dept", "Date", "Day",
        "Earliest", "Latest", "Times", "Source Files",
    ]

    OFFICE_HEADERS = [
        "Office", "Employees", "Days", "Late Days", "Undertime Days",
        "Late (min)", "Undertime (min)", "Required (min)", "Late %", "Undertime %",
    ]

    def __init__(self):
        self.wb: Optional[Workbook] = None

    def _write_table(self, ws, headers: Sequence[str], rows: Sequence[Sequence]) -> None:
        """Write a header row and data rows with borders and sized columns."""
        for col, header in enumerate(headers, start=1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.font = Font(bold=True, color='FFFFFF')
            cell.fill = self.COLORS['header']
            cell.alignment = Alignment(horizontal='center', vertical='center')
            cell.border = self.BORDER

        widths = [len(str(h)) for h in headers]
        for row_idx, values in enumerate(rows, start=2):
            for col, value in enumerate(values, start=1):
                if isinstance(value, float):
                    value = round(value, 2)
                cell = ws.cell(row=row_idx, column=col, value=value)
                cell.border = self.BORDER
                widths[col - 1] = max(widths[col - 1], len(str(value)) if value is not None else 0)

        for col, width in enumerate(widths, start=1):
            ws.column_dimensions[get_column_letter(col)].width = min(max(width + 2, 8), 50)
        ws.freeze_panes = 'A2'

    def _save(self, output: Output) -> Output:
        if isinstance(output, (str, Path)):
            output = Path(output)
        self.wb.save(output)
        return output

    def _write_metadata(self, ws, items: Dict[str, str]) -> None:
        ws.column_dimensions['A'].width = 18
        ws.column_dimensions['B'].width = 60
        for row_idx, (key, value) in enumerate(items.items(), start=1):
            ws.cell(row=row_idx, column=1, value=key).font = Font(bold=True)
            ws.cell(row=row_idx, column=2, value=value)

    def write_summary(
        self,
        per_employee: Sequence[PerEmployeeRow],
        columns: Sequence[str],
        office_filter: Optional[Sequence[str]],
        output: Output,
        offices: Optional[Sequence[OfficeSummary]] = None,
        period: Optional[str] = None,
    ) -> Output:
        """
        Write the per-employee summary.

        Args:
            per_employee: Rows in display order
            columns: to_record() keys to export, in order
            office_filter: Office names shown (None/empty = all offices)
            output: File path or binary stream
            offices: Optional office roll-up for an extra sheet
            period: Optional period label for the metadata sheet

        Raises:
            ValueError: If a column key is unknown
        """
        unknown = [c for c in columns if c not in self.SUMMARY_LABELS]
        if unknown:
            raise ValueError(f"Unknown summary column(s): {', '.join(unknown)}")

        self.wb = Workbook()
        ws = self.wb.active
        ws.title = "Summary"
        records = [row.to_record() for row in per_employee]
        self._write_table(
            ws,
            [self.SUMMARY_LABELS[c] for c in columns],
            [[record[c] for c in columns] for record in records],
        )

        if offices:
            office_ws = self.wb.create_sheet("Offices")
            self._write_table(office_ws, self.OFFICE_HEADERS, [
                [o.office_name, o.employees, o.days_with_logs, o.late_days, o.undertime_days,
                 o.total_late_minutes, o.total_undertime_minutes, o.total_required_minutes,
                 o.late_rate, o.undertime_rate]
                for o in offices
            ])

        self._write_metadata(self.wb.create_sheet("Metadata"), {
            "Generated": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            "Period": period or "",
            "Office filter": ", ".join(office_filter) if office_filter else "All offices",
            "Employees": str(len(records)),
            "Columns": ", ".join(columns),
        })
        return self._save(output)

    def write_per_day(
        self,
        per_day: Sequence[PerDayRow],
        output: Output,
        columns: Optional[Sequence[str]] = None,
    ) -> Output:
        """Write evaluated per-day rows; columns default to every record key."""
        records = [row.to_record() for row in per_day]
        if columns is None:
            columns = list(records[0].keys()) if records else []

        self.wb = Workbook()
        ws = self.wb.active
        ws.title = "Per Day"
        self._write_table(ws, list(columns), [[record.get(c) for c in columns] for record in records])

        for row_idx, row in enumerate(per_day, start=2):
            if row.is_late or row.is_undertime:
                for col in range(1, len(columns) + 1):
                    ws.cell(row=row_idx, column=col).fill = self.COLORS['red']
            elif not row.has_punches:
                for col in range(1, len(columns) + 1):
                    ws.cell(row=row_idx, column=col).fill = self.COLORS['gray']
        return self._save(output)

    def build_normalized_workbook(self, rows: Sequence[ParsedPerDayRow]) -> bytes:
        """Canonical one-sheet re-export of parsed punches, as bytes."""
        self.wb = Workbook()
        ws = self.wb.active
        ws.title = "Normalized"
        data: List[List] = [
            [
                row.employee_token,
                row.employee_id or "",
                row.employee_name,
                row.employee_dept or "",
                row.date_iso or "",
                row.day,
                row.earliest or "",
                row.latest or "",
                " ".join(row.all_times),
                ", ".join(row.source_files),
            ]
            for row in rows
        ]
        self._write_table(ws, self.NORMALIZED_HEADERS, data)
        buffer = BytesIO()
        self.wb.save(buffer)
        return buffer.getvalue()
