"""
Error Types Module

Exceptions raised across the attendance pipeline. Recoverable, row-level
problems are reported as ParseWarning entries instead of exceptions.
"""

from typing import List, Optional


class AttendanceError(Exception):
    """Base exception for attendance-related errors."""
    pass


class WorkbookParseError(AttendanceError):
    """
    Raised when an uploaded workbook cannot be read.

    The batch keeps going: the failure is recorded against the single file.
    """
    def __init__(self, file_name: str, message: Optional[str] = None):
        self.file_name = file_name
        self.message = message or f"Unable to read workbook '{file_name}'."
        super().__init__(self.message)


class ExcelFormatError(WorkbookParseError):
    """Raised when no known attendance layout is found in a workbook."""
    pass


class IdentityResolutionError(AttendanceError):
    """Raised when the directory lookup service fails or times out."""
    def __init__(self, tokens: List[str], message: Optional[str] = None):
        self.tokens = list(tokens)
        self.message = message or f"Identity lookup failed for {len(self.tokens)} token(s)."
        super().__init__(self.message)


class MixedPeriodError(AttendanceError):
    """
    Raised when a merged batch covers several months and the operator
    has not confirmed evaluating them together.
    """
    def __init__(self, months: List[str]):
        self.months = list(months)
        self.message = (
            f"Batch covers {len(self.months)} months ({', '.join(self.months)}). "
            f"Confirm the mixed period or choose a manual month before evaluating."
        )
        super().__init__(self.message)


class InvalidPeriodError(AttendanceError):
    """Raised when a manual month/year selection is out of range."""
    pass


class ScheduleConfigError(AttendanceError):
    """Raised when the schedules file cannot be read or holds an invalid entry."""
    def __init__(self, path, reason: str):
        self.path = path
        self.message = f"Invalid schedules file '{path}': {reason}"
        super().__init__(self.message)
