"""
Filename Parser Module

Extracts month hints ("YYYY-MM") from export filenames and report header text.
"""

import re
from typing import Optional, Tuple


MONTH_NAMES = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}


class FilenameParser:
    """
    Parses month information out of biometric export names and header cells.

    Recognized forms:
    - MonRepyymmdd (e.g., MonRep251201 = December 2025)
    - 2024-03, 2024/3, 2024_03
    - 03-2024, 3/2024
    - March 2024, Mar. 2024
    """

    # Pattern: MonRep followed by 2-digit year, 2-digit month, 2-digit day
    PATTERN = re.compile(r'^MonRep(\d{2})(\d{2})(\d{2})')

    YEAR_MONTH = re.compile(r'(?<!\d)(20\d{2})[-/_.\s]+(0?[1-9]|1[0-2])(?!\d)')
    MONTH_YEAR = re.compile(r'(?<!\d)(0?[1-9]|1[0-2])[-/_.\s]+(20\d{2})(?!\d)')
    MONTH_NAME = re.compile(
        r'\b(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?[^0-9a-z]*(20\d{2})(?!\d)',
        re.IGNORECASE
    )

    @classmethod
    def parse_report_date(cls, filename: str) -> Tuple[int, int]:
        """
        Parse year and month from a filename or header text.

        Args:
            filename: The text to parse (e.g., "MonRep251201.xlsx", "logs_2025-04.xlsx")

        Returns:
            Tuple of (year, month) where year is full 4-digit year

        Raises:
            ValueError: If no month can be found
        """
        match = cls.PATTERN.match(filename)
        if match:
            year = 2000 + int(match.group(1))
            month = int(match.group(2))
            if not 1 <= month <= 12:
                raise ValueError(f"Invalid month: {month}")
            return year, month

        match = cls.YEAR_MONTH.search(filename)
        if match:
            return int(match.group(1)), int(match.group(2))

        match = cls.MONTH_YEAR.search(filename)
        if match:
            return int(match.group(2)), int(match.group(1))

        match = cls.MONTH_NAME.search(filename)
        if match:
            return int(match.group(2)), MONTH_NAMES[match.group(1).lower()]

        raise ValueError(f"No month information found in: {filename}")

    @classmethod
    def try_parse_report_date(cls, filename: str) -> Optional[Tuple[int, int]]:
        """
        Try to parse year and month, returning None on failure.
        """
        try:
            return cls.parse_report_date(filename)
        except ValueError:
            return None

    @classmethod
    def extract_month_hint(cls, text: str) -> Optional[str]:
        """Return the detected month as "YYYY-MM", or None."""
        if not text:
            return None
        parsed = cls.try_parse_report_date(str(text).strip())
        if parsed is None:
            return None
        year, month = parsed
        return f"{year:04d}-{month:02d}"
