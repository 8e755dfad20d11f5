"""
Time Utilities Module

Minute-of-day helpers and interval arithmetic used by the parser,
merge engine and evaluator.
"""

import re
from datetime import datetime, time
from typing import Iterable, List, Optional, Tuple

MINUTES_IN_DAY = 24 * 60

HHMM_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})(?::\d{2})?$')

# "07:30" inside free text; also splits compact runs like "06:3912:00"
TIME_TOKEN_PATTERN = re.compile(r'(\d{1,2}):(\d{2})')

Segment = Tuple[int, int]


def parse_hhmm(value: Optional[str]) -> Optional[int]:
    """Parse "HH:MM" (or "HH:MM:SS") to minutes of day, None if invalid."""
    if not value:
        return None
    match = HHMM_PATTERN.match(str(value).strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def format_hhmm(minutes: int) -> str:
    """Format minutes of day as zero-padded "HH:MM"; 1440 wraps to "00:00"."""
    normalized = minutes % MINUTES_IN_DAY
    return f"{normalized // 60:02d}:{normalized % 60:02d}"


def time_to_hhmm(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def cell_to_hhmm(value) -> Optional[str]:
    """Convert an openpyxl time/datetime cell value to "HH:MM"."""
    if isinstance(value, datetime):
        return time_to_hhmm(value.time())
    if isinstance(value, time):
        return time_to_hhmm(value)
    return None


def scan_times(text: str) -> Tuple[List[str], List[str]]:
    """
    Split a cell string into valid "HH:MM" times and rejected tokens.

    Handles separators ("07:58 12:00"), line breaks and compact runs
    ("06:3912:0012:1617:01"). Out-of-range tokens such as "25:61" are
    returned in the rejected list.
    """
    valid: List[str] = []
    rejected: List[str] = []
    if not text:
        return valid, rejected
    for match in TIME_TOKEN_PATTERN.finditer(str(text)):
        minutes = parse_hhmm(match.group(0))
        if minutes is None:
            rejected.append(match.group(0))
        else:
            valid.append(format_hhmm(minutes))
    return valid, rejected


def extract_times(text: str) -> List[str]:
    """Pull every valid HH:MM occurrence out of a cell string."""
    return scan_times(text)[0]


def normalize_segments(segments: Iterable[Segment]) -> List[Segment]:
    """
    Clamp, sort and merge overlapping or touching segments.

    A segment whose end is before its start wraps past midnight and is
    split into [start, 24:00) and [00:00, end). Zero-length segments are
    dropped.
    """
    expanded: List[Segment] = []
    for start, end in segments:
        if end == start:
            continue
        if end < start:
            expanded.append((start, MINUTES_IN_DAY))
            expanded.append((0, end))
        else:
            expanded.append((start, end))

    clamped = sorted(
        (max(0, min(MINUTES_IN_DAY, s)), max(0, min(MINUTES_IN_DAY, e)))
        for s, e in expanded
    )
    merged: List[Segment] = []
    for start, end in clamped:
        if end <= start:
            continue
        if merged and start <= merged[-1][1]:
            prev_start, prev_end = merged[-1]
            merged[-1] = (prev_start, max(prev_end, end))
        else:
            merged.append((start, end))
    return merged


def intersect_segments(a: List[Segment], b: List[Segment]) -> List[Segment]:
    """Intersection of two normalized segment lists."""
    result: List[Segment] = []
    i = j = 0
    while i < len(a) and j < len(b):
        start = max(a[i][0], b[j][0])
        end = min(a[i][1], b[j][1])
        if end > start:
            result.append((start, end))
        if a[i][1] < b[j][1]:
            i += 1
        else:
            j += 1
    return result


def total_minutes(segments: Iterable[Segment]) -> int:
    return sum(end - start for start, end in segments)
