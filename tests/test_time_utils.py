"""
Unit tests for minute-of-day helpers and segment arithmetic.
"""

import sys
from datetime import datetime, time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from domain.time_utils import (
    cell_to_hhmm, extract_times, format_hhmm, intersect_segments,
    normalize_segments, parse_hhmm, scan_times, total_minutes,
)


class TestParseAndFormat:
    """Tests for HH:MM conversion."""

    def test_parse_valid(self):
        assert parse_hhmm("07:30") == 450
        assert parse_hhmm("7:05") == 425
        assert parse_hhmm("23:59:10") == 1439

    def test_parse_invalid(self):
        assert parse_hhmm("24:00") is None
        assert parse_hhmm("12:60") is None
        assert parse_hhmm("noon") is None
        assert parse_hhmm("") is None
        assert parse_hhmm(None) is None

    def test_format_wraps_at_midnight(self):
        assert format_hhmm(0) == "00:00"
        assert format_hhmm(1439) == "23:59"
        assert format_hhmm(1440) == "00:00"

    def test_cell_values(self):
        assert cell_to_hhmm(time(8, 5)) == "08:05"
        assert cell_to_hhmm(datetime(2025, 4, 1, 17, 10)) == "17:10"
        assert cell_to_hhmm("08:00") is None


class TestScanTimes:
    """Tests for pulling times out of cell text."""

    def test_separated_times(self):
        assert extract_times("07:58 12:00\n13:01") == ["07:58", "12:00", "13:01"]

    def test_compact_run(self):
        assert extract_times("06:3912:0012:1617:01") == ["06:39", "12:00", "12:16", "17:01"]

    def test_out_of_range_token_is_rejected(self):
        valid, rejected = scan_times("25:61 08:00")
        assert valid == ["08:00"]
        assert rejected == ["25:61"]

    def test_empty_text(self):
        assert scan_times("") == ([], [])


class TestSegments:
    """Tests for segment normalization and intersection."""

    def test_merges_overlapping(self):
        assert normalize_segments([(600, 720), (480, 610), (800, 900)]) == [(480, 720), (800, 900)]

    def test_drops_zero_length(self):
        assert normalize_segments([(480, 480)]) == []

    def test_splits_wrapping_segment(self):
        assert normalize_segments([(1320, 360)]) == [(0, 360), (1320, 1440)]

    def test_intersection(self):
        presence = normalize_segments([(870, 1080)])
        windows = normalize_segments([(900, 1140)])
        assert intersect_segments(presence, windows) == [(900, 1080)]
        assert total_minutes(intersect_segments(presence, windows)) == 180
