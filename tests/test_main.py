"""
Tests for the command-line entry point.
"""

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from main import main


class TestMain:
    """Tests for main() exit codes."""

    def test_corrupt_schedules_file_exits_with_error(self, tmp_path):
        schedules = tmp_path / "schedules.json"
        schedules.write_text("{not json", encoding="utf-8")
        code = main([
            "--config", str(tmp_path / "config.json"),
            "--schedules", str(schedules),
            str(tmp_path / "april.xlsx"),
        ])
        assert code == 1

    def test_invalid_schedule_entry_exits_with_error(self, tmp_path):
        schedules = tmp_path / "schedules.json"
        schedules.write_text(json.dumps({"employees": {"E-1": {"schedules": [
            {"type": "FIXED", "start": "25:00", "end": "17:00"},
        ]}}}), encoding="utf-8")
        code = main([
            "--config", str(tmp_path / "config.json"),
            "--schedules", str(schedules),
            str(tmp_path / "april.xlsx"),
        ])
        assert code == 1
