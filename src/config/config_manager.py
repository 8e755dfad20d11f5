"""
Configuration Manager Module

Handles loading, saving, and managing application configuration.
Provides the mapping between the pipeline settings and JSON persistence.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from domain.entities import FixedShift
from domain.time_utils import parse_hhmm
from infrastructure.logger import get_logger

logger = get_logger("ConfigManager")


DEFAULT_SUMMARY_COLUMNS = [
    "employeeName", "employeeId", "officeName", "scheduleTypes",
    "daysWithLogs", "noPunchDays", "lateDays", "undertimeDays",
    "lateRate", "undertimeRate", "totalLateMinutes", "totalUndertimeMinutes",
]


@dataclass
class Paths:
    """File paths configuration."""
    employees_csv: str = ""
    identity_mappings: str = ""  # JSON store of manual token bindings
    schedules_json: str = ""
    output_dir: str = ""         # Default empty = current directory


@dataclass
class DefaultSchedule:
    """Fixed shift used when no schedule is assigned."""
    start: str = "08:00"
    end: str = "17:00"
    grace_minutes: int = 0
    break_minutes: int = 0

    def to_fixed_shift(self) -> FixedShift:
        start = parse_hhmm(self.start)
        end = parse_hhmm(self.end)
        if start is None or end is None:
            raise ValueError(f"Invalid default schedule: {self.start}-{self.end}")
        return FixedShift(
            start=start,
            end=end,
            grace_minutes=self.grace_minutes,
            break_minutes=self.break_minutes,
        )


@dataclass
class IdentitySettings:
    """Directory lookup settings."""
    chunk_size: int = 2000
    timeout_seconds: float = 30.0
    max_workers: int = 4
    token_pad_length: int = 0  # 0 = no zero padding of numeric tokens


@dataclass
class ParserSettings:
    """Workbook parsing settings."""
    concurrency: int = 4
    max_header_search_rows: int = 15


@dataclass
class SummarySettings:
    """Summary and export settings."""
    percent_mode: str = "days"  # "days" or "minutes"
    sort_by: str = "employeeName"
    sort_descending: bool = False
    secondary_sort: str = ""
    secondary_descending: bool = False
    columns: List[str] = field(default_factory=lambda: list(DEFAULT_SUMMARY_COLUMNS))
    filename_pattern: str = "Attendance_Summary_{period}.xlsx"


@dataclass
class AppConfig:
    """Main application configuration container."""
    paths: Paths = field(default_factory=Paths)
    default_schedule: DefaultSchedule = field(default_factory=DefaultSchedule)
    identity: IdentitySettings = field(default_factory=IdentitySettings)
    parser: ParserSettings = field(default_factory=ParserSettings)
    summary: SummarySettings = field(default_factory=SummarySettings)


class ConfigManager:
    """
    Manages application configuration with JSON persistence.

    Responsibilities:
    - Load configuration from JSON file
    - Save configuration to JSON file
    - Provide default configuration (missing keys fall back to defaults)
    - Convert between dataclass and dict representations
    """

    DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.json"

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else self.DEFAULT_CONFIG_PATH
        self._config: AppConfig = AppConfig()

    @property
    def config(self) -> AppConfig:
        """Get current configuration."""
        return self._config

    def load(self) -> AppConfig:
        """Load configuration from JSON file."""
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                self._config = self._dict_to_config(data)
            except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
                logger.warning(f"Failed to load config, using defaults. Error: {e}")
                self._config = AppConfig()
        else:
            self._config = AppConfig()
        return self._config

    def save(self) -> None:
        """Save current configuration to JSON file."""
        data = self._config_to_dict(self._config)
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

    def update(self, **kwargs) -> None:
        """Update specific configuration sections."""
        for key, value in kwargs.items():
            if hasattr(self._config, key):
                setattr(self._config, key, value)
        self.save()

    def _config_to_dict(self, config: AppConfig) -> dict:
        """Convert AppConfig dataclass to dictionary."""
        return {
            "paths": {
                "employees_csv": config.paths.employees_csv,
                "identity_mappings": config.paths.identity_mappings,
                "schedules_json": config.paths.schedules_json,
                "output_dir": config.paths.output_dir
            },
            "default_schedule": {
                "start": config.default_schedule.start,
                "end": config.default_schedule.end,
                "grace_minutes": config.default_schedule.grace_minutes,
                "break_minutes": config.default_schedule.break_minutes
            },
            "identity": {
                "chunk_size": config.identity.chunk_size,
                "timeout_seconds": config.identity.timeout_seconds,
                "max_workers": config.identity.max_workers,
                "token_pad_length": config.identity.token_pad_length
            },
            "parser": {
                "concurrency": config.parser.concurrency,
                "max_header_search_rows": config.parser.max_header_search_rows
            },
            "summary": {
                "percent_mode": config.summary.percent_mode,
                "sort_by": config.summary.sort_by,
                "sort_descending": config.summary.sort_descending,
                "secondary_sort": config.summary.secondary_sort,
                "secondary_descending": config.summary.secondary_descending,
                "columns": list(config.summary.columns),
                "filename_pattern": config.summary.filename_pattern
            }
        }

    def _dict_to_config(self, data: dict) -> AppConfig:
        """Convert dictionary to AppConfig dataclass."""
        paths_data = data.get("paths", {})
        schedule_data = data.get("default_schedule", {})
        identity_data = data.get("identity", {})
        parser_data = data.get("parser", {})
        summary_data = data.get("summary", {})

        paths = Paths(
            employees_csv=paths_data.get("employees_csv", ""),
            identity_mappings=paths_data.get("identity_mappings", ""),
            schedules_json=paths_data.get("schedules_json", ""),
            output_dir=paths_data.get("output_dir", "")
        )

        default_schedule = DefaultSchedule(
            start=schedule_data.get("start", "08:00"),
            end=schedule_data.get("end", "17:00"),
            grace_minutes=int(schedule_data.get("grace_minutes", 0)),
            break_minutes=int(schedule_data.get("break_minutes", 0))
        )

        identity = IdentitySettings(
            chunk_size=int(identity_data.get("chunk_size", 2000)),
            timeout_seconds=float(identity_data.get("timeout_seconds", 30.0)),
            max_workers=int(identity_data.get("max_workers", 4)),
            token_pad_length=int(identity_data.get("token_pad_length", 0))
        )

        parser = ParserSettings(
            concurrency=int(parser_data.get("concurrency", 4)),
            max_header_search_rows=int(parser_data.get("max_header_search_rows", 15))
        )

        summary = SummarySettings(
            percent_mode=summary_data.get("percent_mode", "days"),
            sort_by=summary_data.get("sort_by", "employeeName"),
            sort_descending=summary_data.get("sort_descending", False),
            secondary_sort=summary_data.get("secondary_sort", ""),
            secondary_descending=summary_data.get("secondary_descending", False),
            columns=list(summary_data.get("columns", DEFAULT_SUMMARY_COLUMNS)),
            filename_pattern=summary_data.get("filename_pattern", "Attendance_Summary_{period}.xlsx")
        )

        return AppConfig(
            paths=paths,
            default_schedule=default_schedule,
            identity=identity,
            parser=parser,
            summary=summary
        )
