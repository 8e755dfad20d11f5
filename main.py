"""
Attendance Core

Command-line entry point: parses biometric exports, resolves identities,
evaluates every employee-day against its schedule and writes the summary.
"""

import argparse
import logging
import sys
from pathlib import Path

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent / "src"))

from application.batch_service import BatchSession
from config.config_manager import ConfigManager
from domain.entities import WarningLevel
from domain.errors import AttendanceError, MixedPeriodError, ScheduleConfigError
from domain.period_filter import ManualPeriod
from domain.rate_calculator import PercentMode
from domain.sorting import SORT_FIELDS, sort_summary
from infrastructure.directory import CsvDirectory, MappingStore
from infrastructure.excel_writer import ExcelWriter
from infrastructure.logger import get_logger, set_console_level
from infrastructure.schedule_store import JsonScheduleStore

logger = get_logger("Main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Summarize biometric attendance exports.")
    parser.add_argument("files", nargs="+", help="Attendance .xlsx exports.")
    parser.add_argument("--config", help="Path to config.json.")
    parser.add_argument("--employees", help="Employee directory CSV (overrides config).")
    parser.add_argument("--mappings", help="Manual identity mapping JSON (overrides config).")
    parser.add_argument("--schedules", help="Schedule JSON (overrides config).")
    parser.add_argument("--month", help="Manual period as YYYY-MM.")
    parser.add_argument(
        "--confirm-mixed",
        action="store_true",
        help="Evaluate a batch spanning several months without choosing one.",
    )
    parser.add_argument("--percent-mode", choices=[m.value for m in PercentMode])
    parser.add_argument("--sort", choices=sorted(SORT_FIELDS), help="Primary sort field.")
    parser.add_argument("--sort-desc", action="store_true", help="Sort the primary field descending.")
    parser.add_argument("--secondary-sort", choices=sorted(SORT_FIELDS))
    parser.add_argument("--export", help="Summary .xlsx output path.")
    parser.add_argument("--per-day-export", help="Optional per-day .xlsx output path.")
    parser.add_argument("--office", action="append", help="Only export this office (repeatable).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging.")
    return parser


def _period_label(session: BatchSession) -> str:
    """Period label for file names: a month, a month range, or empty."""
    if session.manual_period:
        return session.manual_period.key
    months = session.merge_result.months if session.merge_result else []
    if not months:
        return ""
    if len(months) == 1:
        return months[0]
    return f"{months[0]}_{months[-1]}"


def main(argv=None) -> int:
    """Application entry point."""
    args = build_parser().parse_args(argv)
    if args.verbose:
        set_console_level(logging.DEBUG)

    manager = ConfigManager(Path(args.config) if args.config else None)
    config = manager.load()
    if args.employees:
        config.paths.employees_csv = args.employees
    if args.mappings:
        config.paths.identity_mappings = args.mappings
    if args.schedules:
        config.paths.schedules_json = args.schedules
    if args.percent_mode:
        config.summary.percent_mode = args.percent_mode
    if args.sort:
        config.summary.sort_by = args.sort
        config.summary.sort_descending = args.sort_desc
    if args.secondary_sort:
        config.summary.secondary_sort = args.secondary_sort

    mapping_store = MappingStore(Path(config.paths.identity_mappings) if config.paths.identity_mappings else None)
    mapping_store.load()
    if config.paths.employees_csv:
        directory = CsvDirectory.from_csv(
            Path(config.paths.employees_csv), mapping_store, config.identity.token_pad_length
        )
    else:
        directory = CsvDirectory(mapping_store=mapping_store, token_pad_length=config.identity.token_pad_length)

    default_shift = config.default_schedule.to_fixed_shift()
    try:
        schedules = JsonScheduleStore(
            default_shift, Path(config.paths.schedules_json) if config.paths.schedules_json else None
        ).load()
    except ScheduleConfigError as e:
        logger.error(e.message)
        return 1

    with BatchSession(config, directory, schedules) as session:
        try:
            session.add_files(args.files)
            if args.month:
                period = ManualPeriod.parse(args.month)
                session.set_manual_period(period.month, period.year)
            if args.confirm_mixed:
                session.confirm_mixed_months()
            result = session.evaluate()
        except MixedPeriodError as e:
            logger.error(f"{e.message} Use --month YYYY-MM or --confirm-mixed.")
            return 2
        except AttendanceError as e:
            logger.error(str(e))
            return 1

        for warning in result.warnings:
            level = logging.INFO if warning.level == WarningLevel.INFO else logging.WARNING
            samples = f" e.g. {', '.join(warning.samples[:3])}" if warning.samples else ""
            logger.log(level, f"[{warning.type}] {warning.message} ({warning.count or 1}){samples}")

        rows = sort_summary(
            result.per_employee,
            config.summary.sort_by,
            config.summary.sort_descending,
            config.summary.secondary_sort or None,
            config.summary.secondary_descending,
        )
        if args.office:
            rows = [row for row in rows if row.office_name in args.office]

        for row in rows:
            rate = f"{row.late_rate:.1f}%" if row.late_rate is not None else "-"
            print(
                f"{row.employee_name:<30} {row.office_name:<20} "
                f"days={row.days_with_logs:<3} late={row.late_days:<3} "
                f"undertime={row.undertime_days:<3} late%={rate}"
            )

        period_label = _period_label(session)
        if args.export or config.paths.output_dir:
            output = Path(args.export) if args.export else Path(config.paths.output_dir) / (
                config.summary.filename_pattern.format(period=period_label or "batch")
            )
            writer = ExcelWriter()
            writer.write_summary(rows, config.summary.columns, args.office, output, result.offices, period_label)
            logger.info(f"Summary written to {output}")
        if args.per_day_export:
            ExcelWriter().write_per_day(result.per_day, Path(args.per_day_export))
            logger.info(f"Per-day rows written to {args.per_day_export}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
