"""
File Queue Module

Parses uploaded workbooks on a bounded worker pool. A failing file is
recorded against its own FileResult and never stops the batch.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple, Union

from domain.entities import ParsedWorkbook, ParseWarning
from domain.errors import WorkbookParseError
from infrastructure.excel_parser import ExcelParser
from infrastructure.logger import get_logger

logger = get_logger("FileQueue")

PARSE_FAILED = "PARSE_FAILED"


class FileStatus(str, Enum):
    QUEUED = "queued"
    PARSING = "parsing"
    PARSED = "parsed"
    FAILED = "failed"


@dataclass
class FileResult:
    """Parse outcome of one uploaded file."""
    file_name: str
    status: FileStatus = FileStatus.QUEUED
    workbook: Optional[ParsedWorkbook] = None
    error: Optional[str] = None

    def to_warning(self) -> Optional[ParseWarning]:
        if self.status != FileStatus.FAILED:
            return None
        return ParseWarning(
            type=PARSE_FAILED,
            message=f"{self.file_name}: {self.error}",
            count=1,
            samples=[self.file_name],
        )


# A path on disk or an in-memory upload (file name, bytes)
Upload = Union[str, Path, Tuple[str, bytes]]


class FileQueue:
    """
    Bounded worker pool for workbook parsing.

    Args:
        parser: Parser shared by all workers (stateless between calls)
        concurrency: Maximum files parsed at once
        on_status: Optional callback(file_result) on every status change
    """

    def __init__(
        self,
        parser: ExcelParser,
        concurrency: int = 4,
        on_status: Optional[Callable[[FileResult], None]] = None,
    ):
        self.parser = parser
        self.concurrency = max(1, concurrency)
        self.on_status = on_status

    def _set_status(self, result: FileResult, status: FileStatus) -> None:
        result.status = status
        if self.on_status:
            self.on_status(result)

    def _parse_one(self, upload: Upload, result: FileResult) -> FileResult:
        self._set_status(result, FileStatus.PARSING)
        try:
            if isinstance(upload, tuple):
                name, data = upload
                result.workbook = self.parser.parse_bytes(data, name)
            else:
                result.workbook = self.parser.parse_file(Path(upload))
        except WorkbookParseError as e:
            result.error = e.message
            logger.warning(f"Failed to parse {result.file_name}: {e.message}")
            self._set_status(result, FileStatus.FAILED)
            return result
        self._set_status(result, FileStatus.PARSED)
        return result

    def parse_all(self, uploads: Iterable[Upload]) -> List[FileResult]:
        """
        Parse every upload and return results in submission order.
        """
        uploads = list(uploads)
        results = []
        for upload in uploads:
            name = upload[0] if isinstance(upload, tuple) else Path(upload).name
            result = FileResult(file_name=name)
            self._set_status(result, FileStatus.QUEUED)
            results.append(result)

        if not uploads:
            return results

        logger.info(f"Parsing {len(uploads)} file(s) with {self.concurrency} worker(s)")
        with ThreadPoolExecutor(max_workers=min(self.concurrency, len(uploads))) as pool:
            futures = [pool.submit(self._parse_one, upload, result) for upload, result in zip(uploads, results)]
            for future in futures:
                future.result()

        parsed = sum(1 for r in results if r.status == FileStatus.PARSED)
        logger.info(f"Parsed {parsed}/{len(results)} file(s)")
        return results
