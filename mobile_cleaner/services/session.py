"""
CleaningSession: caller-owned state for one uploaded file.

Holds everything the host needs between steps (loaded bytes, sheet choice,
header / column selection, the last run's stats) and orchestrates a
clean-and-export run.  Every operation returns a value; nothing lives in
module-level state.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from mobile_cleaner.config import Settings, get_settings
from mobile_cleaner.errors import CleanerError, EmptySelection, EmptySheet, InputTooLarge
from mobile_cleaner.models.cells import Record, to_record
from mobile_cleaner.models.outcome import ExportMode, StatCategory
from mobile_cleaner.models.table import Table
from mobile_cleaner.services.column_detector import ColumnDetector
from mobile_cleaner.services.container import FileFormat, WorkbookSource, detect_format
from mobile_cleaner.services.export import ExportArtifact, serialize_table
from mobile_cleaner.services.number_rules import NumberRules
from mobile_cleaner.services.row_pipeline import RowPipeline
from mobile_cleaner.services.scheduler import (
    CancelToken,
    Cooperator,
    ProgressCallback,
    ProgressReporter,
    YieldPoint,
)
from mobile_cleaner.services.size_guard import check_file_size, check_sheet_ref
from mobile_cleaner.services.stats import StatsCollector
from mobile_cleaner.services.streaming_reader import StreamingReader

logger = logging.getLogger(__name__)

REPORT_PREFIXES = {
    StatCategory.VALID: "ValidReport",
    StatCategory.DUPLICATE: "DuplicateReport",
    StatCategory.INVALID_PATTERN: "InvalidPatternReport",
    StatCategory.INVALID_LENGTH: "InvalidLengthReport",
}


@dataclass
class RunResult:
    ok: bool
    message: str
    artifact: Optional[ExportArtifact] = None
    stats: Optional[Dict[str, Any]] = None
    warnings: List[str] = field(default_factory=list)
    error: Optional[CleanerError] = None


class CleaningSession:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        rules: Optional[NumberRules] = None,
        detector: Optional[ColumnDetector] = None,
        yield_point: Optional[YieldPoint] = None,
    ):
        self.settings = settings or get_settings()
        self.rules = rules or NumberRules.from_settings(self.settings)
        self.detector = detector or ColumnDetector.default(self.settings, self.rules)
        self.yield_point = yield_point

        self.filename: Optional[str] = None
        self.file_format: Optional[FileFormat] = None
        self.data: bytes = b""
        self.source: Optional[WorkbookSource] = None
        self.sheet_names: List[str] = []
        self.sheet_name: Optional[str] = None
        self.table = Table()
        self.warnings: List[str] = []

        self.is_processing = False
        self.progress = 0
        self.cancel_token: Optional[CancelToken] = None
        self.last_stats: Optional[StatsCollector] = None

    # ============================================================================
    # LOADING
    # ============================================================================

    def load(self, data: bytes, filename: str) -> List[str]:
        """Accept an upload; returns the workbook's sheet names (empty for CSV)."""
        check_file_size(len(data), self.settings)
        file_format = detect_format(filename)

        self.close()
        self.filename = filename
        self.file_format = file_format
        self.data = data
        logger.info("Accepted %s (%s, %d bytes)", filename, file_format.value, len(data))

        if file_format is not FileFormat.CSV:
            self.source = WorkbookSource(data, file_format, self.settings)
            self.sheet_names = self.source.open()
            self.warnings.extend(self.source.warnings)
        return self.sheet_names

    def close(self) -> None:
        if self.source is not None:
            self.source.close()
        self.source = None
        self.filename = None
        self.file_format = None
        self.data = b""
        self.sheet_names = []
        self.sheet_name = None
        self.table = Table()
        self.warnings = []
        self.last_stats = None
        self.progress = 0

    def _require_file(self) -> None:
        if self.file_format is None:
            raise EmptySelection("No file loaded. Upload a CSV or Excel file first.")

    def _reporter(self, callback: Optional[ProgressCallback]) -> ProgressReporter:
        def _update(percent: int) -> None:
            self.progress = percent
            if callback is not None:
                callback(percent)
        return ProgressReporter(_update)

    async def preview(self, sheet: Optional[str] = None, progress: Optional[ProgressCallback] = None) -> List[Record]:
        """
        Load the table for a sheet and return its first ``PREVIEW_ROWS`` rows.

        CSV input is streamed only until the preview cap; workbooks are
        dimension-checked and then fully materialised.  A header row is
        guessed and the number / name columns pre-selected when possible.
        """
        self._require_file()
        reporter = self._reporter(progress)
        cooperator = Cooperator.from_settings(self.settings, self.yield_point)
        limit = self.settings.PREVIEW_ROWS

        if self.file_format is FileFormat.CSV:
            rows: List[Record] = []

            def _collect(record: List[str]) -> bool:
                rows.append(to_record(record))
                return len(rows) < limit

            reader = StreamingReader(
                self.data,
                settings=self.settings,
                cooperator=cooperator,
                progress=reporter,
                max_columns=self.settings.MAX_COLUMNS,
            )
            await reader.read(_collect)
        else:
            name = sheet or self.sheet_names[0]
            warning = check_sheet_ref(self.source.dimension_ref(name), self.settings)
            if warning and warning not in self.warnings:
                self.warnings.append(warning)
            rows = self.source.read_rows(name, max_rows=self.settings.MAX_ROWS + 1)
            if len(rows) > self.settings.MAX_ROWS:
                # declared extent understated the sheet
                raise InputTooLarge(
                    f"Sheet has more than {self.settings.MAX_ROWS:,} rows. "
                    f"Maximum supported rows: {self.settings.MAX_ROWS:,}."
                )
            self.sheet_name = name
            reporter.finish()

        if not rows:
            raise EmptySheet("Selected sheet is empty")

        self.table = Table(rows=rows)
        header = self.detector.header_strategy.detect(rows[:limit])
        if header is not None:
            self.set_header_row(header)
        return rows[:limit]

    # ============================================================================
    # SELECTION
    # ============================================================================

    def set_header_row(self, index: int) -> Table:
        """Set the header row, then auto-select number columns and guess the name column."""
        self._require_file()
        self.table.set_header_row(index)
        columns = self.detector.number_strategy.select(self.table.rows, index)
        self.table.select_columns(columns)
        self.table.name_column = self.detector.name_strategy.detect(
            self.table.headers, self.table.rows, index, exclude=columns
        )
        logger.debug("Header row %d: number columns %s, name column %s", index, columns, self.table.name_column)
        return self.table

    def toggle_column(self, index: int) -> Table:
        if self.table.header_row is None:
            raise EmptySelection("Select a header row first")
        self.table.toggle_column(index)
        return self.table

    def set_name_column(self, index: Optional[int]) -> Table:
        if index is not None:
            width = len(self.table.headers)
            if index < 0 or index >= width:
                raise EmptySelection(f"Column {index} is outside the header row (0-{width - 1})")
        self.table.name_column = index
        return self.table

    # ============================================================================
    # RUN
    # ============================================================================

    async def _csv_data_rows(self, cooperator: Cooperator, reporter: ProgressReporter) -> AsyncIterator[Record]:
        reader = StreamingReader(
            self.data,
            settings=self.settings,
            cooperator=cooperator,
            progress=reporter,
            max_records=self.settings.MAX_ROWS,
            max_columns=self.settings.MAX_COLUMNS,
        )
        index = 0
        async for record in reader.aiter_records():
            if index > self.table.header_row:
                yield to_record(record)
            index += 1

    async def clean_and_export(
        self,
        mode: ExportMode,
        progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> Optional[RunResult]:
        """
        Run the pipeline over every data row and serialise the result.

        Returns None without doing anything while another run is active.
        Failures come back as ``RunResult(ok=False)``; stats from a failed
        run are discarded.
        """
        if self.is_processing:
            logger.info("Clean request ignored: a run is already in progress")
            return None

        self.is_processing = True
        self.progress = 0
        self.last_stats = None
        self.cancel_token = cancel_token or CancelToken()
        reporter = self._reporter(progress)
        cooperator = Cooperator.from_settings(self.settings, self.yield_point, self.cancel_token)

        try:
            self._require_file()
            self.table.require_selection()
            pipeline = RowPipeline(
                self.table.headers,
                self.table.selected_columns,
                mode,
                name_column=self.table.name_column,
                settings=self.settings,
                rules=self.rules,
                cooperator=cooperator,
                progress=reporter,
            )
            first_row_number = self.table.header_row + 2
            if self.file_format is FileFormat.CSV:
                result = await pipeline.run(
                    self._csv_data_rows(cooperator, reporter), first_row_number=first_row_number
                )
            else:
                rows = self.table.data_rows()
                result = await pipeline.run(rows, total_rows=len(rows), first_row_number=first_row_number)

            artifact = result.composer.serialize(self.filename)
            self.last_stats = result.stats
            counters = result.stats.counters
            message = (
                f"Processed {counters.total:,} rows: {counters.valid:,} valid, "
                f"{counters.duplicates:,} duplicates, {counters.invalid_pattern:,} invalid pattern, "
                f"{counters.invalid_length:,} invalid length."
            )
            return RunResult(
                ok=True,
                message=message,
                artifact=artifact,
                stats=result.stats.summary(),
                warnings=list(self.warnings),
            )
        except CleanerError as e:
            logger.warning("Run failed: %s", e)
            return RunResult(ok=False, message=str(e), warnings=list(self.warnings), error=e)
        except Exception as e:
            logger.exception("Run failed unexpectedly")
            return RunResult(ok=False, message=f"Processing failed: {e}", warnings=list(self.warnings))
        finally:
            self.is_processing = False
            self.cancel_token = None

    def cancel(self) -> bool:
        if self.cancel_token is None:
            return False
        self.cancel_token.cancel()
        return True

    # ============================================================================
    # REPORTS / STATUS
    # ============================================================================

    def audit_report(self, category: StatCategory) -> ExportArtifact:
        if self.last_stats is None:
            raise EmptySelection("No completed run to report on")
        headers, rows = self.last_stats.report(category)
        return serialize_table(
            headers,
            rows,
            self.filename or "export",
            REPORT_PREFIXES[category],
            sheet_title="Report",
            settings=self.settings,
        )

    def status(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "file_format": self.file_format.value if self.file_format else None,
            "sheet_names": list(self.sheet_names),
            "sheet_name": self.sheet_name,
            "header_row": self.table.header_row,
            "headers": self.table.headers,
            "selected_columns": list(self.table.selected_columns),
            "name_column": self.table.name_column,
            "is_processing": self.is_processing,
            "progress": self.progress,
            "warnings": list(self.warnings),
            "stats": self.last_stats.summary() if self.last_stats else None,
        }


class SessionStore:
    """In-memory sessions keyed by id; nothing is persisted."""

    def __init__(self, factory: Callable[[], CleaningSession] = CleaningSession):
        self.factory = factory
        self._sessions: Dict[str, CleaningSession] = {}

    def create(self) -> Tuple[str, CleaningSession]:
        session_id = uuid.uuid4().hex
        session = self.factory()
        self._sessions[session_id] = session
        return session_id, session

    def get(self, session_id: str) -> Optional[CleaningSession]:
        return self._sessions.get(session_id)

    def delete(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        return True
