"""
RowPipeline: classify, de-duplicate and reshape data rows.

For each row after the header and each selected column: normalise →
validate → record stats; then branch on the export mode.  The de-dup set
and stats live only as long as one pipeline instance, i.e. one run.
"""

import logging
from dataclasses import dataclass
from typing import AsyncIterable, Iterable, List, Optional, Set, Tuple, Union

from mobile_cleaner.config import Settings, get_settings
from mobile_cleaner.errors import RowProcessingError
from mobile_cleaner.models.cells import EMPTY, Record, TextCell, cell_text
from mobile_cleaner.models.outcome import CanonicalNumber, ExportMode, OutcomeKind, StatCategory
from mobile_cleaner.services.export import ExportComposer
from mobile_cleaner.services.number_rules import NumberRules, clean_cell
from mobile_cleaner.services.scheduler import Cooperator, ProgressReporter
from mobile_cleaner.services.stats import StatsCollector

logger = logging.getLogger(__name__)

Records = Union[Iterable[Record], AsyncIterable[Record]]


@dataclass
class RowClassification:
    per_column: List[Tuple[CanonicalNumber, ...]]
    found: List[Tuple[CanonicalNumber, int]]  # (number, source column), unique within the row


@dataclass
class PipelineResult:
    stats: StatsCollector
    composer: ExportComposer
    rows_processed: int


class RowPipeline:
    def __init__(
        self,
        headers: List[str],
        selected_columns: List[int],
        mode: ExportMode,
        name_column: Optional[int] = None,
        settings: Optional[Settings] = None,
        rules: Optional[NumberRules] = None,
        cooperator: Optional[Cooperator] = None,
        progress: Optional[ProgressReporter] = None,
    ):
        self.settings = settings or get_settings()
        self.headers = list(headers)
        self.selected_columns = list(selected_columns)
        self.mode = mode
        self.name_column = name_column
        self.rules = rules or NumberRules.from_settings(self.settings)
        self.cooperator = cooperator or Cooperator.from_settings(self.settings)
        self.progress = progress or ProgressReporter()
        self.joiner = self.settings.MULTI_NUMBER_JOINER

        self.stats = StatsCollector(capacity=self.settings.STAT_SAMPLE_CAPACITY)
        self.seen: Set[str] = set()
        self.composer = ExportComposer(mode, self.headers, self.settings)

    # ─────────────────────────────────────────────────────────────────
    # Internal helpers
    # ─────────────────────────────────────────────────────────────────

    def _label(self, col: int) -> str:
        if col < len(self.headers) and self.headers[col]:
            return self.headers[col]
        return f"Column {col + 1}"

    def _classify(self, row: Record, row_number: int) -> RowClassification:
        per_column: List[Tuple[CanonicalNumber, ...]] = []
        found: List[Tuple[CanonicalNumber, int]] = []
        in_row: Set[str] = set()
        failures = 0

        for col in self.selected_columns:
            raw = row[col] if col < len(row) else EMPTY
            try:
                outcome = clean_cell(raw, self.rules)
            except Exception as e:
                logger.debug("Row %d column %d failed to clean: %s", row_number, col, e)
                failures += 1
                per_column.append(())
                continue

            per_column.append(outcome.numbers)
            if outcome.kind is OutcomeKind.EMPTY:
                continue

            label = self._label(col)
            if outcome.kind is OutcomeKind.VALID:
                cleaned = self.joiner.join(n.international for n in outcome.numbers)
                self.stats.sample(StatCategory.VALID, row_number, label, cell_text(raw), cleaned)
                for number in outcome.numbers:
                    if number.key not in in_row:
                        in_row.add(number.key)
                        found.append((number, col))
            elif outcome.kind is OutcomeKind.INVALID_PATTERN:
                self.stats.counters.invalid_pattern += 1
                self.stats.sample(StatCategory.INVALID_PATTERN, row_number, label, cell_text(raw))
            else:
                self.stats.counters.invalid_length += 1
                self.stats.sample(StatCategory.INVALID_LENGTH, row_number, label, cell_text(raw))

        if self.selected_columns and failures == len(self.selected_columns):
            raise RowProcessingError(f"Row {row_number}: every selected column failed")
        return RowClassification(per_column=per_column, found=found)

    def _replace_cells(self, row: Record, per_column, fallback: Optional[CanonicalNumber]) -> Record:
        width = max([len(row)] + [c + 1 for c in self.selected_columns])
        updated = list(row) + [EMPTY] * (width - len(row))
        for col, numbers in zip(self.selected_columns, per_column):
            if numbers:
                updated[col] = TextCell(self.joiner.join(n.international for n in numbers))
            elif fallback is not None:
                updated[col] = TextCell(fallback.international)
        return updated

    # ─────────────────────────────────────────────────────────────────
    # Per-row processing
    # ─────────────────────────────────────────────────────────────────

    def process_row(self, row: Record, row_number: int) -> None:
        self.stats.counters.total += 1
        try:
            self._process(row, row_number)
        except Exception as e:
            logger.debug("Row %d counted as invalid length: %s", row_number, e)
            self.stats.counters.invalid_length += 1
            self.stats.sample(StatCategory.INVALID_LENGTH, row_number, "", "<unreadable row>")
            if self.mode is ExportMode.KEEP_ALL:
                self.composer.add_row(row)

    def _process(self, row: Record, row_number: int) -> None:
        name = ""
        if self.mode is ExportMode.MOBILE_NAME and self.name_column is not None and self.name_column < len(row):
            name = cell_text(row[self.name_column]).strip()

        result = self._classify(row, row_number)
        numbers = [n for n, _ in result.found]

        if self.mode is ExportMode.KEEP_ALL:
            self.stats.counters.valid += len(numbers)
            self.composer.add_row(self._replace_cells(row, result.per_column, None))
            return

        if not numbers:
            return

        fresh = [n for n in numbers if n.key not in self.seen]
        if not fresh:
            self.stats.counters.duplicates += 1
            for number, col in result.found:
                self.stats.sample(StatCategory.DUPLICATE, row_number, self._label(col), cell_text(row[col]), number.international)
            return

        self.seen.update(n.key for n in fresh)
        self.stats.counters.valid += len(fresh)

        if self.mode is ExportMode.FULL:
            self.composer.add_row(self._replace_cells(row, result.per_column, fresh[0]))
        elif self.mode is ExportMode.UNIQUE:
            for number in fresh:
                self.composer.add_number(number)
        elif self.mode is ExportMode.MOBILE_NAME:
            for number in fresh:
                self.composer.add_pair(name, number)

    # ─────────────────────────────────────────────────────────────────
    # Run
    # ─────────────────────────────────────────────────────────────────

    async def run(self, records: Records, total_rows: Optional[int] = None, first_row_number: int = 1) -> PipelineResult:
        """
        Process every record, yielding to the host between batches.

        Fast mode (no audit samples) is on from the start when ``total_rows``
        exceeds the threshold, or switches on once a stream passes it.
        """
        threshold = self.settings.FAST_MODE_ROW_THRESHOLD
        if total_rows is not None and total_rows > threshold:
            self.stats.sampling = False
            logger.info("Fast mode enabled for %d rows", total_rows)

        processed = 0
        row_number = first_row_number

        async def _consume(record: Record) -> None:
            nonlocal processed, row_number
            if self.stats.sampling and processed >= threshold:
                self.stats.sampling = False
                logger.info("Fast mode enabled after %d rows", processed)
            self.process_row(record, row_number)
            processed += 1
            row_number += 1
            if total_rows:
                self.progress.report_fraction(processed, total_rows)
            await self.cooperator.tick()

        if hasattr(records, "__aiter__"):
            async for record in records:
                await _consume(record)
        else:
            for record in records:
                await _consume(record)

        self.progress.finish()
        logger.info(
            "Run finished: %d rows, %d valid, %d duplicates, %d invalid pattern, %d invalid length",
            self.stats.counters.total,
            self.stats.counters.valid,
            self.stats.counters.duplicates,
            self.stats.counters.invalid_pattern,
            self.stats.counters.invalid_length,
        )
        return PipelineResult(stats=self.stats, composer=self.composer, rows_processed=processed)
