"""
Tests for RowPipeline

Export-mode branching, run-level de-duplication, stats counters and
samples, malformed-row recovery and fast mode.
"""

import asyncio
from unittest.mock import patch

import pytest

from mobile_cleaner.config import Settings
from mobile_cleaner.models.cells import EMPTY, TextCell, to_record
from mobile_cleaner.models.outcome import ExportMode, StatCategory
from mobile_cleaner.services.number_rules import clean_cell
from mobile_cleaner.services.row_pipeline import RowPipeline
from mobile_cleaner.services.scheduler import Cooperator

HEADERS = ["Name", "Mobile", "Alt"]


@pytest.fixture
def settings():
    return Settings(FAST_MODE_ROW_THRESHOLD=1000, PROCESS_BATCH_ROWS=2)


@pytest.fixture
def rows():
    return [
        to_record(["Ravi", "9818202888", None]),
        to_record(["Asha", "+91 98765-01234", "9818202888"]),
        to_record(["Ravi again", "919818202888", None]),
        to_record(["Nobody", "12345", None]),
        to_record(["Fake", "9999999999", None]),
        to_record(["Blank", None, None]),
        to_record(["Kiran", "7012345678 / 6123456789", None]),
    ]


def run(rows, mode, settings, columns=(1, 2), name_column=0, total_rows=None):
    pipeline = RowPipeline(HEADERS, list(columns), mode, name_column=name_column, settings=settings)
    return asyncio.run(pipeline.run(rows, total_rows=total_rows, first_row_number=2))


class TestUniqueMode:
    def test_one_entry_per_distinct_number(self, rows, settings):
        result = run(rows, ExportMode.UNIQUE, settings)
        numbers = [r[0] for r in result.composer.rows]
        assert numbers == ["+919818202888", "+919876501234", "+917012345678", "+916123456789"]

    def test_count_matches_distinct_canonical_forms(self, rows, settings):
        result = run(rows, ExportMode.UNIQUE, settings)
        distinct = set()
        for row in rows:
            for col in (1, 2):
                distinct.update(n.key for n in clean_cell(row[col]).numbers)
        assert result.composer.row_count == len(distinct)

    def test_counters(self, rows, settings):
        counters = run(rows, ExportMode.UNIQUE, settings).stats.counters
        assert counters.total == 7
        assert counters.valid == 4
        assert counters.duplicates == 1
        assert counters.invalid_pattern == 1
        assert counters.invalid_length == 1

    def test_headers(self, rows, settings):
        assert run(rows, ExportMode.UNIQUE, settings).composer.headers == ["Mobile Number"]


class TestFullMode:
    def test_rows_without_numbers_are_dropped(self, rows, settings):
        result = run(rows, ExportMode.FULL, settings)
        assert [r[0] for r in result.composer.rows] == ["Ravi", "Asha", "Kiran"]

    def test_cells_are_replaced(self, rows, settings):
        result = run(rows, ExportMode.FULL, settings)
        assert result.composer.rows[0] == ["Ravi", "+919818202888", "+919818202888"]
        assert result.composer.rows[1] == ["Asha", "+919876501234", "+919818202888"]

    def test_two_numbers_in_one_cell_are_joined(self, rows, settings):
        result = run(rows, ExportMode.FULL, settings)
        assert result.composer.rows[2][1] == "+917012345678 / +916123456789"

    def test_source_headers_are_kept(self, rows, settings):
        assert run(rows, ExportMode.FULL, settings).composer.headers == HEADERS


class TestMobileNameMode:
    def test_pairs_use_name_column(self, rows, settings):
        result = run(rows, ExportMode.MOBILE_NAME, settings)
        assert result.composer.rows == [
            ["Ravi", "+919818202888"],
            ["Asha", "+919876501234"],
            ["Kiran", "+917012345678"],
            ["Kiran", "+916123456789"],
        ]

    def test_without_name_column(self, rows, settings):
        result = run(rows, ExportMode.MOBILE_NAME, settings, name_column=None)
        assert result.composer.rows[0] == ["", "+919818202888"]


class TestKeepAllMode:
    def test_never_drops_a_row(self, rows, settings):
        result = run(rows, ExportMode.KEEP_ALL, settings)
        assert result.composer.row_count == len(rows)

    def test_invalid_cells_keep_original_value(self, rows, settings):
        result = run(rows, ExportMode.KEEP_ALL, settings)
        assert result.composer.rows[3] == ["Nobody", "12345", None]

    def test_duplicates_are_still_replaced(self, rows, settings):
        result = run(rows, ExportMode.KEEP_ALL, settings)
        assert result.composer.rows[2] == ["Ravi again", "+919818202888", None]

    def test_valid_counts_every_number_found(self, rows, settings):
        counters = run(rows, ExportMode.KEEP_ALL, settings).stats.counters
        assert counters.valid == 6
        assert counters.duplicates == 0


class TestSamples:
    def test_empty_cells_are_never_sampled(self, rows, settings):
        stats = run(rows, ExportMode.UNIQUE, settings).stats
        sampled = [s for bucket in stats.buckets.values() for s in bucket]
        assert all(s.original for s in sampled)

    def test_sample_rows_are_sheet_row_numbers(self, rows, settings):
        stats = run(rows, ExportMode.UNIQUE, settings).stats
        invalid = stats.buckets[StatCategory.INVALID_LENGTH][0]
        assert (invalid.row_number, invalid.column, invalid.original) == (5, "Mobile", "12345")

    def test_duplicate_sample(self, rows, settings):
        stats = run(rows, ExportMode.UNIQUE, settings).stats
        duplicate = stats.buckets[StatCategory.DUPLICATE][0]
        assert duplicate.cleaned == "+919818202888"
        assert duplicate.row_number == 4

    def test_fast_mode_skips_samples_but_counts(self, rows, settings):
        result = run(rows, ExportMode.UNIQUE, settings, total_rows=5000)
        assert result.stats.sampling is False
        assert all(not bucket for bucket in result.stats.buckets.values())
        assert result.stats.counters.valid == 4

    def test_fast_mode_switches_on_for_long_streams(self, settings):
        settings = Settings(FAST_MODE_ROW_THRESHOLD=3)
        rows = [to_record(["x", f"98182028{i:02d}", None]) for i in range(10)]
        result = run(rows, ExportMode.UNIQUE, settings)
        assert len(result.stats.buckets[StatCategory.VALID]) == 3
        assert result.stats.counters.valid == 10


class TestRecovery:
    def test_row_failing_in_every_column_counts_as_invalid_length(self, settings):
        rows = [to_record(["a", "9818202888", None]), to_record(["b", "9876501234", None])]
        original = clean_cell

        def flaky(value, rules=None, max_count=None):
            if value == TextCell("9818202888"):
                raise ValueError("boom")
            return original(value, rules, max_count)

        with patch("mobile_cleaner.services.row_pipeline.clean_cell", side_effect=flaky):
            result = run(rows, ExportMode.KEEP_ALL, settings, columns=(1,))

        assert result.stats.counters.invalid_length == 1
        assert result.stats.counters.total == 2
        assert result.composer.row_count == 2
        assert result.composer.rows[0] == ["a", "9818202888", None]

    def test_short_rows_are_padded(self, settings):
        rows = [[TextCell("a")], to_record(["b", "9818202888"])]
        result = run(rows, ExportMode.KEEP_ALL, settings, columns=(1,))
        assert result.composer.rows[0] == ["a", None]
        assert result.composer.rows[1] == ["b", "+919818202888"]


class TestScheduling:
    def test_yields_between_batches(self, rows, settings):
        calls = []

        async def yield_point():
            calls.append(1)

        cooperator = Cooperator(yield_point, batch_size=2, time_budget_ms=60_000)
        pipeline = RowPipeline(HEADERS, [1], ExportMode.UNIQUE, settings=settings, cooperator=cooperator)
        asyncio.run(pipeline.run(rows))
        assert len(calls) == 3

    def test_async_source(self, rows, settings):
        async def source():
            for row in rows:
                yield row

        pipeline = RowPipeline(HEADERS, [1, 2], ExportMode.UNIQUE, settings=settings)
        result = asyncio.run(pipeline.run(source()))
        assert result.rows_processed == len(rows)
        assert result.composer.row_count == 4


def test_empty_marker_is_shared():
    assert to_record([None])[0] is EMPTY
