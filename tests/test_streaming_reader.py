"""
Tests for StreamingReader

Delimiter detection, quoted-field parsing, chunk-boundary decoding,
early stop, progress and row / column ceilings.
"""

import asyncio

import pytest

from mobile_cleaner.errors import InputTooLarge
from mobile_cleaner.services.scheduler import Cooperator, ProgressReporter
from mobile_cleaner.services.streaming_reader import (
    LineDecoder,
    StreamingReader,
    detect_delimiter,
    parse_line,
)


def collect(reader):
    records = []

    def _on_record(record):
        records.append(record)

    summary = asyncio.run(reader.read(_on_record))
    return records, summary


# ============================================================================
# LINE-LEVEL HELPERS
# ============================================================================

class TestDetectDelimiter:
    def test_comma(self):
        assert detect_delimiter("Name,Mobile Number") == ","

    def test_tab(self):
        assert detect_delimiter("Name\tMobile\tCity") == "\t"

    def test_semicolon(self):
        assert detect_delimiter("Name;Mobile;City") == ";"

    def test_pipe(self):
        assert detect_delimiter("Name|Mobile") == "|"

    def test_tie_goes_to_comma(self):
        assert detect_delimiter("a,b;c") == ","

    def test_no_candidate_defaults_to_comma(self):
        assert detect_delimiter("Mobile") == ","


class TestParseLine:
    def test_simple(self):
        assert parse_line("A,919818202888", ",") == ["A", "919818202888"]

    def test_quoted_delimiter(self):
        assert parse_line('"Sharma, Ravi",9818202888', ",") == ["Sharma, Ravi", "9818202888"]

    def test_doubled_quote(self):
        assert parse_line('"say ""hi""",x', ",") == ['say "hi"', "x"]

    def test_trims_whitespace(self):
        assert parse_line("  a  ;  b ", ";") == ["a", "b"]

    def test_trailing_empty_field(self):
        assert parse_line("a,", ",") == ["a", ""]

    def test_unbalanced_quote_stays_on_line(self):
        assert parse_line('"abc,def', ",") == ['"abc,def']


class TestLineDecoder:
    def test_crlf_and_lf(self):
        decoder = LineDecoder()
        lines = decoder.feed(b"a\r\nb\nc")
        assert lines == ["a", "b"]
        assert decoder.finish() == ["c"]

    def test_multibyte_split_across_chunks(self):
        encoded = "नाम\n".encode("utf-8")
        decoder = LineDecoder()
        first = decoder.feed(encoded[:2])
        second = decoder.feed(encoded[2:])
        assert first == []
        assert second == ["नाम"]

    def test_bom_is_dropped(self):
        decoder = LineDecoder()
        assert decoder.feed(b"\xef\xbb\xbfName\n") == ["Name"]


# ============================================================================
# READER
# ============================================================================

class TestStreamingReader:
    def test_reads_records_across_tiny_chunks(self):
        data = b"Name,Mobile\r\nA,919818202888\r\nB,9876501234\r\n"
        reader = StreamingReader(data, chunk_size=3)
        records, summary = collect(reader)
        assert records == [["Name", "Mobile"], ["A", "919818202888"], ["B", "9876501234"]]
        assert summary.delimiter == ","
        assert summary.bytes_read == len(data)
        assert not summary.stopped_early

    def test_delimiter_fixed_from_first_line(self):
        data = b"Name;Mobile\nA,B;9818202888\n"
        records, _ = collect(StreamingReader(data))
        assert records[1] == ["A,B", "9818202888"]

    def test_blank_lines_are_skipped(self):
        records, _ = collect(StreamingReader(b"a,b\n\n  \nc,d\n"))
        assert records == [["a", "b"], ["c", "d"]]

    def test_early_stop(self):
        data = b"".join(f"row{i},9818202888\n".encode() for i in range(100))
        seen = []

        def _on_record(record):
            seen.append(record)
            return len(seen) < 5

        summary = asyncio.run(StreamingReader(data, chunk_size=16).read(_on_record))
        assert len(seen) == 5
        assert summary.stopped_early

    def test_progress_is_monotonic_and_finishes(self):
        data = b"".join(f"row{i},9818202888\n".encode() for i in range(50))
        reported = []
        reader = StreamingReader(data, chunk_size=64, progress=ProgressReporter(reported.append))
        collect(reader)
        assert reported == sorted(reported)
        assert reported[-1] == 100

    def test_yields_after_every_chunk(self):
        data = b"a,b\n" * 10
        cooperator = Cooperator()
        collect(StreamingReader(data, chunk_size=8, cooperator=cooperator))
        assert cooperator.yields == len(data) // 8

    def test_not_restartable(self):
        reader = StreamingReader(b"a,b\n")
        collect(reader)
        with pytest.raises(RuntimeError):
            collect(reader)

    def test_row_ceiling(self):
        data = b"a,b\n" * 6
        with pytest.raises(InputTooLarge, match="Maximum supported rows"):
            collect(StreamingReader(data, max_records=5))

    def test_column_ceiling(self):
        with pytest.raises(InputTooLarge, match="Maximum supported columns"):
            collect(StreamingReader(b"a,b,c,d\n", max_columns=3))
