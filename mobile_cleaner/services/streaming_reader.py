"""
StreamingReader: delimited text in fixed-size byte chunks.

Never holds more than one chunk plus one partial line in memory.  Multi-byte
UTF-8 sequences split across a chunk boundary are carried by the incremental
decoder; a partial trailing line is carried as text into the next chunk.
"""

from __future__ import annotations

import codecs
import io
import logging
from dataclasses import dataclass
from typing import AsyncIterator, BinaryIO, Callable, Iterator, List, Optional, Union

from mobile_cleaner.config import Settings, get_settings
from mobile_cleaner.errors import InputTooLarge
from mobile_cleaner.services.scheduler import Cooperator, ProgressReporter

logger = logging.getLogger(__name__)

DELIMITER_CANDIDATES = (",", "\t", ";", "|")

# Returning False stops the stream (preview mode).
RecordCallback = Callable[[List[str]], Optional[bool]]


# ============================================================================
# LINE-LEVEL HELPERS
# ============================================================================

def detect_delimiter(line: str) -> str:
    """Most frequent candidate; ties go to the earlier candidate (comma first)."""
    best = DELIMITER_CANDIDATES[0]
    best_count = -1
    for candidate in DELIMITER_CANDIDATES:
        count = line.count(candidate)
        if count > best_count:
            best = candidate
            best_count = count
    return best


def _clean_field(raw: str) -> str:
    field = raw.strip()
    if len(field) >= 2 and field[0] == '"' and field[-1] == '"':
        field = field[1:-1]
    return field.strip()


def parse_line(line: str, delimiter: str) -> List[str]:
    """
    Split one line, honouring double-quoted fields and ``""`` escapes.
    Quote state does not carry over to the next line.
    """
    fields: List[str] = []
    buf: List[str] = []
    in_quotes = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == '"':
            if in_quotes and i + 1 < n and line[i + 1] == '"':
                buf.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
            buf.append(ch)
        elif ch == delimiter and not in_quotes:
            fields.append(_clean_field(''.join(buf)))
            buf = []
        else:
            buf.append(ch)
        i += 1
    fields.append(_clean_field(''.join(buf)))
    return fields


class LineDecoder:
    """Bytes in, complete lines out; handles \\r\\n and \\n."""

    def __init__(self, encoding: str = "utf-8-sig"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._remainder = ""

    def feed(self, chunk: bytes) -> List[str]:
        text = self._remainder + self._decoder.decode(chunk)
        parts = text.split("\n")
        self._remainder = parts.pop()
        return [p[:-1] if p.endswith("\r") else p for p in parts]

    def finish(self) -> List[str]:
        text = self._remainder + self._decoder.decode(b"", final=True)
        self._remainder = ""
        if not text:
            return []
        return [text[:-1] if text.endswith("\r") else text]


# ============================================================================
# READER
# ============================================================================

@dataclass
class StreamSummary:
    records: int
    bytes_read: int
    delimiter: Optional[str]
    stopped_early: bool


class StreamingReader:
    """
    Lazy, single-pass reader over a byte source.

    Not restartable: each instance consumes its source once.
    """

    def __init__(
        self,
        source: Union[bytes, bytearray, BinaryIO],
        total_size: Optional[int] = None,
        chunk_size: Optional[int] = None,
        settings: Optional[Settings] = None,
        cooperator: Optional[Cooperator] = None,
        progress: Optional[ProgressReporter] = None,
        max_records: Optional[int] = None,
        max_columns: Optional[int] = None,
    ):
        self.settings = settings or get_settings()
        if isinstance(source, (bytes, bytearray)):
            total_size = len(source) if total_size is None else total_size
            source = io.BytesIO(source)
        self.source = source
        self.total_size = total_size or 0
        self.chunk_size = chunk_size or self.settings.CSV_CHUNK_SIZE
        self.cooperator = cooperator or Cooperator()
        self.progress = progress or ProgressReporter()
        self.max_records = max_records
        self.max_columns = max_columns
        self.delimiter: Optional[str] = None
        self.bytes_read = 0
        self.records = 0
        self._consumed = False

    def iter_chunks(self) -> Iterator[bytes]:
        if self._consumed:
            raise RuntimeError("StreamingReader has already been consumed")
        self._consumed = True
        while True:
            chunk = self.source.read(self.chunk_size)
            if not chunk:
                break
            self.bytes_read += len(chunk)
            yield chunk

    def _report_progress(self) -> None:
        if self.total_size:
            self.progress.report_fraction(min(self.bytes_read, self.total_size), self.total_size)

    async def aiter_lines(self) -> AsyncIterator[str]:
        decoder = LineDecoder()
        for chunk in self.iter_chunks():
            for line in decoder.feed(chunk):
                yield line
            self._report_progress()
            await self.cooperator.checkpoint()
        for line in decoder.finish():
            yield line

    def _to_record(self, line: str) -> Optional[List[str]]:
        if not line.strip():
            return None
        if self.delimiter is None:
            self.delimiter = detect_delimiter(line)
            logger.debug("Detected delimiter %r", self.delimiter)
        record = parse_line(line, self.delimiter)
        if self.max_columns is not None and len(record) > self.max_columns:
            raise InputTooLarge(
                f"Line {self.records + 1} has {len(record):,} columns. "
                f"Maximum supported columns: {self.max_columns:,}."
            )
        self.records += 1
        if self.max_records is not None and self.records > self.max_records:
            raise InputTooLarge(f"File has more than {self.max_records:,} rows. Maximum supported rows: {self.max_records:,}.")
        return record

    async def aiter_records(self) -> AsyncIterator[List[str]]:
        """Parsed records; blank lines are skipped."""
        async for line in self.aiter_lines():
            record = self._to_record(line)
            if record is not None:
                yield record

    async def read(self, on_record: RecordCallback) -> StreamSummary:
        """Callback form; ``on_record`` returning False stops the stream early."""
        stopped = False
        async for record in self.aiter_records():
            if on_record(record) is False:
                stopped = True
                break
        if not stopped:
            self.progress.finish()
        return StreamSummary(
            records=self.records,
            bytes_read=self.bytes_read,
            delimiter=self.delimiter,
            stopped_early=stopped,
        )
