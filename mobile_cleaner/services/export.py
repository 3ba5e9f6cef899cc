"""
ExportComposer: assembles the four output shapes and serialises them.

Workbook output is the default.  Above a row threshold (lower for KEEP_ALL,
whose rows are wide) or when workbook writing fails, the same table is
written as UTF-8 CSV with a BOM and CRLF line endings.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, List, Optional

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from mobile_cleaner.config import Settings, get_settings
from mobile_cleaner.errors import ExportSerializationError
from mobile_cleaner.models.cells import Record, cell_value, format_number
from mobile_cleaner.models.outcome import CanonicalNumber, ExportMode
from mobile_cleaner.services.container import repack_archive

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_MEDIA_TYPE = "text/csv"

UNIQUE_HEADERS = ["Mobile Number"]
MOBILE_NAME_HEADERS = ["Name", "Mobile Number"]

FILE_PREFIXES = {
    ExportMode.FULL: "Cleaned",
    ExportMode.UNIQUE: "Unique",
    ExportMode.MOBILE_NAME: "MobileName",
    ExportMode.KEEP_ALL: "AllRows",
}

UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\s]+')


@dataclass
class ExportArtifact:
    content: bytes
    media_type: str
    filename: str
    row_count: int

    @property
    def is_csv(self) -> bool:
        return self.media_type == CSV_MEDIA_TYPE


# ============================================================================
# HELPERS
# ============================================================================

def safe_base_name(name: str) -> str:
    base = re.sub(r'\.[^/.]+$', '', name or '')
    base = UNSAFE_FILENAME_CHARS.sub('_', base).strip('_')
    return base or "export"


def build_export_filename(base_name: str, label: str, row_count: int, extension: str) -> str:
    return f"{label}_{row_count}_{safe_base_name(base_name)}.{extension}"


def sanitize_text(text: str, max_length: int) -> str:
    text = ILLEGAL_CHARACTERS_RE.sub('', text)
    if len(text) > max_length:
        text = text[:max_length]
    return text


def sanitize_value(value: Any, max_length: int) -> Any:
    if isinstance(value, str):
        return sanitize_text(value, max_length)
    if isinstance(value, Decimal):
        return float(value)
    return value


def csv_text(value: Any, max_length: int) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float, Decimal)):
        return format_number(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return sanitize_text(str(value), max_length)


def write_csv(headers: List[str], rows: List[List[Any]], settings: Optional[Settings] = None) -> bytes:
    """BOM + CRLF; fields holding the delimiter, a quote or a newline are quoted with quotes doubled."""
    settings = settings or get_settings()
    limit = settings.MAX_CELL_TEXT_LENGTH
    buffer = io.BytesIO()
    text = io.TextIOWrapper(buffer, encoding="utf-8-sig", newline="")
    writer = csv.writer(text, delimiter=",", quotechar='"', quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow([csv_text(h, limit) for h in headers])
    for row in rows:
        writer.writerow([csv_text(v, limit) for v in row])
    text.flush()
    text.detach()
    return buffer.getvalue()


def write_xlsx(headers: List[str], rows: List[List[Any]], sheet_title: str = "Cleaned", settings: Optional[Settings] = None) -> bytes:
    settings = settings or get_settings()
    limit = settings.MAX_CELL_TEXT_LENGTH
    wb = Workbook(write_only=True)
    ws = wb.create_sheet(title=sheet_title)
    ws.append([sanitize_value(h, limit) for h in headers])
    for row in rows:
        ws.append([sanitize_value(v, limit) for v in row])
    buffer = io.BytesIO()
    wb.save(buffer)
    # fixed timestamps so identical input gives identical bytes
    return repack_archive(buffer.getvalue(), stable=True)


def serialize_table(
    headers: List[str],
    rows: List[List[Any]],
    base_name: str,
    label: str,
    prefer_csv: bool = False,
    sheet_title: str = "Cleaned",
    settings: Optional[Settings] = None,
) -> ExportArtifact:
    """Workbook first, CSV fallback; raises ExportSerializationError only if both fail."""
    settings = settings or get_settings()
    count = len(rows)

    if not prefer_csv:
        try:
            content = write_xlsx(headers, rows, sheet_title, settings)
            return ExportArtifact(content, XLSX_MEDIA_TYPE, build_export_filename(base_name, label, count, "xlsx"), count)
        except Exception as e:
            logger.warning("Workbook export failed (%s); falling back to CSV", e)

    try:
        content = write_csv(headers, rows, settings)
    except Exception as e:
        raise ExportSerializationError(f"Export failed: {e}") from e
    return ExportArtifact(content, CSV_MEDIA_TYPE, build_export_filename(base_name, label, count, "csv"), count)


# ============================================================================
# COMPOSER
# ============================================================================

class ExportComposer:
    """Accumulates body rows for one export mode."""

    def __init__(self, mode: ExportMode, headers: List[str], settings: Optional[Settings] = None):
        self.mode = mode
        self.source_headers = list(headers)
        self.settings = settings or get_settings()
        self.rows: List[List[Any]] = []

    @property
    def headers(self) -> List[str]:
        if self.mode is ExportMode.UNIQUE:
            return list(UNIQUE_HEADERS)
        if self.mode is ExportMode.MOBILE_NAME:
            return list(MOBILE_NAME_HEADERS)
        return list(self.source_headers)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def add_row(self, record: Record) -> None:
        self.rows.append([cell_value(c) for c in record])

    def add_number(self, number: CanonicalNumber) -> None:
        self.rows.append([number.international])

    def add_pair(self, name: str, number: CanonicalNumber) -> None:
        self.rows.append([name, number.international])

    def csv_threshold(self) -> int:
        if self.mode is ExportMode.KEEP_ALL:
            return self.settings.KEEP_ALL_CSV_EXPORT_ROW_THRESHOLD
        return self.settings.CSV_EXPORT_ROW_THRESHOLD

    def serialize(self, base_name: str) -> ExportArtifact:
        prefer_csv = self.row_count > self.csv_threshold()
        if prefer_csv:
            logger.info("Exporting %d rows as CSV (threshold %d)", self.row_count, self.csv_threshold())
        return serialize_table(
            self.headers,
            self.rows,
            base_name,
            FILE_PREFIXES[self.mode],
            prefer_csv=prefer_csv,
            settings=self.settings,
        )
