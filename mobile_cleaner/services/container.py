"""
Workbook containers: decode adapter, preflight and repair.

Decoding itself is delegated to openpyxl (xlsx) and pandas/xlrd (xls).  This
module only decides *whether* to decode (preflight on worksheet XML size),
classifies decode failures, and, for zip-based workbooks, rebuilds the
archive once when an entry is corrupt.
"""

from __future__ import annotations

import io
import itertools
import logging
import re
import struct
import zipfile
import zlib
from enum import Enum
from pathlib import PurePath
from typing import Any, Callable, Iterator, List, Optional, Protocol, Sequence

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils import get_column_letter

from mobile_cleaner.config import Settings, get_settings
from mobile_cleaner.errors import (
    CleanerError,
    EncryptedOrProtected,
    InputTooLarge,
    UnsupportedFileType,
    UnsupportedOrCorruptContainer,
)
from mobile_cleaner.models.cells import Record, to_record

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

class FileFormat(str, Enum):
    CSV = "csv"
    XLSX = "xlsx"
    XLS = "xls"


FILE_EXTENSIONS = {
    ".csv": FileFormat.CSV,
    ".txt": FileFormat.CSV,
    ".tsv": FileFormat.CSV,
    ".xlsx": FileFormat.XLSX,
    ".xlsm": FileFormat.XLSX,
    ".xls": FileFormat.XLS,
}

# zip-based formats are the only ones that can be repaired
ARCHIVE_FORMATS = {FileFormat.XLSX}

OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
LOCAL_HEADER_SIGNATURE = b"PK\x03\x04"
LOCAL_HEADER_SIZE = 30

WORKSHEET_ENTRY_PATTERN = re.compile(r'^xl/worksheets/[^/]+\.xml$', re.IGNORECASE)

CORRUPTION_PATTERN = re.compile(
    r'crc|bad zip|not a zip|zip file|truncated|compressed size|corrupt|'
    r'invalid archive|invalid (?:block|distance|stored)|decompress|end of central|'
    r'end-of-central|unexpected end|bad magic',
    re.IGNORECASE,
)
ENCRYPTION_PATTERN = re.compile(r'encrypt|password|protected', re.IGNORECASE)

FIXED_ZIP_TIME = (1980, 1, 1, 0, 0, 0)
CORE_TIMESTAMP_PATTERN = re.compile(rb'(<dcterms:(created|modified)\b[^>]*>)[^<]*(</dcterms:\2>)')
FIXED_CORE_TIMESTAMP = b"2000-01-01T00:00:00Z"


def detect_format(filename: str) -> FileFormat:
    ext = PurePath(filename or "").suffix.lower()
    if ext not in FILE_EXTENSIONS:
        raise UnsupportedFileType(
            f"File type '{ext or filename}' not allowed. Only CSV and Excel files (.csv, .xlsx, .xls) accepted."
        )
    return FILE_EXTENSIONS[ext]


# ============================================================================
# DECODE ADAPTER
# ============================================================================

class SheetHandle(Protocol):
    name: str

    @property
    def dimension_ref(self) -> Optional[str]: ...

    def iter_rows(self) -> Iterator[Sequence[Any]]: ...


class WorkbookHandle(Protocol):
    sheet_names: List[str]

    def sheet(self, name: str) -> SheetHandle: ...

    def close(self) -> None: ...


class XlsxSheet:
    def __init__(self, worksheet):
        self.worksheet = worksheet
        self.name = worksheet.title

    @property
    def dimension_ref(self) -> Optional[str]:
        try:
            return self.worksheet.calculate_dimension()
        except ValueError:
            # no <dimension> element (openpyxl write-only output); size it by scanning
            pass
        if not any(row for row in self.worksheet.iter_rows(values_only=True)):
            return None
        return self.worksheet.calculate_dimension(force=True)

    def iter_rows(self) -> Iterator[Sequence[Any]]:
        return self.worksheet.iter_rows(values_only=True)


class XlsxWorkbook:
    def __init__(self, data: bytes):
        self._wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        self.sheet_names = [ws.title for ws in self._wb.worksheets]

    def sheet(self, name: str) -> XlsxSheet:
        return XlsxSheet(self._wb[name])

    def close(self) -> None:
        self._wb.close()


class XlsSheet:
    def __init__(self, excel: pd.ExcelFile, name: str):
        self.excel = excel
        self.name = name

    @property
    def dimension_ref(self) -> Optional[str]:
        sheet = self.excel.book.sheet_by_name(self.name)
        if sheet.nrows == 0 or sheet.ncols == 0:
            return None
        return f"A1:{get_column_letter(sheet.ncols)}{sheet.nrows}"

    def iter_rows(self) -> Iterator[Sequence[Any]]:
        df = pd.read_excel(self.excel, sheet_name=self.name, header=None, dtype=object)
        return df.itertuples(index=False, name=None)


class XlsWorkbook:
    def __init__(self, data: bytes):
        self.excel = pd.ExcelFile(io.BytesIO(data), engine="xlrd")
        self.sheet_names = list(self.excel.sheet_names)

    def sheet(self, name: str) -> XlsSheet:
        return XlsSheet(self.excel, name)

    def close(self) -> None:
        self.excel.close()


def decode_workbook(data: bytes, file_format: FileFormat) -> WorkbookHandle:
    if file_format is FileFormat.XLSX:
        return XlsxWorkbook(data)
    if file_format is FileFormat.XLS:
        return XlsWorkbook(data)
    raise UnsupportedFileType(f"'{file_format.value}' is not a workbook format")


# ============================================================================
# FAILURE CLASSIFICATION
# ============================================================================

def is_encryption_error(exc: BaseException, data: bytes, file_format: FileFormat) -> bool:
    # encrypted OOXML is stored inside an OLE compound file, not a zip
    if file_format in ARCHIVE_FORMATS and data[:8] == OLE_MAGIC:
        return True
    return bool(ENCRYPTION_PATTERN.search(str(exc)))


def is_corruption_error(exc: BaseException) -> bool:
    if isinstance(exc, (zipfile.BadZipFile, zlib.error, EOFError)):
        return True
    return bool(CORRUPTION_PATTERN.search(str(exc)))


# ============================================================================
# ARCHIVE REPAIR
# ============================================================================

def _salvage_entry(data: bytes, info: zipfile.ZipInfo) -> bytes:
    """Inflate an entry straight from its local header, ignoring CRC and declared sizes."""
    offset = info.header_offset
    header = data[offset:offset + LOCAL_HEADER_SIZE]
    if len(header) < LOCAL_HEADER_SIZE or header[:4] != LOCAL_HEADER_SIGNATURE:
        raise UnsupportedOrCorruptContainer(f"Archive entry '{info.filename}' has no readable header")
    name_len, extra_len = struct.unpack("<HH", header[26:30])
    start = offset + LOCAL_HEADER_SIZE + name_len + extra_len

    if info.compress_type == zipfile.ZIP_STORED:
        return data[start:start + info.file_size]
    if info.compress_type != zipfile.ZIP_DEFLATED:
        raise UnsupportedOrCorruptContainer(f"Archive entry '{info.filename}' uses an unsupported compression")

    inflater = zlib.decompressobj(-zlib.MAX_WBITS)
    try:
        return inflater.decompress(data[start:]) + inflater.flush()
    except zlib.error as e:
        raise UnsupportedOrCorruptContainer(f"Archive entry '{info.filename}' cannot be recovered") from e


def _read_entry(archive: zipfile.ZipFile, data: bytes, info: zipfile.ZipInfo) -> bytes:
    try:
        return archive.read(info)
    except (zipfile.BadZipFile, zlib.error, EOFError) as e:
        logger.warning("Archive entry %s unreadable (%s); salvaging", info.filename, e)
        return _salvage_entry(data, info)


def repack_archive(data: bytes, stable: bool = False) -> bytes:
    """
    Re-serialise every entry with a fresh deflate pass.

    ``stable`` also pins the document timestamps so identical content gives
    identical bytes.
    """
    try:
        source = zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, OSError, ValueError) as e:
        raise UnsupportedOrCorruptContainer(f"Archive cannot be opened: {e}") from e

    out = io.BytesIO()
    with source, zipfile.ZipFile(out, "w", compression=zipfile.ZIP_DEFLATED) as target:
        for info in source.infolist():
            if info.is_dir():
                continue
            content = _read_entry(source, data, info)
            if stable and info.filename == "docProps/core.xml":
                content = CORE_TIMESTAMP_PATTERN.sub(rb'\g<1>' + FIXED_CORE_TIMESTAMP + rb'\g<3>', content)
            entry = zipfile.ZipInfo(info.filename, date_time=FIXED_ZIP_TIME)
            entry.compress_type = zipfile.ZIP_DEFLATED
            entry.external_attr = 0o600 << 16
            target.writestr(entry, content)
    return out.getvalue()


def repair_container(data: bytes) -> bytes:
    logger.info("Repairing workbook archive (%d bytes)", len(data))
    return repack_archive(data)


# ============================================================================
# PREFLIGHT
# ============================================================================

def preflight_container(data: bytes, file_format: FileFormat, settings: Optional[Settings] = None) -> Optional[str]:
    """
    Classify a large xlsx by its biggest worksheet XML (uncompressed size,
    read from the archive directory without inflating anything).
    """
    settings = settings or get_settings()
    if file_format not in ARCHIVE_FORMATS or len(data) < settings.PREFLIGHT_MIN_FILE_BYTES:
        return None

    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            sizes = [i.file_size for i in archive.infolist() if WORKSHEET_ENTRY_PATTERN.match(i.filename)]
    except Exception as e:
        # diagnostic only; the normal decode path reports real failures
        logger.info("Preflight inspection skipped: %s", e)
        return None

    largest = max(sizes, default=0)
    mb = largest / 1024 / 1024
    if largest > settings.SHEET_XML_MAX_BYTES:
        raise InputTooLarge(
            f"Workbook is too complex to open safely (worksheet data {mb:.0f}MB). "
            f"Save the sheet as CSV and upload that instead."
        )
    if largest > settings.SHEET_XML_WARN_BYTES:
        warning = f"Complex workbook (worksheet data {mb:.0f}MB); loading may be slow. CSV is faster for files this size."
        logger.warning(warning)
        return warning
    return None


# ============================================================================
# WORKBOOK SOURCE
# ============================================================================

class WorkbookSource:
    """
    Owns the raw bytes of one workbook and the single repair attempt allowed
    for it.  Both opening the workbook and reading a sheet go through
    ``_with_repair`` because read-only decoders inflate sheets lazily.
    """

    def __init__(
        self,
        data: bytes,
        file_format: FileFormat,
        settings: Optional[Settings] = None,
        decoder: Callable[[bytes, FileFormat], WorkbookHandle] = decode_workbook,
    ):
        self.data = data
        self.file_format = file_format
        self.settings = settings or get_settings()
        self.decoder = decoder
        self.workbook: Optional[WorkbookHandle] = None
        self.repaired = False
        self.warnings: List[str] = []

    @property
    def sheet_names(self) -> List[str]:
        return list(self.workbook.sheet_names) if self.workbook else []

    def open(self) -> List[str]:
        warning = preflight_container(self.data, self.file_format, self.settings)
        if warning:
            self.warnings.append(warning)
        self._with_repair(self._ensure_decoded)
        logger.info("Opened %s workbook with sheets %s", self.file_format.value, self.sheet_names)
        return self.sheet_names

    def sheet(self, name: Optional[str] = None) -> SheetHandle:
        if self.workbook is None:
            raise UnsupportedOrCorruptContainer("Workbook has not been opened")
        name = name or self.workbook.sheet_names[0]
        if name not in self.workbook.sheet_names:
            raise UnsupportedOrCorruptContainer(f"Sheet '{name}' not found")
        return self.workbook.sheet(name)

    def dimension_ref(self, name: Optional[str] = None) -> Optional[str]:
        return self._with_repair(lambda: self.sheet(name).dimension_ref)

    def read_rows(self, name: Optional[str] = None, max_rows: Optional[int] = None) -> List[Record]:
        def _read() -> List[Record]:
            rows = self.sheet(name).iter_rows()
            if max_rows is not None:
                rows = itertools.islice(rows, max_rows)
            return [to_record(r) for r in rows]
        return self._with_repair(_read)

    def close(self) -> None:
        if self.workbook is not None:
            self.workbook.close()
            self.workbook = None

    def _decode(self) -> None:
        self.close()
        self.workbook = self.decoder(self.data, self.file_format)

    def _ensure_decoded(self) -> None:
        if self.workbook is None:
            self._decode()

    def _with_repair(self, action):
        try:
            return action()
        except CleanerError:
            raise
        except Exception as e:
            if is_encryption_error(e, self.data, self.file_format):
                raise EncryptedOrProtected("This file is password protected or encrypted. Remove protection and try again.") from e
            if self.repaired or self.file_format not in ARCHIVE_FORMATS or not is_corruption_error(e):
                raise UnsupportedOrCorruptContainer(f"Unable to read workbook: {e}") from e
            logger.warning("Workbook decode failed (%s); attempting archive repair", e)

        self.data = repair_container(self.data)
        self.repaired = True
        try:
            self._decode()
            return action()
        except Exception as e:
            logger.error("Workbook still unreadable after repair: %s", e)
            raise UnsupportedOrCorruptContainer(f"Unable to read workbook, even after repair: {e}") from e
