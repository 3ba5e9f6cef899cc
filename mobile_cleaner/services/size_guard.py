"""Dimension ceilings checked before any sheet data is materialised."""

import logging
from dataclasses import dataclass
from typing import Optional

from openpyxl.utils.cell import range_boundaries

from mobile_cleaner.config import Settings, get_settings
from mobile_cleaner.errors import EmptySheet, InputTooLarge

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SheetDimensions:
    rows: int
    columns: int

    @property
    def cells(self) -> int:
        return self.rows * self.columns


def parse_dimension_ref(ref: Optional[str]) -> SheetDimensions:
    """
    ``"A1:Z200001"`` → 200001 rows × 26 columns.

    A missing ref means the sheet declares no extent at all; that is
    indistinguishable from an unreadable sheet and is rejected.
    """
    if not ref or not str(ref).strip():
        raise EmptySheet("Selected sheet is empty or unreadable (no data range declared)")
    try:
        min_col, min_row, max_col, max_row = range_boundaries(str(ref).strip().upper())
    except (ValueError, TypeError) as e:
        raise EmptySheet(f"Selected sheet is empty or unreadable (bad range '{ref}')") from e
    if None in (min_col, min_row, max_col, max_row):
        raise EmptySheet(f"Selected sheet is empty or unreadable (open range '{ref}')")
    return SheetDimensions(rows=max_row - min_row + 1, columns=max_col - min_col + 1)


def check_file_size(size: int, settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    if size > settings.MAX_FILE_SIZE_BYTES:
        raise InputTooLarge(
            f"File too large ({size / 1024 / 1024:.1f}MB). "
            f"Maximum {settings.MAX_FILE_SIZE_BYTES / 1024 / 1024:.0f}MB."
        )


def check_dimensions(dims: SheetDimensions, settings: Optional[Settings] = None) -> Optional[str]:
    """Raise InputTooLarge past any hard ceiling; return a warning for large-but-allowed."""
    settings = settings or get_settings()

    if dims.rows > settings.MAX_ROWS:
        raise InputTooLarge(
            f"Sheet has {dims.rows:,} rows. Maximum supported rows: {settings.MAX_ROWS:,}."
        )
    if dims.columns > settings.MAX_COLUMNS:
        raise InputTooLarge(
            f"Sheet has {dims.columns:,} columns. Maximum supported columns: {settings.MAX_COLUMNS:,}."
        )
    if dims.cells > settings.MAX_CELLS:
        raise InputTooLarge(
            f"Sheet has about {dims.cells:,} cells. Maximum supported cells: {settings.MAX_CELLS:,}."
        )

    if dims.rows > settings.LARGE_SHEET_WARNING_ROWS:
        warning = (
            f"Large sheet ({dims.rows:,} rows). Processing may take a while; "
            f"fast mode skips audit samples above {settings.FAST_MODE_ROW_THRESHOLD:,} rows."
        )
        logger.warning(warning)
        return warning
    return None


def check_sheet_ref(ref: Optional[str], settings: Optional[Settings] = None) -> Optional[str]:
    return check_dimensions(parse_dimension_ref(ref), settings)
