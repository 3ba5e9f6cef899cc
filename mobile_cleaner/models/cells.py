"""
Cell values: a small tagged union over what a spreadsheet or CSV cell can hold.

Decoders hand back heterogeneous Python / numpy / pandas values; ``to_cell``
folds them into one of five variants so the cleaning code can branch on the
tag instead of guessing at types.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, List, Union

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class TextCell:
    value: str


@dataclass(frozen=True)
class NumberCell:
    value: Union[int, float, Decimal]


@dataclass(frozen=True)
class BoolCell:
    value: bool


@dataclass(frozen=True)
class DateCell:
    value: Union[datetime, date, time]


@dataclass(frozen=True)
class EmptyCell:
    pass


Cell = Union[TextCell, NumberCell, BoolCell, DateCell, EmptyCell]
Record = List[Cell]

EMPTY = EmptyCell()


def format_number(value: Union[int, float, Decimal]) -> str:
    """
    Plain decimal text for a number: no grouping, no exponent, at most 20
    fractional digits.  ``9.19818202888e11`` → ``"919818202888"``.
    """
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return ""
    if isinstance(value, float):
        dec = Decimal(repr(value))
    else:
        dec = Decimal(value)
    if dec == dec.to_integral_value():
        return str(int(dec))
    if -dec.as_tuple().exponent > 20:
        dec = dec.quantize(Decimal("1e-20")).normalize()
    return format(dec, "f")


def to_cell(raw: Any) -> Cell:
    """Tag a raw decoder value."""
    if isinstance(raw, (TextCell, NumberCell, BoolCell, DateCell, EmptyCell)):
        return raw
    if raw is None or raw is pd.NaT or raw is pd.NA:
        return EMPTY
    # bool before int: bool is an int subclass
    if isinstance(raw, (bool, np.bool_)):
        return BoolCell(bool(raw))
    if isinstance(raw, (int, np.integer)):
        return NumberCell(int(raw))
    if isinstance(raw, (float, np.floating)):
        value = float(raw)
        if math.isnan(value):
            return EMPTY
        return NumberCell(value)
    if isinstance(raw, Decimal):
        return NumberCell(raw)
    if isinstance(raw, pd.Timestamp):
        return DateCell(raw.to_pydatetime())
    if isinstance(raw, (datetime, date, time)):
        return DateCell(raw)
    text = str(raw)
    if not text.strip():
        return EMPTY
    return TextCell(text)


def to_record(values) -> Record:
    return [to_cell(v) for v in values]


def is_blank(cell: Cell) -> bool:
    """True for an absent value or one that cleans to nothing (falsy source)."""
    if isinstance(cell, EmptyCell):
        return True
    if isinstance(cell, TextCell):
        return not cell.value.strip()
    if isinstance(cell, NumberCell):
        return cell.value == 0
    if isinstance(cell, BoolCell):
        return not cell.value
    return False


def cell_text(cell: Cell) -> str:
    """Plain display text for a cell (headers, names, audit samples)."""
    if isinstance(cell, EmptyCell):
        return ""
    if isinstance(cell, TextCell):
        return cell.value
    if isinstance(cell, NumberCell):
        return format_number(cell.value)
    if isinstance(cell, BoolCell):
        return "TRUE" if cell.value else "FALSE"
    return cell.value.isoformat()


def cell_value(cell: Cell) -> Any:
    """Native value for writers and JSON responses."""
    if isinstance(cell, EmptyCell):
        return None
    if isinstance(cell, NumberCell) and isinstance(cell.value, Decimal):
        return float(cell.value)
    return cell.value
