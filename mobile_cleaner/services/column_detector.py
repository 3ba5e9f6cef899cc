"""
Header / number-column / name-column heuristics.

These are guesses to pre-fill the caller's selection, never guarantees.  Each
is a small strategy object so callers (and tests) can swap in their own.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from rapidfuzz import fuzz, process

from mobile_cleaner.config import Settings, get_settings
from mobile_cleaner.models.cells import EmptyCell, Record, cell_text
from mobile_cleaner.services.number_rules import NumberRules, clean_cell

NAME_KEYWORDS = [
    "name", "full name", "customer name", "client name", "contact name",
    "student name", "candidate name", "member name", "party name",
    "person name", "applicant name", "contact person",
]

NAME_EXCLUDE_KEYWORDS = {
    "file name", "company name", "product name", "item name", "sheet name",
    "user name", "username", "org name", "organization name", "firm name",
}

ALPHA_PATTERN = re.compile(r'[A-Za-z]')
NON_ALNUM_PATTERN = re.compile(r'[^a-z0-9]+')


def normalize_header(text: str) -> str:
    return NON_ALNUM_PATTERN.sub(' ', text.lower()).strip()


def _is_alphabetic(cell) -> bool:
    return bool(ALPHA_PATTERN.search(cell_text(cell)))


class HeaderRowStrategy(Protocol):
    def detect(self, rows: Sequence[Record]) -> Optional[int]: ...


class NumberColumnStrategy(Protocol):
    def select(self, rows: Sequence[Record], header_row: int) -> List[int]: ...


class NameColumnStrategy(Protocol):
    def detect(self, headers: List[str], rows: Sequence[Record], header_row: int, exclude: Sequence[int] = ()) -> Optional[int]: ...


class AlphabeticHeaderDetector:
    """First of the leading rows whose filled cells are mostly text and hold no mobile number."""

    def __init__(self, scan_rows: int = 5, rules: Optional[NumberRules] = None):
        self.scan_rows = scan_rows
        self.rules = rules

    def detect(self, rows: Sequence[Record]) -> Optional[int]:
        for index, row in enumerate(rows[:self.scan_rows]):
            filled = [c for c in row if not isinstance(c, EmptyCell)]
            if not filled:
                continue
            alpha = sum(1 for c in filled if _is_alphabetic(c))
            if alpha * 2 < len(filled):
                continue
            if any(clean_cell(c, self.rules).is_valid for c in filled):
                continue
            return index
        return None


class ValidCountColumnSelector:
    """Columns with at least ``min_valid`` valid numbers in the first rows under the header."""

    def __init__(self, min_valid: int = 3, scan_rows: int = 10, rules: Optional[NumberRules] = None):
        self.min_valid = min_valid
        self.scan_rows = scan_rows
        self.rules = rules

    def select(self, rows: Sequence[Record], header_row: int) -> List[int]:
        width = len(rows[header_row])
        sample = rows[header_row + 1:header_row + 1 + self.scan_rows]
        selected = []
        for col in range(width):
            valid = 0
            for row in sample:
                if col < len(row) and clean_cell(row[col], self.rules).is_valid:
                    valid += 1
            if valid >= self.min_valid:
                selected.append(col)
        return selected


class KeywordNameDetector:
    """Fuzzy header match against a keyword list, then a fallback scan for text-valued columns."""

    def __init__(self, threshold: int = 85, scan_rows: int = 10):
        self.threshold = threshold
        self.scan_rows = scan_rows

    def detect(self, headers: List[str], rows: Sequence[Record], header_row: int, exclude: Sequence[int] = ()) -> Optional[int]:
        best_col = None
        best_score = 0.0
        for col, header in enumerate(headers):
            if col in exclude:
                continue
            norm = normalize_header(header)
            if not norm or norm in NAME_EXCLUDE_KEYWORDS:
                continue
            match = process.extractOne(norm, NAME_KEYWORDS, scorer=fuzz.token_sort_ratio, score_cutoff=self.threshold)
            if match and match[1] > best_score:
                best_col = col
                best_score = match[1]
        if best_col is not None:
            return best_col

        sample = rows[header_row + 1:header_row + 1 + self.scan_rows]
        if not sample:
            return None
        for col in range(len(headers)):
            if col in exclude:
                continue
            alpha = sum(1 for row in sample if col < len(row) and _is_alphabetic(row[col]))
            if alpha * 2 > len(sample):
                return col
        return None


@dataclass
class ColumnDetector:
    header_strategy: HeaderRowStrategy
    number_strategy: NumberColumnStrategy
    name_strategy: NameColumnStrategy

    @classmethod
    def default(cls, settings: Optional[Settings] = None, rules: Optional[NumberRules] = None) -> "ColumnDetector":
        settings = settings or get_settings()
        rules = rules or NumberRules.from_settings(settings)
        return cls(
            header_strategy=AlphabeticHeaderDetector(rules=rules),
            number_strategy=ValidCountColumnSelector(
                min_valid=settings.AUTO_SELECT_MIN_VALID,
                scan_rows=settings.AUTO_SELECT_SCAN_ROWS,
                rules=rules,
            ),
            name_strategy=KeywordNameDetector(scan_rows=settings.AUTO_SELECT_SCAN_ROWS),
        )
