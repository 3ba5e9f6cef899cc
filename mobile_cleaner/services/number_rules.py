"""
Mobile Number Rules: normalisation and validation

Turns an arbitrary cell into zero, one or two canonical mobile numbers:

- MOBILE-01: Empty check (absent / falsy source value → Empty)
- MOBILE-02: Numeric cell expansion (no grouping, no exponent)
- MOBILE-03: Scientific-notation text recovery (9.19818202888E+11 → 919818202888)
- MOBILE-04: Formatting strip (spaces, hyphens, brackets, plus, dots)
- MOBILE-05: Candidate extraction (runs of 10-12 digits, leftmost first)
- MOBILE-06: Prefix strip (country code on 12 digits, single trunk zero on 11)
- MOBILE-07: Shape check (10 digits, accepted first digit)
- MOBILE-08: Placeholder rejection (all-same digit, literal sequences)
- MOBILE-09: Canonical form + in-cell de-duplication, capped per cell
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any, FrozenSet, List, Optional

from mobile_cleaner.config import Settings, get_settings
from mobile_cleaner.models.cells import (
    BoolCell,
    Cell,
    DateCell,
    EmptyCell,
    NumberCell,
    TextCell,
    format_number,
    is_blank,
    to_cell,
)
from mobile_cleaner.models.outcome import CanonicalNumber, CleaningOutcome


# ============================================================================
# CONSTANTS
# ============================================================================

# [sign]digits[.digits]e[sign]digits
SCIENTIFIC_PATTERN = re.compile(r'^[+-]?\d+(?:\.\d+)?e[+-]?\d+$', re.IGNORECASE)

# List separators split a cell into independent number segments; everything
# else that is not a digit is formatting and is dropped inside a segment.
LIST_SEPARATOR_PATTERN = re.compile(r'\s*(?:[/,;&|\n]|\bor\b)\s*', re.IGNORECASE)

NON_DIGIT_PATTERN = re.compile(r'\D')

CANDIDATE_PATTERN = re.compile(r'\d{10,12}')

LOCAL_LENGTH = 10

# Scientific text is only re-expanded up to this many integer digits
MAX_EXPANDED_DIGITS = 30


@dataclass(frozen=True)
class NumberRules:
    """Country-specific shape of a valid local number."""
    country_code: str = "91"
    first_digits: FrozenSet[str] = frozenset("6789")
    rejected_sequences: FrozenSet[str] = frozenset()
    max_per_cell: int = 2

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "NumberRules":
        settings = settings or get_settings()
        return cls(
            country_code=settings.COUNTRY_CODE,
            first_digits=frozenset(settings.MOBILE_FIRST_DIGITS),
            rejected_sequences=frozenset(settings.REJECTED_SEQUENCES),
            max_per_cell=settings.MAX_NUMBERS_PER_CELL,
        )


@lru_cache()
def default_rules() -> NumberRules:
    return NumberRules.from_settings()


# ============================================================================
# HELPER FUNCTIONS: NORMALISATION
# ============================================================================

def expand_scientific(text: str) -> str:
    """Re-expand scientific notation to plain decimal text; other text unchanged."""
    stripped = text.strip()
    if not SCIENTIFIC_PATTERN.match(stripped):
        return text
    try:
        dec = Decimal(stripped)
    except (InvalidOperation, ValueError):
        return text
    if dec.adjusted() >= MAX_EXPANDED_DIGITS:
        return text
    return format_number(dec)


def strip_formatting(text: str) -> str:
    """
    Drop every non-digit inside each list segment; keep one space between
    segments so separate numbers never fuse into one run.
    """
    segments = LIST_SEPARATOR_PATTERN.split(text)
    digits = [NON_DIGIT_PATTERN.sub('', s) for s in segments]
    return ' '.join(d for d in digits if d)


def normalize_cell(cell: Cell) -> str:
    """Map any cell to its digit-bearing string."""
    if isinstance(cell, EmptyCell):
        return ""
    if isinstance(cell, NumberCell):
        return strip_formatting(format_number(cell.value))
    if isinstance(cell, TextCell):
        return strip_formatting(expand_scientific(cell.value))
    if isinstance(cell, BoolCell):
        return ""
    if isinstance(cell, DateCell):
        return strip_formatting(cell.value.isoformat())
    return strip_formatting(str(cell))


# ============================================================================
# HELPER FUNCTIONS: VALIDATION
# ============================================================================

def find_candidates(digits: str) -> List[str]:
    """Every non-overlapping run of 10-12 digits, leftmost first, greedy."""
    return CANDIDATE_PATTERN.findall(digits)


def strip_prefix(run: str, rules: NumberRules) -> str:
    cc = rules.country_code
    if len(run) == LOCAL_LENGTH + len(cc) and run.startswith(cc):
        return run[len(cc):]
    if len(run) == LOCAL_LENGTH + 1 and run[0] == '0' and run[1] != '0':
        return run[1:]
    return run


def has_valid_shape(local: str, rules: NumberRules) -> bool:
    return len(local) == LOCAL_LENGTH and local.isdigit() and local[0] in rules.first_digits


def is_rejected_pattern(local: str, rules: NumberRules) -> bool:
    """All-identical digits or a listed monotonic sequence."""
    if len(set(local)) == 1:
        return True
    return local in rules.rejected_sequences


def validate_digits(digits: str, rules: Optional[NumberRules] = None, max_count: Optional[int] = None) -> CleaningOutcome:
    """Extract up to ``max_count`` canonical numbers from a normalised digit string."""
    rules = rules or default_rules()
    limit = max_count if max_count is not None else rules.max_per_cell

    candidates = find_candidates(digits)
    if not candidates:
        return CleaningOutcome.invalid_length()

    found: List[CanonicalNumber] = []
    seen = set()
    for run in candidates:
        local = strip_prefix(run, rules)
        if not has_valid_shape(local, rules):
            continue
        if is_rejected_pattern(local, rules):
            continue
        if local in seen:
            continue
        seen.add(local)
        found.append(CanonicalNumber(local=local, country_code=rules.country_code))
        if len(found) >= limit:
            break

    if not found:
        return CleaningOutcome.invalid_pattern()
    return CleaningOutcome.valid(found)


def clean_cell(value: Any, rules: Optional[NumberRules] = None, max_count: Optional[int] = None) -> CleaningOutcome:
    """Full normalise → validate pass for one cell (raw value or tagged Cell)."""
    cell = to_cell(value)
    if is_blank(cell):
        return CleaningOutcome.empty()
    return validate_digits(normalize_cell(cell), rules, max_count)


def clean_mobile(value: Any, rules: Optional[NumberRules] = None) -> Optional[str]:
    """Primary canonical number of a cell, or None."""
    outcome = clean_cell(value, rules)
    return outcome.primary.international if outcome.is_valid else None
