from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


@dataclass(frozen=True)
class CanonicalNumber:
    """A validated local number; duplicates compare on ``local`` only."""
    local: str
    country_code: str

    @property
    def international(self) -> str:
        return f"+{self.country_code}{self.local}"

    @property
    def key(self) -> str:
        return self.local

    def __str__(self) -> str:
        return self.international


class OutcomeKind(str, Enum):
    VALID = "valid"
    INVALID_PATTERN = "invalidPattern"
    INVALID_LENGTH = "invalidLength"
    EMPTY = "empty"


@dataclass(frozen=True)
class CleaningOutcome:
    """Exactly one per (row, column) pair."""
    kind: OutcomeKind
    numbers: Tuple[CanonicalNumber, ...] = ()

    @classmethod
    def valid(cls, numbers) -> "CleaningOutcome":
        return cls(OutcomeKind.VALID, tuple(numbers))

    @classmethod
    def invalid_pattern(cls) -> "CleaningOutcome":
        return cls(OutcomeKind.INVALID_PATTERN)

    @classmethod
    def invalid_length(cls) -> "CleaningOutcome":
        return cls(OutcomeKind.INVALID_LENGTH)

    @classmethod
    def empty(cls) -> "CleaningOutcome":
        return cls(OutcomeKind.EMPTY)

    @property
    def is_valid(self) -> bool:
        return self.kind is OutcomeKind.VALID

    @property
    def primary(self) -> Optional[CanonicalNumber]:
        return self.numbers[0] if self.numbers else None


class ExportMode(str, Enum):
    FULL = "full"              # cleaned numbers in place, rows without a number dropped
    UNIQUE = "unique"          # flat list of first-seen numbers
    MOBILE_NAME = "mobile_name"  # (name, number) pairs
    KEEP_ALL = "keep_all"      # every row kept, numbers replaced where valid


class StatCategory(str, Enum):
    VALID = "valid"
    DUPLICATE = "duplicate"
    INVALID_PATTERN = "invalidPattern"
    INVALID_LENGTH = "invalidLength"
