"""Per-run counters plus bounded audit samples for each outcome category."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from mobile_cleaner.models.outcome import StatCategory

REPORT_HEADERS = ["Row", "Column", "Original Value", "Cleaned Number"]


@dataclass
class RunStats:
    total: int = 0
    valid: int = 0
    duplicates: int = 0
    invalid_pattern: int = 0
    invalid_length: int = 0


@dataclass
class StatSample:
    row_number: int
    column: str
    original: str
    cleaned: Optional[str] = None


@dataclass
class StatsCollector:
    """
    Counters always advance; a bucket that reaches ``capacity`` silently stops
    recording further samples for its category.  ``sampling`` is switched off
    in fast mode.
    """
    capacity: int = 10_000
    sampling: bool = True
    counters: RunStats = field(default_factory=RunStats)
    buckets: Dict[StatCategory, List[StatSample]] = field(
        default_factory=lambda: {c: [] for c in StatCategory}
    )

    def sample(self, category: StatCategory, row_number: int, column: str, original: str, cleaned: Optional[str] = None) -> None:
        if not self.sampling:
            return
        bucket = self.buckets[category]
        if len(bucket) >= self.capacity:
            return
        bucket.append(StatSample(row_number, column, original, cleaned))

    def report(self, category: StatCategory) -> Tuple[List[str], List[List[Any]]]:
        """Header + rows for one audit download."""
        rows = [[s.row_number, s.column, s.original, s.cleaned or ""] for s in self.buckets[category]]
        return list(REPORT_HEADERS), rows

    def summary(self) -> Dict[str, Any]:
        result = asdict(self.counters)
        result["samples"] = {c.value: len(b) for c, b in self.buckets.items()}
        result["fast_mode"] = not self.sampling
        return result
