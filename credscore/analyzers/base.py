"""
Shared analyzer types and numeric helpers.

Every analyzer turns a raw snapshot into an AnalysisResult whose sub-score
lives in [0, 100]. Helpers here keep rounding and timestamp handling
identical across analyzers so repeated runs produce identical metrics.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..schema import parse_date

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class AnalysisResult:
    metrics: Dict[str, Any]
    subscore: int
    verified: bool = False
    limitations: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.subscore = clamp_score(self.subscore)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives, matching score tables."""
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    return max(0, min(100, round_half_up(value)))


def round_metric(value: float, digits: int = 2) -> float:
    """Fixed-precision float for persisted metrics."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def log_points(value: float, multiplier: float, cap: float) -> float:
    """min(cap, log10(value + 1) * multiplier), zero for non-positive values."""
    if value <= 0:
        return 0.0
    return min(cap, math.log10(value + 1) * multiplier)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a provider timestamp, None if absent or malformed."""
    try:
        return parse_date(value)
    except (TypeError, ValueError):
        return None


def collect_timestamps(values: Iterable[Any]) -> List[datetime]:
    """Parsed timestamps, newest first."""
    parsed = [ts for ts in (parse_timestamp(v) for v in values) if ts is not None]
    return sorted(parsed, reverse=True)


def coefficient_of_variation(values: Sequence[float], empty: float = 1.0) -> float:
    """Population standard deviation divided by the mean.

    Returns `empty` when there is nothing to measure (no values or a zero mean).
    """
    if not values:
        return empty
    mean = sum(values) / len(values)
    if mean <= 0:
        return empty
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return math.sqrt(variance) / mean


def gaps_in_days(timestamps: Sequence[datetime]) -> List[float]:
    """Gaps between consecutive timestamps (any order), in days."""
    ordered = sorted(timestamps)
    return [
        (later - earlier).total_seconds() / SECONDS_PER_DAY
        for earlier, later in zip(ordered, ordered[1:])
    ]


def regularity_score(timestamps: Sequence[datetime], min_points: int = 2) -> int:
    """
    Posting regularity 0-100: 100 - 50 * CV of the gaps between posts.

    Fewer than `min_points` timestamps score 0.
    """
    if len(timestamps) < min_points:
        return 0
    cv = coefficient_of_variation(gaps_in_days(timestamps))
    return clamp_score(max(0.0, 100 - cv * 50))


def per_week(count: int, timestamps: Sequence[datetime], default_days: float = 7.0) -> float:
    """Average items per week across the span of timestamps."""
    if count == 0:
        return 0.0
    if len(timestamps) > 1:
        span_days = (max(timestamps) - min(timestamps)).total_seconds() / SECONDS_PER_DAY
    else:
        span_days = default_days
    if span_days <= 0:
        span_days = default_days
    return count / span_days * 7


def years_between(start: datetime, end: datetime) -> float:
    return max(0.0, (end - start).total_seconds() / (365 * SECONDS_PER_DAY))


def as_date(value: datetime) -> date:
    return value.date() if isinstance(value, datetime) else value
