"""
Freshness stage: classify an observation's age against its source's max age.

    age <  1.5 x max_age          FRESH
    1.5 x max_age <= age < 3 x    STALE
    age >= 3 x max_age            EXPIRED
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from schemas.observation import ensure_utc
from schemas.validation import FreshnessStatus

STALE_FACTOR = 1.5
EXPIRED_FACTOR = 3.0


@dataclass
class FreshnessReport:
    source: str
    total_points: int = 0
    fresh_count: int = 0
    stale_count: int = 0
    expired_count: int = 0
    freshness_rate: float = 0.0
    oldest_age: Optional[timedelta] = None
    newest_age: Optional[timedelta] = None


class FreshnessChecker:
    """Source-specific freshness classification"""

    def __init__(
        self,
        max_age_by_source: Optional[Dict[str, timedelta]] = None,
        default_max_age: timedelta = timedelta(days=7),
    ):
        self.max_age_by_source = {
            source.lower(): age for source, age in (max_age_by_source or {}).items()
        }
        self.default_max_age = default_max_age

    def max_age(self, source: str) -> timedelta:
        """
        Exact (case-insensitive) source match first, then the longest table key
        the source starts with, so ``careem_rates`` inherits ``careem``.
        """
        key = (source or "").strip().lower()
        if key in self.max_age_by_source:
            return self.max_age_by_source[key]
        prefixes = [name for name in self.max_age_by_source if key.startswith(name)]
        if prefixes:
            return self.max_age_by_source[max(prefixes, key=len)]
        return self.default_max_age

    def set_max_age(self, source: str, max_age: timedelta) -> None:
        self.max_age_by_source[source.lower()] = max_age

    def check(self, source: str, recorded_at: datetime, now: datetime) -> FreshnessStatus:
        age = ensure_utc(now) - ensure_utc(recorded_at)
        max_age = self.max_age(source)

        if age >= max_age * EXPIRED_FACTOR:
            return FreshnessStatus.EXPIRED
        if age >= max_age * STALE_FACTOR:
            return FreshnessStatus.STALE
        return FreshnessStatus.FRESH

    def recommended_update_interval(self, source: str) -> timedelta:
        """Update at half the max age to stay fresh"""
        return self.max_age(source) / 2

    def needs_update(self, source: str, last_update: datetime, now: datetime) -> bool:
        return ensure_utc(now) - ensure_utc(last_update) > self.recommended_update_interval(source)

    def report(self, source: str, recorded_times: Iterable[datetime], now: datetime) -> FreshnessReport:
        report = FreshnessReport(source=source)
        ages: List[timedelta] = []

        for recorded_at in recorded_times:
            status = self.check(source, recorded_at, now)
            ages.append(ensure_utc(now) - ensure_utc(recorded_at))
            if status == FreshnessStatus.FRESH:
                report.fresh_count += 1
            elif status == FreshnessStatus.STALE:
                report.stale_count += 1
            else:
                report.expired_count += 1

        report.total_points = len(ages)
        if ages:
            report.oldest_age = max(ages)
            report.newest_age = min(ages)
            report.freshness_rate = report.fresh_count / report.total_points
        return report
