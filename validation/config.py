"""
Validation configuration passed explicitly into the engine and its stages.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional

from core.config import (
    DEFAULT_CATEGORY_POLICIES,
    DEFAULT_REGIONS,
    DEFAULT_SOURCE_MAX_AGE_DAYS,
    CategoryPolicy,
    OutlierMethod,
    Settings,
)

# Method defaults: IQR multiplier, |z| cut-off, modified |z| cut-off
DEFAULT_OUTLIER_THRESHOLDS: Dict[OutlierMethod, float] = {
    OutlierMethod.IQR: 1.5,
    OutlierMethod.ZSCORE: 3.0,
    OutlierMethod.MODIFIED_ZSCORE: 3.5,
}


@dataclass(frozen=True)
class ValidationConfig:
    valid_categories: List[str] = field(default_factory=lambda: list(DEFAULT_CATEGORY_POLICIES))
    valid_regions: List[str] = field(default_factory=lambda: list(DEFAULT_REGIONS))
    category_policies: Dict[str, CategoryPolicy] = field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_POLICIES)
    )
    source_max_age: Dict[str, timedelta] = field(
        default_factory=lambda: {k: timedelta(days=v) for k, v in DEFAULT_SOURCE_MAX_AGE_DAYS.items()}
    )
    default_max_age: timedelta = timedelta(days=7)
    max_observation_age: timedelta = timedelta(days=365)

    outlier_method: OutlierMethod = OutlierMethod.IQR
    outlier_threshold: Optional[float] = None
    min_outlier_sample: int = 3

    duplicate_time_window: timedelta = timedelta(hours=24)
    duplicate_price_threshold: float = 0.05
    duplicate_similarity_threshold: float = 0.85

    acceptance_score_threshold: float = 0.7

    enable_outlier_detection: bool = True
    enable_duplicate_check: bool = True
    enable_freshness_check: bool = True

    @property
    def effective_outlier_threshold(self) -> float:
        if self.outlier_threshold is not None:
            return self.outlier_threshold
        return DEFAULT_OUTLIER_THRESHOLDS[self.outlier_method]

    @classmethod
    def from_settings(cls, settings: Settings) -> "ValidationConfig":
        return cls(
            valid_categories=list(settings.VALID_CATEGORIES),
            valid_regions=list(settings.VALID_REGIONS),
            category_policies=dict(settings.CATEGORY_POLICIES),
            source_max_age={
                source.lower(): timedelta(days=days)
                for source, days in settings.SOURCE_MAX_AGE_DAYS.items()
            },
            default_max_age=timedelta(days=settings.DEFAULT_MAX_AGE_DAYS),
            max_observation_age=timedelta(days=settings.MAX_OBSERVATION_AGE_DAYS),
            outlier_method=OutlierMethod(settings.OUTLIER_METHOD),
            outlier_threshold=settings.OUTLIER_THRESHOLD,
            duplicate_time_window=settings.duplicate_time_window,
            duplicate_price_threshold=settings.DUPLICATE_PRICE_THRESHOLD,
            duplicate_similarity_threshold=settings.DUPLICATE_SIMILARITY_THRESHOLD,
            acceptance_score_threshold=settings.ACCEPTANCE_SCORE_THRESHOLD,
        )
