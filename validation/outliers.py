"""
Outlier stage: per-category statistical outlier detection on price.

The reference sample for a category is the batch's prices plus, when the
storage collaborator supplies it, recent history for that category. Only batch
members are ever flagged. Outliers are a discount signal; they are never
rejected because legitimate extremes occur.
"""

from collections import defaultdict
from typing import Dict, List, Optional, Sequence

import pandas as pd

from core.config import OutlierMethod
from core.exceptions import ConfigurationError
from schemas.observation import Observation
from schemas.validation import OutlierReport
from validation.config import DEFAULT_OUTLIER_THRESHOLDS

MODIFIED_ZSCORE_CONSTANT = 0.6745


class OutlierDetector:
    """
    Detect statistical outliers in a batch of observations.

    Methods:
        iqr: flag outside [Q1 - k*IQR, Q3 + k*IQR]; quartiles are taken as
            observed sample values (lower interpolation) so a single extreme
            cannot stretch its own fence
        zscore: flag |x - mean| / std > k (population std)
        modifiedZscore: flag |0.6745 * (x - median) / MAD| > k; preferred when
            the sample itself may contain extremes
    """

    def __init__(
        self,
        method: OutlierMethod = OutlierMethod.IQR,
        threshold: Optional[float] = None,
        min_sample: int = 3,
    ):
        try:
            self.method = OutlierMethod(method)
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown outlier method: {method}",
                context={"supported": [m.value for m in OutlierMethod]},
                original_exception=e
            )
        self.threshold = threshold if threshold is not None else DEFAULT_OUTLIER_THRESHOLDS[self.method]
        if self.threshold <= 0:
            raise ConfigurationError(
                f"Outlier threshold must be positive: {self.threshold}",
                context={"method": self.method.value}
            )
        self.min_sample = min_sample

    def detect(
        self,
        batch: Sequence[Observation],
        history: Sequence[Observation] = (),
    ) -> List[OutlierReport]:
        """Return one report per flagged batch position, ordered by position"""
        batch_groups: Dict[str, List[int]] = defaultdict(list)
        for index, observation in enumerate(batch):
            if observation.price > 0:
                batch_groups[observation.category].append(index)

        history_prices: Dict[str, List[float]] = defaultdict(list)
        for observation in history:
            if observation.price > 0:
                history_prices[observation.category].append(observation.price)

        reports: List[OutlierReport] = []
        for category, indices in batch_groups.items():
            sample = pd.Series(
                [batch[i].price for i in indices] + history_prices.get(category, []),
                dtype="float64",
            )
            if len(sample) < self.min_sample:
                continue

            if self.method == OutlierMethod.IQR:
                reports.extend(self._detect_iqr(batch, indices, category, sample))
            elif self.method == OutlierMethod.ZSCORE:
                reports.extend(self._detect_zscore(batch, indices, category, sample))
            else:
                reports.extend(self._detect_modified_zscore(batch, indices, category, sample))

        return sorted(reports, key=lambda report: report.index)

    def outlier_indices(
        self,
        batch: Sequence[Observation],
        history: Sequence[Observation] = (),
    ) -> List[int]:
        return [report.index for report in self.detect(batch, history)]

    def _detect_iqr(self, batch, indices, category, sample: pd.Series) -> List[OutlierReport]:
        q1 = float(sample.quantile(0.25, interpolation="lower"))
        q3 = float(sample.quantile(0.75, interpolation="lower"))
        iqr = q3 - q1
        lower = q1 - self.threshold * iqr
        upper = q3 + self.threshold * iqr

        reports = []
        for index in indices:
            price = batch[index].price
            if lower <= price <= upper:
                continue
            distance = price - q3 if price > upper else q1 - price
            statistic = distance / iqr if iqr > 0 else float("inf")
            reports.append(OutlierReport(
                index=index,
                category=category,
                price=price,
                method=self.method.value,
                statistic=statistic,
                lower_bound=lower,
                upper_bound=upper,
                reason=f"price {price} outside IQR fence [{lower:.2f}, {upper:.2f}]",
            ))
        return reports

    def _detect_zscore(self, batch, indices, category, sample: pd.Series) -> List[OutlierReport]:
        mean = float(sample.mean())
        std = float(sample.std(ddof=0))
        if std == 0:
            return []  # All values are the same

        reports = []
        for index in indices:
            price = batch[index].price
            z = abs(price - mean) / std
            if z > self.threshold:
                reports.append(OutlierReport(
                    index=index,
                    category=category,
                    price=price,
                    method=self.method.value,
                    statistic=z,
                    lower_bound=mean - self.threshold * std,
                    upper_bound=mean + self.threshold * std,
                    reason=f"|z| = {z:.2f} exceeds {self.threshold}",
                ))
        return reports

    def _detect_modified_zscore(self, batch, indices, category, sample: pd.Series) -> List[OutlierReport]:
        median = float(sample.median())
        mad = float((sample - median).abs().median())
        if mad == 0:
            return []

        reports = []
        for index in indices:
            price = batch[index].price
            score = abs(MODIFIED_ZSCORE_CONSTANT * (price - median) / mad)
            if score > self.threshold:
                spread = self.threshold * mad / MODIFIED_ZSCORE_CONSTANT
                reports.append(OutlierReport(
                    index=index,
                    category=category,
                    price=price,
                    method=self.method.value,
                    statistic=score,
                    lower_bound=median - spread,
                    upper_bound=median + spread,
                    reason=f"modified |z| = {score:.2f} exceeds {self.threshold}",
                ))
        return reports
