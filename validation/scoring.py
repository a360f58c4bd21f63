"""
Quality scorer: combine findings and stage flags into one [0, 1] score.
"""

from typing import Iterable

from schemas.validation import Finding, FreshnessStatus, Severity

SEVERITY_DEDUCTIONS = {
    Severity.ERROR: 0.3,
    Severity.WARNING: 0.1,
    Severity.INFO: 0.05,
}
OUTLIER_MULTIPLIER = 0.9
NEAR_DUPLICATE_MULTIPLIER = 0.95


class QualityScorer:
    def __init__(self, acceptance_threshold: float = 0.7):
        self.acceptance_threshold = acceptance_threshold

    def score(
        self,
        findings: Iterable[Finding],
        is_outlier: bool = False,
        is_near_duplicate: bool = False,
    ) -> float:
        score = 1.0
        for finding in findings:
            if finding.signal:
                continue
            score -= SEVERITY_DEDUCTIONS[finding.severity]
        score = max(score, 0.0)

        if is_outlier:
            score *= OUTLIER_MULTIPLIER
        if is_near_duplicate:
            score *= NEAR_DUPLICATE_MULTIPLIER

        return round(max(score, 0.0), 6)

    def is_accepted(
        self,
        findings: Iterable[Finding],
        score: float,
        freshness: FreshnessStatus = FreshnessStatus.FRESH,
    ) -> bool:
        if any(f.severity == Severity.ERROR for f in findings):
            return False
        if freshness == FreshnessStatus.EXPIRED:
            return False
        return score >= self.acceptance_threshold
