"""
Validation engine for normalized observations.

Modules:
    config: ValidationConfig built from settings
    rules: Rule, RuleSet and the default common/category rules
    outliers: IQR, z-score and modified z-score outlier detection
    duplicates: exact signatures and weighted near-duplicate similarity
    freshness: per-source FRESH / STALE / EXPIRED classification
    scoring: quality score and acceptance decision
    engine: ValidationEngine combining the four stages
"""

from validation.config import ValidationConfig
from validation.engine import BatchValidation, ValidationEngine
from validation.rules import Rule, RuleContext, RuleSet, default_rule_set
from validation.scoring import QualityScorer

__all__ = [
    "BatchValidation",
    "QualityScorer",
    "Rule",
    "RuleContext",
    "RuleSet",
    "ValidationConfig",
    "ValidationEngine",
    "default_rule_set",
]
