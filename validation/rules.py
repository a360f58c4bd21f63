"""
Rule stage: named, category-scoped predicates over an observation.

Rules are data. The engine asks a ``RuleSet`` for the rules of an
observation's category and evaluates them in order; adding a constraint for a
category means adding a ``Rule``, not a new code path.

A rule's ``check`` returns ``None`` when the observation passes, or a message
describing the violation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from core.config import CategoryPolicy
from schemas.observation import Observation
from schemas.validation import Finding, Severity, ValidationStage
from validation.config import ValidationConfig

ALL_CATEGORIES = "all"

LOW_CONFIDENCE = 0.5
SUSPICIOUS_SINGLE_SAMPLE_CONFIDENCE = 0.7


@dataclass(frozen=True)
class RuleContext:
    """Everything a rule may consult besides the observation itself"""
    now: datetime
    valid_categories: frozenset
    valid_regions: frozenset
    max_observation_age: timedelta

    @classmethod
    def from_config(cls, config: ValidationConfig, now: datetime) -> "RuleContext":
        return cls(
            now=now,
            valid_categories=frozenset(config.valid_categories),
            valid_regions=frozenset(config.valid_regions),
            max_observation_age=config.max_observation_age,
        )


CheckFn = Callable[[Observation, RuleContext], Optional[str]]


@dataclass(frozen=True)
class Rule:
    name: str
    category: str
    field: str
    severity: Severity
    check: CheckFn

    def applies_to(self, category: str) -> bool:
        return self.category == ALL_CATEGORIES or self.category == category

    def evaluate(self, observation: Observation, ctx: RuleContext) -> Optional[Finding]:
        message = self.check(observation, ctx)
        if message is None:
            return None
        return Finding(
            rule=self.name,
            severity=self.severity,
            message=message,
            stage=ValidationStage.RULES,
            field=self.field,
        )


@dataclass
class RuleSet:
    """Ordered collection of rules; common rules first, then category rules"""
    rules: List[Rule] = field(default_factory=list)

    def add_rule(self, rule: Rule) -> None:
        self.rules.append(rule)

    def remove_rule(self, name: str) -> bool:
        for i, rule in enumerate(self.rules):
            if rule.name == name:
                del self.rules[i]
                return True
        return False

    def rules_for_category(self, category: str) -> List[Rule]:
        return [rule for rule in self.rules if rule.applies_to(category)]

    def names(self) -> List[str]:
        return [rule.name for rule in self.rules]

    def evaluate(self, observation: Observation, ctx: RuleContext) -> List[Finding]:
        findings = []
        for rule in self.rules_for_category(observation.category):
            finding = rule.evaluate(observation, ctx)
            if finding is not None:
                findings.append(finding)
        return findings


# ============================================================================
# Common rules
# ============================================================================

def _required_fields(dp: Observation, ctx: RuleContext) -> Optional[str]:
    missing = [
        name for name, value in (
            ("item_name", dp.item_name),
            ("category", dp.category),
            ("source", dp.source),
            ("region", dp.location.region),
        )
        if not value
    ]
    if missing:
        return f"required fields missing: {', '.join(missing)}"
    return None


def _valid_category(dp: Observation, ctx: RuleContext) -> Optional[str]:
    if dp.category and dp.category not in ctx.valid_categories:
        return f"invalid category: {dp.category}"
    return None


def _valid_region(dp: Observation, ctx: RuleContext) -> Optional[str]:
    if dp.location.region and dp.location.region not in ctx.valid_regions:
        return f"invalid region: {dp.location.region}"
    return None


def _positive_price(dp: Observation, ctx: RuleContext) -> Optional[str]:
    if dp.price <= 0:
        return f"price must be positive: {dp.price}"
    return None


def _min_max_consistency(dp: Observation, ctx: RuleContext) -> Optional[str]:
    low, high = dp.min_price, dp.max_price
    if low is not None and high is not None and low > high:
        return f"min_price ({low}) cannot be greater than max_price ({high})"
    if low is not None and dp.price < low:
        return f"price ({dp.price}) is below min_price ({low})"
    if high is not None and dp.price > high:
        return f"price ({dp.price}) is above max_price ({high})"
    return None


def _confidence_range(dp: Observation, ctx: RuleContext) -> Optional[str]:
    if dp.confidence < 0 or dp.confidence > 1:
        return f"confidence must be between 0 and 1: {dp.confidence}"
    return None


def _low_confidence(dp: Observation, ctx: RuleContext) -> Optional[str]:
    if 0 <= dp.confidence < LOW_CONFIDENCE:
        return f"low confidence score: {dp.confidence}"
    return None


def _valid_timestamp(dp: Observation, ctx: RuleContext) -> Optional[str]:
    if dp.recorded_at > ctx.now:
        return f"recorded_at cannot be in the future: {dp.recorded_at.isoformat()}"
    if ctx.now - dp.recorded_at > ctx.max_observation_age:
        return f"data is older than {ctx.max_observation_age.days} days"
    return None


def _sample_size(dp: Observation, ctx: RuleContext) -> Optional[str]:
    if dp.sample_size < 1:
        return f"sample size should be at least 1: {dp.sample_size}"
    return None


def _single_sample_confidence(dp: Observation, ctx: RuleContext) -> Optional[str]:
    if dp.sample_size == 1 and dp.confidence > SUSPICIOUS_SINGLE_SAMPLE_CONFIDENCE:
        return f"high confidence ({dp.confidence}) with sample size of 1 is suspicious"
    return None


def build_common_rules() -> List[Rule]:
    """Rules that apply to every observation regardless of category"""
    return [
        Rule("required_fields", ALL_CATEGORIES, "item_name", Severity.ERROR, _required_fields),
        Rule("valid_category", ALL_CATEGORIES, "category", Severity.ERROR, _valid_category),
        Rule("valid_region", ALL_CATEGORIES, "location", Severity.ERROR, _valid_region),
        Rule("positive_price", ALL_CATEGORIES, "price", Severity.ERROR, _positive_price),
        Rule("min_max_price_consistency", ALL_CATEGORIES, "price", Severity.ERROR, _min_max_consistency),
        Rule("valid_confidence", ALL_CATEGORIES, "confidence", Severity.ERROR, _confidence_range),
        Rule("low_confidence", ALL_CATEGORIES, "confidence", Severity.WARNING, _low_confidence),
        Rule("valid_timestamp", ALL_CATEGORIES, "recorded_at", Severity.ERROR, _valid_timestamp),
        Rule("sample_size_minimum", ALL_CATEGORIES, "sample_size", Severity.ERROR, _sample_size),
        Rule("sample_size_confidence", ALL_CATEGORIES, "sample_size", Severity.WARNING, _single_sample_confidence),
    ]


# ============================================================================
# Category rules, generated from the per-category policy table
# ============================================================================

def _rule_prefix(category: str) -> str:
    return category.lower().replace(" ", "_")


def _price_range_check(category: str, policy: CategoryPolicy) -> CheckFn:
    def check(dp: Observation, ctx: RuleContext) -> Optional[str]:
        low, high = policy.price_range_for(dp.unit)
        if dp.price < low or dp.price > high:
            return (
                f"{category.lower()} price out of range: {dp.price} "
                f"(expected {low}-{high} for unit {dp.unit})"
            )
        return None
    return check


def _required_attributes_check(category: str, keys: List[str]) -> CheckFn:
    def check(dp: Observation, ctx: RuleContext) -> Optional[str]:
        missing = [key for key in keys if key not in dp.attributes]
        if missing:
            return f"missing attributes for {category.lower()} data: {', '.join(missing)}"
        return None
    return check


def _unit_check(category: str, units: List[str]) -> CheckFn:
    def check(dp: Observation, ctx: RuleContext) -> Optional[str]:
        if dp.unit not in units:
            return f"unexpected unit for {category.lower()}: {dp.unit} (expected one of {', '.join(units)})"
        return None
    return check


def _source_check(category: str, sources: List[str]) -> CheckFn:
    expected = [s.lower() for s in sources]

    def check(dp: Observation, ctx: RuleContext) -> Optional[str]:
        source = dp.source.lower()
        if not any(name in source for name in expected):
            return f"unexpected {category.lower()} source: {dp.source}"
        return None
    return check


def build_category_rules(policies: Dict[str, CategoryPolicy]) -> List[Rule]:
    rules: List[Rule] = []
    for category, policy in policies.items():
        prefix = _rule_prefix(category)
        rules.append(Rule(
            f"{prefix}_price_range", category, "price", Severity.ERROR,
            _price_range_check(category, policy),
        ))
        if policy.required_attribute_keys:
            rules.append(Rule(
                f"{prefix}_attributes", category, "attributes", Severity.WARNING,
                _required_attributes_check(category, list(policy.required_attribute_keys)),
            ))
        if policy.valid_units:
            rules.append(Rule(
                f"{prefix}_unit", category, "unit", Severity.WARNING,
                _unit_check(category, list(policy.valid_units)),
            ))
        if policy.expected_sources:
            rules.append(Rule(
                f"{prefix}_source", category, "source", Severity.WARNING,
                _source_check(category, list(policy.expected_sources)),
            ))
    return rules


def default_rule_set(config: Optional[ValidationConfig] = None) -> RuleSet:
    config = config or ValidationConfig()
    return RuleSet(build_common_rules() + build_category_rules(config.category_policies))
