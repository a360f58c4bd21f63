"""
Unit tests for the validation stages and engine
"""

from datetime import timedelta

import pytest

from core.config import OutlierMethod
from core.exceptions import ConfigurationError
from schemas.observation import Location
from schemas.validation import Finding, FreshnessStatus, Severity, ValidationStage
from validation import Rule, RuleContext, RuleSet, ValidationConfig, ValidationEngine, default_rule_set
from validation.duplicates import DuplicateChecker, generate_signature
from validation.freshness import FreshnessChecker
from validation.outliers import OutlierDetector
from validation.scoring import QualityScorer


def rule_names(findings):
    return [f.rule for f in findings]


class TestRules:
    """Test common and category rules"""

    def evaluate(self, observation, now):
        ctx = RuleContext.from_config(ValidationConfig(), now)
        return default_rule_set().evaluate(observation, ctx)

    def test_clean_observation_has_no_findings(self, observation_factory, now):
        assert self.evaluate(observation_factory(), now) == []

    def test_non_positive_price(self, observation_factory, now):
        findings = self.evaluate(observation_factory(price=0), now)

        assert "positive_price" in rule_names(findings)
        assert all(f.severity == Severity.ERROR for f in findings if f.rule == "positive_price")

    def test_min_max_consistency(self, observation_factory, now):
        findings = self.evaluate(observation_factory(min_price=90000, max_price=80000), now)

        assert "min_max_price_consistency" in rule_names(findings)

    def test_confidence_out_of_range(self, observation_factory, now):
        findings = self.evaluate(observation_factory(confidence=1.5), now)

        assert "valid_confidence" in rule_names(findings)

    def test_future_timestamp(self, observation_factory, now):
        findings = self.evaluate(observation_factory(recorded_at=now + timedelta(hours=1)), now)

        assert "valid_timestamp" in rule_names(findings)

    def test_unknown_region_and_category(self, observation_factory, now):
        findings = self.evaluate(
            observation_factory(location=Location(region="Atlantis"), category="Space Travel"),
            now,
        )

        assert {"valid_region", "valid_category"} <= set(rule_names(findings))

    def test_single_sample_high_confidence_warns(self, observation_factory, now):
        findings = self.evaluate(observation_factory(sample_size=1, confidence=0.9), now)

        assert rule_names(findings) == ["sample_size_confidence"]
        assert findings[0].severity == Severity.WARNING

    def test_housing_price_range_and_attributes(self, observation_factory, now):
        findings = self.evaluate(observation_factory(price=500, attributes={}), now)

        assert "housing_price_range" in rule_names(findings)
        assert "housing_attributes" in rule_names(findings)

    def test_utility_unit_specific_range(self, observation_factory, now):
        tariff = observation_factory(
            category="Utilities",
            sub_category="Electricity",
            item_name="DEWA Electricity Slab 0-2000 kWh",
            price=0.23,
            unit="AED/kWh",
            source="dewa",
            attributes={},
        )

        assert self.evaluate(tariff, now) == []

    def test_unexpected_transport_source_warns(self, observation_factory, now):
        ride = observation_factory(
            category="Transportation",
            item_name="Base Fare",
            price=8.0,
            unit="AED",
            source="hitchhike",
            attributes={},
        )
        findings = self.evaluate(ride, now)

        assert rule_names(findings) == ["transportation_source"]

    def test_rule_set_management(self, observation_factory, now):
        rule_set = default_rule_set()
        rule_set.add_rule(Rule(
            "no_penthouses", "Housing", "item_name", Severity.WARNING,
            lambda dp, ctx: "penthouse" if "penthouse" in dp.item_name.lower() else None,
        ))
        ctx = RuleContext.from_config(ValidationConfig(), now)

        findings = rule_set.evaluate(observation_factory(item_name="Penthouse"), ctx)
        assert rule_names(findings) == ["no_penthouses"]
        assert "no_penthouses" not in rule_names(
            rule_set.evaluate(observation_factory(category="Food", item_name="Penthouse", attributes={}), ctx)
        )

        assert rule_set.remove_rule("no_penthouses") is True
        assert rule_set.remove_rule("no_penthouses") is False
        assert "no_penthouses" not in rule_set.names()

    def test_empty_rule_set(self, observation_factory, now):
        ctx = RuleContext.from_config(ValidationConfig(), now)

        assert RuleSet().evaluate(observation_factory(price=-1), ctx) == []


class TestOutliers:
    """Test per-category outlier detection"""

    def test_iqr_flags_only_extreme(self, observation_factory):
        batch = [observation_factory(price=p) for p in (80000, 82000, 5000000)]

        reports = OutlierDetector().detect(batch)

        assert [r.index for r in reports] == [2]
        assert reports[0].method == "iqr"

    def test_unknown_method_is_configuration_error(self):
        with pytest.raises(ConfigurationError) as exc_info:
            OutlierDetector(method="percentile")

        assert "iqr" in exc_info.value.context["supported"]
        assert isinstance(exc_info.value.original_exception, ValueError)

    def test_non_positive_threshold_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            OutlierDetector(method=OutlierMethod.ZSCORE, threshold=0)

    def test_small_sample_skipped(self, observation_factory):
        batch = [observation_factory(price=p) for p in (80000, 5000000)]

        assert OutlierDetector().detect(batch) == []

    def test_history_completes_sample(self, observation_factory):
        batch = [observation_factory(price=5000000)]
        history = [observation_factory(price=p) for p in (80000, 81000, 82000)]

        assert OutlierDetector().outlier_indices(batch, history) == [0]

    def test_categories_are_separate(self, observation_factory):
        batch = [
            observation_factory(price=80000),
            observation_factory(price=82000),
            observation_factory(price=81000),
            observation_factory(category="Food", price=6.5, attributes={}),
        ]

        assert OutlierDetector().detect(batch) == []

    @pytest.mark.parametrize("method", [OutlierMethod.ZSCORE, OutlierMethod.MODIFIED_ZSCORE])
    def test_other_methods(self, observation_factory, method):
        prices = [80000, 80500, 81000, 81500, 82000, 82500, 83000, 83500, 84000, 84500, 5000000]
        batch = [observation_factory(price=p) for p in prices]

        reports = OutlierDetector(method=method, threshold=3.0).detect(batch)

        assert [r.index for r in reports] == [10]

    def test_identical_prices_never_flagged(self, observation_factory):
        batch = [observation_factory(price=80000) for _ in range(5)]

        for method in OutlierMethod:
            assert OutlierDetector(method=method).detect(batch) == []


class TestDuplicates:
    """Test exact and near-duplicate detection"""

    def test_similarity_is_symmetric(self, observation_factory):
        checker = DuplicateChecker()
        a = observation_factory(price=1000)
        b = observation_factory(price=1030, item_name="Other flat", source="dubizzle")

        assert checker.similarity(a, b) == checker.similarity(b, a)

    def test_exact_duplicate_flags_later_occurrence(self, observation_factory):
        first = observation_factory()
        batch = [first, observation_factory(), observation_factory(item_name="Different")]

        matches = DuplicateChecker().detect(batch)

        assert len(matches) == 1
        assert matches[0].index == 1
        assert matches[0].exact is True
        assert matches[0].matched_index == 0

    def test_signature_ignores_rounding_noise(self, observation_factory):
        a = observation_factory(price=1000.001)
        b = observation_factory(price=1000.004)

        assert generate_signature(a) == generate_signature(b)

    def test_near_duplicate_within_window(self, observation_factory, now):
        a = observation_factory(price=1000, recorded_at=now - timedelta(hours=3))
        b = observation_factory(price=1030, recorded_at=now - timedelta(hours=1))

        matches = DuplicateChecker().detect([a, b])

        assert len(matches) == 1
        assert matches[0].index == 1
        assert matches[0].exact is False
        assert matches[0].similarity == 1.0

    def test_outside_window_not_near_duplicate(self, observation_factory, now):
        a = observation_factory(price=1000, recorded_at=now - timedelta(hours=30))
        b = observation_factory(price=1030, recorded_at=now - timedelta(hours=1))

        assert DuplicateChecker().detect([a, b]) == []

    def test_history_match_carries_stored_id(self, observation_factory, now):
        stored = observation_factory(id="stored-1", price=1010, recorded_at=now - timedelta(hours=2))
        batch = [observation_factory(price=1000)]

        matches = DuplicateChecker().detect(batch, history=[stored])

        assert matches[0].matched_id == "stored-1"

    def test_deduplicate_and_report(self, observation_factory):
        checker = DuplicateChecker()
        batch = [observation_factory(), observation_factory(), observation_factory(item_name="Other")]

        assert len(checker.deduplicate(batch)) == 2
        report = checker.report(batch)
        assert report.exact_duplicates == 1
        assert report.duplicate_rate == pytest.approx(1 / 3)


class TestFreshness:
    """Test freshness classification"""

    @pytest.fixture
    def checker(self):
        return FreshnessChecker({"bayut": timedelta(days=7)}, default_max_age=timedelta(days=7))

    @pytest.mark.parametrize("age_days,status", [
        (7, FreshnessStatus.FRESH),
        (10.4, FreshnessStatus.FRESH),
        (10.5, FreshnessStatus.STALE),
        (20.9, FreshnessStatus.STALE),
        (21, FreshnessStatus.EXPIRED),
    ])
    def test_boundaries(self, checker, now, age_days, status):
        assert checker.check("bayut", now - timedelta(days=age_days), now) == status

    def test_prefix_and_default_max_age(self, checker):
        assert checker.max_age("BAYUT_listings") == timedelta(days=7)
        assert checker.max_age("unknown") == timedelta(days=7)

    def test_update_interval_and_needs_update(self, checker, now):
        assert checker.recommended_update_interval("bayut") == timedelta(days=3.5)
        assert checker.needs_update("bayut", now - timedelta(days=4), now) is True
        assert checker.needs_update("bayut", now - timedelta(days=1), now) is False

    def test_report(self, checker, now):
        report = checker.report("bayut", [now - timedelta(days=d) for d in (1, 12, 30)], now)

        assert (report.fresh_count, report.stale_count, report.expired_count) == (1, 1, 1)
        assert report.freshness_rate == pytest.approx(1 / 3)
        assert report.oldest_age == timedelta(days=30)


class TestQualityScorer:
    """Test scoring and acceptance"""

    def finding(self, severity, signal=False):
        return Finding(rule="r", severity=severity, message="m", signal=signal)

    def test_deductions(self):
        scorer = QualityScorer()

        assert scorer.score([]) == 1.0
        assert scorer.score([self.finding(Severity.WARNING)]) == pytest.approx(0.9)
        assert scorer.score([self.finding(Severity.ERROR)] * 4) == 0.0

    def test_signal_findings_only_multiply(self):
        scorer = QualityScorer()
        signal = self.finding(Severity.INFO, signal=True)

        assert scorer.score([signal], is_outlier=True) == pytest.approx(0.9)
        assert scorer.score([signal], is_near_duplicate=True) == pytest.approx(0.95)

    def test_more_findings_never_raise_score(self):
        scorer = QualityScorer()
        findings = []
        previous = scorer.score(findings)
        for severity in (Severity.INFO, Severity.WARNING, Severity.ERROR, Severity.WARNING):
            findings.append(self.finding(severity))
            current = scorer.score(findings)
            assert current <= previous
            previous = current

    def test_acceptance(self):
        scorer = QualityScorer(acceptance_threshold=0.7)

        assert scorer.is_accepted([], 0.7) is True
        assert scorer.is_accepted([], 0.69) is False
        assert scorer.is_accepted([self.finding(Severity.ERROR)], 0.9) is False
        assert scorer.is_accepted([], 1.0, FreshnessStatus.EXPIRED) is False


class TestValidationEngine:
    """Test the combined engine"""

    def test_clean_batch_accepted(self, engine, observation_factory, now):
        batch = [observation_factory(item_name=f"Flat {i}", price=80000 + i * 1000) for i in range(3)]

        result = engine.validate_batch(batch, now=now)

        assert len(result.accepted) == 3
        assert all(v.score == 1.0 for v in result.verdicts)
        assert set(result.stage_durations) == {stage.value for stage in ValidationStage}

    def test_outlier_discounted_not_rejected(self, engine, observation_factory, now):
        batch = [
            observation_factory(item_name="Flat A", price=80000),
            observation_factory(item_name="Flat B", price=82000),
            observation_factory(item_name="Penthouse", price=5000000),
        ]

        verdicts = engine.validate(batch, now=now)

        assert [v.is_outlier for v in verdicts] == [False, False, True]
        assert verdicts[2].accepted is True
        assert verdicts[2].score == pytest.approx(0.9)
        assert any(f.rule == "statistical_outlier" for f in verdicts[2].findings)

    def test_near_duplicate_flagged_not_rejected(self, engine, observation_factory, now):
        batch = [
            observation_factory(price=1000, recorded_at=now - timedelta(hours=3), category="Shopping",
                                item_name="Olive oil 5L", unit="AED", attributes={}),
            observation_factory(price=1030, recorded_at=now - timedelta(hours=1), category="Shopping",
                                item_name="Olive oil 5L", unit="AED", attributes={}),
        ]
        config = ValidationConfig(enable_outlier_detection=False)

        verdicts = ValidationEngine(config).validate(batch, now=now)

        assert verdicts[1].is_near_duplicate is True
        assert verdicts[1].is_duplicate is False
        assert verdicts[1].accepted is True
        assert verdicts[1].score == pytest.approx(0.95)

    def test_exact_duplicate_rejected_as_invalid(self, engine, observation_factory, now):
        batch = [observation_factory(), observation_factory()]

        result = engine.validate_batch(batch, now=now)

        assert result.verdicts[0].accepted is True
        assert result.verdicts[1].is_duplicate is True
        assert result.verdicts[1] in result.rejected_invalid

    def test_stale_warns_expired_rejects(self, engine, observation_factory, now):
        stale = observation_factory(item_name="Stale", recorded_at=now - timedelta(days=12))
        expired = observation_factory(item_name="Expired", recorded_at=now - timedelta(days=22))

        verdicts = engine.validate([stale, expired], now=now)

        assert verdicts[0].freshness == FreshnessStatus.STALE
        assert verdicts[0].accepted is True
        assert verdicts[1].freshness == FreshnessStatus.EXPIRED
        assert verdicts[1].accepted is False

    def test_low_quality_rejection(self, engine, observation_factory, now):
        weak = observation_factory(
            sample_size=1,
            confidence=0.4,
            attributes={},
            unit="AED/week",
            recorded_at=now - timedelta(days=12),
        )

        result = engine.validate_batch([weak], now=now)

        assert result.verdicts[0].has_errors is False
        assert result.verdicts[0] in result.rejected_low_quality

    def test_validation_is_deterministic(self, engine, observation_factory, now):
        batch = [
            observation_factory(item_name="Flat A", price=80000),
            observation_factory(item_name="Flat B", price=82000),
            observation_factory(item_name="Penthouse", price=5000000),
            observation_factory(item_name="Flat A", price=80000),
        ]

        first = engine.validate(batch, now=now)
        second = engine.validate(batch, now=now)

        assert first == second

    def test_empty_batch(self, engine, now):
        assert engine.validate([], now=now) == []

    def test_validate_one(self, engine, observation_factory, now):
        verdict = engine.validate_one(observation_factory(price=-5), now=now)

        assert verdict.accepted is False
        assert verdict.has_errors is True

    def test_naive_now_treated_as_utc(self, engine, observation_factory, now):
        naive_now = now.replace(tzinfo=None)
        batch = [observation_factory(item_name=f"Flat {i}", price=80000 + i * 1000) for i in range(3)]

        naive = engine.validate(batch, now=naive_now)
        aware = engine.validate(batch, now=now)

        assert naive == aware
        assert all(v.accepted for v in naive)

    def test_naive_now_still_catches_future_timestamps(self, engine, observation_factory, now):
        verdict = engine.validate_one(
            observation_factory(recorded_at=now + timedelta(hours=2)),
            now=now.replace(tzinfo=None),
        )

        assert verdict.accepted is False
        assert any(f.rule == "valid_timestamp" for f in verdict.findings)
