"""
Validation engine: runs the four stages over a batch and scores each
observation.

Stages:
    1. Rules      - common and category-specific rules (per observation)
    2. Outliers   - per-category statistical outliers (whole batch + history)
    3. Duplicates - exact signatures and near-duplicates (whole batch + history)
    4. Freshness  - age against the source's max age (per observation)

The duplicate stage needs the whole batch, so batch validation is one atomic
step. Given the same batch, history and ``now`` the engine returns identical
verdicts.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from schemas.observation import Observation, ensure_utc
from schemas.validation import (
    DuplicateMatch,
    Finding,
    FreshnessStatus,
    OutlierReport,
    Severity,
    ValidationStage,
    ValidationVerdict,
)
from validation.config import ValidationConfig
from validation.duplicates import DuplicateChecker
from validation.freshness import FreshnessChecker
from validation.outliers import OutlierDetector
from validation.rules import RuleContext, RuleSet, default_rule_set
from validation.scoring import QualityScorer

logger = logging.getLogger(__name__)


@dataclass
class BatchValidation:
    verdicts: List[ValidationVerdict]
    outliers: List[OutlierReport] = field(default_factory=list)
    duplicates: List[DuplicateMatch] = field(default_factory=list)
    stage_durations: Dict[str, float] = field(default_factory=dict)

    @property
    def accepted(self) -> List[ValidationVerdict]:
        return [v for v in self.verdicts if v.accepted]

    @property
    def rejected_invalid(self) -> List[ValidationVerdict]:
        return [v for v in self.verdicts if not v.accepted and v.has_errors]

    @property
    def rejected_low_quality(self) -> List[ValidationVerdict]:
        return [v for v in self.verdicts if not v.accepted and not v.has_errors]


class ValidationEngine:
    """
    Combine rule, outlier, duplicate and freshness checks into verdicts.

    Example:
        engine = ValidationEngine(ValidationConfig.from_settings(settings))
        result = engine.validate_batch(observations, history=recent)
        to_save = [v.observation for v in result.accepted]
    """

    def __init__(
        self,
        config: Optional[ValidationConfig] = None,
        rule_set: Optional[RuleSet] = None,
    ):
        self.config = config or ValidationConfig()
        self.rule_set = rule_set or default_rule_set(self.config)
        self.outlier_detector = OutlierDetector(
            method=self.config.outlier_method,
            threshold=self.config.effective_outlier_threshold,
            min_sample=self.config.min_outlier_sample,
        )
        self.duplicate_checker = DuplicateChecker(
            time_window=self.config.duplicate_time_window,
            price_threshold=self.config.duplicate_price_threshold,
            similarity_threshold=self.config.duplicate_similarity_threshold,
        )
        self.freshness_checker = FreshnessChecker(
            max_age_by_source=self.config.source_max_age,
            default_max_age=self.config.default_max_age,
        )
        self.scorer = QualityScorer(self.config.acceptance_score_threshold)

    def validate(
        self,
        batch: Sequence[Observation],
        now: Optional[datetime] = None,
        history: Sequence[Observation] = (),
    ) -> List[ValidationVerdict]:
        return self.validate_batch(batch, now=now, history=history).verdicts

    def validate_one(self, observation: Observation, now: Optional[datetime] = None) -> ValidationVerdict:
        return self.validate_batch([observation], now=now).verdicts[0]

    def validate_batch(
        self,
        batch: Sequence[Observation],
        now: Optional[datetime] = None,
        history: Sequence[Observation] = (),
    ) -> BatchValidation:
        now = ensure_utc(now) if now else datetime.now(timezone.utc)
        durations: Dict[str, float] = {}
        findings: List[List[Finding]] = [[] for _ in batch]

        if not batch:
            return BatchValidation(verdicts=[], stage_durations=durations)

        # Stage 1: rules
        started = time.perf_counter()
        rule_ctx = RuleContext.from_config(self.config, now)
        for i, observation in enumerate(batch):
            findings[i].extend(self.rule_set.evaluate(observation, rule_ctx))
        durations[ValidationStage.RULES.value] = time.perf_counter() - started

        # Stage 2: outliers
        outliers: List[OutlierReport] = []
        if self.config.enable_outlier_detection:
            started = time.perf_counter()
            outliers = self.outlier_detector.detect(batch, history)
            for report in outliers:
                findings[report.index].append(Finding(
                    rule="statistical_outlier",
                    severity=Severity.INFO,
                    message=report.reason,
                    stage=ValidationStage.OUTLIERS,
                    field="price",
                    signal=True,
                ))
            durations[ValidationStage.OUTLIERS.value] = time.perf_counter() - started

        # Stage 3: duplicates
        duplicates: List[DuplicateMatch] = []
        if self.config.enable_duplicate_check:
            started = time.perf_counter()
            duplicates = self.duplicate_checker.detect(batch, history)
            for match in duplicates:
                findings[match.index].append(self._duplicate_finding(match))
            durations[ValidationStage.DUPLICATES.value] = time.perf_counter() - started

        # Stage 4: freshness
        freshness: List[FreshnessStatus] = [FreshnessStatus.FRESH] * len(batch)
        if self.config.enable_freshness_check:
            started = time.perf_counter()
            for i, observation in enumerate(batch):
                status = self.freshness_checker.check(observation.source, observation.recorded_at, now)
                freshness[i] = status
                finding = self._freshness_finding(observation, status)
                if finding is not None:
                    findings[i].append(finding)
            durations[ValidationStage.FRESHNESS.value] = time.perf_counter() - started

        outlier_positions = {report.index for report in outliers}
        exact_positions = {m.index for m in duplicates if m.exact}
        near_positions = {m.index for m in duplicates if not m.exact}

        verdicts = []
        for i, observation in enumerate(batch):
            is_outlier = i in outlier_positions
            is_near_duplicate = i in near_positions
            score = self.scorer.score(findings[i], is_outlier, is_near_duplicate)
            verdicts.append(ValidationVerdict(
                observation=observation,
                findings=findings[i],
                score=score,
                accepted=self.scorer.is_accepted(findings[i], score, freshness[i]),
                freshness=freshness[i],
                is_outlier=is_outlier,
                is_duplicate=i in exact_positions,
                is_near_duplicate=is_near_duplicate,
            ))

        result = BatchValidation(
            verdicts=verdicts,
            outliers=outliers,
            duplicates=duplicates,
            stage_durations=durations,
        )
        logger.debug(
            f"Validated {len(batch)} observations: {len(result.accepted)} accepted, "
            f"{len(result.rejected_invalid)} invalid, {len(result.rejected_low_quality)} low quality"
        )
        return result

    @staticmethod
    def _duplicate_finding(match: DuplicateMatch) -> Finding:
        if match.exact:
            return Finding(
                rule="exact_duplicate",
                severity=Severity.ERROR,
                message=f"exact duplicate of batch item {match.matched_index}",
                stage=ValidationStage.DUPLICATES,
            )
        target = (
            f"batch item {match.matched_index}" if match.matched_index is not None
            else f"stored observation {match.matched_id or '(unsaved)'}"
        )
        return Finding(
            rule="near_duplicate",
            severity=Severity.INFO,
            message=f"near-duplicate of {target} (similarity {match.similarity:.2f})",
            stage=ValidationStage.DUPLICATES,
            signal=True,
        )

    def _freshness_finding(self, observation: Observation, status: FreshnessStatus) -> Optional[Finding]:
        if status == FreshnessStatus.FRESH:
            return None
        max_age = self.freshness_checker.max_age(observation.source)
        severity = Severity.ERROR if status == FreshnessStatus.EXPIRED else Severity.WARNING
        return Finding(
            rule="data_freshness",
            severity=severity,
            message=f"data is {status.value.lower()} for source {observation.source} (max age {max_age})",
            stage=ValidationStage.FRESHNESS,
            field="recorded_at",
        )
