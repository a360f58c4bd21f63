"""
Schemas produced by the validation engine.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from schemas.observation import Observation


class Severity(str, Enum):
    """Severity of a validation finding"""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationStage(str, Enum):
    RULES = "rules"
    OUTLIERS = "outliers"
    DUPLICATES = "duplicates"
    FRESHNESS = "freshness"


class FreshnessStatus(str, Enum):
    FRESH = "FRESH"
    STALE = "STALE"
    EXPIRED = "EXPIRED"


class Finding(BaseModel):
    """
    One structured validation finding.

    ``signal`` findings (outliers, near-duplicates) are informational records
    of a multiplicative discount; the scorer does not deduct for them again.
    """
    model_config = ConfigDict(frozen=True)

    rule: str
    severity: Severity
    message: str
    stage: ValidationStage = ValidationStage.RULES
    field: Optional[str] = None
    signal: bool = False


class OutlierReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    category: str
    price: float
    method: str
    statistic: float
    lower_bound: Optional[float] = None
    upper_bound: Optional[float] = None
    reason: str = "Statistical outlier detected"


class DuplicateMatch(BaseModel):
    """
    Duplicate finding for the observation at ``index``.

    ``matched_index`` points into the batch; ``matched_id`` identifies a stored
    observation when the match came from history.
    """
    model_config = ConfigDict(frozen=True)

    index: int
    exact: bool
    similarity: float
    signature: Optional[str] = None
    matched_index: Optional[int] = None
    matched_id: Optional[str] = None


class ValidationVerdict(BaseModel):
    """Validation outcome for one observation"""
    model_config = ConfigDict(frozen=True)

    observation: Observation
    findings: List[Finding] = Field(default_factory=list)
    score: float = 1.0
    accepted: bool = True
    freshness: FreshnessStatus = FreshnessStatus.FRESH
    is_outlier: bool = False
    is_duplicate: bool = False
    is_near_duplicate: bool = False

    @property
    def has_errors(self) -> bool:
        return any(f.severity == Severity.ERROR for f in self.findings)

    @property
    def errors(self) -> List[Finding]:
        return [f for f in self.findings if f.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[Finding]:
        return [f for f in self.findings if f.severity == Severity.WARNING]
