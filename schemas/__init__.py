"""
Pydantic schemas for observations, validation verdicts and run summaries.
"""

from schemas.observation import Category, GeoPoint, Location, Observation
from schemas.run import RunCounts, RunState, RunSummary
from schemas.validation import (
    DuplicateMatch,
    Finding,
    FreshnessStatus,
    OutlierReport,
    Severity,
    ValidationStage,
    ValidationVerdict,
)

__all__ = [
    "Category",
    "GeoPoint",
    "Location",
    "Observation",
    "RunCounts",
    "RunState",
    "RunSummary",
    "DuplicateMatch",
    "Finding",
    "FreshnessStatus",
    "OutlierReport",
    "Severity",
    "ValidationStage",
    "ValidationVerdict",
]
