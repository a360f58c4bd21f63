"""
Run summary schema returned by the pipeline runner
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class RunState(str, Enum):
    """Pipeline run state machine"""
    PENDING = "pending"
    FETCHING = "fetching"
    VALIDATING = "validating"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class RunCounts(BaseModel):
    fetched: int = 0
    accepted: int = 0
    rejected_invalid: int = 0
    rejected_low_quality: int = 0
    saved: int = 0
    save_failures: int = 0


class RunSummary(BaseModel):
    """
    Outcome of one ingestion cycle for one provider.

    The only object that accumulates state during a run.
    """

    provider: str
    state: RunState = RunState.PENDING
    counts: RunCounts = Field(default_factory=RunCounts)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    stage_durations: Dict[str, float] = Field(default_factory=dict)
    issues: List[str] = Field(default_factory=list)
    tier: Optional[str] = None  # winning aggregator tier, when the provider is an aggregator
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.DONE

    @property
    def rejected(self) -> int:
        return self.counts.rejected_invalid + self.counts.rejected_low_quality

    def add_issue(self, issue: str) -> None:
        self.issues.append(issue)
