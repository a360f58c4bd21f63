from sqlalchemy import BigInteger, Column, DateTime, Float, Integer, String, Text

from models.base import Base, JSONVariant, utcnow
from schemas.run import RunSummary


class PipelineRun(Base):
    """
    Tracks metadata for each pipeline run.

    Purpose:
    - Audit trail of all runs per provider
    - Per-stage latency and outcome counts
    - Non-fatal issues and the failure reason, if any
    """
    __tablename__ = "pipeline_runs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)

    provider = Column(String(100), nullable=False, index=True)
    state = Column(String(20), nullable=False, index=True)
    tier = Column(String(100), nullable=True)

    # Timestamps
    started_at = Column(DateTime(timezone=True), nullable=True, index=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    fetched = Column(Integer, default=0)
    accepted = Column(Integer, default=0)
    rejected_invalid = Column(Integer, default=0)
    rejected_low_quality = Column(Integer, default=0)
    saved = Column(Integer, default=0)
    save_failures = Column(Integer, default=0)

    stage_durations = Column(JSONVariant, nullable=True)
    issues = Column(JSONVariant, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    @classmethod
    def from_summary(cls, summary: RunSummary) -> "PipelineRun":
        counts = summary.counts
        return cls(
            provider=summary.provider,
            state=summary.state.value,
            tier=summary.tier,
            started_at=summary.started_at,
            finished_at=summary.finished_at,
            duration_seconds=summary.duration_seconds,
            fetched=counts.fetched,
            accepted=counts.accepted,
            rejected_invalid=counts.rejected_invalid,
            rejected_low_quality=counts.rejected_low_quality,
            saved=counts.saved,
            save_failures=counts.save_failures,
            stage_durations=dict(summary.stage_durations),
            issues=list(summary.issues),
            error_message=summary.error,
        )
