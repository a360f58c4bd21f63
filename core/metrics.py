"""
Prometheus metrics for the ingestion pipeline.

METRICS EXPOSED
---------------
- ingestion_pipeline_runs_total: Runs per provider and final state
- ingestion_observations_total: Observations per provider and outcome
- ingestion_fetch_attempts_total: Outbound attempts per provider and outcome
- ingestion_stage_duration_seconds: Latency per provider and pipeline stage
- ingestion_aggregator_tier_total: Which aggregator tier answered
- ingestion_rate_change_alerts_total: Rate components that moved beyond threshold
"""

import logging

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)


PIPELINE_RUNS = Counter(
    "ingestion_pipeline_runs_total",
    "Total number of pipeline runs by final state",
    ["provider", "state"]
)

OBSERVATIONS = Counter(
    "ingestion_observations_total",
    "Observations processed by outcome (fetched, accepted, rejected_invalid, "
    "rejected_low_quality, saved, save_failed)",
    ["provider", "outcome"]
)

FETCH_ATTEMPTS = Counter(
    "ingestion_fetch_attempts_total",
    "Outbound fetch attempts by outcome (success, retry, failed)",
    ["provider", "outcome"]
)

STAGE_DURATION = Histogram(
    "ingestion_stage_duration_seconds",
    "Duration of each pipeline stage",
    ["provider", "stage"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 2.5, 5, 10, 30, 60, 120, 300)
)

AGGREGATOR_TIER = Counter(
    "ingestion_aggregator_tier_total",
    "Aggregator tier that produced the winning result",
    ["provider", "tier"]
)

RATE_CHANGE_ALERTS = Counter(
    "ingestion_rate_change_alerts_total",
    "Rate components whose price moved beyond the change threshold",
    ["provider", "item"]
)


def record_stage_duration(provider: str, stage: str, seconds: float) -> None:
    STAGE_DURATION.labels(provider=provider, stage=stage).observe(seconds)


def record_observations(provider: str, outcome: str, count: int) -> None:
    if count > 0:
        OBSERVATIONS.labels(provider=provider, outcome=outcome).inc(count)
