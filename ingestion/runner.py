# ============================================================================
# File: ingestion/runner.py
# Description: Pipeline orchestrator for one provider's ingestion cycle
# ============================================================================
"""
Pipeline Runner - Orchestrates Fetch, Validate, Persist for one provider.

This module provides robust run orchestration with:
- An explicit state machine (FETCHING -> VALIDATING -> PERSISTING -> DONE,
  FAILED reachable from every state)
- Partial failure support (a failed save never aborts the other saves)
- A RunSummary returned for every run, whatever happened
- Per-stage latency and outcome counts in Prometheus metrics
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import List, Mapping, Optional

from core.exceptions import (
    IngestionException,
    PersistError,
    ProviderNotFoundError,
    RunCancelledError,
    SourceUnavailableError,
)
from core.metrics import PIPELINE_RUNS, record_observations, record_stage_duration
from ingestion.aggregator import SourceAggregator
from ingestion.base import SourceAdapter
from ingestion.context import RunContext
from ingestion.storage import ObservationStore
from schemas.observation import Observation
from schemas.run import RunState, RunSummary
from validation.engine import BatchValidation, ValidationEngine

logger = logging.getLogger(__name__)


class PipelineRunner:
    """
    Pipeline Orchestrator

    Responsibilities:
    - Look up the provider's adapter in an explicit registry
    - Fetch -> validate -> persist, tracking state and counts
    - Handle partial failures safely (save failures are counted, not fatal)
    - Record the run summary with the storage collaborator
    """

    def __init__(
        self,
        providers: Mapping[str, SourceAdapter],
        engine: ValidationEngine,
        store: ObservationStore,
        persist_workers: int = 4,
        history_lookback: timedelta = timedelta(days=30),
    ):
        self.providers = dict(providers)
        self.engine = engine
        self.store = store
        self.persist_workers = max(1, persist_workers)
        self.history_lookback = history_lookback

    async def run(self, provider_name: str, ctx: Optional[RunContext] = None) -> RunSummary:
        """
        Run one ingestion cycle for ``provider_name``.

        Pipeline phases:
        1. Fetch - the provider's adapter (or aggregator) produces observations
        2. Validate - the whole batch goes through the validation engine
        3. Persist - accepted observations are saved by a bounded worker pool

        Returns:
            RunSummary with the final state (DONE or FAILED) and counts.
            Never raises for pipeline failures.
        """
        ctx = ctx or RunContext(provider_name)
        issue_offset = len(ctx.issues)
        summary = RunSummary(provider=provider_name, started_at=datetime.now(timezone.utc))
        started = time.perf_counter()

        try:
            adapter = self.providers.get(provider_name)
            if adapter is None:
                raise ProviderNotFoundError(
                    f"No adapter registered for provider {provider_name}",
                    context={"provider": provider_name, "registered": sorted(self.providers)}
                )

            # --------------------------------------------------
            # PHASE 1: FETCH
            # --------------------------------------------------
            summary.state = RunState.FETCHING
            observations = await self._fetch(adapter, summary, ctx)

            # --------------------------------------------------
            # PHASE 2: VALIDATE
            # --------------------------------------------------
            summary.state = RunState.VALIDATING
            result = await self._validate(observations, summary, ctx)

            # --------------------------------------------------
            # PHASE 3: PERSIST
            # --------------------------------------------------
            summary.state = RunState.PERSISTING
            await self._persist([v.observation for v in result.accepted], summary, ctx)

            summary.state = RunState.DONE

        except RunCancelledError as e:
            self._fail(summary, e.message)

        except IngestionException as e:
            logger.error(
                f"Pipeline failed for {provider_name} during {summary.state.value}: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            self._fail(summary, f"{type(e).__name__}: {e.message}")

        except Exception as e:
            logger.exception(f"Unexpected error in pipeline for {provider_name}")
            self._fail(summary, f"Unexpected error: {e}")

        summary.issues.extend(ctx.issues[issue_offset:])
        summary.finished_at = datetime.now(timezone.utc)
        summary.duration_seconds = time.perf_counter() - started

        PIPELINE_RUNS.labels(provider=provider_name, state=summary.state.value).inc()
        await self._record(summary)

        counts = summary.counts
        logger.info(
            f"Pipeline run {summary.state.value} for {provider_name} - "
            f"Fetched: {counts.fetched}, Accepted: {counts.accepted}, "
            f"Rejected: {summary.rejected}, Saved: {counts.saved}, "
            f"Save failures: {counts.save_failures}"
        )
        return summary

    async def run_all(self, ctx: Optional[RunContext] = None) -> List[RunSummary]:
        """Run every registered provider once, sequentially"""
        summaries = []
        for name in self.providers:
            summaries.append(await self.run(name, ctx))
        return summaries

    async def _fetch(
        self,
        adapter: SourceAdapter,
        summary: RunSummary,
        ctx: RunContext,
    ) -> List[Observation]:
        if not adapter.can_run():
            raise SourceUnavailableError(
                f"Adapter {adapter.name} cannot run",
                context={"provider": summary.provider}
            )

        ctx.check()
        logger.info(f"Starting fetch for {summary.provider}")
        started = time.perf_counter()
        try:
            observations = await adapter.fetch(ctx)
        finally:
            self._stage_done(summary, "fetch", started)

        # Aggregators stamp the winning tier on every observation
        if isinstance(adapter, SourceAggregator) and observations:
            summary.tier = observations[0].attributes.get("tier")

        summary.counts.fetched = len(observations)
        record_observations(summary.provider, "fetched", len(observations))
        logger.info(f"Fetched {len(observations)} observations for {summary.provider}")
        return observations

    async def _validate(
        self,
        observations: List[Observation],
        summary: RunSummary,
        ctx: RunContext,
    ) -> BatchValidation:
        started = time.perf_counter()
        history = await self._history(observations, ctx)
        result = self.engine.validate_batch(observations, history=history)
        self._stage_done(summary, "validate", started)

        counts = summary.counts
        counts.accepted = len(result.accepted)
        counts.rejected_invalid = len(result.rejected_invalid)
        counts.rejected_low_quality = len(result.rejected_low_quality)

        for stage, seconds in result.stage_durations.items():
            summary.stage_durations[f"validate.{stage}"] = seconds

        record_observations(summary.provider, "accepted", counts.accepted)
        record_observations(summary.provider, "rejected_invalid", counts.rejected_invalid)
        record_observations(summary.provider, "rejected_low_quality", counts.rejected_low_quality)

        logger.info(
            f"Validation complete for {summary.provider}: {counts.accepted} accepted, "
            f"{counts.rejected_invalid} invalid, {counts.rejected_low_quality} low quality"
        )
        return result

    async def _history(self, observations: List[Observation], ctx: RunContext) -> List[Observation]:
        """Recent stored observations for the batch's categories"""
        if not observations:
            return []

        since = datetime.now(timezone.utc) - self.history_lookback
        history: List[Observation] = []
        for category in sorted({obs.category for obs in observations}):
            try:
                history.extend(await self.store.recent_by_category(category, since))
            except PersistError as e:
                ctx.report_issue(f"history unavailable for {category}: {e.message}")
        return history

    async def _persist(
        self,
        accepted: List[Observation],
        summary: RunSummary,
        ctx: RunContext,
    ) -> None:
        if not accepted:
            logger.info(f"No accepted observations to persist for {summary.provider}")
            return

        started = time.perf_counter()
        semaphore = asyncio.Semaphore(self.persist_workers)
        counts = summary.counts

        async def save_one(observation: Observation) -> None:
            async with semaphore:
                ctx.check()
                try:
                    await self.store.save(observation)
                except PersistError as e:
                    counts.save_failures += 1
                    ctx.report_issue(f"save failed for {observation.item_name}: {e.message}")
                    return
                except Exception as e:
                    counts.save_failures += 1
                    logger.error(f"Unexpected save error for {observation.item_name}: {e}")
                    ctx.report_issue(f"save failed for {observation.item_name}: {e}")
                    return
                counts.saved += 1

        try:
            results = await asyncio.gather(
                *(save_one(obs) for obs in accepted),
                return_exceptions=True,
            )
        finally:
            self._stage_done(summary, "persist", started)
            record_observations(summary.provider, "saved", counts.saved)
            record_observations(summary.provider, "save_failed", counts.save_failures)

        # Saves already in flight finish; the rest stop at their check
        for outcome in results:
            if isinstance(outcome, RunCancelledError):
                raise outcome

        logger.info(f"Persisted {counts.saved}/{len(accepted)} observations for {summary.provider}")

    async def _record(self, summary: RunSummary) -> None:
        try:
            await self.store.record_run(summary)
        except PersistError as e:
            logger.error(f"Failed to record run for {summary.provider}: {e.message}")

    @staticmethod
    def _stage_done(summary: RunSummary, stage: str, started: float) -> None:
        seconds = time.perf_counter() - started
        summary.stage_durations[stage] = seconds
        record_stage_duration(summary.provider, stage, seconds)

    @staticmethod
    def _fail(summary: RunSummary, error: str) -> None:
        logger.warning(f"Run for {summary.provider} failed in state {summary.state.value}: {error}")
        summary.error = error
        summary.state = RunState.FAILED
