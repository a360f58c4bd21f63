import logging
from datetime import timedelta
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ingestion.runner import PipelineRunner
from schemas.run import RunSummary
from validation.freshness import FreshnessChecker

logger = logging.getLogger(__name__)

MIN_INTERVAL = timedelta(hours=1)
MAX_INTERVAL = timedelta(days=30)


class PipelineScheduler:
    """
    Fire each provider's pipeline on its own interval.

    The interval is half the provider's freshness max age, so stored data is
    refreshed before it turns stale, clamped to [1 hour, 30 days].
    """

    def __init__(
        self,
        runner: PipelineRunner,
        freshness: FreshnessChecker,
        zero_saved_alert_streak: int = 3,
        intervals: Optional[Dict[str, timedelta]] = None,
    ):
        self.runner = runner
        self.freshness = freshness
        self.zero_saved_alert_streak = zero_saved_alert_streak
        self.intervals = dict(intervals or {})
        self.zero_saved_streaks: Dict[str, int] = {}
        self.scheduler = AsyncIOScheduler()

    def interval_for(self, provider: str) -> timedelta:
        if provider in self.intervals:
            return self.intervals[provider]
        adapter = self.runner.providers.get(provider)
        source = getattr(adapter, "source", None) or provider
        interval = self.freshness.recommended_update_interval(source)
        return min(max(interval, MIN_INTERVAL), MAX_INTERVAL)

    async def run_provider_job(self, provider: str) -> RunSummary:
        """Job to run one provider's pipeline"""
        logger.info(f"Scheduler: Starting pipeline job for {provider}")
        summary = await self.runner.run(provider)
        self._track_zero_saved(summary)
        return summary

    def _track_zero_saved(self, summary: RunSummary) -> None:
        if summary.counts.saved > 0:
            self.zero_saved_streaks[summary.provider] = 0
            return

        streak = self.zero_saved_streaks.get(summary.provider, 0) + 1
        self.zero_saved_streaks[summary.provider] = streak
        if streak >= self.zero_saved_alert_streak:
            logger.error(
                f"Scheduler: {summary.provider} saved nothing for {streak} consecutive runs "
                f"(last state: {summary.state.value}, error: {summary.error})"
            )

    def start(self):
        """Start the scheduler"""
        for provider in self.runner.providers:
            interval = self.interval_for(provider)
            self.scheduler.add_job(
                self.run_provider_job,
                trigger=IntervalTrigger(seconds=interval.total_seconds()),
                args=[provider],
                id=f"pipeline_{provider}",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            logger.info(f"Scheduled {provider} every {interval}")
        self.scheduler.start()
        logger.info("Pipeline Scheduler started")

    def stop(self):
        self.scheduler.shutdown()
        logger.info("Pipeline Scheduler stopped")
