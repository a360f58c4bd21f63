import logging
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ingestion.scheduler import MAX_INTERVAL, MIN_INTERVAL, PipelineScheduler
from schemas.run import RunState, RunSummary
from validation.freshness import FreshnessChecker


def make_runner(*providers):
    runner = MagicMock()
    runner.providers = {name: MagicMock(source=name) for name in providers}
    runner.run = AsyncMock()
    return runner


def summary(provider, saved=0, state=RunState.DONE):
    result = RunSummary(provider=provider, state=state)
    result.counts.saved = saved
    return result


@pytest.fixture
def freshness():
    return FreshnessChecker(
        {"bayut": timedelta(days=7), "rta": timedelta(hours=1), "khda": timedelta(days=365)},
        default_max_age=timedelta(days=7),
    )


def test_interval_is_half_max_age_clamped(freshness):
    scheduler = PipelineScheduler(make_runner("bayut", "rta", "khda"), freshness)

    assert scheduler.interval_for("bayut") == timedelta(days=3.5)
    assert scheduler.interval_for("rta") == MIN_INTERVAL
    assert scheduler.interval_for("khda") == MAX_INTERVAL


def test_explicit_interval_wins(freshness):
    scheduler = PipelineScheduler(
        make_runner("bayut"), freshness, intervals={"bayut": timedelta(hours=6)}
    )

    assert scheduler.interval_for("bayut") == timedelta(hours=6)


@pytest.mark.asyncio
async def test_job_runs_provider(freshness):
    runner = make_runner("bayut")
    runner.run.return_value = summary("bayut", saved=5)
    scheduler = PipelineScheduler(runner, freshness)

    result = await scheduler.run_provider_job("bayut")

    runner.run.assert_awaited_once_with("bayut")
    assert result.counts.saved == 5
    assert scheduler.zero_saved_streaks["bayut"] == 0


@pytest.mark.asyncio
async def test_zero_saved_streak_alerts(freshness, caplog):
    runner = make_runner("bayut")
    runner.run.return_value = summary("bayut", saved=0, state=RunState.FAILED)
    scheduler = PipelineScheduler(runner, freshness, zero_saved_alert_streak=3)

    with caplog.at_level(logging.ERROR, logger="ingestion.scheduler"):
        await scheduler.run_provider_job("bayut")
        await scheduler.run_provider_job("bayut")
        assert not caplog.records

        await scheduler.run_provider_job("bayut")

    assert scheduler.zero_saved_streaks["bayut"] == 3
    assert "3 consecutive runs" in caplog.records[-1].getMessage()


@pytest.mark.asyncio
async def test_streak_resets_after_save(freshness):
    runner = make_runner("bayut")
    runner.run.side_effect = [summary("bayut"), summary("bayut"), summary("bayut", saved=2)]
    scheduler = PipelineScheduler(runner, freshness)

    for _ in range(3):
        await scheduler.run_provider_job("bayut")

    assert scheduler.zero_saved_streaks["bayut"] == 0


@pytest.mark.asyncio
async def test_start_registers_one_job_per_provider(freshness):
    with patch("ingestion.scheduler.AsyncIOScheduler") as mock_scheduler_cls:
        mock_scheduler = mock_scheduler_cls.return_value
        scheduler = PipelineScheduler(make_runner("bayut", "rta"), freshness)

        scheduler.start()
        scheduler.stop()

    job_ids = [call.kwargs["id"] for call in mock_scheduler.add_job.call_args_list]
    assert job_ids == ["pipeline_bayut", "pipeline_rta"]
    mock_scheduler.start.assert_called_once()
    mock_scheduler.shutdown.assert_called_once()
