"""
Integration tests for the pipeline runner: fetch -> validate -> persist
"""

import json
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from core.config import ProviderConfig, Settings
from core.exceptions import NetworkError, PersistError
from ingestion.context import RunContext
from ingestion.providers import build_providers
from ingestion.runner import PipelineRunner
from ingestion.storage import InMemoryObservationStore
from schemas.run import RunState

SNAPSHOT = Path(__file__).resolve().parents[2] / "data" / "snapshots" / "careem_rates.json"


class FailingStore(InMemoryObservationStore):
    """Rejects chosen items; everything else is stored"""

    def __init__(self, rejected=(), crash=(), history_error=False):
        super().__init__()
        self.rejected = set(rejected)
        self.crash = set(crash)
        self.history_error = history_error

    async def save(self, observation):
        if observation.item_name in self.rejected:
            raise PersistError("duplicate key", context={"item_name": observation.item_name})
        if observation.item_name in self.crash:
            raise RuntimeError("driver crashed")
        return await super().save(observation)

    async def recent_by_category(self, category, since):
        if self.history_error:
            raise PersistError("history table missing")
        return await super().recent_by_category(category, since)


class CancellingStore(InMemoryObservationStore):
    """Cancels the run after its first save"""

    def __init__(self, ctx):
        super().__init__()
        self.ctx = ctx

    async def save(self, observation):
        stored = await super().save(observation)
        self.ctx.cancel()
        return stored


@pytest.fixture
def fresh_batch(observation_factory):
    recorded_at = datetime.now(timezone.utc)
    return [
        observation_factory(item_name=f"Flat {i}", price=80000 + i * 1000, recorded_at=recorded_at)
        for i in range(3)
    ]


@pytest.mark.asyncio
async def test_successful_run_persists_accepted(stub_adapter, engine, memory_store, fresh_batch):
    runner = PipelineRunner({"bayut": stub_adapter("bayut", fresh_batch)}, engine, memory_store)

    summary = await runner.run("bayut")

    assert summary.state == RunState.DONE
    assert summary.counts.fetched == 3
    assert summary.counts.accepted == 3
    assert summary.counts.saved == 3
    assert summary.error is None
    assert {"fetch", "validate", "persist"} <= set(summary.stage_durations)
    assert "validate.rules" in summary.stage_durations
    assert len(memory_store.observations) == 3
    assert memory_store.runs[0].state == RunState.DONE


@pytest.mark.asyncio
async def test_empty_fetch_is_done_with_zero_counts(stub_adapter, engine, memory_store):
    runner = PipelineRunner({"bayut": stub_adapter("bayut", [])}, engine, memory_store)

    summary = await runner.run("bayut")

    assert summary.state == RunState.DONE
    assert summary.counts.fetched == 0
    assert summary.counts.accepted == 0
    assert summary.counts.saved == 0
    assert summary.rejected == 0


@pytest.mark.asyncio
async def test_fetch_failure_is_failed_summary(stub_adapter, engine, memory_store):
    adapter = stub_adapter("bayut", error=NetworkError("connection refused"))
    runner = PipelineRunner({"bayut": adapter}, engine, memory_store)

    summary = await runner.run("bayut")

    assert summary.state == RunState.FAILED
    assert summary.counts.fetched == 0
    assert "NetworkError" in summary.error
    assert memory_store.observations == []
    assert memory_store.runs[0].state == RunState.FAILED


@pytest.mark.asyncio
async def test_unexpected_adapter_error_is_failed_summary(stub_adapter, engine, memory_store):
    runner = PipelineRunner({"bayut": stub_adapter("bayut", error=KeyError("oops"))}, engine, memory_store)

    summary = await runner.run("bayut")

    assert summary.state == RunState.FAILED
    assert summary.error.startswith("Unexpected error")


@pytest.mark.asyncio
async def test_unknown_provider(engine, memory_store):
    runner = PipelineRunner({}, engine, memory_store)

    summary = await runner.run("nobody")

    assert summary.state == RunState.FAILED
    assert "ProviderNotFoundError" in summary.error


@pytest.mark.asyncio
async def test_adapter_that_cannot_run(stub_adapter, engine, memory_store, fresh_batch):
    adapter = stub_adapter("bayut", fresh_batch, runnable=False)
    runner = PipelineRunner({"bayut": adapter}, engine, memory_store)

    summary = await runner.run("bayut")

    assert summary.state == RunState.FAILED
    assert "SourceUnavailableError" in summary.error
    assert adapter.calls == 0


@pytest.mark.asyncio
async def test_rejections_counted(stub_adapter, engine, memory_store, observation_factory):
    recorded_at = datetime.now(timezone.utc)
    batch = [
        observation_factory(item_name="Good", recorded_at=recorded_at),
        observation_factory(item_name="Negative", price=-1, recorded_at=recorded_at),
        observation_factory(
            item_name="Weak",
            sample_size=1,
            confidence=0.4,
            attributes={},
            unit="AED/week",
            recorded_at=recorded_at - timedelta(days=12),
        ),
    ]
    runner = PipelineRunner({"bayut": stub_adapter("bayut", batch)}, engine, memory_store)

    summary = await runner.run("bayut")

    assert summary.counts.accepted == 1
    assert summary.counts.rejected_invalid == 1
    assert summary.counts.rejected_low_quality == 1
    assert [obs.item_name for obs in memory_store.observations] == ["Good"]


@pytest.mark.asyncio
async def test_save_failures_do_not_stop_other_saves(stub_adapter, engine, fresh_batch):
    store = FailingStore(rejected={"Flat 0"}, crash={"Flat 1"})
    runner = PipelineRunner({"bayut": stub_adapter("bayut", fresh_batch)}, engine, store)

    summary = await runner.run("bayut")

    assert summary.state == RunState.DONE
    assert summary.counts.accepted == 3
    assert summary.counts.saved == 1
    assert summary.counts.save_failures == 2
    assert summary.counts.saved + summary.counts.save_failures == summary.counts.accepted
    assert len(summary.issues) == 2


@pytest.mark.asyncio
async def test_history_failure_is_an_issue(stub_adapter, engine, fresh_batch):
    store = FailingStore(history_error=True)
    runner = PipelineRunner({"bayut": stub_adapter("bayut", fresh_batch)}, engine, store)

    summary = await runner.run("bayut")

    assert summary.state == RunState.DONE
    assert summary.counts.saved == 3
    assert any("history unavailable" in issue for issue in summary.issues)


@pytest.mark.asyncio
async def test_cancelled_before_run(stub_adapter, engine, memory_store, fresh_batch):
    adapter = stub_adapter("bayut", fresh_batch)
    runner = PipelineRunner({"bayut": adapter}, engine, memory_store)
    ctx = RunContext("bayut")
    ctx.cancel()

    summary = await runner.run("bayut", ctx)

    assert summary.state == RunState.FAILED
    assert summary.error == "Run cancelled"
    assert adapter.calls == 0


@pytest.mark.asyncio
async def test_cancel_during_persist_stops_remaining_saves(stub_adapter, engine, fresh_batch):
    ctx = RunContext("bayut")
    store = CancellingStore(ctx)
    runner = PipelineRunner({"bayut": stub_adapter("bayut", fresh_batch)}, engine, store, persist_workers=1)

    summary = await runner.run("bayut", ctx)

    assert summary.state == RunState.FAILED
    assert summary.counts.saved == 1
    assert len(store.observations) == 1


@pytest.mark.asyncio
async def test_run_all_keeps_issues_per_run(stub_adapter, engine, fresh_batch):
    store = FailingStore(rejected={"Flat 0"})
    runner = PipelineRunner(
        {
            "bayut": stub_adapter("bayut", fresh_batch),
            "dubizzle": stub_adapter("dubizzle", []),
        },
        engine,
        store,
    )

    summaries = await runner.run_all(RunContext())

    assert [s.provider for s in summaries] == ["bayut", "dubizzle"]
    assert len(summaries[0].issues) == 1
    assert summaries[1].issues == []


@pytest.mark.asyncio
async def test_careem_falls_back_to_static_snapshot(tmp_path, engine):
    shutil.copy(SNAPSHOT, tmp_path / "careem_rates.json")
    settings = Settings(
        PROVIDERS={"careem": ProviderConfig(source="careem", rate_limit_per_second=0)},
        STATIC_SNAPSHOT_DIR=str(tmp_path),
    )
    store = InMemoryObservationStore()
    runner = PipelineRunner(build_providers(settings, store), engine, store)

    summary = await runner.run("careem")

    assert summary.state == RunState.DONE
    assert summary.tier == "careem_static"
    assert summary.counts.fetched == 15
    assert summary.counts.accepted == 15
    assert summary.counts.saved == 15
    assert all(obs.confidence == 0.70 for obs in store.observations)

    # A fare rise in the next snapshot is flagged against the stored rates
    card = json.loads(SNAPSHOT.read_text())
    card["base_fare"] = 10.0
    (tmp_path / "careem_rates.json").write_text(json.dumps(card))

    second = await runner.run("careem")

    assert second.state == RunState.DONE
    assert second.counts.saved == 15
    assert any("Base Fare" in issue and "rate change" in issue for issue in second.issues)
    flagged = [obs for obs in store.observations[15:] if "rate_change" in obs.tags]
    assert {obs.item_name for obs in flagged} == {"Base Fare", "Peak Hour Surcharge"}
