"""
Ingestion pipeline components.

This package contains everything between a provider and storage:

Modules:
    context: RunContext carrying cancellation and non-fatal run issues
    retry: TokenBucket, RetryPolicy and RetryExecutor around every network attempt
    base: SourceAdapter contract
    aggregator: SourceAggregator, ordered first-success fallback over tiers
    storage: ObservationStore contract and the in-memory store
    runner: PipelineRunner, the fetch -> validate -> persist state machine
    providers: build_providers, the explicit provider registry
    scheduler: APScheduler integration firing each provider on its cadence

Subpackages:
    adapters: HTTP feed, listing, tariff, fare, ride-hailing, page, news and
        snapshot adapters
    loaders: SQLAlchemy-backed ObservationStore

Usage:
    from ingestion.providers import build_providers
    from ingestion.runner import PipelineRunner
    from validation import ValidationConfig, ValidationEngine

Example:
    store = InMemoryObservationStore()
    runner = PipelineRunner(
        providers=build_providers(settings, store),
        engine=ValidationEngine(ValidationConfig.from_settings(settings)),
        store=store,
    )
    summary = await runner.run("careem")
    print(f"{summary.state.value}: saved {summary.counts.saved}")

Error Handling:
    Adapters raise FetchError subclasses from core.exceptions; the runner
    turns any failure into a FAILED RunSummary instead of raising.
"""

__all__ = [
    "InMemoryObservationStore",
    "ObservationStore",
    "PipelineRunner",
    "RetryExecutor",
    "RunContext",
    "SourceAdapter",
    "SourceAggregator",
]
