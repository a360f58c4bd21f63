"""
Script to run the ingestion pipeline for one or all configured providers
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import build_engine, build_session_maker
from core.logging import setup_logging
from ingestion.context import RunContext
from ingestion.loaders.postgres_loader import SQLObservationStore
from ingestion.providers import build_providers
from ingestion.runner import PipelineRunner
from ingestion.scheduler import PipelineScheduler
from ingestion.storage import InMemoryObservationStore
from validation import ValidationConfig, ValidationEngine
from validation.freshness import FreshnessChecker

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run price ingestion pipelines")
    parser.add_argument(
        "providers",
        nargs="*",
        help="Providers to run (default: every configured provider)",
    )
    parser.add_argument(
        "--schedule",
        action="store_true",
        help="Keep running, firing each provider on its freshness cadence",
    )
    parser.add_argument(
        "--in-memory",
        action="store_true",
        help="Use an in-memory store instead of the database",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    return parser.parse_args(argv)


def print_summary(summary) -> None:
    counts = summary.counts
    line = (
        f"{summary.provider:<16} {summary.state.value:<8} "
        f"fetched={counts.fetched} accepted={counts.accepted} "
        f"invalid={counts.rejected_invalid} low_quality={counts.rejected_low_quality} "
        f"saved={counts.saved} save_failures={counts.save_failures} "
        f"({summary.duration_seconds:.2f}s)"
    )
    if summary.tier:
        line += f" tier={summary.tier}"
    if summary.error:
        line += f" error={summary.error}"
    print(line)
    for issue in summary.issues:
        print(f"    - {issue}")


async def run_once(runner: PipelineRunner, providers, ctx: RunContext) -> int:
    names = providers or list(runner.providers)
    failed = 0
    for name in names:
        summary = await runner.run(name, ctx)
        print_summary(summary)
        if not summary.succeeded:
            failed += 1
        if ctx.cancelled:
            break
    return failed


async def run_scheduled(runner: PipelineRunner, validation_config: ValidationConfig, stop: asyncio.Event):
    freshness = FreshnessChecker(
        validation_config.source_max_age,
        validation_config.default_max_age,
    )
    scheduler = PipelineScheduler(
        runner,
        freshness,
        zero_saved_alert_streak=settings.ZERO_SAVED_ALERT_STREAK,
    )
    scheduler.start()
    try:
        await stop.wait()
    finally:
        scheduler.stop()


async def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    engine = None
    if args.in_memory:
        store = InMemoryObservationStore()
    else:
        engine = build_engine()
        store = SQLObservationStore(build_session_maker(engine))

    validation_config = ValidationConfig.from_settings(settings)
    providers = build_providers(settings, store)
    if args.providers:
        unknown = [name for name in args.providers if name not in providers]
        if unknown:
            logger.warning(f"Unknown providers requested: {', '.join(unknown)}")

    runner = PipelineRunner(
        providers=providers,
        engine=ValidationEngine(validation_config),
        store=store,
        persist_workers=settings.PERSIST_WORKERS,
    )

    ctx = RunContext()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: (ctx.cancel(), stop.set()))
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass

    try:
        if args.schedule:
            await run_scheduled(runner, validation_config, stop)
            return 0
        failed = await run_once(runner, args.providers, ctx)
        logger.info("All pipeline runs completed")
        return 1 if failed else 0
    finally:
        if engine is not None:
            await engine.dispose()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
