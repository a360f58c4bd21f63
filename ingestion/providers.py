"""
Provider registry: the explicit name -> adapter mapping handed to PipelineRunner.

Each provider gets its own RetryExecutor (and so its own token bucket). The
aggregated ride-hailing provider shares one executor across all of its tiers.
"""

import logging
from datetime import timedelta
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

from core.config import ProviderConfig, Settings
from ingestion.adapters.fares import FareTableAdapter
from ingestion.adapters.listings import ListingFeedAdapter
from ingestion.adapters.news_feed import NewsFeedAdapter
from ingestion.adapters.page_extraction import PageExtractionAdapter
from ingestion.adapters.ride_hailing import RideHailingAPIAdapter, rate_card_loader
from ingestion.adapters.static_snapshot import StaticSnapshotAdapter
from ingestion.adapters.tariffs import TariffFeedAdapter
from ingestion.aggregator import SourceAggregator, Tier
from ingestion.base import SourceAdapter
from ingestion.retry import RetryExecutor
from ingestion.storage import ObservationStore

logger = logging.getLogger(__name__)

# Confidence per aggregator tier, highest trust first
OFFICIAL_API_CONFIDENCE = 0.95
HELP_PAGE_CONFIDENCE = 0.85
NEWS_CONFIDENCE = 0.75
STATIC_SNAPSHOT_CONFIDENCE = 0.70

CAREEM_HELP_PAGES = [
    "https://help.careem.com/hc/en-us/articles/pricing",
    "https://help.careem.com/hc/en-us/articles/fare-estimate",
    "https://help.careem.com/hc/en-us/articles/rates",
]

CAREEM_NEWS_FEEDS = [
    "https://news.google.com/rss/search?q=careem+rates+dubai",
]


def build_listing_provider(name: str, config: ProviderConfig, **_) -> SourceAdapter:
    executor = RetryExecutor.for_provider(name, config)
    return ListingFeedAdapter(name, config, executor, endpoint="listings")


def build_tariff_provider(name: str, config: ProviderConfig, **_) -> SourceAdapter:
    executor = RetryExecutor.for_provider(name, config)
    return TariffFeedAdapter(name, config, executor, endpoint="tariffs")


def build_fare_provider(name: str, config: ProviderConfig, **_) -> SourceAdapter:
    executor = RetryExecutor.for_provider(name, config)
    return FareTableAdapter(name, config, executor, endpoint="fares")


def build_ride_hailing_provider(
    name: str,
    config: ProviderConfig,
    settings: Settings,
    store: Optional[ObservationStore] = None,
    extractors: Optional[Mapping[str, Callable]] = None,
) -> SourceAdapter:
    extractors = extractors or {}
    executor = RetryExecutor.for_provider(name, config)
    snapshot = Path(settings.STATIC_SNAPSHOT_DIR) / f"{name}_rates.json"

    tiers = [
        Tier(RideHailingAPIAdapter(f"{name}_api", config, executor), OFFICIAL_API_CONFIDENCE),
        Tier(
            PageExtractionAdapter(
                f"{name}_help_center",
                config,
                executor,
                urls=CAREEM_HELP_PAGES,
                extractor=extractors.get(f"{name}_help_center"),
            ),
            HELP_PAGE_CONFIDENCE,
        ),
        Tier(
            NewsFeedAdapter(
                f"{name}_news",
                config,
                executor,
                feed_urls=CAREEM_NEWS_FEEDS,
                extractor=extractors.get(f"{name}_news"),
            ),
            NEWS_CONFIDENCE,
        ),
        Tier(
            StaticSnapshotAdapter(
                f"{name}_static",
                str(snapshot),
                source=config.source,
                loader=rate_card_loader(config.source or name),
            ),
            STATIC_SNAPSHOT_CONFIDENCE,
        ),
    ]
    return SourceAggregator(
        name,
        tiers,
        store=store,
        rate_change_threshold_pct=settings.RATE_CHANGE_THRESHOLD_PCT,
        history_lookback=timedelta(days=settings.HISTORY_LOOKBACK_DAYS),
        source=config.source,
    )


PROVIDER_FACTORIES = {
    "bayut": build_listing_provider,
    "dubizzle": build_listing_provider,
    "propertyfinder": build_listing_provider,
    "dewa": build_tariff_provider,
    "sewa": build_tariff_provider,
    "aadc": build_tariff_provider,
    "rta": build_fare_provider,
    "careem": build_ride_hailing_provider,
}


def build_providers(
    settings: Settings,
    store: Optional[ObservationStore] = None,
    extractors: Optional[Mapping[str, Callable]] = None,
) -> Dict[str, SourceAdapter]:
    """
    Build one adapter per configured provider.

    Args:
        settings: Application settings (PROVIDERS table, snapshot dir, ...)
        store: Storage used by aggregators for rate-change comparison
        extractors: Injected page/entry extractors keyed by tier name,
            e.g. ``{"careem_help_center": parse_help_page}``

    Returns:
        Mapping of provider name to adapter
    """
    providers: Dict[str, SourceAdapter] = {}
    for name, config in settings.PROVIDERS.items():
        factory = PROVIDER_FACTORIES.get(name)
        if factory is None:
            logger.warning(f"No adapter factory for configured provider {name}, skipping")
            continue
        providers[name] = factory(
            name,
            config,
            settings=settings,
            store=store,
            extractors=extractors,
        )
    logger.info(f"Registered providers: {', '.join(sorted(providers)) or '(none)'}")
    return providers
