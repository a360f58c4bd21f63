"""
Provider source adapters
"""

from ingestion.adapters.fares import FareTableAdapter
from ingestion.adapters.http_feed import HTTPFeedAdapter
from ingestion.adapters.listings import ListingFeedAdapter
from ingestion.adapters.news_feed import NewsFeedAdapter
from ingestion.adapters.page_extraction import PageExtractionAdapter
from ingestion.adapters.ride_hailing import RideHailingAPIAdapter
from ingestion.adapters.static_snapshot import StaticSnapshotAdapter
from ingestion.adapters.tariffs import TariffFeedAdapter

__all__ = [
    "FareTableAdapter",
    "HTTPFeedAdapter",
    "ListingFeedAdapter",
    "NewsFeedAdapter",
    "PageExtractionAdapter",
    "RideHailingAPIAdapter",
    "StaticSnapshotAdapter",
    "TariffFeedAdapter",
]
