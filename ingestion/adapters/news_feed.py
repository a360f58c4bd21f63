"""
RSS/Atom news and press-release adapter.

Feeds are fetched over httpx and parsed with feedparser in a worker thread.
Turning an entry into prices is provider-specific and injected as a callable.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import feedparser
import httpx

from core.config import ProviderConfig
from core.exceptions import FetchError, PayloadFormatError, SourceUnavailableError
from ingestion.adapters.http_feed import http_get
from ingestion.base import SourceAdapter
from ingestion.context import RunContext
from ingestion.retry import RetryExecutor
from schemas.observation import Observation

logger = logging.getLogger(__name__)

EntryExtractor = Callable[[Dict[str, Any]], Sequence[Observation]]


def entry_to_dict(entry: Any) -> Dict[str, Any]:
    """Flatten a feedparser entry into a plain dict"""
    published = None
    if getattr(entry, "published_parsed", None):
        published = datetime(*entry.published_parsed[:6], tzinfo=timezone.utc)
    elif getattr(entry, "updated_parsed", None):
        published = datetime(*entry.updated_parsed[:6], tzinfo=timezone.utc)

    content = ""
    if entry.get("content"):
        content = entry.get("content", [{}])[0].get("value", "")

    return {
        "id": entry.get("id", entry.get("link", "")),
        "title": entry.get("title", ""),
        "summary": entry.get("summary", entry.get("description", "")),
        "link": entry.get("link", ""),
        "author": entry.get("author", ""),
        "published": published,
        "categories": [tag.get("term", "") for tag in entry.get("tags", [])],
        "content": content,
    }


class NewsFeedAdapter(SourceAdapter):
    """
    Collect price mentions from news feeds.

    Every configured feed is read; entries older than ``max_entry_age`` days
    are ignored. A feed that cannot be fetched is reported as a run issue;
    the adapter fails only when no feed could be read.
    """

    def __init__(
        self,
        name: str,
        config: ProviderConfig,
        executor: RetryExecutor,
        feed_urls: Sequence[str],
        extractor: Optional[EntryExtractor] = None,
        max_entry_age_days: float = 30,
    ):
        super().__init__(name=name, source=config.source)
        self.config = config
        self.executor = executor
        self.feed_urls = list(feed_urls)
        self.extractor = extractor
        self.max_entry_age_days = max_entry_age_days

    def can_run(self) -> bool:
        return self.extractor is not None and bool(self.feed_urls)

    async def fetch(self, ctx: RunContext) -> List[Observation]:
        if not self.can_run():
            raise SourceUnavailableError(
                f"{self.name} has no extractor or feeds configured",
                context={"provider": self.name}
            )

        observations: List[Observation] = []
        last_error: Optional[FetchError] = None
        feeds_read = 0
        now = datetime.now(timezone.utc)

        async with httpx.AsyncClient(timeout=self.config.timeout_seconds, follow_redirects=True) as client:
            for url in self.feed_urls:
                ctx.check()

                async def fetch_feed(url: str = url) -> str:
                    response = await http_get(client, url, self.name)
                    return response.text

                try:
                    content = await self.executor.attempt(fetch_feed, ctx, operation=url)
                    entries = await self._parse(content, url)
                except FetchError as e:
                    ctx.report_issue(f"{self.name}: feed {url} unavailable: {e.message}")
                    last_error = e
                    continue

                feeds_read += 1
                for entry in entries:
                    published = entry.get("published")
                    if published and (now - published).days > self.max_entry_age_days:
                        continue
                    observations.extend(self._extract(entry, ctx))

        if feeds_read == 0 and last_error is not None:
            raise last_error

        logger.info(f"Extracted {len(observations)} observations from {feeds_read} feeds")
        return observations

    async def _parse(self, content: str, url: str) -> List[Dict[str, Any]]:
        # Parse RSS in thread pool
        feed = await asyncio.to_thread(feedparser.parse, content)

        if feed.bozo and not feed.entries:
            raise PayloadFormatError(
                f"Failed to parse feed: {feed.bozo_exception}",
                context={"provider": self.name, "url": url}
            )
        return [entry_to_dict(entry) for entry in feed.entries]

    def _extract(self, entry: Dict[str, Any], ctx: RunContext) -> List[Observation]:
        try:
            extracted = list(self.extractor(entry))
        except (ValueError, KeyError, TypeError) as e:
            ctx.report_issue(f"{self.name}: extraction failed for entry {entry.get('id')}: {e}")
            return []
        link = entry.get("link") or None
        return [
            obs if obs.source_url or not link else obs.with_updates(source_url=link)
            for obs in extracted
        ]
