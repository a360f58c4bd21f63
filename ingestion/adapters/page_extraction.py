"""
Adapter for providers that only publish prices on help/documentation pages.

Markup parsing is provider-specific and injected as a callable taking the
page text and its URL and returning observations.
"""

import logging
from typing import Callable, List, Optional, Sequence

import httpx

from core.config import ProviderConfig
from core.exceptions import FetchError, SourceUnavailableError
from ingestion.adapters.http_feed import http_get
from ingestion.base import SourceAdapter
from ingestion.context import RunContext
from ingestion.retry import RetryExecutor
from schemas.observation import Observation

logger = logging.getLogger(__name__)

PageExtractor = Callable[[str, str], Sequence[Observation]]

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; cost-of-living-ingestion/1.0)"


class PageExtractionAdapter(SourceAdapter):
    """
    Try candidate pages in order; the first page yielding observations wins.

    A page that fails (after retries) or yields nothing moves on to the next
    one. When every page failed the last error is raised; when pages loaded
    but held no prices the result is empty.
    """

    def __init__(
        self,
        name: str,
        config: ProviderConfig,
        executor: RetryExecutor,
        urls: Sequence[str],
        extractor: Optional[PageExtractor] = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        super().__init__(name=name, source=config.source)
        self.config = config
        self.executor = executor
        self.urls = list(urls)
        self.extractor = extractor
        self.user_agent = user_agent

    def can_run(self) -> bool:
        return self.extractor is not None and bool(self.urls)

    async def fetch(self, ctx: RunContext) -> List[Observation]:
        if not self.can_run():
            raise SourceUnavailableError(
                f"{self.name} has no extractor or pages configured",
                context={"provider": self.name}
            )

        headers = {"User-Agent": self.user_agent}
        last_error: Optional[FetchError] = None
        loaded_any = False

        async with httpx.AsyncClient(timeout=self.config.timeout_seconds, follow_redirects=True) as client:
            for url in self.urls:
                ctx.check()

                async def fetch_page(url: str = url) -> str:
                    response = await http_get(client, url, self.name, headers=headers)
                    return response.text

                try:
                    text = await self.executor.attempt(fetch_page, ctx, operation=url)
                except FetchError as e:
                    logger.info(f"Failed to fetch {url}: {e.message}")
                    last_error = e
                    continue

                loaded_any = True
                observations = self._extract(text, url, ctx)
                if observations:
                    logger.info(f"Extracted {len(observations)} observations from {url}")
                    return observations
                logger.info(f"No prices found on {url}")

        if last_error is not None and not loaded_any:
            raise last_error
        return []

    def _extract(self, text: str, url: str, ctx: RunContext) -> List[Observation]:
        try:
            extracted = list(self.extractor(text, url))
        except (ValueError, KeyError, TypeError) as e:
            ctx.report_issue(f"{self.name}: extraction failed for {url}: {e}")
            return []
        return [
            obs if obs.source_url else obs.with_updates(source_url=url)
            for obs in extracted
        ]
