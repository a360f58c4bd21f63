"""
Paginated JSON feed adapter over httpx.

This module provides the HTTP building blocks shared by every network adapter:
- HTTP status / transport error mapping onto the fetch error taxonomy
- JSON decoding with PayloadFormatError on garbage
- Page-by-page fetching, each page as one RetryExecutor attempt
- Record-level normalisation where a bad record is skipped and reported
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from core.config import ProviderConfig
from core.exceptions import (
    AuthenticationError,
    FetchError,
    FetchTimeoutError,
    NetworkError,
    PayloadFormatError,
    RateLimitError,
    ResourceNotFoundError,
    SourceUnavailableError,
)
from ingestion.base import SourceAdapter
from ingestion.context import RunContext
from ingestion.retry import RetryExecutor
from schemas.observation import Observation

logger = logging.getLogger(__name__)

RecordNormalizer = Callable[[Dict[str, Any]], Optional[Observation]]


def check_response(response: httpx.Response, provider: str, url: str) -> httpx.Response:
    """
    Map HTTP error statuses onto fetch errors.

    401/403 -> AuthenticationError, 404/410 -> ResourceNotFoundError,
    429 -> RateLimitError (honouring Retry-After), 5xx -> NetworkError,
    any other 4xx -> FetchError (not retried).
    """
    status = response.status_code
    context = {"status_code": status, "url": url, "provider": provider}

    if status in (401, 403):
        raise AuthenticationError(f"Authentication failed for {url}", context=context)

    if status in (404, 410):
        raise ResourceNotFoundError(f"Resource not found: {url}", context=context)

    if status == 429:
        retry_after = None
        header = response.headers.get("Retry-After")
        if header:
            try:
                retry_after = float(header)
            except ValueError:
                retry_after = None
        raise RateLimitError(
            f"Rate limit exceeded for {url}",
            context=context,
            retry_after=retry_after
        )

    if status >= 500:
        raise NetworkError(
            f"Server error {status} from {url}",
            context={**context, "response_body": response.text[:500]}
        )

    if status >= 400:
        raise FetchError(f"Request rejected with {status}: {url}", context=context)

    return response


async def http_get(
    client: httpx.AsyncClient,
    url: str,
    provider: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> httpx.Response:
    """GET ``url`` and translate transport failures into fetch errors"""
    try:
        response = await client.get(url, params=params, headers=headers)
    except httpx.TimeoutException as e:
        raise FetchTimeoutError(
            f"Request timeout for {url}",
            context={"url": url, "provider": provider},
            original_exception=e
        )
    except httpx.TransportError as e:
        raise NetworkError(
            f"Network error for {url}",
            context={"url": url, "provider": provider},
            original_exception=e
        )
    return check_response(response, provider, url)


def decode_json(response: httpx.Response, provider: str, url: str) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise PayloadFormatError(
            "Failed to parse JSON response",
            context={
                "url": url,
                "provider": provider,
                "response_body": response.text[:500]
            },
            original_exception=e
        )


class HTTPFeedAdapter(SourceAdapter):
    """
    Read a paginated JSON feed and normalise each record.

    Handles the usual response shapes:
    - a bare list of records (last page when shorter than ``page_size``)
    - ``{"data": [...], "has_next": bool}`` or ``{"results": [...]}``

    Subclasses override ``normalize_record``; a callable can also be passed as
    ``normalizer``. Returning None skips a record silently, raising
    ValueError/KeyError/TypeError skips it and reports a run issue.
    """

    def __init__(
        self,
        name: str,
        config: ProviderConfig,
        executor: RetryExecutor,
        endpoint: str = "",
        params: Optional[Dict[str, Any]] = None,
        normalizer: Optional[RecordNormalizer] = None,
    ):
        super().__init__(name=name, source=config.source)
        self.config = config
        self.executor = executor
        self.endpoint = endpoint
        self.params = dict(params or {})
        self._normalizer = normalizer

    @property
    def url(self) -> str:
        base = (self.config.base_url or "").rstrip("/")
        if not self.endpoint:
            return base
        return f"{base}/{self.endpoint.lstrip('/')}"

    def can_run(self) -> bool:
        return bool(self.config.base_url)

    def headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def fetch(self, ctx: RunContext) -> List[Observation]:
        if not self.can_run():
            raise SourceUnavailableError(
                f"No base URL configured for {self.name}",
                context={"provider": self.name}
            )

        url = self.url
        observations: List[Observation] = []
        fetched_at = datetime.now(timezone.utc)
        page = 1

        async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
            while page <= self.config.max_pages:
                params = {**self.params, "page": page}
                logger.info(f"Fetching page {page} from {url}")

                data = await self.executor.attempt(
                    lambda: self._fetch_page(client, url, params),
                    ctx,
                    operation=f"page {page}",
                )
                records, has_next = self._split_page(data)

                for record in records:
                    observation = self._normalize(record, fetched_at, ctx)
                    if observation is not None:
                        observations.append(observation)

                if not records or not has_next:
                    break
                page += 1

        logger.info(
            f"Fetched {len(observations)} observations from {self.name} ({page} pages)"
        )
        return observations

    async def _fetch_page(self, client: httpx.AsyncClient, url: str, params: Dict[str, Any]) -> Any:
        response = await http_get(client, url, self.name, params=params, headers=self.headers())
        return decode_json(response, self.name, url)

    def _split_page(self, data: Any) -> Tuple[List[Dict[str, Any]], bool]:
        if isinstance(data, list):
            return data, len(data) >= self.config.page_size
        if isinstance(data, dict):
            records = data.get("data", data.get("results", []))
            if not isinstance(records, list):
                raise PayloadFormatError(
                    "Feed page has no record list",
                    context={"provider": self.name, "keys": sorted(data.keys())}
                )
            return records, bool(data.get("has_next", False))
        raise PayloadFormatError(
            f"Unexpected feed page type {type(data).__name__}",
            context={"provider": self.name}
        )

    def _normalize(self, record: Any, fetched_at: datetime, ctx: RunContext) -> Optional[Observation]:
        if not isinstance(record, dict):
            ctx.report_issue(f"{self.name}: skipped non-object record {record!r:.80}")
            return None
        try:
            if self._normalizer is not None:
                return self._normalizer(record)
            return self.normalize_record(record, fetched_at)
        except (ValueError, KeyError, TypeError) as e:
            record_id = record.get("id", "?")
            ctx.report_issue(f"{self.name}: skipped record {record_id}: {e}")
            return None

    def normalize_record(self, record: Dict[str, Any], fetched_at: datetime) -> Optional[Observation]:
        """Default: the record is already observation-shaped"""
        payload = dict(record)
        payload.setdefault("source", self.source)
        payload.setdefault("recorded_at", fetched_at)
        return Observation.model_validate(payload)
