"""
Centralised retry, timeout and rate limiting for provider network calls.

Every outbound attempt of a provider goes through that provider's
RetryExecutor:

    limiter wait -> attempt under timeout -> classify error -> backoff -> ...

Error classification follows the exception hierarchy in ``core.exceptions``:
``RetryableError`` subclasses are retried, ``NonRetryableError`` subclasses
surface immediately. Each provider owns one executor and one token bucket;
they are never shared across providers.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from core.config import ProviderConfig
from core.exceptions import (
    FetchError,
    FetchTimeoutError,
    IngestionException,
    NonRetryableError,
    RateLimitError,
    RetryableError,
    RunCancelledError,
)
from core.metrics import FETCH_ATTEMPTS
from ingestion.context import RunContext

logger = logging.getLogger(__name__)


class TokenBucket:
    """
    Async token bucket limiting attempts per second for one provider.

    Capacity defaults to one token so attempts are evenly spaced; a rate of
    zero or less disables limiting.
    """

    def __init__(
        self,
        rate_per_second: float,
        capacity: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rate = rate_per_second
        self.capacity = max(capacity, 1.0)
        self._clock = clock
        self._tokens = self.capacity
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    @property
    def tokens(self) -> float:
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(now - self._last_refill, 0.0)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._last_refill = now

    def try_acquire(self) -> bool:
        if self.rate <= 0:
            return True
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    def wait_time(self) -> float:
        """Seconds until one token is available"""
        if self.rate <= 0:
            return 0.0
        self._refill()
        return max(0.0, (1 - self._tokens) / self.rate)

    async def acquire(self, ctx: Optional[RunContext] = None) -> None:
        """Wait for a token; a cancelled context aborts the wait"""
        async with self._lock:
            while not self.try_acquire():
                delay = self.wait_time()
                logger.debug(f"Rate limiter waiting {delay:.2f}s for a token")
                if ctx is not None:
                    await ctx.sleep(delay)
                else:
                    await asyncio.sleep(delay)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    min_backoff: float = 1.0
    max_backoff: float = 30.0
    timeout_seconds: float = 30.0
    jitter: float = 0.5

    @classmethod
    def from_provider(cls, config: ProviderConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            min_backoff=config.min_backoff,
            max_backoff=max(config.max_backoff, config.min_backoff),
            timeout_seconds=config.timeout_seconds,
        )

    def backoff(self, retry_number: int, rand: float = 0.0) -> float:
        """
        Delay before retry ``retry_number`` (0-based), jittered and clamped
        to [min_backoff, max_backoff].
        """
        delay = self.min_backoff * (2 ** retry_number) * (1 + self.jitter * rand)
        return min(max(delay, self.min_backoff), self.max_backoff)


class RetryExecutor:
    """
    Run one provider operation with rate limiting, timeout and retries.

    Example:
        executor = RetryExecutor(RetryPolicy.from_provider(cfg), TokenBucket(cfg.rate_limit_per_second))
        page = await executor.attempt(lambda: fetch_page(client, 1), ctx, operation="page 1")

    Attributes:
        policy: Retry/backoff/timeout parameters
        limiter: Token bucket shared by all of this provider's attempts
        provider: Provider name used in logs, metrics and error context
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        limiter: Optional[TokenBucket] = None,
        provider: str = "unknown",
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rand: Callable[[], float] = random.random,
    ):
        self.policy = policy or RetryPolicy()
        self.limiter = limiter
        self.provider = provider
        self._sleep = sleep
        self._rand = rand

    @classmethod
    def for_provider(cls, name: str, config: ProviderConfig) -> "RetryExecutor":
        return cls(
            policy=RetryPolicy.from_provider(config),
            limiter=TokenBucket(config.rate_limit_per_second),
            provider=name,
        )

    async def attempt(
        self,
        fn: Callable[[], Awaitable[Any]],
        ctx: Optional[RunContext] = None,
        operation: str = "",
    ) -> Any:
        """
        Await ``fn()`` up to ``max_retries + 1`` times.

        Returns:
            Whatever ``fn`` returns on its first successful attempt

        Raises:
            NonRetryableError subclasses: immediately, without retrying
            RunCancelledError: when ``ctx`` is cancelled at a wait point
            The last retryable error once attempts are exhausted
        """
        total_attempts = self.policy.max_retries + 1
        label = f"{self.provider} {operation}".strip()

        for attempt_number in range(total_attempts):
            if ctx is not None:
                ctx.check()
            if self.limiter is not None:
                await self.limiter.acquire(ctx)

            try:
                result = await self._call(fn)

            except asyncio.TimeoutError as e:
                error: IngestionException = FetchTimeoutError(
                    f"Attempt timed out after {self.policy.timeout_seconds}s",
                    context={
                        "provider": self.provider,
                        "operation": operation,
                        "attempt": attempt_number + 1,
                    },
                    original_exception=e
                )

            except RunCancelledError:
                raise

            except NonRetryableError as e:
                FETCH_ATTEMPTS.labels(provider=self.provider, outcome="failed").inc()
                logger.error(f"Non-retryable error for {label}: {e.message}")
                raise

            except RetryableError as e:
                error = e

            except IngestionException:
                FETCH_ATTEMPTS.labels(provider=self.provider, outcome="failed").inc()
                raise

            except Exception as e:
                error = FetchError(
                    f"Unexpected error: {e}",
                    context={
                        "provider": self.provider,
                        "operation": operation,
                        "attempt": attempt_number + 1,
                    },
                    original_exception=e
                )

            else:
                FETCH_ATTEMPTS.labels(provider=self.provider, outcome="success").inc()
                return result

            if attempt_number == total_attempts - 1:
                FETCH_ATTEMPTS.labels(provider=self.provider, outcome="failed").inc()
                logger.error(
                    f"Giving up on {label} after {total_attempts} attempts: {error.message}"
                )
                raise error

            delay = self.policy.backoff(attempt_number, self._rand())
            if isinstance(error, RateLimitError) and error.retry_after:
                delay = max(delay, float(error.retry_after))

            FETCH_ATTEMPTS.labels(provider=self.provider, outcome="retry").inc()
            logger.warning(
                f"{label} failed ({type(error).__name__}: {error.message}). "
                f"Retrying in {delay:.2f}s (attempt {attempt_number + 1}/{total_attempts})"
            )
            await self._wait(delay, ctx)

        # range() above always returns or raises
        raise FetchError("Max retries exceeded", context={"provider": self.provider})

    async def _call(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        if self.policy.timeout_seconds and self.policy.timeout_seconds > 0:
            return await asyncio.wait_for(fn(), timeout=self.policy.timeout_seconds)
        return await fn()

    async def _wait(self, delay: float, ctx: Optional[RunContext]) -> None:
        if self._sleep is not None:
            await self._sleep(delay)
            if ctx is not None:
                ctx.check()
        elif ctx is not None:
            await ctx.sleep(delay)
        else:
            await asyncio.sleep(delay)
