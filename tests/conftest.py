"""
Pytest configuration and fixtures
"""

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from core.config import ProviderConfig
from ingestion.base import SourceAdapter
from ingestion.context import RunContext
from ingestion.retry import RetryExecutor, RetryPolicy
from ingestion.storage import InMemoryObservationStore
from schemas.observation import Location, Observation
from validation import ValidationConfig, ValidationEngine

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_observation(**overrides) -> Observation:
    """A Housing observation that passes every rule"""
    data = {
        "category": "Housing",
        "sub_category": "Rent",
        "item_name": "1BR Apartment in Dubai Marina",
        "price": 85000.0,
        "sample_size": 3,
        "location": Location(region="Dubai", city="Dubai", area="Dubai Marina"),
        "recorded_at": NOW - timedelta(hours=1),
        "source": "bayut",
        "confidence": 0.8,
        "unit": "AED/year",
        "attributes": {"bedrooms": 1, "area_sqft": 750.0},
    }
    data.update(overrides)
    return Observation(**data)


class StubAdapter(SourceAdapter):
    """Adapter returning canned observations or raising a canned error"""

    def __init__(self, name, observations=None, error=None, runnable=True):
        super().__init__(name=name)
        self.observations = list(observations or [])
        self.error = error
        self.runnable = runnable
        self.calls = 0

    def can_run(self) -> bool:
        return self.runnable

    async def fetch(self, ctx: RunContext) -> List[Observation]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.observations)


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def observation_factory():
    return make_observation


@pytest.fixture
def run_context():
    return RunContext("test_provider")


@pytest.fixture
def memory_store():
    return InMemoryObservationStore()


@pytest.fixture
def engine():
    return ValidationEngine(ValidationConfig())


@pytest.fixture
def provider_config():
    return ProviderConfig(
        base_url="https://api.example.com",
        api_key="test_key",
        source="test_source",
        rate_limit_per_second=0,
        max_retries=2,
        min_backoff=0.01,
        max_backoff=0.05,
        timeout_seconds=5,
        page_size=2,
        max_pages=5,
    )


@pytest.fixture
def fast_executor():
    """Executor that never really sleeps"""
    return RetryExecutor(
        policy=RetryPolicy(max_retries=2, min_backoff=0.01, max_backoff=0.05, timeout_seconds=5),
        provider="test_provider",
        sleep=no_sleep,
        rand=lambda: 0.0,
    )


@pytest.fixture
def stub_adapter():
    return StubAdapter
