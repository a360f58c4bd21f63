"""
Storage collaborator contract and an in-memory implementation
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List

from schemas.observation import Observation, ensure_utc
from schemas.run import RunSummary

logger = logging.getLogger(__name__)


class ObservationStore(ABC):
    """
    Where accepted observations go.

    Only ``save`` is required. History lookups feed the outlier and
    duplicate stages and the aggregator's rate-change check; stores that
    cannot answer them return nothing.
    """

    @abstractmethod
    async def save(self, observation: Observation) -> Observation:
        """
        Persist one observation and return it with its assigned id.

        Raises:
            PersistError: When the store rejects the observation
        """
        pass

    async def recent_by_category(self, category: str, since: datetime) -> List[Observation]:
        return []

    async def record_run(self, summary: RunSummary) -> None:
        return None


class InMemoryObservationStore(ObservationStore):
    """Process-local store used by tests and dry runs"""

    def __init__(self):
        self.observations: List[Observation] = []
        self.runs: List[RunSummary] = []
        self._lock = asyncio.Lock()

    async def save(self, observation: Observation) -> Observation:
        stored = observation if observation.id else observation.with_updates(id=str(uuid.uuid4()))
        async with self._lock:
            self.observations.append(stored)
        return stored

    async def recent_by_category(self, category: str, since: datetime) -> List[Observation]:
        since = ensure_utc(since)
        return [
            obs for obs in self.observations
            if obs.category == category and obs.recorded_at >= since
        ]

    async def record_run(self, summary: RunSummary) -> None:
        self.runs.append(summary.model_copy(deep=True))

