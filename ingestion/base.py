"""
Abstract base class for provider source adapters
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ingestion.context import RunContext
from schemas.observation import Observation
import logging

logger = logging.getLogger(__name__)


class SourceAdapter(ABC):
    """
    Abstract base class for all provider adapters.

    Responsibilities:
    - One provider's network call(s) and normalisation into observations
    - Surfacing failures as FetchError subclasses (never process-fatal)
    - No state across calls beyond immutable configuration

    Adapters that talk to the network receive their provider's
    RetryExecutor and route every attempt through it.
    """

    def __init__(self, name: str, source: Optional[str] = None):
        self.name = name
        self.source = source or name

    def can_run(self) -> bool:
        """Whether the adapter has what it needs (credentials, files, ...)"""
        return True

    @abstractmethod
    async def fetch(self, ctx: RunContext) -> List[Observation]:
        """
        Fetch and normalise observations.

        Args:
            ctx: Run context for cancellation and non-fatal issues

        Returns:
            List of observations, possibly empty

        Raises:
            FetchError: When the provider could not be read
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"
