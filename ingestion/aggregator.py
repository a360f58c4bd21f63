"""
Multi-source aggregator for providers without an official feed.

Tiers are tried strictly in order, highest trust first:

    official API (0.95) -> help pages (0.85) -> news (0.75) -> static snapshot (0.70)

The first tier returning observations wins; tiers are never merged. Winning
observations are stamped with the tier's confidence and compared with the
last stored prices so that big moves are flagged (never rejected).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from core.exceptions import AllSourcesFailedError, FetchError, PersistError
from core.metrics import AGGREGATOR_TIER, RATE_CHANGE_ALERTS
from ingestion.adapters.ride_hailing import change_percent
from ingestion.base import SourceAdapter
from ingestion.context import RunContext
from ingestion.storage import ObservationStore
from schemas.observation import Observation

logger = logging.getLogger(__name__)

RATE_CHANGE_TAG = "rate_change"


@dataclass(frozen=True)
class Tier:
    adapter: SourceAdapter
    confidence: float

    @property
    def name(self) -> str:
        return self.adapter.name


@dataclass(frozen=True)
class RateChangeAlert:
    provider: str
    item_name: str
    region: str
    previous_price: float
    new_price: float
    change_pct: float

    def describe(self) -> str:
        return (
            f"{self.item_name} ({self.region}) changed by {self.change_pct:.1f}%: "
            f"{self.previous_price:.2f} -> {self.new_price:.2f}"
        )


class SourceAggregator(SourceAdapter):
    """
    Ordered first-success fallback over several adapters for one provider.

    The aggregator is itself a SourceAdapter, so the runner does not know
    whether it talks to one adapter or to a chain of them.

    Attributes:
        tiers: (adapter, confidence) pairs, highest trust first
        store: Optional storage used for the rate-change comparison
    """

    def __init__(
        self,
        name: str,
        tiers: Sequence[Tier],
        store: Optional[ObservationStore] = None,
        rate_change_threshold_pct: float = 10.0,
        history_lookback: timedelta = timedelta(days=30),
        source: Optional[str] = None,
    ):
        super().__init__(name=name, source=source)
        self.tiers = list(tiers)
        self.store = store
        self.rate_change_threshold_pct = rate_change_threshold_pct
        self.history_lookback = history_lookback

    def can_run(self) -> bool:
        return any(tier.adapter.can_run() for tier in self.tiers)

    async def fetch(self, ctx: RunContext) -> List[Observation]:
        tried: List[str] = []
        last_error: Optional[Exception] = None

        for tier in self.tiers:
            ctx.check()

            if not tier.adapter.can_run():
                logger.info(f"[{self.name}] Tier {tier.name} not available, skipping")
                continue

            tried.append(tier.name)
            try:
                observations = await tier.adapter.fetch(ctx)
            except FetchError as e:
                logger.info(f"[{self.name}] Tier {tier.name} failed: {e.message}")
                ctx.report_issue(f"{self.name}: tier {tier.name} failed: {e.message}")
                last_error = e
                continue

            if not observations:
                logger.info(f"[{self.name}] Tier {tier.name} returned no observations")
                continue

            AGGREGATOR_TIER.labels(provider=self.name, tier=tier.name).inc()
            logger.info(
                f"[{self.name}] Using tier {tier.name} "
                f"({len(observations)} observations, confidence {tier.confidence})"
            )

            stamped = [
                obs.with_updates(
                    confidence=tier.confidence,
                    attributes={**obs.attributes, "tier": tier.name},
                )
                for obs in observations
            ]
            return await self._flag_rate_changes(stamped, ctx)

        raise AllSourcesFailedError(
            f"No tier of {self.name} produced observations",
            context={
                "provider": self.name,
                "tiers_tried": tried,
                "last_error": getattr(last_error, "message", None),
            },
            original_exception=last_error
        )

    async def _flag_rate_changes(
        self,
        observations: List[Observation],
        ctx: RunContext,
    ) -> List[Observation]:
        if self.store is None:
            return observations

        try:
            previous = await self._previous_prices(observations)
        except PersistError as e:
            ctx.report_issue(f"{self.name}: rate-change check skipped: {e.message}")
            return observations
        if not previous:
            return observations

        flagged = []
        for obs in observations:
            old_price = previous.get(self._key(obs))
            if old_price is None:
                flagged.append(obs)
                continue

            pct = change_percent(old_price, obs.price)
            if pct <= self.rate_change_threshold_pct:
                flagged.append(obs)
                continue

            alert = RateChangeAlert(
                provider=self.name,
                item_name=obs.item_name,
                region=obs.region,
                previous_price=old_price,
                new_price=obs.price,
                change_pct=round(pct, 2),
            )
            RATE_CHANGE_ALERTS.labels(provider=self.name, item=obs.item_name).inc()
            ctx.report_issue(f"{self.name}: rate change: {alert.describe()}")
            flagged.append(obs.with_updates(
                tags=list(obs.tags) + [RATE_CHANGE_TAG],
                attributes={
                    **obs.attributes,
                    "previous_price": old_price,
                    "change_pct": alert.change_pct,
                },
            ))
        return flagged

    async def _previous_prices(self, observations: List[Observation]) -> Dict[Tuple[str, str, str], float]:
        """Most recent stored price per (item, region, unit)"""
        since = datetime.now(timezone.utc) - self.history_lookback
        latest: Dict[Tuple[str, str, str], Observation] = {}

        for category in sorted({obs.category for obs in observations}):
            for stored in await self.store.recent_by_category(category, since):
                key = self._key(stored)
                if key not in latest or stored.recorded_at > latest[key].recorded_at:
                    latest[key] = stored

        return {key: obs.price for key, obs in latest.items()}

    @staticmethod
    def _key(obs: Observation) -> Tuple[str, str, str]:
        return obs.item_name.lower(), obs.region.lower(), obs.unit
