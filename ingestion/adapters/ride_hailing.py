"""
Ride-hailing rate card model and the official rate API adapter.

A rate card is one set of fare components for an emirate, optionally with
per-service overrides. ``rates_to_observations`` turns a card into one
observation per component so each component is validated and stored on its
own.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from core.config import ProviderConfig
from core.exceptions import PayloadFormatError, SourceUnavailableError
from ingestion.adapters.http_feed import decode_json, http_get
from ingestion.base import SourceAdapter
from ingestion.context import RunContext
from ingestion.retry import RetryExecutor
from schemas.observation import Category, Location, Observation

logger = logging.getLogger(__name__)

SUB_CATEGORY = "Ride Sharing"

# component -> (item name, unit)
RATE_COMPONENTS = {
    "base_fare": ("Base Fare", "AED"),
    "per_km": ("Per Kilometer Rate", "AED/km"),
    "per_minute_wait": ("Per Minute Wait", "AED/min"),
    "minimum_fare": ("Minimum Fare", "AED"),
    "peak_surcharge": ("Peak Hour Surcharge", "AED"),
    "airport_surcharge": ("Airport Pickup Surcharge", "AED"),
    "salik_toll": ("Salik Toll (per gate)", "AED"),
}

SERVICE_COMPONENTS = {
    "base_fare": ("Base Fare", "AED"),
    "per_km": ("Per Kilometer", "AED/km"),
    "per_minute_wait": ("Per Minute Wait", "AED/min"),
    "minimum_fare": ("Minimum Fare", "AED"),
}

# Compared by detect_rate_changes, in report order
TRACKED_COMPONENTS = {
    "base_fare": "Base fare",
    "per_km": "Per km rate",
    "minimum_fare": "Minimum fare",
    "peak_surcharge_multiplier": "Peak surcharge multiplier",
}

MAX_BASE_FARE = 100.0
MAX_PER_KM = 10.0
MAX_MINIMUM_FARE = 200.0


class ServiceRate(BaseModel):
    """Rates for one service tier (e.g. economy, business)"""
    model_config = ConfigDict(extra="ignore")

    service_type: str
    description: str = ""
    base_fare: float = 0.0
    per_km: float = 0.0
    per_minute_wait: float = 0.0
    minimum_fare: float = 0.0


class RideHailingRates(BaseModel):
    """Published rate card for one emirate"""
    model_config = ConfigDict(extra="ignore")

    service_type: str = ""
    emirate: str = "Dubai"
    base_fare: float = 0.0
    per_km: float = 0.0
    per_minute_wait: float = 0.0
    minimum_fare: float = 0.0
    peak_surcharge_multiplier: float = 0.0
    airport_surcharge: float = 0.0
    salik_toll: float = 0.0
    effective_date: Optional[str] = None
    source: str = ""
    last_updated: Optional[datetime] = None
    rates: List[ServiceRate] = Field(default_factory=list)
    surcharges: Dict[str, Any] = Field(default_factory=dict)
    notes: List[str] = Field(default_factory=list)


def validate_rates(rates: RideHailingRates) -> List[str]:
    """Return sanity problems with a rate card; empty means usable"""
    problems = []
    if rates.base_fare <= 0:
        problems.append("base fare must be positive")
    if rates.per_km <= 0:
        problems.append("per km rate must be positive")
    if rates.minimum_fare <= 0:
        problems.append("minimum fare must be positive")
    if 0 < rates.minimum_fare < rates.base_fare:
        problems.append("minimum fare cannot be less than base fare")
    if rates.peak_surcharge_multiplier != 0 and rates.peak_surcharge_multiplier < 1.0:
        problems.append("peak surcharge multiplier must be >= 1.0 or 0 (no surcharge)")
    if rates.base_fare > MAX_BASE_FARE:
        problems.append(f"base fare too high: {rates.base_fare:.2f} (expected < {MAX_BASE_FARE:.0f} AED)")
    if rates.per_km > MAX_PER_KM:
        problems.append(f"per km rate too high: {rates.per_km:.2f} (expected < {MAX_PER_KM:.0f} AED)")
    if rates.minimum_fare > MAX_MINIMUM_FARE:
        problems.append(
            f"minimum fare too high: {rates.minimum_fare:.2f} (expected < {MAX_MINIMUM_FARE:.0f} AED)"
        )
    return problems


def _effective_date(rates: RideHailingRates, default: datetime) -> datetime:
    if rates.effective_date:
        try:
            parsed = datetime.strptime(rates.effective_date, "%Y-%m-%d")
            return parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            logger.debug(f"Ignoring unparseable effective date {rates.effective_date!r}")
    return default


def rates_to_observations(
    rates: RideHailingRates,
    source: str = "careem",
    confidence: float = 1.0,
    now: Optional[datetime] = None,
    source_url: Optional[str] = None,
) -> List[Observation]:
    """One observation per non-zero component, then per service-specific rate"""
    now = now or datetime.now(timezone.utc)
    valid_from = _effective_date(rates, now)
    location = Location(region=rates.emirate, city=rates.emirate)

    def build(item_name: str, price: float, component: str, unit: str, **extra: Any) -> Observation:
        attributes = {
            "rate_type": component,
            "service": rates.service_type,
            "effective_date": rates.effective_date,
            "data_source": rates.source or source,
        }
        attributes.update(extra)
        return Observation(
            category=Category.TRANSPORTATION,
            sub_category=SUB_CATEGORY,
            item_name=item_name,
            price=price,
            location=location,
            recorded_at=now,
            valid_from=valid_from,
            source=source,
            source_url=source_url,
            confidence=confidence,
            unit=unit,
            tags=[source, "ride_sharing", "transportation", component],
            attributes=attributes,
        )

    observations = []
    for component in ("base_fare", "per_km", "per_minute_wait", "minimum_fare"):
        value = getattr(rates, component)
        if value > 0:
            item_name, unit = RATE_COMPONENTS[component]
            observations.append(build(item_name, value, component, unit))

    if rates.peak_surcharge_multiplier > 1.0:
        item_name, unit = RATE_COMPONENTS["peak_surcharge"]
        observations.append(build(
            item_name,
            rates.base_fare * (rates.peak_surcharge_multiplier - 1.0),
            "peak_surcharge",
            unit,
            multiplier=rates.peak_surcharge_multiplier,
            description="Example surcharge on base fare during peak hours",
        ))

    for component in ("airport_surcharge", "salik_toll"):
        value = getattr(rates, component)
        if value > 0:
            item_name, unit = RATE_COMPONENTS[component]
            observations.append(build(item_name, value, component, unit))

    for service in rates.rates:
        for component, (label, unit) in SERVICE_COMPONENTS.items():
            value = getattr(service, component)
            if value <= 0:
                continue
            extra: Dict[str, Any] = {"service_type": service.service_type}
            if component == "base_fare":
                extra["description"] = service.description
            observations.append(build(
                f"{service.service_type} - {label}", value, component, unit, **extra
            ))

    return observations


def change_percent(old_value: float, new_value: float) -> float:
    """Absolute percentage change; a value appearing from zero counts as 100%"""
    if old_value == 0:
        return 0.0 if new_value == 0 else 100.0
    return abs((new_value - old_value) / old_value) * 100


def detect_rate_changes(
    old: Optional[RideHailingRates],
    new: Optional[RideHailingRates],
    threshold_pct: float = 10.0,
) -> List[str]:
    if old is None or new is None:
        return []

    changes = []
    for component, label in TRACKED_COMPONENTS.items():
        before = getattr(old, component)
        after = getattr(new, component)
        pct = change_percent(before, after)
        if pct < threshold_pct:
            continue
        if component == "peak_surcharge_multiplier":
            changes.append(f"{label} changed by {pct:.1f}%: {before:.2f}x -> {after:.2f}x")
        else:
            changes.append(f"{label} changed by {pct:.1f}%: {before:.2f} -> {after:.2f} AED")
    return changes


def estimate_fare(
    rates: RideHailingRates,
    distance_km: float,
    wait_minutes: float = 0.0,
    is_peak_hour: bool = False,
    is_airport: bool = False,
    salik_gates: int = 0,
) -> float:
    fare = rates.base_fare + rates.per_km * distance_km + rates.per_minute_wait * wait_minutes
    fare = max(fare, rates.minimum_fare)

    if is_peak_hour and rates.peak_surcharge_multiplier > 1.0:
        fare *= rates.peak_surcharge_multiplier
    if is_airport:
        fare += rates.airport_surcharge

    return fare + salik_gates * rates.salik_toll


def parse_rate_card(payload: Any) -> RideHailingRates:
    """Accept a bare card or one wrapped in ``{"data": {...}}``"""
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        payload = payload["data"]
    if not isinstance(payload, dict):
        raise PayloadFormatError(
            "Rate card payload is not an object",
            context={"payload_type": type(payload).__name__}
        )
    try:
        return RideHailingRates.model_validate(payload)
    except ValueError as e:
        raise PayloadFormatError("Invalid rate card payload", original_exception=e)


def rate_card_loader(source: str = "careem"):
    """Build a snapshot loader turning a rate card payload into observations"""

    def load(payload: Any) -> List[Observation]:
        rates = parse_rate_card(payload)
        problems = validate_rates(rates)
        if problems:
            raise PayloadFormatError(
                "Rate card failed sanity checks",
                context={"problems": problems}
            )
        return rates_to_observations(rates, source=source)

    return load


class RideHailingAPIAdapter(SourceAdapter):
    """
    Official rate endpoint of a ride-hailing operator.

    Only runs when an API key is configured. The card is sanity-checked with
    ``validate_rates`` before being split into observations.
    """

    def __init__(
        self,
        name: str,
        config: ProviderConfig,
        executor: RetryExecutor,
        endpoint: str = "rates",
    ):
        super().__init__(name=name, source=config.source)
        self.config = config
        self.executor = executor
        self.endpoint = endpoint

    def can_run(self) -> bool:
        return bool(self.config.api_key and self.config.base_url)

    @property
    def url(self) -> str:
        return f"{(self.config.base_url or '').rstrip('/')}/{self.endpoint.lstrip('/')}"

    async def fetch(self, ctx: RunContext) -> List[Observation]:
        if not self.can_run():
            raise SourceUnavailableError(
                f"{self.name} needs an API key and base URL",
                context={"provider": self.name}
            )

        url = self.url
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Accept": "application/json",
        }
        params = {"emirate": self.config.region}

        async def fetch_card() -> Any:
            response = await http_get(client, url, self.name, params=params, headers=headers)
            return decode_json(response, self.name, url)

        async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
            payload = await self.executor.attempt(fetch_card, ctx, operation="rate card")

        rates = parse_rate_card(payload)
        problems = validate_rates(rates)
        if problems:
            raise PayloadFormatError(
                "Rate card failed sanity checks",
                context={"provider": self.name, "problems": problems}
            )

        observations = rates_to_observations(rates, source=self.source, source_url=url)
        logger.info(f"Fetched {len(observations)} rate components from {self.name}")
        return observations
