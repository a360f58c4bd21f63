"""
Utility tariff table adapter (Utilities).

Tariffs are published as consumption slabs priced in fils; 100 fils = 1 AED.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from ingestion.adapters.http_feed import HTTPFeedAdapter
from ingestion.adapters.parsing import parse_datetime, parse_float, parse_int
from schemas.observation import Category, Location, Observation

FILS_PER_AED = 100.0

UTILITY_TYPES = {
    "electricity": ("Electricity", "kWh", "AED/kWh"),
    "water": ("Water", "IG", "AED/IG"),
    "fuel_surcharge": ("Fuel Surcharge", "kWh", "AED/kWh"),
}


def slab_name(utility_type: str, range_min: int, range_max: Optional[int]) -> str:
    _, measure, _ = UTILITY_TYPES[utility_type]
    if range_max is None or range_max < 0:
        return f"Slab {range_min}+ {measure}"
    return f"Slab {range_min}-{range_max} {measure}"


class TariffFeedAdapter(HTTPFeedAdapter):
    """
    Slab tariffs from a utility authority.

    Expected record fields: utility ("electricity" | "water" |
    "fuel_surcharge"), slab_min, slab_max (null or -1 for open-ended),
    rate_fils (or rate_aed), effective_date.
    """

    confidence = 0.98

    @property
    def authority(self) -> str:
        return self.source.split("_")[0].upper()

    def normalize_record(self, record: Dict[str, Any], fetched_at: datetime) -> Optional[Observation]:
        utility_type = str(record.get("utility", "")).strip().lower().replace(" ", "_")
        if utility_type not in UTILITY_TYPES:
            raise ValueError(f"unknown utility type {record.get('utility')!r}")
        sub_category, _, unit = UTILITY_TYPES[utility_type]

        rate_fils = parse_float(record.get("rate_fils"))
        if rate_fils is not None:
            price = rate_fils / FILS_PER_AED
        else:
            price = parse_float(record.get("rate_aed"))
        if price is None:
            raise ValueError("slab has no rate")
        if price <= 0:
            return None

        range_min = parse_int(record.get("slab_min")) or 0
        range_max = parse_int(record.get("slab_max"))

        if utility_type == "fuel_surcharge":
            item_name = f"{self.authority} Fuel Surcharge"
        else:
            item_name = f"{self.authority} {sub_category} {slab_name(utility_type, range_min, range_max)}"

        attributes: Dict[str, Any] = {
            "rate_type": "slab",
            "consumption_range_min": range_min,
        }
        if range_max is not None and range_max > 0:
            attributes["consumption_range_max"] = range_max
        if rate_fils is not None:
            attributes["rate_fils"] = rate_fils

        valid_from = parse_datetime(record.get("effective_date")) or fetched_at

        return Observation(
            category=Category.UTILITIES,
            sub_category=sub_category,
            item_name=item_name,
            price=price,
            location=Location(region=self.config.region, city=self.config.region),
            recorded_at=fetched_at,
            valid_from=valid_from,
            source=self.source,
            source_url=record.get("url") or self.url,
            confidence=self.confidence,
            unit=unit,
            tags=["utility", "official", utility_type],
            attributes=attributes,
        )
