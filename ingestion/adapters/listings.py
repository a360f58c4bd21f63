"""
Property listing feed adapter (Housing)
"""

from datetime import datetime
from typing import Any, Dict, Optional

from ingestion.adapters.http_feed import HTTPFeedAdapter
from ingestion.adapters.parsing import parse_datetime, parse_float, parse_int, parse_price
from schemas.observation import Category, Location, Observation

KNOWN_REGIONS = (
    "dubai",
    "abu dhabi",
    "sharjah",
    "ajman",
    "ras al khaimah",
    "fujairah",
    "umm al quwain",
)

MONTHLY_MARKERS = ("month", "monthly", "/mo")


def parse_location(value: Any, default_region: str) -> Location:
    """
    Accept either a dict or text like "Dubai Marina, Dubai"; the last
    comma-separated part naming an emirate becomes the region.
    """
    if isinstance(value, dict):
        region = value.get("region") or value.get("emirate") or default_region
        return Location(
            region=region,
            city=value.get("city") or region,
            area=value.get("area"),
        )

    text = (value or "").strip() if isinstance(value, str) else ""
    if not text:
        return Location(region=default_region, city=default_region)

    parts = [p.strip() for p in text.split(",") if p.strip()]
    region = default_region
    for part in reversed(parts):
        if part.lower() in KNOWN_REGIONS:
            region = part.title()
            break
    area = parts[0] if parts and parts[0].lower() not in KNOWN_REGIONS else None
    return Location(region=region, city=region, area=area)


class ListingFeedAdapter(HTTPFeedAdapter):
    """
    Rental listings from a property portal feed.

    Expected record fields: id, title, price (number or text), location,
    bedrooms, area_sqft, rent_frequency ("yearly" | "monthly"), url,
    listed_at.
    """

    confidence = 0.8

    def normalize_record(self, record: Dict[str, Any], fetched_at: datetime) -> Optional[Observation]:
        price_field = record.get("price")
        price = parse_price(price_field)
        if price is None:
            raise ValueError(f"unparseable price {price_field!r}")

        title = record.get("title") or record.get("name")
        if not title:
            raise KeyError("title")

        frequency = str(record.get("rent_frequency") or price_field or "").lower()
        unit = "AED/month" if any(m in frequency for m in MONTHLY_MARKERS) else "AED/year"

        attributes: Dict[str, Any] = {}
        bedrooms = record.get("bedrooms")
        if bedrooms is not None:
            attributes["bedrooms"] = "Studio" if str(bedrooms).lower() == "studio" else parse_int(bedrooms)
        area_sqft = parse_float(record.get("area_sqft", record.get("size")))
        if area_sqft is not None:
            attributes["area_sqft"] = area_sqft
        if record.get("property_type"):
            attributes["property_type"] = record["property_type"]
        if record.get("id") is not None:
            attributes["listing_id"] = str(record["id"])

        property_type = str(record.get("property_type") or "apartment").lower()
        recorded_at = parse_datetime(record.get("listed_at")) or fetched_at

        return Observation(
            category=Category.HOUSING,
            sub_category="Rent",
            item_name=title,
            price=price,
            location=parse_location(record.get("location"), self.config.region),
            recorded_at=recorded_at,
            valid_from=recorded_at,
            source=self.source,
            source_url=record.get("url"),
            confidence=self.confidence,
            unit=unit,
            tags=["rent", property_type, self.source],
            attributes=attributes,
        )
