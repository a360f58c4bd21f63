"""
Transit fare table adapter (Transportation)
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from ingestion.adapters.http_feed import HTTPFeedAdapter
from ingestion.adapters.parsing import parse_int, parse_price
from schemas.observation import Category, Location, Observation

TAXI = "taxi"


def fare_unit(mode: str, fare_type: str) -> str:
    fare_type = fare_type.lower()
    if mode == TAXI:
        if "kilometer" in fare_type or "km" in fare_type:
            return "AED/km"
        if "minute" in fare_type or "waiting" in fare_type:
            return "AED/min"
        return "AED"
    if "day pass" in fare_type or "day_pass" in fare_type:
        return "AED/day"
    if "monthly" in fare_type:
        return "AED/month"
    return "AED/trip"


def fare_item_name(mode: str, fare_type: str, zones: Optional[int], card_type: Optional[str]) -> str:
    """e.g. "Metro Single Trip 2 Zones (Silver)" or "Dubai Taxi - Per Kilometer" """
    if mode == TAXI:
        return f"Dubai Taxi - {fare_type}"
    name = f"{mode.title()} {fare_type}"
    if zones:
        name += f" {zones} Zone" + ("s" if zones > 1 else "")
    if card_type:
        name += f" ({card_type.title()})"
    return name


class FareTableAdapter(HTTPFeedAdapter):
    """
    Public transport and taxi fares from a transit authority.

    Expected record fields: mode (metro | bus | tram | taxi | ...),
    fare_type, price, zones, card_type.
    """

    confidence = 0.95

    def normalize_record(self, record: Dict[str, Any], fetched_at: datetime) -> Optional[Observation]:
        mode = str(record.get("mode", "")).strip().lower()
        fare_type = str(record.get("fare_type", "")).strip()
        if not mode or not fare_type:
            raise KeyError("mode" if not mode else "fare_type")

        price = parse_price(record.get("price"))
        if price is None:
            raise ValueError(f"unparseable fare {record.get('price')!r}")
        if price <= 0:
            return None

        zones = parse_int(record.get("zones"))
        card_type = record.get("card_type") or None

        tags: List[str] = ["transport", self.source, self.config.region.lower()]
        tags.append("taxi" if mode == TAXI else "public_transport")
        tags.append(mode)
        if card_type:
            tags.append(str(card_type).lower())

        attributes: Dict[str, Any] = {
            "transport_mode": mode,
            "fare_type": fare_type.lower().replace(" ", "_"),
        }
        if card_type:
            attributes["card_type"] = card_type
        if zones:
            attributes["zones_crossed"] = zones

        return Observation(
            category=Category.TRANSPORTATION,
            sub_category="Taxi" if mode == TAXI else "Public Transport",
            item_name=fare_item_name(mode, fare_type, zones, card_type),
            price=price,
            location=Location(region=self.config.region, city=self.config.region),
            recorded_at=fetched_at,
            valid_from=fetched_at,
            source=self.source,
            source_url=record.get("url") or self.url,
            confidence=self.confidence,
            unit=fare_unit(mode, fare_type),
            tags=list(dict.fromkeys(tags)),
            attributes=attributes,
        )
