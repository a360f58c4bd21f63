"""
Pydantic schema for a normalized price observation.

The schema only enforces structure and types. Domain invariants (positive
price, min/max consistency, confidence range, timestamp sanity) are checked by
the validation rule stage so that bad provider data ends up as findings on a
verdict instead of crashing normalization.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Category:
    """Closed set of spending categories"""
    HOUSING = "Housing"
    UTILITIES = "Utilities"
    TRANSPORTATION = "Transportation"
    FOOD = "Food"
    EDUCATION = "Education"
    ENTERTAINMENT = "Entertainment"
    HEALTHCARE = "Healthcare"
    SHOPPING = "Shopping"
    COMMUNICATIONS = "Communications"
    PERSONAL_CARE = "Personal Care"


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class GeoPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class Location(BaseModel):
    """Geographic location of an observation"""
    model_config = ConfigDict(frozen=True)

    region: str = ""
    city: Optional[str] = None
    area: Optional[str] = None
    coordinates: Optional[GeoPoint] = None

    @field_validator("region", mode="before")
    @classmethod
    def clean_region(cls, v):
        return (v or "").strip()


class Observation(BaseModel):
    """
    One ingested price/rate record.

    Observations are immutable: enrichment (confidence stamping, rate-change
    tags) produces a copy via ``model_copy(update=...)``.
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None

    category: str
    sub_category: Optional[str] = None
    item_name: str

    # Pricing
    price: float
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    median_price: Optional[float] = None
    sample_size: int = 1

    location: Location = Field(default_factory=Location)

    # Temporal
    recorded_at: datetime
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None

    # Provenance
    source: str
    source_url: Optional[str] = None
    confidence: float = 1.0

    unit: str = "AED"
    tags: List[str] = Field(default_factory=list)
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("category", "item_name", "source", "unit", mode="before")
    @classmethod
    def strip_text(cls, v):
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("recorded_at", "valid_from", "valid_to")
    @classmethod
    def normalize_timezone(cls, v):
        if v is None:
            return v
        return ensure_utc(v)

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v):
        """Ensure tags is a list"""
        if v is None:
            return []
        if isinstance(v, str):
            return [t.strip() for t in v.split(",") if t.strip()]
        return [str(t).strip() for t in v if str(t).strip()]

    @field_validator("attributes", mode="before")
    @classmethod
    def clean_attributes(cls, v):
        if not isinstance(v, dict):
            return {}
        return v

    @property
    def region(self) -> str:
        return self.location.region

    def with_updates(self, **changes: Any) -> "Observation":
        """Return a copy with the given fields replaced"""
        return self.model_copy(update=changes)
