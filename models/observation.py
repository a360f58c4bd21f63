from sqlalchemy import Column, DateTime, Float, Index, Integer, String, Text

from models.base import Base, JSONVariant, utcnow
from schemas.observation import GeoPoint, Location, Observation


class CostObservation(Base):
    """
    One accepted price observation.

    Location is flattened into columns so history queries can filter by
    region without touching JSON.
    """
    __tablename__ = "cost_observations"

    id = Column(String(36), primary_key=True)

    category = Column(String(50), nullable=False)
    sub_category = Column(String(100), nullable=True)
    item_name = Column(String(500), nullable=False)

    # Pricing
    price = Column(Float, nullable=False)
    min_price = Column(Float, nullable=True)
    max_price = Column(Float, nullable=True)
    median_price = Column(Float, nullable=True)
    sample_size = Column(Integer, nullable=False, default=1)
    unit = Column(String(30), nullable=False, default="AED")

    # Location
    region = Column(String(100), nullable=False, index=True)
    city = Column(String(100), nullable=True)
    area = Column(String(200), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # Temporal
    recorded_at = Column(DateTime(timezone=True), nullable=False)
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_to = Column(DateTime(timezone=True), nullable=True)

    # Provenance
    source = Column(String(100), nullable=False)
    source_url = Column(Text, nullable=True)
    confidence = Column(Float, nullable=False, default=1.0)

    tags = Column(JSONVariant, nullable=True)
    attributes = Column(JSONVariant, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_cost_obs_category_recorded", "category", "recorded_at"),
        Index("idx_cost_obs_source_recorded", "source", "recorded_at"),
    )

    @classmethod
    def from_observation(cls, observation: Observation, observation_id: str) -> "CostObservation":
        location = observation.location
        return cls(
            id=observation_id,
            category=observation.category,
            sub_category=observation.sub_category,
            item_name=observation.item_name,
            price=observation.price,
            min_price=observation.min_price,
            max_price=observation.max_price,
            median_price=observation.median_price,
            sample_size=observation.sample_size,
            unit=observation.unit,
            region=location.region,
            city=location.city,
            area=location.area,
            latitude=location.coordinates.lat if location.coordinates else None,
            longitude=location.coordinates.lon if location.coordinates else None,
            recorded_at=observation.recorded_at,
            valid_from=observation.valid_from,
            valid_to=observation.valid_to,
            source=observation.source,
            source_url=observation.source_url,
            confidence=observation.confidence,
            tags=list(observation.tags),
            attributes=dict(observation.attributes),
        )

    def to_observation(self) -> Observation:
        coordinates = None
        if self.latitude is not None and self.longitude is not None:
            coordinates = GeoPoint(lat=self.latitude, lon=self.longitude)
        return Observation(
            id=self.id,
            category=self.category,
            sub_category=self.sub_category,
            item_name=self.item_name,
            price=self.price,
            min_price=self.min_price,
            max_price=self.max_price,
            median_price=self.median_price,
            sample_size=self.sample_size,
            location=Location(
                region=self.region,
                city=self.city,
                area=self.area,
                coordinates=coordinates,
            ),
            recorded_at=self.recorded_at,
            valid_from=self.valid_from,
            valid_to=self.valid_to,
            source=self.source,
            source_url=self.source_url,
            confidence=self.confidence,
            unit=self.unit,
            tags=self.tags or [],
            attributes=self.attributes or {},
        )
