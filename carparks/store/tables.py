"""SQLAlchemy table mapping for car park records."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

from carparks.common.models import CarParkAttributes, CarParkRecord
from carparks.common.time_utils import utc_now

Base = declarative_base()

ATTRIBUTE_FIELDS = (
    "address",
    "latitude",
    "longitude",
    "car_park_type",
    "parking_system",
    "short_term_parking",
    "free_parking",
    "night_parking",
    "decks",
    "gantry_height",
    "basement",
)


class CarParkRow(Base):
    """One facility, keyed by its facility code."""

    __tablename__ = "car_parks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), nullable=False, unique=True)
    address = Column(Text, nullable=False, default="")
    latitude = Column(Float)
    longitude = Column(Float)
    total_lots = Column(Integer, nullable=False, default=0)
    available_lots = Column(Integer, nullable=False, default=0)
    car_park_type = Column(String(100))
    parking_system = Column(String(100))
    short_term_parking = Column(String(100))
    free_parking = Column(String(100))
    night_parking = Column(String(100))
    decks = Column(String(50))
    gantry_height = Column(String(50))
    basement = Column(String(10))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
    deleted_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_car_parks_active_available", "deleted_at", "available_lots"),
    )

    def apply_attributes(self, attributes: CarParkAttributes) -> None:
        for name in ATTRIBUTE_FIELDS:
            setattr(self, name, getattr(attributes, name))

    @classmethod
    def from_attributes(cls, attributes: CarParkAttributes) -> "CarParkRow":
        row = cls(code=attributes.code, total_lots=0, available_lots=0)
        row.apply_attributes(attributes)
        return row

    def to_record(self) -> CarParkRecord:
        return CarParkRecord(
            code=self.code,
            address=self.address,
            latitude=self.latitude,
            longitude=self.longitude,
            total_lots=self.total_lots or 0,
            available_lots=self.available_lots or 0,
            car_park_type=self.car_park_type,
            parking_system=self.parking_system,
            short_term_parking=self.short_term_parking,
            free_parking=self.free_parking,
            night_parking=self.night_parking,
            decks=self.decks,
            gantry_height=self.gantry_height,
            basement=self.basement,
            deleted_at=self.deleted_at,
            updated_at=self.updated_at,
            created_at=self.created_at,
        )

    def __repr__(self):
        return f"<CarParkRow(code='{self.code}', available={self.available_lots}/{self.total_lots})>"
