"""
Database Models
SQLAlchemy ORM models for customers and meter readings
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import relationship

from database.db import Base

# Microsecond precision so that creation order survives on MySQL
PreciseDateTime = DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql")

CUSTOMER_CODE_MAX_LENGTH = 100


def utc_now() -> datetime:
    """Naive UTC timestamp, the storage convention for every datetime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def month_bucket(value: datetime) -> str:
    return value.strftime("%Y-%m")


class MeasureType(enum.Enum):
    """Utility a reading belongs to"""
    WATER = "WATER"
    GAS = "GAS"


class Customer(Base):
    """Customer identified by an external code, created on first submission"""
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(CUSTOMER_CODE_MAX_LENGTH), nullable=False, unique=True, index=True)
    created_at = Column(PreciseDateTime, nullable=False, default=utc_now)

    readings = relationship("Reading", back_populates="customer")


class Reading(Base):
    """
    One meter observation.

    measure_period is the YYYY-MM bucket of measure_datetime; the unique
    constraint on it keeps one reading per customer, type and month even
    under concurrent submissions.
    """
    __tablename__ = "readings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    measure_type = Column(SQLEnum(MeasureType), nullable=False)
    measure_datetime = Column(PreciseDateTime, nullable=False)
    measure_period = Column(String(7), nullable=False)
    image_url = Column(String(512), nullable=False)
    measure = Column(Float, nullable=False)
    confirmed = Column(Boolean, nullable=False, default=False)
    created_at = Column(PreciseDateTime, nullable=False, default=utc_now)

    customer = relationship("Customer", back_populates="readings")

    __table_args__ = (
        UniqueConstraint(
            "customer_id", "measure_type", "measure_period",
            name="uq_reading_customer_type_period",
        ),
        Index("idx_reading_customer_created", "customer_id", "created_at"),
        Index("idx_reading_customer_type_datetime", "customer_id", "measure_type", "measure_datetime"),
    )

    def to_dict(self) -> dict:
        return {
            "measure_uuid": self.id,
            "measure_datetime": self.measure_datetime.isoformat(timespec="milliseconds") + "Z",
            "measure_type": self.measure_type.value,
            "has_confirmed": self.confirmed,
            "image_url": self.image_url,
            "measure_value": self.measure,
        }
