import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import Enum, Numeric, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gas_station.core.database import Base


class GaugeReadingType(str, enum.Enum):
    START = "START"
    END = "END"


class GaugeReading(Base):
    """Tank level in percent. station_id/date_key are kept for day and month reports."""
    __tablename__ = "gauge_readings"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    shift_id: Mapped[Optional[int]] = mapped_column(ForeignKey("shifts.id"), nullable=True)
    station_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    tank_number: Mapped[int] = mapped_column(Integer, nullable=False)
    reading_type: Mapped[GaugeReadingType] = mapped_column(Enum(GaugeReadingType), nullable=False)
    percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    photo_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    recorded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    shift = relationship("Shift", back_populates="gauges")
