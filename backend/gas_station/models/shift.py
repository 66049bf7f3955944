"""Shift of one station on one Bangkok day (date_key)."""
import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import Enum, Numeric, DateTime, ForeignKey, Integer, String, Text, Index, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gas_station.core.database import Base


class ShiftStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    LOCKED = "LOCKED"


class Shift(Base):
    __tablename__ = "shifts"
    __table_args__ = (
        UniqueConstraint("station_id", "date_key", "shift_number", name="uq_shifts_station_day_number"),
        # One OPEN shift per station and day; the database settles concurrent opens.
        Index(
            "uq_shifts_one_open_per_day",
            "station_id",
            "date_key",
            unique=True,
            postgresql_where=text("status = 'OPEN'"),
            sqlite_where=text("status = 'OPEN'"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    station_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False, index=True)  # YYYY-MM-DD, Bangkok
    shift_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ShiftStatus] = mapped_column(
        Enum(ShiftStatus), default=ShiftStatus.OPEN, nullable=False
    )
    staff_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    opened_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    opening_stock: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    closing_stock: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    carry_over_from_shift_id: Mapped[Optional[int]] = mapped_column(ForeignKey("shifts.id"), nullable=True)
    variance_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    meters = relationship(
        "MeterReading",
        back_populates="shift",
        order_by="MeterReading.nozzle_number",
        cascade="all, delete-orphan",
    )
    gauges = relationship(
        "GaugeReading",
        back_populates="shift",
        order_by="GaugeReading.id",
        cascade="all, delete-orphan",
    )
    reconciliation = relationship(
        "ShiftReconciliation",
        back_populates="shift",
        uselist=False,
        cascade="all, delete-orphan",
    )
