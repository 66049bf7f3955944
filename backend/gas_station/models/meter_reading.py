from decimal import Decimal
from typing import Optional
from sqlalchemy import Numeric, String, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gas_station.core.database import Base


class MeterReading(Base):
    """Nozzle counter at shift start and end."""
    __tablename__ = "meter_readings"
    __table_args__ = (
        UniqueConstraint("shift_id", "nozzle_number", name="uq_meter_readings_shift_nozzle"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    shift_id: Mapped[int] = mapped_column(ForeignKey("shifts.id"), nullable=False)
    nozzle_number: Mapped[int] = mapped_column(Integer, nullable=False)
    start_reading: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    end_reading: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    sold_qty: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    start_photo: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    end_photo: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    shift = relationship("Shift", back_populates="meters")
