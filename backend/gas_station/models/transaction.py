import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import String, Enum, Boolean, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from gas_station.core.database import Base


class PaymentType(str, enum.Enum):
    CASH = "CASH"
    CREDIT = "CREDIT"
    CARD = "CARD"
    TRANSFER = "TRANSFER"
    BOX_TRUCK = "BOX_TRUCK"
    OIL_TRUCK = "OIL_TRUCK"


class ProductType(str, enum.Enum):
    LPG = "LPG"
    OTHER = "OTHER"


class Transaction(Base):
    """Sale record. shift_id is the OPEN shift at write time, never re-derived from timestamps."""
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    station_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    shift_id: Mapped[Optional[int]] = mapped_column(ForeignKey("shifts.id"), nullable=True, index=True)
    transaction_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    license_plate: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    owner_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_type: Mapped[PaymentType] = mapped_column(Enum(PaymentType), nullable=False)
    product_type: Mapped[ProductType] = mapped_column(
        Enum(ProductType), default=ProductType.LPG, nullable=False
    )
    liters: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    price_per_liter: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_voided: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    voided_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    void_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
