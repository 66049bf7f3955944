"""Audit copy of the reconciliation computed when a shift is closed."""
import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import Enum, Numeric, DateTime, ForeignKey, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gas_station.core.database import Base


class VarianceStatus(str, enum.Enum):
    OVER = "OVER"
    SHORT = "SHORT"
    BALANCED = "BALANCED"


class VarianceSeverity(str, enum.Enum):
    GREEN = "GREEN"
    YELLOW = "YELLOW"
    RED = "RED"


class ShiftReconciliation(Base):
    __tablename__ = "shift_reconciliations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    shift_id: Mapped[int] = mapped_column(ForeignKey("shifts.id"), unique=True, nullable=False)
    expected_fuel_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    expected_other_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_expected: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    cash_received: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    credit_received: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    card_received: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    transfer_received: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_received: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    variance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    variance_status: Mapped[VarianceStatus] = mapped_column(Enum(VarianceStatus), nullable=False)
    # received against a tiny expected amount can run to millions of percent
    variance_percentage: Mapped[Decimal] = mapped_column(Numeric, nullable=False)
    severity: Mapped[VarianceSeverity] = mapped_column(Enum(VarianceSeverity), nullable=False)
    meter_sold_liters: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    transaction_liters: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    has_meter_discrepancy: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    shift = relationship("Shift", back_populates="reconciliation")
