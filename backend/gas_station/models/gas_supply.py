from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from gas_station.core.database import Base


class GasSupply(Base):
    """LPG delivered into the station tanks."""
    __tablename__ = "gas_supplies"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    station_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    liters: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    supplier: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    delivered_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
