from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from gas_station.models.transaction import PaymentType, ProductType


class TransactionCreate(BaseModel):
    """Sale at the pump. amount is always liters × price_per_liter."""
    payment_type: PaymentType
    product_type: ProductType = ProductType.LPG
    liters: Decimal = Field(..., gt=0)
    price_per_liter: Decimal = Field(..., ge=0)
    license_plate: Optional[str] = None
    owner_name: Optional[str] = None
    transaction_at: Optional[datetime] = None


class TransactionVoid(BaseModel):
    reason: str = Field(..., min_length=1)


class GasSupplyCreate(BaseModel):
    liters: Decimal = Field(..., gt=0)
    supplier: Optional[str] = None
    date_key: Optional[str] = None
    delivered_at: Optional[datetime] = None
