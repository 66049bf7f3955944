"""Results of the reconciliation engine and the cross-check reports."""
from decimal import Decimal
from typing import Dict, Optional

from pydantic import BaseModel

from gas_station.models.reconciliation import VarianceSeverity, VarianceStatus


class ReceivedAmounts(BaseModel):
    """Money counted by staff at close, per channel. None means not entered."""
    cash: Optional[Decimal] = None
    credit: Optional[Decimal] = None
    card: Optional[Decimal] = None
    transfer: Optional[Decimal] = None


class MoneyVariance(BaseModel):
    total_expected: Decimal
    total_received: Decimal
    variance: Decimal
    variance_status: VarianceStatus
    variance_percentage: Decimal


class MeterDiscrepancy(BaseModel):
    has_discrepancy: bool
    difference: Decimal
    percentage: Decimal


class ExpectedAmounts(BaseModel):
    """Non-voided transaction totals of a shift or period."""
    fuel_amount: Decimal = Decimal("0")
    other_amount: Decimal = Decimal("0")
    fuel_liters: Decimal = Decimal("0")
    by_channel: Dict[str, Decimal] = {}
    count: int = 0


class ReconciliationSnapshot(BaseModel):
    expected_fuel_amount: Decimal
    expected_other_amount: Decimal
    total_expected: Decimal
    cash_received: Decimal
    credit_received: Decimal
    card_received: Decimal
    transfer_received: Decimal
    total_received: Decimal
    variance: Decimal
    variance_status: VarianceStatus
    variance_percentage: Decimal
    severity: VarianceSeverity
    meter_sold_liters: Decimal
    transaction_liters: Optional[Decimal] = None
    meter_discrepancy: Optional[MeterDiscrepancy] = None


class StockBalance(BaseModel):
    opening: Decimal
    supplies: Decimal
    sales: Decimal
    expected_closing: Decimal
    actual_closing: Decimal
    variance: Decimal
    variance_percent: Decimal
    is_balanced: bool


class GaugeComparison(BaseModel):
    """Tank usage by gauge against nozzle sales. is_abnormal hints at a leak or meter drift."""
    used_liters: Decimal
    meter_liters: Decimal
    difference: Decimal
    difference_percent: Decimal
    is_abnormal: bool
    tanks_compared: int
