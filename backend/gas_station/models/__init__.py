from gas_station.core.database import Base
from gas_station.models.shift import Shift, ShiftStatus
from gas_station.models.meter_reading import MeterReading
from gas_station.models.gauge_reading import GaugeReading, GaugeReadingType
from gas_station.models.transaction import Transaction, PaymentType, ProductType
from gas_station.models.reconciliation import ShiftReconciliation, VarianceStatus, VarianceSeverity
from gas_station.models.gas_supply import GasSupply

__all__ = [
    "Base",
    "GasSupply",
    "GaugeReading",
    "GaugeReadingType",
    "MeterReading",
    "PaymentType",
    "ProductType",
    "Shift",
    "ShiftReconciliation",
    "ShiftStatus",
    "Transaction",
    "VarianceSeverity",
    "VarianceStatus",
]
