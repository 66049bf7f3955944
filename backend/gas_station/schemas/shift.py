"""Shift records as the state machine sees them, plus request bodies."""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from gas_station.models.gauge_reading import GaugeReadingType
from gas_station.models.shift import ShiftStatus
from gas_station.schemas.reconciliation import ExpectedAmounts, ReceivedAmounts, ReconciliationSnapshot


class MeterReadingData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    nozzle_number: int
    start_reading: Optional[Decimal] = None
    end_reading: Optional[Decimal] = None
    sold_qty: Optional[Decimal] = None
    start_photo: Optional[str] = None
    end_photo: Optional[str] = None


class GaugeReadingData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tank_number: int
    percentage: Optional[Decimal] = None
    reading_type: GaugeReadingType = GaugeReadingType.START
    photo_url: Optional[str] = None
    recorded_at: Optional[datetime] = None


class ShiftState(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    station_id: str
    date_key: str
    shift_number: int
    status: ShiftStatus
    staff_name: Optional[str] = None
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None
    opening_stock: Optional[Decimal] = None
    closing_stock: Optional[Decimal] = None
    carry_over_from_shift_id: Optional[int] = None
    variance_note: Optional[str] = None
    meters: List[MeterReadingData] = []
    gauges: List[GaugeReadingData] = []

    def gauges_of(self, reading_type: GaugeReadingType) -> List[GaugeReadingData]:
        return [g for g in self.gauges if g.reading_type == reading_type]


class ShiftCloseResult(BaseModel):
    shift: ShiftState
    snapshot: ReconciliationSnapshot
    warnings: List[str] = []
    # recorded sales of the shift, per product and payment channel
    transactions: Optional[ExpectedAmounts] = None


# --- Request bodies. Ranges are not constrained here: validators report every problem at once. ---

class StartMeterInput(BaseModel):
    nozzle_number: int
    start_reading: Optional[Decimal] = None
    start_photo: Optional[str] = None


class EndMeterInput(BaseModel):
    nozzle_number: int
    end_reading: Optional[Decimal] = None
    end_photo: Optional[str] = None


class GaugeInput(BaseModel):
    tank_number: int
    percentage: Optional[Decimal] = None
    photo_url: Optional[str] = None
    recorded_at: Optional[datetime] = None


class ShiftOpen(BaseModel):
    """Open a shift. Without shift_number the next free number of the day is used."""
    date_key: Optional[str] = None
    shift_number: Optional[int] = None
    staff_name: str = Field(..., min_length=1)
    meters: List[StartMeterInput] = []
    gauges: List[GaugeInput] = []


class StartReadingsUpdate(BaseModel):
    meters: List[StartMeterInput] = []
    gauges: List[GaugeInput] = []


class ShiftClose(BaseModel):
    meters: List[EndMeterInput] = []
    gauges: List[GaugeInput] = []
    received: ReceivedAmounts = ReceivedAmounts()
    expected_other_amount: Decimal = Field(default=Decimal("0"), ge=0)
    # Price of the day; the station default applies when omitted.
    gas_price_per_liter: Optional[Decimal] = Field(default=None, ge=0)
    variance_note: Optional[str] = None
