"""Nozzle meter readings: validation, sold liters, meter vs transaction check."""
import enum
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from gas_station.config import StationConfig
from gas_station.core.errors import ReadingIndexError
from gas_station.core.numbers import round_half_up, to_decimal
from gas_station.schemas.reconciliation import MeterDiscrepancy
from gas_station.schemas.shift import MeterReadingData
from gas_station.schemas.validation import ValidationResult


class MeterPhase(str, enum.Enum):
    START = "start"
    END = "end"


def sold_qty(start, end) -> Decimal:
    """end - start, clamped at zero. Validated data never reaches the clamp."""
    return max(Decimal("0"), to_decimal(end) - to_decimal(start))


class MeterService:
    def __init__(self, config: StationConfig):
        self.config = config

    def check_nozzle(self, nozzle_number: int) -> int:
        if not 1 <= nozzle_number <= self.config.nozzle_count:
            raise ReadingIndexError("Nozzle", nozzle_number, self.config.nozzle_count)
        return nozzle_number

    def _by_nozzle(self, readings: Iterable) -> Dict[int, list]:
        grouped: Dict[int, list] = {}
        for reading in readings:
            grouped.setdefault(self.check_nozzle(reading.nozzle_number), []).append(reading)
        return grouped

    def validate(self, readings: Iterable, phase) -> ValidationResult:
        """
        One reading per nozzle with a non-negative value for the phase.
        For the end phase the counter must not go below the start value.
        Every problem is listed; nothing stops at the first error.
        """
        phase = MeterPhase(phase)
        errors: List[str] = []
        warnings: List[str] = []
        grouped = self._by_nozzle(readings)

        for nozzle in range(1, self.config.nozzle_count + 1):
            entries = grouped.get(nozzle)
            if not entries:
                errors.append(f"Nozzle {nozzle}: no reading")
                continue
            if len(entries) > 1:
                errors.append(f"Nozzle {nozzle}: {len(entries)} readings, expected one")
                continue
            reading = entries[0]
            raw = reading.start_reading if phase == MeterPhase.START else reading.end_reading
            if raw is None:
                errors.append(f"Nozzle {nozzle}: {phase.value} reading is required")
                continue
            try:
                value = to_decimal(raw)
            except (TypeError, ValueError):
                errors.append(f"Nozzle {nozzle}: {phase.value} reading must be a number")
                continue
            if value < 0:
                errors.append(f"Nozzle {nozzle}: {phase.value} reading must not be negative")
                continue
            if phase == MeterPhase.END and reading.start_reading is not None:
                start = to_decimal(reading.start_reading)
                if value < start:
                    errors.append(
                        f"Nozzle {nozzle}: end reading {value} is below start reading {start}"
                    )

        return ValidationResult.from_lists(errors, warnings)

    def total_sold(self, readings: Iterable) -> Decimal:
        total = Decimal("0")
        for reading in readings:
            if reading.sold_qty is not None:
                total += to_decimal(reading.sold_qty)
            elif reading.start_reading is not None and reading.end_reading is not None:
                total += sold_qty(reading.start_reading, reading.end_reading)
        return total

    def detect_discrepancy(
        self, meter_sold, transaction_liters, threshold: Optional[Decimal] = None
    ) -> MeterDiscrepancy:
        """Advisory: meters and recorded sales disagree by more than `threshold` liters."""
        if threshold is None:
            threshold = self.config.meter_discrepancy_threshold_liters
        meter_sold = to_decimal(meter_sold)
        transaction_liters = to_decimal(transaction_liters)
        difference = meter_sold - transaction_liters
        if transaction_liters > 0:
            percentage = round_half_up(difference / transaction_liters * 100, 2)
        else:
            percentage = Decimal("0")
        return MeterDiscrepancy(
            has_discrepancy=abs(difference) > to_decimal(threshold),
            difference=difference,
            percentage=percentage,
        )

    def apply_end_readings(
        self, start_meters: Iterable[MeterReadingData], end_inputs: Iterable
    ) -> List[MeterReadingData]:
        """
        Copies of the start rows with end readings and sold_qty filled in.
        Nozzles without an end input keep end_reading None, duplicated inputs
        stay duplicated so validate() reports them.
        """
        starts = {m.nozzle_number: m for m in start_meters}
        merged: List[MeterReadingData] = []
        seen = set()
        for item in end_inputs:
            nozzle = self.check_nozzle(item.nozzle_number)
            base = starts.get(nozzle) or MeterReadingData(nozzle_number=nozzle)
            end = to_decimal(item.end_reading)
            row = base.model_copy(update={
                "end_reading": end,
                "end_photo": getattr(item, "end_photo", None) or base.end_photo,
                "sold_qty": None,
            })
            if row.start_reading is not None and end is not None and end >= row.start_reading:
                row.sold_qty = sold_qty(row.start_reading, end)
            merged.append(row)
            seen.add(nozzle)
        for nozzle, base in starts.items():
            if nozzle not in seen:
                merged.append(base.model_copy(update={"end_reading": None, "sold_qty": None}))
        return sorted(merged, key=lambda m: m.nozzle_number)
