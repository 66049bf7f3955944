"""Tank gauge readings: validation, percent to liters, gauge vs meter usage."""
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from gas_station.config import StationConfig
from gas_station.core.errors import ReadingIndexError
from gas_station.core.numbers import round_half_up, to_decimal
from gas_station.schemas.reconciliation import GaugeComparison
from gas_station.schemas.validation import ValidationResult
from gas_station.services.date_key import as_utc


def _recorded_at(reading) -> datetime:
    return as_utc(reading.recorded_at) if reading.recorded_at else datetime.min


class GaugeService:
    def __init__(self, config: StationConfig):
        self.config = config

    def check_tank(self, tank_number: int) -> int:
        if not 1 <= tank_number <= self.config.tank_count:
            raise ReadingIndexError("Tank", tank_number, self.config.tank_count)
        return tank_number

    def validate(self, readings: Iterable) -> ValidationResult:
        """One reading per tank, 0..100 percent. Low levels are only warnings."""
        errors: List[str] = []
        warnings: List[str] = []
        grouped: Dict[int, list] = {}
        for reading in readings:
            grouped.setdefault(self.check_tank(reading.tank_number), []).append(reading)

        for tank in range(1, self.config.tank_count + 1):
            entries = grouped.get(tank)
            if not entries:
                errors.append(f"Tank {tank}: no reading")
                continue
            if len(entries) > 1:
                errors.append(f"Tank {tank}: {len(entries)} readings, expected one")
                continue
            raw = entries[0].percentage
            if raw is None:
                errors.append(f"Tank {tank}: percentage is required")
                continue
            try:
                pct = to_decimal(raw)
            except (TypeError, ValueError):
                errors.append(f"Tank {tank}: percentage must be a number")
                continue
            if pct < 0 or pct > 100:
                errors.append(f"Tank {tank}: percentage must be between 0 and 100")
            elif pct < self.config.low_gauge_percent:
                warnings.append(f"Tank {tank}: level below {self.config.low_gauge_percent}%")

        return ValidationResult.from_lists(errors, warnings)

    def percentage_to_liters(self, pct) -> Decimal:
        return round_half_up(to_decimal(pct) / 100 * self.config.tank_capacity_liters)

    def total_stock(self, readings: Iterable) -> Decimal:
        return sum(
            (self.percentage_to_liters(r.percentage) for r in readings if r.percentage is not None),
            Decimal("0"),
        )

    def average_percentage(self, readings: Iterable) -> Decimal:
        values = [to_decimal(r.percentage) for r in readings if r.percentage is not None]
        if not values:
            return Decimal("0")
        return round_half_up(sum(values) / len(values), 1)

    def low_tanks(self, readings: Iterable, level: Optional[Decimal] = None) -> List[int]:
        """Tanks under the critical level (10% by default)."""
        if level is None:
            level = self.config.critical_gauge_percent
        return sorted(
            r.tank_number for r in readings
            if r.percentage is not None and to_decimal(r.percentage) < level
        )

    @staticmethod
    def first_and_last(readings: Iterable) -> Tuple[list, list]:
        """Earliest and latest reading of every tank, ordered by recorded_at."""
        by_tank: Dict[int, list] = {}
        for r in readings:
            if r.percentage is not None:
                by_tank.setdefault(r.tank_number, []).append(r)
        first, last = [], []
        for tank in sorted(by_tank):
            ordered = sorted(by_tank[tank], key=_recorded_at)
            first.append(ordered[0])
            last.append(ordered[-1])
        return first, last

    def compare_with_meters(
        self, readings: Iterable, total_sold, tolerance_percent: Optional[Decimal] = None
    ) -> GaugeComparison:
        """
        Liters drawn from the tanks (first minus last reading of each tank, refills
        ignored) against liters sold through the nozzles. Advisory only: a gap above
        the tolerance points at a leak or meter drift, it never blocks anything.
        """
        if tolerance_percent is None:
            tolerance_percent = self.config.gauge_meter_tolerance_percent
        readings = list(readings)
        total_sold = to_decimal(total_sold)
        first, last = self.first_and_last(readings)

        used = Decimal("0")
        compared = 0
        for start, end in zip(first, last):
            if start is end:
                continue
            compared += 1
            drop = to_decimal(start.percentage) - to_decimal(end.percentage)
            if drop > 0:
                used += drop * self.config.liters_per_percent

        difference = used - total_sold
        if total_sold > 0:
            difference_percent = round_half_up(difference / total_sold * 100, 2)
        else:
            difference_percent = Decimal("0")
        return GaugeComparison(
            used_liters=used,
            meter_liters=total_sold,
            difference=difference,
            difference_percent=difference_percent,
            is_abnormal=abs(difference_percent) > to_decimal(tolerance_percent),
            tanks_compared=compared,
        )
