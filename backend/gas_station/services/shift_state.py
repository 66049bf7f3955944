"""
Shift lifecycle: OPEN -> CLOSED -> LOCKED.

The machine works on ShiftState copies and never touches storage. Every
transition either returns a new state or raises before anything is changed.
It does not serialize concurrent callers: the database unique constraints on
(station_id, date_key, shift_number) and on the OPEN shift of a day do that.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

from gas_station.config import StationConfig
from gas_station.core.errors import (
    AdminOverrideRequired, DuplicateShiftNumber, InvalidShiftNumber, InvalidShiftTransition,
    LockNotDue, ReadingsRejected, ShiftAlreadyOpen, ShiftCloseRejected, ShiftLocked,
)
from gas_station.core.logging_config import get_logger
from gas_station.core.numbers import money, to_decimal
from gas_station.models.gauge_reading import GaugeReadingType
from gas_station.models.reconciliation import VarianceSeverity
from gas_station.models.shift import ShiftStatus
from gas_station.schemas.reconciliation import ReceivedAmounts
from gas_station.schemas.shift import GaugeReadingData, MeterReadingData, ShiftCloseResult, ShiftState
from gas_station.services.date_key import as_utc, utc_now, validate_date_key
from gas_station.services.gauges import GaugeService
from gas_station.services.meters import MeterPhase, MeterService
from gas_station.services.reconciliation import ReconciliationEngine

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[ShiftStatus, list[ShiftStatus]] = {
    ShiftStatus.OPEN: [ShiftStatus.CLOSED],
    # CLOSED -> OPEN is the admin reopen
    ShiftStatus.CLOSED: [ShiftStatus.LOCKED, ShiftStatus.OPEN],
    ShiftStatus.LOCKED: [],
}

FINISHED = (ShiftStatus.CLOSED, ShiftStatus.LOCKED)


def can_transition(current: ShiftStatus, new: ShiftStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, [])


def _repeated(items: list, attr: str, label: str) -> List[str]:
    seen = set()
    errors = []
    for item in items:
        number = getattr(item, attr)
        if number in seen:
            errors.append(f"{label} {number}: more than one reading")
        seen.add(number)
    return errors


class ShiftStateMachine:
    def __init__(self, config: StationConfig):
        self.config = config
        self.meters = MeterService(config)
        self.gauges = GaugeService(config)
        self.engine = ReconciliationEngine(config)

    # --- opening ---

    @staticmethod
    def can_open(existing_shifts_for_day: Iterable) -> bool:
        return not any(s.status == ShiftStatus.OPEN for s in existing_shifts_for_day)

    def next_shift_number(self, existing_shifts_for_day: Iterable) -> int:
        """Lowest shift number of the day not taken yet; past the daily maximum when all are."""
        taken = {s.shift_number for s in existing_shifts_for_day}
        number = 1
        while number in taken and number <= self.config.max_shifts_per_day:
            number += 1
        return number

    @staticmethod
    def find_carry_over_source(shift_number: int, existing_for_day: Iterable, latest_closed=None):
        """
        Previous shift of the same day (highest lower number that is finished),
        otherwise the station's latest finished shift, otherwise None.
        """
        earlier = [
            s for s in existing_for_day
            if s.status in FINISHED and s.shift_number < shift_number
        ]
        if earlier:
            return max(earlier, key=lambda s: s.shift_number)
        if latest_closed is not None and latest_closed.status in FINISHED:
            return latest_closed
        return None

    def open(
        self,
        station_id: str,
        date_key: str,
        shift_number: int,
        staff_name: str,
        existing_shifts: Iterable,
        carry_over_from: Optional[ShiftState] = None,
        start_meters: Optional[Iterable] = None,
        start_gauges: Optional[Iterable] = None,
        now: Optional[datetime] = None,
    ) -> ShiftState:
        validate_date_key(date_key)
        existing = list(existing_shifts)
        current = next((s for s in existing if s.status == ShiftStatus.OPEN), None)
        if current is not None:
            raise ShiftAlreadyOpen(station_id, date_key, current.id)
        if not 1 <= shift_number <= self.config.max_shifts_per_day:
            raise InvalidShiftNumber(shift_number, self.config.max_shifts_per_day)
        if any(s.shift_number == shift_number for s in existing):
            raise DuplicateShiftNumber(station_id, date_key, shift_number)
        now = now or utc_now()

        meters = self._carried_meters(carry_over_from)
        gauges = self._carried_gauges(carry_over_from, now)
        shift = ShiftState(
            station_id=station_id,
            date_key=date_key,
            shift_number=shift_number,
            status=ShiftStatus.OPEN,
            staff_name=staff_name,
            opened_at=now,
            carry_over_from_shift_id=carry_over_from.id if carry_over_from is not None else None,
            meters=meters,
            gauges=gauges,
        )
        if start_meters or start_gauges:
            shift = self._with_start_readings(shift, start_meters, start_gauges, now)
        shift.opening_stock = self._stock_if_complete(shift.gauges_of(GaugeReadingType.START))

        logger.info(
            "Opened shift %s #%s for station %s (carry-over from %s)",
            date_key, shift_number, station_id, shift.carry_over_from_shift_id,
        )
        return shift

    def _carried_meters(self, source: Optional[ShiftState]) -> List[MeterReadingData]:
        carried = {m.nozzle_number: m for m in source.meters} if source is not None else {}
        meters = []
        for nozzle in range(1, self.config.nozzle_count + 1):
            prev = carried.get(nozzle)
            meters.append(MeterReadingData(
                nozzle_number=nozzle,
                start_reading=prev.end_reading if prev is not None else None,
                start_photo=prev.end_photo if prev is not None else None,
            ))
        return meters

    def _carried_gauges(self, source: Optional[ShiftState], now: datetime) -> List[GaugeReadingData]:
        carried = {}
        if source is not None:
            carried = {g.tank_number: g for g in source.gauges_of(GaugeReadingType.END)}
        gauges = []
        for tank in range(1, self.config.tank_count + 1):
            prev = carried.get(tank)
            gauges.append(GaugeReadingData(
                tank_number=tank,
                reading_type=GaugeReadingType.START,
                percentage=prev.percentage if prev is not None else None,
                photo_url=prev.photo_url if prev is not None else None,
                recorded_at=now,
            ))
        return gauges

    def _stock_if_complete(self, gauges: List[GaugeReadingData]):
        if not gauges or any(g.percentage is None for g in gauges):
            return None
        return self.gauges.total_stock(gauges)

    def _with_start_readings(self, shift: ShiftState, meters, gauges, now: datetime) -> ShiftState:
        """Copy of `shift` with the given start readings laid over the existing ones."""
        updated = shift.model_copy(deep=True)
        errors: List[str] = []
        warnings: List[str] = []

        if meters:
            meters = list(meters)
            by_nozzle = {m.nozzle_number: m for m in updated.meters}
            for item in meters:
                nozzle = self.meters.check_nozzle(item.nozzle_number)
                row = by_nozzle.setdefault(nozzle, MeterReadingData(nozzle_number=nozzle))
                row.start_reading = to_decimal(item.start_reading)
                row.start_photo = getattr(item, "start_photo", None) or row.start_photo
            updated.meters = sorted(by_nozzle.values(), key=lambda m: m.nozzle_number)
            result = self.meters.validate(updated.meters, MeterPhase.START)
            errors.extend(_repeated(meters, "nozzle_number", "Nozzle"))
            errors.extend(result.errors)

        if gauges:
            given = list(gauges)
            by_tank = {g.tank_number: g for g in updated.gauges_of(GaugeReadingType.START)}
            for item in given:
                tank = self.gauges.check_tank(item.tank_number)
                by_tank[tank] = GaugeReadingData(
                    tank_number=tank,
                    reading_type=GaugeReadingType.START,
                    percentage=item.percentage,
                    photo_url=item.photo_url,
                    recorded_at=as_utc(item.recorded_at) if item.recorded_at else now,
                )
            start = sorted(by_tank.values(), key=lambda g: g.tank_number)
            result = self.gauges.validate(start)
            errors.extend(_repeated(given, "tank_number", "Tank"))
            errors.extend(result.errors)
            warnings.extend(result.warnings)
            updated.gauges = start + updated.gauges_of(GaugeReadingType.END)

        if errors:
            raise ReadingsRejected(errors)
        for warning in warnings:
            logger.warning("Shift %s: %s", shift.id, warning)
        return updated

    def set_start_readings(self, shift: ShiftState, meters=None, gauges=None,
                           now: Optional[datetime] = None) -> ShiftState:
        """Manual opening readings, for shifts opened without a carry-over source."""
        if shift.status == ShiftStatus.LOCKED:
            raise ShiftLocked(shift.id)
        if shift.status != ShiftStatus.OPEN:
            raise InvalidShiftTransition(shift.status, ShiftStatus.OPEN)
        now = now or utc_now()
        updated = self._with_start_readings(shift, meters, gauges, now)
        updated.opening_stock = self._stock_if_complete(updated.gauges_of(GaugeReadingType.START))
        return updated

    # --- closing ---

    def _ensure_transition(self, shift: ShiftState, target: ShiftStatus) -> None:
        if can_transition(shift.status, target):
            return
        if shift.status == ShiftStatus.LOCKED:
            raise ShiftLocked(shift.id)
        raise InvalidShiftTransition(shift.status, target)

    def _end_gauges(self, end_gauges: Iterable, now: datetime) -> List[GaugeReadingData]:
        return [
            GaugeReadingData(
                tank_number=g.tank_number,
                reading_type=GaugeReadingType.END,
                percentage=g.percentage,
                photo_url=g.photo_url,
                recorded_at=as_utc(g.recorded_at) if g.recorded_at else now,
            )
            for g in end_gauges
        ]

    def validate_close(self, shift: ShiftState, end_meters: Iterable, end_gauges: Iterable,
                       received: Optional[ReceivedAmounts]) -> List[str]:
        """Every reason the shift cannot close, from meters, gauges and received money."""
        errors: List[str] = []
        merged = self.meters.apply_end_readings(shift.meters, end_meters)
        for m in merged:
            if m.start_reading is None:
                errors.append(f"Nozzle {m.nozzle_number}: start reading is required")
        errors.extend(self.meters.validate(merged, MeterPhase.END).errors)
        errors.extend(self.gauges.validate(end_gauges).errors)
        errors.extend(self.engine.validate_received(received))
        return errors

    def close(
        self,
        shift: ShiftState,
        end_meters: Iterable,
        end_gauges: Iterable,
        received: Optional[ReceivedAmounts],
        expected_fuel_amount=None,
        expected_other_amount=0,
        transaction_liters=None,
        variance_note: Optional[str] = None,
        now: Optional[datetime] = None,
        gas_price_per_liter=None,
    ) -> ShiftCloseResult:
        """
        Without expected_fuel_amount the fuel side is priced from the meters:
        liters sold x gas price (the day's price, else the station default).
        """
        self._ensure_transition(shift, ShiftStatus.CLOSED)
        now = now or utc_now()
        end_meters = list(end_meters)
        end_gauges = list(end_gauges)

        errors = self.validate_close(shift, end_meters, end_gauges, received)
        merged = []
        meter_sold = Decimal("0")
        if not errors:
            merged = self.meters.apply_end_readings(shift.meters, end_meters)
            meter_sold = self.meters.total_sold(merged)
            if expected_fuel_amount is None:
                price = to_decimal(gas_price_per_liter) if gas_price_per_liter is not None \
                    else self.config.gas_price_per_liter
                expected_fuel_amount = money(meter_sold * price)
            if self.config.require_variance_note and not variance_note:
                mv = self.engine.compute_money_variance(expected_fuel_amount, expected_other_amount, received)
                severity = self.engine.variance_severity(mv.variance)
                if severity != VarianceSeverity.GREEN:
                    errors.append(
                        f"A variance note is required for a {severity.value} variance of {money(mv.variance)}"
                    )
        if errors:
            logger.warning("Close of shift %s rejected: %s", shift.id, "; ".join(errors))
            raise ShiftCloseRejected(errors)

        closed = shift.model_copy(deep=True)
        closed.meters = merged
        ends = self._end_gauges(end_gauges, now)
        closed.gauges = closed.gauges_of(GaugeReadingType.START) + ends
        closed.closing_stock = self.gauges.total_stock(ends)
        closed.closed_at = now
        closed.status = ShiftStatus.CLOSED
        closed.variance_note = variance_note

        discrepancy = None
        if transaction_liters is not None:
            discrepancy = self.meters.detect_discrepancy(meter_sold, transaction_liters)
        snapshot = self.engine.build_snapshot(
            expected_fuel_amount, expected_other_amount, received,
            meter_sold, transaction_liters, discrepancy,
        )

        warnings = list(self.gauges.validate(ends).warnings)
        for tank in self.gauges.low_tanks(ends):
            warnings.append(f"Tank {tank}: level below critical {self.config.critical_gauge_percent}%")
        if discrepancy is not None and discrepancy.has_discrepancy:
            warnings.append(
                f"Meters show {meter_sold} L sold but transactions total {to_decimal(transaction_liters)} L "
                f"(difference {discrepancy.difference} L, {discrepancy.percentage}%)"
            )
        comparison = self.gauges.compare_with_meters(closed.gauges, meter_sold)
        if comparison.is_abnormal:
            warnings.append(
                f"Tank usage {comparison.used_liters} L differs from meter sales {meter_sold} L "
                f"by {comparison.difference_percent}%: check for a leak or meter drift"
            )

        logger.info(
            "Closed shift %s: expected=%s received=%s variance=%s (%s)",
            shift.id, snapshot.total_expected, snapshot.total_received,
            snapshot.variance, snapshot.variance_status.value,
        )
        for warning in warnings:
            logger.warning("Shift %s: %s", shift.id, warning)
        return ShiftCloseResult(shift=closed, snapshot=snapshot, warnings=warnings)

    # --- locking ---

    def is_lock_due(self, shift, now: Optional[datetime] = None) -> bool:
        if shift.status != ShiftStatus.CLOSED or shift.closed_at is None:
            return False
        now = now or utc_now()
        return now - shift.closed_at > timedelta(hours=self.config.lock_threshold_hours)

    def effective_status(self, shift, now: Optional[datetime] = None) -> ShiftStatus:
        """Status with the time-based lock applied; storage may not have caught up yet."""
        if self.is_lock_due(shift, now):
            return ShiftStatus.LOCKED
        return shift.status

    def can_mutate(self, shift, now: Optional[datetime] = None, admin_override: bool = False) -> bool:
        if admin_override:
            return True
        return self.effective_status(shift, now) != ShiftStatus.LOCKED

    def ensure_mutable(self, shift, now: Optional[datetime] = None, admin_override: bool = False) -> None:
        if not self.can_mutate(shift, now, admin_override):
            raise ShiftLocked(shift.id)

    def lock(self, shift: ShiftState, now: Optional[datetime] = None,
             admin_override: bool = False) -> ShiftState:
        self._ensure_transition(shift, ShiftStatus.LOCKED)
        now = now or utc_now()
        if not admin_override and not self.is_lock_due(shift, now):
            raise LockNotDue(shift.id)
        locked = shift.model_copy(deep=True)
        locked.status = ShiftStatus.LOCKED
        locked.locked_at = now
        logger.info("Locked shift %s (admin_override=%s)", shift.id, admin_override)
        return locked

    def reopen(self, shift: ShiftState, existing_shifts: Iterable,
               admin_override: bool = False) -> ShiftState:
        """CLOSED -> OPEN for corrections. End readings are cleared and entered again at close."""
        self._ensure_transition(shift, ShiftStatus.OPEN)
        if not admin_override:
            raise AdminOverrideRequired("reopen", shift.id)
        other = next(
            (s for s in existing_shifts if s.status == ShiftStatus.OPEN and s.id != shift.id),
            None,
        )
        if other is not None:
            raise ShiftAlreadyOpen(shift.station_id, shift.date_key, other.id)
        reopened = shift.model_copy(deep=True)
        reopened.status = ShiftStatus.OPEN
        reopened.closed_at = None
        reopened.closing_stock = None
        for m in reopened.meters:
            m.end_reading = None
            m.sold_qty = None
            m.end_photo = None
        reopened.gauges = reopened.gauges_of(GaugeReadingType.START)
        logger.info("Reopened shift %s", shift.id)
        return reopened
