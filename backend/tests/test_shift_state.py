from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from gas_station.config import StationConfig
from gas_station.core.errors import (
    AdminOverrideRequired, DuplicateShiftNumber, InvalidShiftNumber, InvalidShiftTransition,
    LockNotDue, ReadingsRejected, ShiftAlreadyOpen, ShiftCloseRejected, ShiftLocked,
)
from gas_station.models import GaugeReadingType, ShiftStatus, VarianceStatus
from gas_station.schemas.reconciliation import ReceivedAmounts
from gas_station.schemas.shift import (
    EndMeterInput, GaugeInput, GaugeReadingData, MeterReadingData, ShiftState, StartMeterInput,
)
from gas_station.services.shift_state import ALLOWED_TRANSITIONS, ShiftStateMachine, can_transition

NOW = datetime(2026, 3, 1, 1, 0)  # 08:00 in Bangkok


def _closed_shift(end_meters=(100, 200, 150, 300), end_gauges=(50, 40, 30), **kw):
    fields = dict(
        id=7,
        station_id="S",
        date_key="2026-02-28",
        shift_number=2,
        status=ShiftStatus.CLOSED,
        opened_at=NOW - timedelta(hours=18),
        closed_at=NOW - timedelta(hours=10),
        meters=[
            MeterReadingData(nozzle_number=i + 1, start_reading=0, end_reading=v, sold_qty=v)
            for i, v in enumerate(end_meters)
        ],
        gauges=[
            GaugeReadingData(tank_number=i + 1, percentage=v, reading_type=GaugeReadingType.END)
            for i, v in enumerate(end_gauges)
        ],
    )
    fields.update(kw)
    return ShiftState(**fields)


def _open(machine, existing=(), source=None, number=1, **kw):
    return machine.open("S", "2026-03-01", number, "Somchai", list(existing),
                        carry_over_from=source, now=NOW, **kw)


def _ends(values):
    return [EndMeterInput(nozzle_number=n, end_reading=v) for n, v in values]


def _end_gauges(values=(45, 38, 30)):
    return [GaugeInput(tank_number=i + 1, percentage=v) for i, v in enumerate(values)]


def _all_received(cash=0):
    return ReceivedAmounts(cash=cash, credit=0, card=0, transfer=0)


def test_transition_table():
    assert can_transition(ShiftStatus.OPEN, ShiftStatus.CLOSED)
    assert can_transition(ShiftStatus.CLOSED, ShiftStatus.LOCKED)
    assert can_transition(ShiftStatus.CLOSED, ShiftStatus.OPEN)
    assert not can_transition(ShiftStatus.OPEN, ShiftStatus.LOCKED)
    assert ALLOWED_TRANSITIONS[ShiftStatus.LOCKED] == []


def test_can_open():
    closed = _closed_shift()
    assert ShiftStateMachine.can_open([closed])
    assert not ShiftStateMachine.can_open([closed, _closed_shift(status=ShiftStatus.OPEN)])


def test_open_carries_over_closing_readings(machine):
    source = _closed_shift()
    shift = _open(machine, source=source)
    assert shift.status == ShiftStatus.OPEN
    assert [m.start_reading for m in shift.meters] == [100, 200, 150, 300]
    assert shift.carry_over_from_shift_id == 7
    starts = shift.gauges_of(GaugeReadingType.START)
    assert [g.percentage for g in starts] == [50, 40, 30]
    # (50 + 40 + 30)% of 2400 L
    assert shift.opening_stock == 2880


def test_open_without_source_creates_empty_placeholders(machine):
    shift = _open(machine)
    assert [m.nozzle_number for m in shift.meters] == [1, 2, 3, 4]
    assert all(m.start_reading is None for m in shift.meters)
    assert [g.tank_number for g in shift.gauges] == [1, 2, 3]
    assert shift.carry_over_from_shift_id is None
    assert shift.opening_stock is None


def test_explicit_start_readings_override_carry_over(machine):
    shift = _open(
        machine, source=_closed_shift(),
        start_meters=[StartMeterInput(nozzle_number=2, start_reading=205)],
    )
    assert [m.start_reading for m in shift.meters] == [100, 205, 150, 300]


def test_open_rejects_bad_start_readings(machine):
    with pytest.raises(ReadingsRejected) as exc:
        _open(machine, start_meters=[StartMeterInput(nozzle_number=1, start_reading=-1)])
    assert "Nozzle 1: start reading must not be negative" in exc.value.errors
    assert "Nozzle 2: start reading is required" in exc.value.errors


def test_second_open_while_one_is_open_fails(machine):
    current = _open(machine)
    current.id = 1
    snapshot = current.model_copy(deep=True)
    with pytest.raises(ShiftAlreadyOpen):
        _open(machine, existing=[current], number=2)
    assert current == snapshot


def test_duplicate_and_out_of_range_numbers(machine):
    first = _closed_shift(date_key="2026-03-01", shift_number=1)
    with pytest.raises(DuplicateShiftNumber):
        _open(machine, existing=[first], number=1)
    with pytest.raises(InvalidShiftNumber):
        _open(machine, number=3)


def test_third_shift_allowed_when_configured():
    machine = ShiftStateMachine(StationConfig(
        nozzle_count=4, tank_count=3, tank_capacity_liters=Decimal("2400"), max_shifts_per_day=3,
    ))
    assert _open(machine, number=3).shift_number == 3


def test_next_shift_number(machine):
    first = _closed_shift(date_key="2026-03-01", shift_number=1)
    assert machine.next_shift_number([]) == 1
    assert machine.next_shift_number([first]) == 2


def test_find_carry_over_source_prefers_same_day():
    morning = _closed_shift(id=10, date_key="2026-03-01", shift_number=1)
    yesterday = _closed_shift(id=9)
    assert ShiftStateMachine.find_carry_over_source(2, [morning], yesterday) is morning
    assert ShiftStateMachine.find_carry_over_source(1, [], yesterday) is yesterday
    assert ShiftStateMachine.find_carry_over_source(1, [], None) is None


def test_close_missing_nozzle_names_only_that_nozzle(machine):
    shift = _open(machine, source=_closed_shift())
    before = shift.model_copy(deep=True)
    with pytest.raises(ShiftCloseRejected) as exc:
        machine.close(shift, _ends([(1, 110), (2, 210), (4, 310)]), _end_gauges(), _all_received(),
                      expected_fuel_amount=0, now=NOW)
    assert exc.value.errors == ["Nozzle 3: end reading is required"]
    assert shift.status == ShiftStatus.OPEN
    assert shift == before


def test_close_aggregates_all_problems(machine):
    shift = _open(machine, source=_closed_shift())
    with pytest.raises(ShiftCloseRejected) as exc:
        machine.close(shift, _ends([(1, 90), (2, 210), (3, 160), (4, 310)]), _end_gauges((45, 38)),
                      ReceivedAmounts(cash=100), expected_fuel_amount=0, now=NOW)
    errors = exc.value.errors
    assert "Nozzle 1: end reading 90 is below start reading 100" in errors
    assert "Tank 3: no reading" in errors
    assert "Received credit amount is required" in errors
    assert len(errors) == 5


def test_close_success_builds_snapshot(machine):
    shift = _open(machine, source=_closed_shift())
    result = machine.close(
        shift, _ends([(1, 110), (2, 220), (3, 150), (4, 310)]), _end_gauges(),
        _all_received(cash=Decimal("643.60")),
        now=NOW + timedelta(hours=7),
    )
    closed = result.shift
    assert closed.status == ShiftStatus.CLOSED
    assert closed.closed_at == NOW + timedelta(hours=7)
    assert [m.sold_qty for m in closed.meters] == [10, 20, 0, 10]
    assert closed.closing_stock == 2712
    assert len(closed.gauges_of(GaugeReadingType.END)) == 3
    # 40 L at the default 16.09
    snap = result.snapshot
    assert snap.expected_fuel_amount == Decimal("643.60")
    assert snap.variance_status == VarianceStatus.BALANCED
    assert snap.meter_sold_liters == 40
    # input state untouched
    assert shift.status == ShiftStatus.OPEN


def test_close_accepts_timezone_aware_gauge_times(machine):
    shift = _open(machine, source=_closed_shift())
    end_gauges = [
        GaugeInput(tank_number=t, percentage=p, recorded_at="2026-03-01T08:00:00Z")
        for t, p in [(1, 45), (2, 38), (3, 30)]
    ]
    result = machine.close(
        shift, _ends([(1, 110), (2, 220), (3, 150), (4, 310)]), end_gauges,
        _all_received(cash=Decimal("643.60")), now=NOW + timedelta(hours=7),
    )
    ends = result.shift.gauges_of(GaugeReadingType.END)
    assert [g.recorded_at for g in ends] == [datetime(2026, 3, 1, 8, 0)] * 3
    assert result.shift.status == ShiftStatus.CLOSED


def test_start_gauge_times_are_stored_as_utc(machine):
    gauges = [
        GaugeInput(tank_number=t, percentage=50, recorded_at="2026-03-01T08:00:00+07:00")
        for t in (1, 2, 3)
    ]
    shift = _open(machine, start_gauges=gauges)
    starts = shift.gauges_of(GaugeReadingType.START)
    assert {g.recorded_at for g in starts} == {datetime(2026, 3, 1, 1, 0)}


def test_close_reports_advisory_warnings(machine):
    shift = _open(machine, source=_closed_shift())
    result = machine.close(
        shift, _ends([(1, 110), (2, 220), (3, 150), (4, 310)]), _end_gauges((45, 15, 5)),
        _all_received(), expected_fuel_amount=Decimal("643.60"), transaction_liters=30, now=NOW,
    )
    text = " ".join(result.warnings)
    assert "Tank 2: level below 20%" in text
    assert "Tank 3: level below critical 10%" in text
    assert "transactions total 30 L" in text
    assert result.snapshot.meter_discrepancy.has_discrepancy is True
    assert result.snapshot.variance_status == VarianceStatus.SHORT


def test_close_requires_note_when_configured():
    machine = ShiftStateMachine(StationConfig(
        nozzle_count=1, tank_count=1, tank_capacity_liters=Decimal("2400"), require_variance_note=True,
    ))
    shift = machine.open("S", "2026-03-01", 1, "A", [], now=NOW,
                         start_meters=[StartMeterInput(nozzle_number=1, start_reading=0)])
    args = (shift, _ends([(1, 100)]), _end_gauges((50,)), _all_received(cash=0))
    with pytest.raises(ShiftCloseRejected) as exc:
        machine.close(*args, expected_fuel_amount=1000, now=NOW)
    assert "variance note" in exc.value.errors[0]
    result = machine.close(*args, expected_fuel_amount=1000, variance_note="pump 1 test run", now=NOW)
    assert result.shift.variance_note == "pump 1 test run"


def test_close_of_closed_or_locked_shift(machine):
    with pytest.raises(InvalidShiftTransition):
        machine.close(_closed_shift(), [], [], _all_received(), 0, now=NOW)
    with pytest.raises(ShiftLocked):
        machine.close(_closed_shift(status=ShiftStatus.LOCKED), [], [], _all_received(), 0, now=NOW)


def test_lock_due_after_threshold(machine):
    shift = _closed_shift(closed_at=NOW - timedelta(hours=24, seconds=1))
    assert machine.is_lock_due(shift, NOW)
    assert not machine.can_mutate(shift, NOW)
    assert machine.can_mutate(shift, NOW, admin_override=True)
    with pytest.raises(ShiftLocked):
        machine.ensure_mutable(shift, NOW)
    locked = machine.lock(shift, NOW)
    assert locked.status == ShiftStatus.LOCKED
    assert locked.locked_at == NOW


def test_lock_not_due_needs_admin(machine):
    shift = _closed_shift(closed_at=NOW - timedelta(hours=23))
    assert not machine.is_lock_due(shift, NOW)
    machine.ensure_mutable(shift, NOW)
    with pytest.raises(LockNotDue):
        machine.lock(shift, NOW)
    assert machine.lock(shift, NOW, admin_override=True).status == ShiftStatus.LOCKED


def test_lock_rejects_open_and_locked(machine):
    with pytest.raises(InvalidShiftTransition):
        machine.lock(_open(machine), NOW, admin_override=True)
    with pytest.raises(ShiftLocked):
        machine.lock(_closed_shift(status=ShiftStatus.LOCKED), NOW, admin_override=True)


def test_reopen_is_admin_only(machine):
    shift = _closed_shift()
    with pytest.raises(AdminOverrideRequired):
        machine.reopen(shift, [shift])
    reopened = machine.reopen(shift, [shift], admin_override=True)
    assert reopened.status == ShiftStatus.OPEN
    assert reopened.closed_at is None
    assert all(m.end_reading is None for m in reopened.meters)
    assert reopened.gauges_of(GaugeReadingType.END) == []


def test_reopen_refused_while_another_shift_is_open(machine):
    shift = _closed_shift()
    other = _closed_shift(id=8, shift_number=1, status=ShiftStatus.OPEN)
    with pytest.raises(ShiftAlreadyOpen):
        machine.reopen(shift, [shift, other], admin_override=True)


def test_set_start_readings(machine):
    shift = _open(machine)
    updated = machine.set_start_readings(
        shift,
        meters=[StartMeterInput(nozzle_number=n, start_reading=n * 100) for n in range(1, 5)],
        gauges=[GaugeInput(tank_number=t, percentage=50) for t in range(1, 4)],
        now=NOW,
    )
    assert [m.start_reading for m in updated.meters] == [100, 200, 300, 400]
    assert updated.opening_stock == 3600
    with pytest.raises(InvalidShiftTransition):
        machine.set_start_readings(_closed_shift(), meters=[], now=NOW)
