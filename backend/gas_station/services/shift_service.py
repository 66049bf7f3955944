"""Persistence around the shift state machine: load, transition, write back."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from gas_station.core.errors import (
    DuplicateShiftNumber, NoOpenShift, ShiftAlreadyOpen, ShiftNotFound, TransactionNotFound,
)
from gas_station.core.logging_config import get_logger
from gas_station.core.numbers import money
from gas_station.models import (
    GasSupply, GaugeReading, MeterReading, Shift, ShiftReconciliation, ShiftStatus, Transaction,
)
from gas_station.schemas.shift import ShiftClose, ShiftCloseResult, ShiftOpen, ShiftState, StartReadingsUpdate
from gas_station.schemas.transaction import GasSupplyCreate, TransactionCreate
from gas_station.services.date_key import (
    as_utc, date_range_utc, to_date_key, today, utc_now, validate_date_key,
)
from gas_station.services.shift_state import FINISHED, ShiftStateMachine

logger = get_logger(__name__)


def with_readings(q):
    return q.options(
        selectinload(Shift.meters),
        selectinload(Shift.gauges),
        selectinload(Shift.reconciliation),
    )


def _state(row: Shift) -> ShiftState:
    return ShiftState.model_validate(row)


def _apply_state(row: Shift, state: ShiftState) -> None:
    """Write a machine result back onto the ORM row and its readings."""
    row.status = state.status
    row.staff_name = state.staff_name
    row.opened_at = state.opened_at
    row.closed_at = state.closed_at
    row.locked_at = state.locked_at
    row.opening_stock = state.opening_stock
    row.closing_stock = state.closing_stock
    row.carry_over_from_shift_id = state.carry_over_from_shift_id
    row.variance_note = state.variance_note

    # updated in place: (shift_id, nozzle_number) is unique
    by_nozzle = {m.nozzle_number: m for m in row.meters}
    for data in state.meters:
        meter = by_nozzle.get(data.nozzle_number)
        if meter is None:
            meter = MeterReading(nozzle_number=data.nozzle_number)
            row.meters.append(meter)
        meter.start_reading = data.start_reading
        meter.end_reading = data.end_reading
        meter.sold_qty = data.sold_qty
        meter.start_photo = data.start_photo
        meter.end_photo = data.end_photo

    row.gauges = [
        GaugeReading(
            station_id=row.station_id,
            date_key=row.date_key,
            tank_number=g.tank_number,
            reading_type=g.reading_type,
            percentage=g.percentage,
            photo_url=g.photo_url,
            recorded_at=g.recorded_at,
        )
        for g in state.gauges
    ]


async def day_shifts(db: AsyncSession, station_id: str, date_key: str) -> List[Shift]:
    q = with_readings(select(Shift)).where(
        Shift.station_id == station_id,
        Shift.date_key == date_key,
    ).order_by(Shift.shift_number)
    r = await db.execute(q)
    return list(r.scalars().all())


async def _latest_finished(db: AsyncSession, station_id: str, before_date_key: str) -> Optional[Shift]:
    q = with_readings(select(Shift)).where(
        Shift.station_id == station_id,
        Shift.date_key < before_date_key,
        Shift.status.in_(FINISHED),
    ).order_by(Shift.date_key.desc(), Shift.shift_number.desc()).limit(1)
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def get_shift_row(db: AsyncSession, station_id: str, shift_id: int) -> Shift:
    q = with_readings(select(Shift)).where(Shift.id == shift_id, Shift.station_id == station_id)
    r = await db.execute(q)
    row = r.scalar_one_or_none()
    if row is None:
        raise ShiftNotFound(shift_id)
    return row


async def current_shift(db: AsyncSession, station_id: str, date_key: Optional[str] = None) -> Optional[Shift]:
    """The OPEN shift, looked up on every call."""
    q = with_readings(select(Shift)).where(
        Shift.station_id == station_id,
        Shift.status == ShiftStatus.OPEN,
    )
    if date_key is not None:
        q = q.where(Shift.date_key == validate_date_key(date_key))
    q = q.order_by(Shift.opened_at.desc()).limit(1)
    r = await db.execute(q)
    return r.scalar_one_or_none()


async def refresh_lock(db: AsyncSession, machine: ShiftStateMachine, row: Shift,
                       now: Optional[datetime] = None) -> Shift:
    """Persist LOCKED for a CLOSED shift whose lock came due; nothing runs on a timer."""
    now = now or utc_now()
    if machine.is_lock_due(row, now):
        _apply_state(row, machine.lock(_state(row), now))
        await db.flush()
        logger.info("Shift %s locked on access, closed at %s", row.id, row.closed_at)
    return row


async def get_shift(db: AsyncSession, machine: ShiftStateMachine, station_id: str, shift_id: int,
                    now: Optional[datetime] = None) -> Shift:
    row = await get_shift_row(db, station_id, shift_id)
    return await refresh_lock(db, machine, row, now)


async def list_shifts(db: AsyncSession, machine: ShiftStateMachine, station_id: str, date_key: str,
                      now: Optional[datetime] = None) -> List[Shift]:
    rows = await day_shifts(db, station_id, validate_date_key(date_key))
    for row in rows:
        await refresh_lock(db, machine, row, now)
    return rows


async def open_shift(db: AsyncSession, machine: ShiftStateMachine, station_id: str, data: ShiftOpen,
                     now: Optional[datetime] = None) -> Shift:
    now = now or utc_now()
    date_key = validate_date_key(data.date_key) if data.date_key else today(now)
    existing = [_state(s) for s in await day_shifts(db, station_id, date_key)]
    number = data.shift_number if data.shift_number is not None else machine.next_shift_number(existing)

    latest = await _latest_finished(db, station_id, date_key)
    source = machine.find_carry_over_source(
        number, existing, _state(latest) if latest is not None else None
    )
    state = machine.open(
        station_id, date_key, number, data.staff_name, existing,
        carry_over_from=source,
        start_meters=data.meters,
        start_gauges=data.gauges,
        now=now,
    )

    row = Shift(
        station_id=station_id,
        date_key=date_key,
        shift_number=number,
        meters=[],
        gauges=[],
        reconciliation=None,
    )
    _apply_state(row, state)
    db.add(row)
    try:
        await db.flush()
    except IntegrityError:
        # lost a race with a concurrent open; report what the winner left behind
        await db.rollback()
        rows = await day_shifts(db, station_id, date_key)
        winner = next((s for s in rows if s.status == ShiftStatus.OPEN), None)
        if winner is not None:
            raise ShiftAlreadyOpen(station_id, date_key, winner.id)
        raise DuplicateShiftNumber(station_id, date_key, number)
    logger.info("Shift id=%s stored for station %s %s #%s", row.id, station_id, date_key, number)
    return row


async def set_start_readings(db: AsyncSession, machine: ShiftStateMachine, station_id: str, shift_id: int,
                             data: StartReadingsUpdate, now: Optional[datetime] = None) -> Shift:
    row = await get_shift_row(db, station_id, shift_id)
    state = machine.set_start_readings(_state(row), data.meters, data.gauges, now=now)
    _apply_state(row, state)
    await db.flush()
    logger.info("Start readings updated for shift %s", row.id)
    return row


async def shift_transactions(db: AsyncSession, shift_id: int) -> List[Transaction]:
    q = select(Transaction).where(Transaction.shift_id == shift_id).order_by(Transaction.transaction_at)
    r = await db.execute(q)
    return list(r.scalars().all())


async def close_shift(db: AsyncSession, machine: ShiftStateMachine, station_id: str, shift_id: int,
                      data: ShiftClose, now: Optional[datetime] = None):
    """Close and store the reconciliation snapshot. Returns (row, ShiftCloseResult)."""
    now = now or utc_now()
    row = await get_shift_row(db, station_id, shift_id)
    expected = machine.engine.expected_amounts(await shift_transactions(db, row.id))
    result: ShiftCloseResult = machine.close(
        _state(row),
        data.meters,
        data.gauges,
        data.received,
        expected_other_amount=data.expected_other_amount + expected.other_amount,
        transaction_liters=expected.fuel_liters if expected.count else None,
        variance_note=data.variance_note,
        now=now,
        gas_price_per_liter=data.gas_price_per_liter,
    )
    result.transactions = expected
    _apply_state(row, result.shift)

    snap = result.snapshot
    row.reconciliation = ShiftReconciliation(
        expected_fuel_amount=snap.expected_fuel_amount,
        expected_other_amount=snap.expected_other_amount,
        total_expected=snap.total_expected,
        cash_received=snap.cash_received,
        credit_received=snap.credit_received,
        card_received=snap.card_received,
        transfer_received=snap.transfer_received,
        total_received=snap.total_received,
        variance=snap.variance,
        variance_status=snap.variance_status,
        variance_percentage=snap.variance_percentage,
        severity=snap.severity,
        meter_sold_liters=snap.meter_sold_liters,
        transaction_liters=snap.transaction_liters,
        has_meter_discrepancy=bool(snap.meter_discrepancy and snap.meter_discrepancy.has_discrepancy),
        created_at=now,
    )
    await db.flush()
    return row, result


async def lock_shift(db: AsyncSession, machine: ShiftStateMachine, station_id: str, shift_id: int,
                     admin_override: bool = False, now: Optional[datetime] = None) -> Shift:
    row = await get_shift_row(db, station_id, shift_id)
    _apply_state(row, machine.lock(_state(row), now, admin_override))
    await db.flush()
    return row


async def reopen_shift(db: AsyncSession, machine: ShiftStateMachine, station_id: str, shift_id: int,
                       admin_override: bool = False, now: Optional[datetime] = None) -> Shift:
    row = await get_shift(db, machine, station_id, shift_id, now)
    existing = [_state(s) for s in await day_shifts(db, station_id, row.date_key)]
    state = machine.reopen(_state(row), existing, admin_override)
    _apply_state(row, state)
    row.reconciliation = None
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ShiftAlreadyOpen(station_id, row.date_key)
    return row


# --- Transactions ---

async def record_transaction(db: AsyncSession, station_id: str, data: TransactionCreate,
                             now: Optional[datetime] = None) -> Transaction:
    """Bound to the OPEN shift at write time."""
    shift = await current_shift(db, station_id)
    if shift is None:
        raise NoOpenShift(station_id)
    tx = Transaction(
        station_id=station_id,
        shift_id=shift.id,
        transaction_at=as_utc(data.transaction_at) if data.transaction_at else (now or utc_now()),
        license_plate=data.license_plate,
        owner_name=data.owner_name,
        payment_type=data.payment_type,
        product_type=data.product_type,
        liters=data.liters,
        price_per_liter=data.price_per_liter,
        amount=money(data.liters * data.price_per_liter),
        is_voided=False,
    )
    db.add(tx)
    await db.flush()
    logger.info("Transaction id=%s shift=%s %s %s L", tx.id, shift.id, tx.payment_type.value, tx.liters)
    return tx


async def list_transactions(db: AsyncSession, station_id: str, date_key: str,
                            to_date_key: Optional[str] = None) -> List[Transaction]:
    """Transactions from the start of date_key to the end of to_date_key (same day by default)."""
    start, end = date_range_utc(date_key, to_date_key or date_key)
    q = select(Transaction).where(
        Transaction.station_id == station_id,
        Transaction.transaction_at >= start,
        Transaction.transaction_at <= end,
    ).order_by(Transaction.transaction_at)
    r = await db.execute(q)
    return list(r.scalars().all())


async def void_transaction(db: AsyncSession, machine: ShiftStateMachine, station_id: str, transaction_id: int,
                           reason: str, admin_override: bool = False,
                           now: Optional[datetime] = None) -> Transaction:
    now = now or utc_now()
    r = await db.execute(select(Transaction).where(
        Transaction.id == transaction_id,
        Transaction.station_id == station_id,
    ))
    tx = r.scalar_one_or_none()
    if tx is None:
        raise TransactionNotFound(transaction_id)
    if tx.shift_id is not None:
        shift = await get_shift(db, machine, station_id, tx.shift_id, now)
        machine.ensure_mutable(shift, now, admin_override)
    if tx.is_voided:
        return tx
    tx.is_voided = True
    tx.voided_at = now
    tx.void_reason = reason
    await db.flush()
    logger.info("Transaction id=%s voided (admin_override=%s): %s", tx.id, admin_override, reason)
    return tx


# --- Supplies ---

async def record_supply(db: AsyncSession, station_id: str, data: GasSupplyCreate,
                        now: Optional[datetime] = None) -> GasSupply:
    delivered_at = as_utc(data.delivered_at) if data.delivered_at else (now or utc_now())
    date_key = validate_date_key(data.date_key) if data.date_key else to_date_key(delivered_at)
    supply = GasSupply(
        station_id=station_id,
        date_key=date_key,
        liters=data.liters,
        supplier=data.supplier,
        delivered_at=delivered_at,
    )
    db.add(supply)
    await db.flush()
    logger.info("Gas supply id=%s: %s L for station %s on %s", supply.id, supply.liters, station_id, date_key)
    return supply
