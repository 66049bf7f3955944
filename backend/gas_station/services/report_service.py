"""Physical stock balance and gauge vs meter reports over a day, a month or one shift."""
import enum
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gas_station.models import GasSupply, GaugeReading, Shift
from gas_station.schemas.reconciliation import GaugeComparison, StockBalance
from gas_station.services.date_key import date_key_to_date, month_date_keys, validate_date_key
from gas_station.services.shift_service import with_readings, get_shift_row
from gas_station.services.shift_state import FINISHED, ShiftStateMachine


class ReportPeriod(str, enum.Enum):
    DAY = "day"
    MONTH = "month"
    SHIFT = "shift"


async def _shifts_between(db: AsyncSession, station_id: str, from_key: str, to_key: str) -> List[Shift]:
    q = with_readings(select(Shift)).where(
        Shift.station_id == station_id,
        Shift.date_key >= from_key,
        Shift.date_key <= to_key,
    ).order_by(Shift.date_key, Shift.shift_number)
    r = await db.execute(q)
    return list(r.scalars().all())


async def _supplied_between_keys(db: AsyncSession, station_id: str, from_key: str, to_key: str) -> Decimal:
    q = select(func.coalesce(func.sum(GasSupply.liters), 0)).where(
        GasSupply.station_id == station_id,
        GasSupply.date_key >= from_key,
        GasSupply.date_key <= to_key,
    )
    r = await db.execute(q)
    return Decimal(str(r.scalar_one() or 0))


async def _supplied_between(db: AsyncSession, station_id: str, start: datetime, end: datetime) -> Decimal:
    q = select(func.coalesce(func.sum(GasSupply.liters), 0)).where(
        GasSupply.station_id == station_id,
        GasSupply.delivered_at >= start,
        GasSupply.delivered_at <= end,
    )
    r = await db.execute(q)
    return Decimal(str(r.scalar_one() or 0))


def _balance_of_shifts(machine: ShiftStateMachine, shifts: List[Shift], supplies: Decimal) -> StockBalance:
    """Opening of the first shift, closing of the last finished one, meter sales in between."""
    opening = next((s.opening_stock for s in shifts if s.opening_stock is not None), Decimal("0"))
    finished = [s for s in shifts if s.status in FINISHED and s.closing_stock is not None]
    closing = finished[-1].closing_stock if finished else Decimal("0")
    sales = sum((machine.meters.total_sold(s.meters) for s in shifts), Decimal("0"))
    return machine.engine.compute_stock_balance(opening, supplies, sales, closing)


async def stock_balance(db: AsyncSession, machine: ShiftStateMachine, station_id: str,
                        period: ReportPeriod, date_key: Optional[str] = None,
                        shift_id: Optional[int] = None) -> StockBalance:
    if period == ReportPeriod.SHIFT:
        if shift_id is None:
            raise ValueError("shift_id is required for a shift report")
        shift = await get_shift_row(db, station_id, shift_id)
        end = shift.closed_at or datetime.max
        supplies = await _supplied_between(db, station_id, shift.opened_at, end)
        return _balance_of_shifts(machine, [shift], supplies)

    if date_key is None:
        raise ValueError("date_key is required for a day or month report")
    if period == ReportPeriod.MONTH:
        day = date_key_to_date(date_key)
        from_key, to_key = month_date_keys(day.year, day.month)
    else:
        from_key = to_key = validate_date_key(date_key)
    shifts = await _shifts_between(db, station_id, from_key, to_key)
    supplies = await _supplied_between_keys(db, station_id, from_key, to_key)
    return _balance_of_shifts(machine, shifts, supplies)


async def gauge_comparison(db: AsyncSession, machine: ShiftStateMachine, station_id: str,
                           date_key: str) -> GaugeComparison:
    date_key = validate_date_key(date_key)
    r = await db.execute(select(GaugeReading).where(
        GaugeReading.station_id == station_id,
        GaugeReading.date_key == date_key,
    ))
    readings = list(r.scalars().all())
    shifts = await _shifts_between(db, station_id, date_key, date_key)
    total_sold = sum((machine.meters.total_sold(s.meters) for s in shifts), Decimal("0"))
    return machine.gauges.compare_with_meters(readings, total_sold)
