from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gas_station.api.deps import get_machine
from gas_station.core.database import get_db
from gas_station.services import report_service
from gas_station.services.date_key import today
from gas_station.services.report_service import ReportPeriod
from gas_station.services.shift_state import ShiftStateMachine

router = APIRouter(prefix="/stations/{station_id}/reports", tags=["reports"])


@router.get("/stock-balance")
async def stock_balance(
    station_id: str,
    period: ReportPeriod = Query(ReportPeriod.DAY),
    date_key: Optional[str] = Query(None),
    shift_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    machine: ShiftStateMachine = Depends(get_machine),
):
    """Opening + supplies - sales against the gauged closing stock, in liters."""
    if period == ReportPeriod.SHIFT and shift_id is None:
        raise HTTPException(status_code=400, detail="shift_id is required for period=shift")
    if period != ReportPeriod.SHIFT:
        date_key = date_key or today()
    balance = await report_service.stock_balance(
        db, machine, station_id, period, date_key=date_key, shift_id=shift_id
    )
    return {
        "period": period.value,
        "date_key": date_key,
        "shift_id": shift_id,
        "opening": float(balance.opening),
        "supplies": float(balance.supplies),
        "sales": float(balance.sales),
        "expected_closing": float(balance.expected_closing),
        "actual_closing": float(balance.actual_closing),
        "variance": float(balance.variance),
        "variance_percent": float(balance.variance_percent),
        "is_balanced": balance.is_balanced,
    }


@router.get("/gauge-comparison")
async def gauge_comparison(
    station_id: str,
    date_key: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    machine: ShiftStateMachine = Depends(get_machine),
):
    """Tank usage by gauge against nozzle sales for one day. Advisory only."""
    date_key = date_key or today()
    result = await report_service.gauge_comparison(db, machine, station_id, date_key)
    return {
        "date_key": date_key,
        "used_liters": float(result.used_liters),
        "meter_liters": float(result.meter_liters),
        "difference": float(result.difference),
        "difference_percent": float(result.difference_percent),
        "is_abnormal": result.is_abnormal,
        "tanks_compared": result.tanks_compared,
    }
