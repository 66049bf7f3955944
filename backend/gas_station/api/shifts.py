"""Shift API: open, start readings, close with reconciliation, lock, reopen."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gas_station.api.deps import get_admin_override, get_machine
from gas_station.core.database import get_db
from gas_station.models import Shift, ShiftReconciliation
from gas_station.schemas.reconciliation import ExpectedAmounts, ReconciliationSnapshot
from gas_station.schemas.shift import ShiftClose, ShiftOpen, StartReadingsUpdate
from gas_station.services import shift_service
from gas_station.services.date_key import today
from gas_station.services.shift_state import ShiftStateMachine

router = APIRouter(prefix="/stations/{station_id}/shifts", tags=["shifts"])


def _num(value):
    return float(value) if value is not None else None


def _dt(value):
    return value.isoformat() if value else None


def _meter_to_dict(m) -> dict:
    return {
        "nozzle_number": m.nozzle_number,
        "start_reading": _num(m.start_reading),
        "end_reading": _num(m.end_reading),
        "sold_qty": _num(m.sold_qty),
        "start_photo": m.start_photo,
        "end_photo": m.end_photo,
    }


def _gauge_to_dict(g) -> dict:
    return {
        "tank_number": g.tank_number,
        "reading_type": g.reading_type.value,
        "percentage": _num(g.percentage),
        "photo_url": g.photo_url,
        "recorded_at": _dt(g.recorded_at),
    }


def _reconciliation_to_dict(rec: ShiftReconciliation) -> dict:
    return {
        "expected_fuel_amount": float(rec.expected_fuel_amount),
        "expected_other_amount": float(rec.expected_other_amount),
        "total_expected": float(rec.total_expected),
        "cash_received": float(rec.cash_received),
        "credit_received": float(rec.credit_received),
        "card_received": float(rec.card_received),
        "transfer_received": float(rec.transfer_received),
        "total_received": float(rec.total_received),
        "variance": float(rec.variance),
        "variance_status": rec.variance_status.value,
        "variance_percentage": float(rec.variance_percentage),
        "severity": rec.severity.value,
        "meter_sold_liters": float(rec.meter_sold_liters),
        "transaction_liters": _num(rec.transaction_liters),
        "has_meter_discrepancy": rec.has_meter_discrepancy,
    }


def _sales_to_dict(sales: Optional[ExpectedAmounts]) -> Optional[dict]:
    if sales is None:
        return None
    return {
        "count": sales.count,
        "fuel_amount": float(sales.fuel_amount),
        "fuel_liters": float(sales.fuel_liters),
        "other_amount": float(sales.other_amount),
        "by_channel": {channel: float(amount) for channel, amount in sales.by_channel.items()},
    }


def _snapshot_to_dict(snap: ReconciliationSnapshot) -> dict:
    out = {
        "expected_fuel_amount": float(snap.expected_fuel_amount),
        "expected_other_amount": float(snap.expected_other_amount),
        "total_expected": float(snap.total_expected),
        "cash_received": float(snap.cash_received),
        "credit_received": float(snap.credit_received),
        "card_received": float(snap.card_received),
        "transfer_received": float(snap.transfer_received),
        "total_received": float(snap.total_received),
        "variance": float(snap.variance),
        "variance_status": snap.variance_status.value,
        "variance_percentage": float(snap.variance_percentage),
        "severity": snap.severity.value,
        "meter_sold_liters": float(snap.meter_sold_liters),
        "transaction_liters": _num(snap.transaction_liters),
        "has_meter_discrepancy": False,
        "meter_discrepancy": None,
    }
    if snap.meter_discrepancy is not None:
        out["has_meter_discrepancy"] = snap.meter_discrepancy.has_discrepancy
        out["meter_discrepancy"] = {
            "has_discrepancy": snap.meter_discrepancy.has_discrepancy,
            "difference": float(snap.meter_discrepancy.difference),
            "percentage": float(snap.meter_discrepancy.percentage),
        }
    return out


def shift_to_response(shift: Shift) -> dict:
    return {
        "id": shift.id,
        "station_id": shift.station_id,
        "date_key": shift.date_key,
        "shift_number": shift.shift_number,
        "status": shift.status.value,
        "staff_name": shift.staff_name,
        "opened_at": _dt(shift.opened_at),
        "closed_at": _dt(shift.closed_at),
        "locked_at": _dt(shift.locked_at),
        "opening_stock": _num(shift.opening_stock),
        "closing_stock": _num(shift.closing_stock),
        "carry_over_from_shift_id": shift.carry_over_from_shift_id,
        "variance_note": shift.variance_note,
        "meters": [_meter_to_dict(m) for m in sorted(shift.meters, key=lambda m: m.nozzle_number)],
        "gauges": [_gauge_to_dict(g) for g in shift.gauges],
        "reconciliation": _reconciliation_to_dict(shift.reconciliation) if shift.reconciliation else None,
    }


@router.post("", response_model=dict)
async def open_shift(
    station_id: str,
    body: ShiftOpen,
    db: AsyncSession = Depends(get_db),
    machine: ShiftStateMachine = Depends(get_machine),
):
    """Open a shift. Opening readings are carried over from the previous closed shift."""
    shift = await shift_service.open_shift(db, machine, station_id, body)
    return shift_to_response(shift)


@router.get("", response_model=list)
async def list_shifts(
    station_id: str,
    date_key: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    machine: ShiftStateMachine = Depends(get_machine),
):
    """Shifts of one Bangkok day, today by default."""
    shifts = await shift_service.list_shifts(db, machine, station_id, date_key or today())
    return [shift_to_response(s) for s in shifts]


@router.get("/current")
async def get_current_shift(
    station_id: str,
    date_key: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    shift = await shift_service.current_shift(db, station_id, date_key)
    return {"shift": shift_to_response(shift) if shift else None}


@router.get("/{shift_id}", response_model=dict)
async def get_shift(
    station_id: str,
    shift_id: int,
    db: AsyncSession = Depends(get_db),
    machine: ShiftStateMachine = Depends(get_machine),
):
    shift = await shift_service.get_shift(db, machine, station_id, shift_id)
    return shift_to_response(shift)


@router.put("/{shift_id}/start-readings", response_model=dict)
async def set_start_readings(
    station_id: str,
    shift_id: int,
    body: StartReadingsUpdate,
    db: AsyncSession = Depends(get_db),
    machine: ShiftStateMachine = Depends(get_machine),
):
    """Enter opening meters and gauges by hand when nothing was carried over."""
    shift = await shift_service.set_start_readings(db, machine, station_id, shift_id, body)
    return shift_to_response(shift)


@router.post("/{shift_id}/close", response_model=dict)
async def close_shift(
    station_id: str,
    shift_id: int,
    body: ShiftClose,
    db: AsyncSession = Depends(get_db),
    machine: ShiftStateMachine = Depends(get_machine),
):
    """Close the shift. A rejected close answers 422 with every problem in `errors`."""
    shift, result = await shift_service.close_shift(db, machine, station_id, shift_id, body)
    return {
        "shift": shift_to_response(shift),
        "reconciliation": _snapshot_to_dict(result.snapshot),
        "transactions": _sales_to_dict(result.transactions),
        "warnings": result.warnings,
    }


@router.post("/{shift_id}/lock", response_model=dict)
async def lock_shift(
    station_id: str,
    shift_id: int,
    db: AsyncSession = Depends(get_db),
    machine: ShiftStateMachine = Depends(get_machine),
    admin_override: bool = Depends(get_admin_override),
):
    shift = await shift_service.lock_shift(db, machine, station_id, shift_id, admin_override)
    return shift_to_response(shift)


@router.post("/{shift_id}/reopen", response_model=dict)
async def reopen_shift(
    station_id: str,
    shift_id: int,
    db: AsyncSession = Depends(get_db),
    machine: ShiftStateMachine = Depends(get_machine),
    admin_override: bool = Depends(get_admin_override),
):
    """Admin only: back to OPEN for corrections, the snapshot is discarded."""
    shift = await shift_service.reopen_shift(db, machine, station_id, shift_id, admin_override)
    return shift_to_response(shift)
