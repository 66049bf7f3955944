"""Sales and gas deliveries of a station."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gas_station.api.deps import get_admin_override, get_machine
from gas_station.core.database import get_db
from gas_station.models import GasSupply, Transaction
from gas_station.schemas.transaction import GasSupplyCreate, TransactionCreate, TransactionVoid
from gas_station.services import shift_service
from gas_station.services.date_key import today
from gas_station.services.shift_state import ShiftStateMachine

router = APIRouter(prefix="/stations/{station_id}", tags=["transactions"])


def _transaction_to_dict(tx: Transaction) -> dict:
    return {
        "id": tx.id,
        "station_id": tx.station_id,
        "shift_id": tx.shift_id,
        "transaction_at": tx.transaction_at.isoformat(),
        "license_plate": tx.license_plate,
        "owner_name": tx.owner_name,
        "payment_type": tx.payment_type.value,
        "product_type": tx.product_type.value,
        "liters": float(tx.liters),
        "price_per_liter": float(tx.price_per_liter),
        "amount": float(tx.amount),
        "is_voided": tx.is_voided,
        "voided_at": tx.voided_at.isoformat() if tx.voided_at else None,
        "void_reason": tx.void_reason,
    }


def _supply_to_dict(supply: GasSupply) -> dict:
    return {
        "id": supply.id,
        "station_id": supply.station_id,
        "date_key": supply.date_key,
        "liters": float(supply.liters),
        "supplier": supply.supplier,
        "delivered_at": supply.delivered_at.isoformat(),
    }


@router.post("/transactions", response_model=dict)
async def create_transaction(
    station_id: str,
    body: TransactionCreate,
    db: AsyncSession = Depends(get_db),
):
    """Record a sale on the station's OPEN shift (409 when there is none)."""
    tx = await shift_service.record_transaction(db, station_id, body)
    return _transaction_to_dict(tx)


@router.get("/transactions", response_model=list)
async def list_transactions(
    station_id: str,
    date_key: Optional[str] = Query(None),
    to_date_key: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Transactions of one Bangkok day, or of date_key..to_date_key; voided ones included."""
    rows = await shift_service.list_transactions(db, station_id, date_key or today(), to_date_key)
    return [_transaction_to_dict(tx) for tx in rows]


@router.post("/transactions/{transaction_id}/void", response_model=dict)
async def void_transaction(
    station_id: str,
    transaction_id: int,
    body: TransactionVoid,
    db: AsyncSession = Depends(get_db),
    machine: ShiftStateMachine = Depends(get_machine),
    admin_override: bool = Depends(get_admin_override),
):
    tx = await shift_service.void_transaction(
        db, machine, station_id, transaction_id, body.reason, admin_override
    )
    return _transaction_to_dict(tx)


@router.post("/supplies", response_model=dict)
async def create_supply(
    station_id: str,
    body: GasSupplyCreate,
    db: AsyncSession = Depends(get_db),
):
    supply = await shift_service.record_supply(db, station_id, body)
    return _supply_to_dict(supply)
