from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gas_station.config import settings
from gas_station.core.database import engine, Base
from gas_station.core.errors import (
    AdminOverrideRequired, DuplicateShiftNumber, GasStationError, InvalidDateKey, InvalidShiftNumber,
    InvalidShiftTransition, LockNotDue, NoOpenShift, ReadingIndexError, ReadingsRejected,
    ShiftAlreadyOpen, ShiftLocked, ShiftNotFound, TransactionNotFound,
)
from gas_station.core.logging_config import setup_logging, get_logger
from gas_station.api.shifts import router as shifts_router
from gas_station.api.transactions import router as transactions_router
from gas_station.api.reports import router as reports_router

setup_logging()
logger = get_logger(__name__)

# First match along the exception's MRO wins.
ERROR_STATUS = {
    ShiftNotFound: 404,
    TransactionNotFound: 404,
    ShiftAlreadyOpen: 409,
    DuplicateShiftNumber: 409,
    InvalidShiftTransition: 409,
    LockNotDue: 409,
    NoOpenShift: 409,
    AdminOverrideRequired: 403,
    ShiftLocked: 423,
    ReadingsRejected: 422,
    InvalidShiftNumber: 400,
    InvalidDateKey: 400,
    ReadingIndexError: 400,
}


def status_for(exc: GasStationError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables checked/created")
    yield
    await engine.dispose()


app = FastAPI(title="Gas station shifts", version="1.0.0", lifespan=lifespan)


@app.exception_handler(GasStationError)
async def gas_station_error_handler(request: Request, exc: GasStationError):
    status = status_for(exc)
    content = {"detail": str(exc)}
    if isinstance(exc, ReadingsRejected):
        content["errors"] = exc.errors
    logger.info("%s %s -> %s: %s", request.method, request.url.path, status, exc)
    return JSONResponse(status_code=status, content=content)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error: %s", exc)
    detail = "Internal server error"
    err_str = str(exc).lower()
    if "duplicate key" in err_str or "unique constraint" in err_str:
        detail = "Data conflict (duplicate). Reload and try again."
    elif "foreign key" in err_str:
        detail = "Referenced record not found."
    return JSONResponse(
        status_code=500,
        content={"detail": detail},
    )


origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(shifts_router)
app.include_router(transactions_router)
app.include_router(reports_router)


@app.get("/health")
def health():
    return {"status": "ok"}
