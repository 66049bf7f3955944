"""Fixtures for the service and API tests."""
import os
import tempfile
from decimal import Decimal
from pathlib import Path

import pytest

# A throwaway SQLite file; must be set before gas_station.config is imported.
TEST_DB = Path(tempfile.gettempdir()) / f"gas_station_test_{os.getpid()}.db"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB}"

from fastapi.testclient import TestClient  # noqa: E402

from gas_station.config import StationConfig  # noqa: E402
from gas_station.services.shift_state import ShiftStateMachine  # noqa: E402


@pytest.fixture
def config():
    """LPG layout: 4 nozzles, 3 tanks of 2400 L."""
    return StationConfig(nozzle_count=4, tank_count=3, tank_capacity_liters=Decimal("2400"))


@pytest.fixture
def machine(config):
    return ShiftStateMachine(config)


@pytest.fixture
def client():
    """App client on an empty database; tables are created by the lifespan."""
    if TEST_DB.exists():
        TEST_DB.unlink()
    from gas_station.main import app
    with TestClient(app) as c:
        yield c
    if TEST_DB.exists():
        TEST_DB.unlink()
