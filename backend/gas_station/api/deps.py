from functools import lru_cache
from typing import Optional

from fastapi import Header

from gas_station.config import StationConfig, settings
from gas_station.services.shift_state import ShiftStateMachine

_TRUE = {"1", "true", "yes", "on"}


@lru_cache
def get_station_config() -> StationConfig:
    return settings.station_config()


def get_machine() -> ShiftStateMachine:
    return ShiftStateMachine(get_station_config())


def get_admin_override(x_admin_override: Optional[str] = Header(None)) -> bool:
    """Admin capability as asserted by the gateway in front of this service."""
    return (x_admin_override or "").strip().lower() in _TRUE
