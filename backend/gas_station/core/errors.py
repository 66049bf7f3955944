"""Error taxonomy of the shift core.

Data-entry problems are not exceptions: validators return a ValidationResult
with every problem listed. Exceptions here are either rejected state
transitions (ShiftError) or configuration/programmer errors.
"""
from typing import List, Optional


class GasStationError(Exception):
    """Base class for all domain errors."""


class InvalidDateKey(GasStationError, ValueError):
    def __init__(self, value, reason: str = "expected a real YYYY-MM-DD date"):
        self.value = value
        super().__init__(f"Invalid date key {value!r}: {reason}")


class ReadingIndexError(GasStationError, ValueError):
    """Nozzle or tank number outside the configured station layout."""

    def __init__(self, kind: str, number, limit: int):
        self.kind = kind
        self.number = number
        self.limit = limit
        super().__init__(f"{kind} number {number} is outside 1..{limit}")


class ShiftError(GasStationError):
    """Rejected shift operation. Nothing has been mutated when it is raised."""


class ShiftNotFound(ShiftError):
    def __init__(self, shift_id):
        self.shift_id = shift_id
        super().__init__(f"Shift {shift_id} not found")


class ShiftAlreadyOpen(ShiftError):
    def __init__(self, station_id: str, date_key: str, open_shift_id: Optional[int] = None):
        self.station_id = station_id
        self.date_key = date_key
        self.open_shift_id = open_shift_id
        suffix = f" (id={open_shift_id})" if open_shift_id is not None else ""
        super().__init__(
            f"Station {station_id} already has an open shift on {date_key}{suffix}. Close it first."
        )


class DuplicateShiftNumber(ShiftError):
    def __init__(self, station_id: str, date_key: str, shift_number: int):
        self.station_id = station_id
        self.date_key = date_key
        self.shift_number = shift_number
        super().__init__(f"Shift {shift_number} already exists for station {station_id} on {date_key}")


class InvalidShiftNumber(ShiftError):
    def __init__(self, shift_number: int, max_shifts: int):
        self.shift_number = shift_number
        self.max_shifts = max_shifts
        super().__init__(f"Shift number {shift_number} is outside 1..{max_shifts}")


class InvalidShiftTransition(ShiftError):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move shift from {current.value} to {target.value}")


class ShiftLocked(ShiftError):
    def __init__(self, shift_id=None):
        self.shift_id = shift_id
        super().__init__(f"Shift {shift_id} is locked; changes require an admin override")


class NoOpenShift(ShiftError):
    def __init__(self, station_id: str):
        self.station_id = station_id
        super().__init__(f"Station {station_id} has no open shift")


class LockNotDue(ShiftError):
    def __init__(self, shift_id=None):
        self.shift_id = shift_id
        super().__init__(f"Shift {shift_id} is not due for locking yet")


class ReadingsRejected(ShiftError):
    """Readings failed validation; `errors` holds every problem found."""

    prefix = "Readings rejected"

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"{self.prefix}: " + "; ".join(self.errors))


class ShiftCloseRejected(ReadingsRejected):
    prefix = "Shift cannot be closed"


class TransactionNotFound(GasStationError):
    def __init__(self, transaction_id):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found")


class AdminOverrideRequired(ShiftError):
    def __init__(self, action: str, shift_id=None):
        self.action = action
        self.shift_id = shift_id
        super().__init__(f"{action.capitalize()} of shift {shift_id} requires an admin override")
