from typing import List

from pydantic import BaseModel


class ValidationResult(BaseModel):
    """Outcome of a readings check. Errors block, warnings are advisory."""
    valid: bool
    errors: List[str] = []
    warnings: List[str] = []

    @classmethod
    def from_lists(cls, errors: List[str], warnings: List[str]) -> "ValidationResult":
        return cls(valid=not errors, errors=errors, warnings=warnings)
