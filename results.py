"""
Result values returned by the storefront core.

Expected, recoverable conditions (validation, stock limits, missing
records, remote failures on critical paths) come back as `Err` instead of
being raised, so callers can render them without special control flow.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Union


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    STOCK_LIMIT = "stock_limit"
    NOT_FOUND = "not_found"
    REMOTE = "remote"
    IN_FLIGHT = "in_flight"
    INVALID_TRANSITION = "invalid_transition"


@dataclass(frozen=True)
class Ok:
    value: Any = None
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    success: ClassVar[bool] = True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    success: ClassVar[bool] = False

    @property
    def errors(self) -> Dict[str, str]:
        """Field-keyed messages of a validation failure."""
        return self.details.get("errors", {})


Result = Union[Ok, Err]
