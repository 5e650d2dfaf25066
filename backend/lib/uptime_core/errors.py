# backend/lib/uptime_core/errors.py
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    TRANSPORT = "transport"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_DATA = "invalid_data"


class LedgerError(Exception):
    kind = ErrorKind.TRANSPORT


class StoreUnavailableError(LedgerError):
    kind = ErrorKind.TRANSPORT


class AccessDeniedError(LedgerError):
    kind = ErrorKind.PERMISSION


class RecordNotFoundError(LedgerError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(LedgerError):
    kind = ErrorKind.CONFLICT


class InvalidDeviceError(LedgerError, ValueError):
    kind = ErrorKind.INVALID_DATA


@dataclass(frozen=True)
class StepResult:
    """Outcome of one background pipeline step."""

    step: str
    ok: bool = True
    error_kind: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def failed(cls, step: str, error: LedgerError) -> "StepResult":
        return cls(step=step, ok=False, error_kind=error.kind, message=str(error))
