"""
Error taxonomy shared by every ClaimGate component.

Each error carries an ErrorKind so callers (and the audit trail) can
branch on a stable value instead of on class names or messages:

    retryable      only NetworkError; the core never retries by itself
    informational  IllegalTransition / AlreadyProcessed, the expected
                   outcomes of two sessions acting on the same claim

`Result` is the explicit success-or-error value used where a caller has
to choose its own fallback instead of getting a silent default.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_MOBILE = "invalid_mobile"
    INVALID_CODE = "invalid_code"
    EXPIRED = "expired"
    COOLDOWN_ACTIVE = "cooldown_active"
    ILLEGAL_TRANSITION = "illegal_transition"
    MISSING_REASON = "missing_reason"
    ALREADY_PROCESSED = "already_processed"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    NETWORK_ERROR = "network_error"
    SESSION_LOADING = "session_loading"


class ClaimGateError(Exception):
    kind: ErrorKind
    retryable = False
    informational = False
    default_message = "ClaimGate error"

    def __init__(self, message: str | None = None, *, status_code: int | None = None):
        self.message = message or self.default_message
        self.status_code = status_code
        super().__init__(self.message)


class InvalidCredentials(ClaimGateError):
    kind = ErrorKind.INVALID_CREDENTIALS
    default_message = "Invalid credentials"


class InvalidMobile(ClaimGateError):
    kind = ErrorKind.INVALID_MOBILE
    default_message = "Please enter a valid 10-digit mobile number"


class InvalidCode(ClaimGateError):
    kind = ErrorKind.INVALID_CODE
    default_message = "Invalid OTP"


class Expired(ClaimGateError):
    kind = ErrorKind.EXPIRED
    default_message = "OTP expired, request a new one"


class CooldownActive(ClaimGateError):
    kind = ErrorKind.COOLDOWN_ACTIVE
    default_message = "OTP was sent recently"

    def __init__(self, remaining_seconds: int, message: str | None = None):
        self.remaining_seconds = remaining_seconds
        super().__init__(
            message or f"OTP was sent recently, resend available in {remaining_seconds}s"
        )


class IllegalTransition(ClaimGateError):
    kind = ErrorKind.ILLEGAL_TRANSITION
    informational = True
    default_message = "Action is not allowed in the claim's current state"


class MissingReason(IllegalTransition):
    kind = ErrorKind.MISSING_REASON
    default_message = "A non-empty reason is required"


class AlreadyProcessed(ClaimGateError):
    kind = ErrorKind.ALREADY_PROCESSED
    informational = True
    default_message = "Claim was already processed"


class Unauthorized(ClaimGateError):
    kind = ErrorKind.UNAUTHORIZED
    default_message = "Not authenticated"


class Forbidden(ClaimGateError):
    kind = ErrorKind.FORBIDDEN
    default_message = "Not permitted"


class NotFound(ClaimGateError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Not found"


class NetworkError(ClaimGateError):
    kind = ErrorKind.NETWORK_ERROR
    retryable = True
    default_message = "Portal API unreachable"


class SessionLoading(ClaimGateError):
    kind = ErrorKind.SESSION_LOADING
    default_message = "Session is still loading"


@dataclass(frozen=True)
class Result(Generic[T]):
    value: T | None = None
    error: ClaimGateError | None = None

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ClaimGateError) -> "Result[T]":
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
