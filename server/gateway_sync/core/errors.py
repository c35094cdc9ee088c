"""
Structured error taxonomy for the synchronization engine.

Every failure surfaced to a caller is a SyncError: a closed ErrorKind, a
human message and, when the gateway was involved, its tracking id. The
Culqi client is the only place that builds GatewayError from HTTP statuses.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Closed set of failure kinds callers can rely on."""
    INVALID_REQUEST = "INVALID_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    PAYMENT_DECLINED = "PAYMENT_DECLINED"
    UNPROCESSABLE = "UNPROCESSABLE"
    RATE_LIMITED = "RATE_LIMITED"
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
    AUTH_MISCONFIGURED = "AUTH_MISCONFIGURED"
    UNKNOWN_GATEWAY_ERROR = "UNKNOWN_GATEWAY_ERROR"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.RATE_LIMITED, ErrorKind.GATEWAY_UNAVAILABLE)


_HTTP_STATUS = {
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PAYMENT_DECLINED: 402,
    ErrorKind.UNPROCESSABLE: 422,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.GATEWAY_UNAVAILABLE: 503,
    ErrorKind.AUTH_MISCONFIGURED: 500,
    ErrorKind.UNKNOWN_GATEWAY_ERROR: 500,
}


class SyncError(Exception):
    """Base error for local precondition failures and gateway failures."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        tracking_id: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.tracking_id = tracking_id
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "tracking_id": self.tracking_id,
            "code": self.code,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class GatewayError(SyncError):
    """Failure reported by the remote processor, already classified."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: Optional[int] = None,
        tracking_id: Optional[str] = None,
        code: Optional[str] = None,
        param: Optional[str] = None,
        decline_code: Optional[str] = None,
        user_message: Optional[str] = None,
        charge_id: Optional[str] = None,
    ):
        details: Dict[str, Any] = {}
        if param is not None:
            details["param"] = param
        if decline_code is not None:
            details["decline_code"] = decline_code
        if user_message is not None:
            details["user_message"] = user_message
        if charge_id is not None:
            details["charge_id"] = charge_id
        super().__init__(kind, message, tracking_id=tracking_id, code=code, details=details)
        self.status_code = status_code
        self.param = param
        self.decline_code = decline_code
        self.user_message = user_message
        self.charge_id = charge_id


def invalid_request(message: str, **details: Any) -> SyncError:
    return SyncError(ErrorKind.INVALID_REQUEST, message, details=details or None)


def not_found(message: str, **details: Any) -> SyncError:
    return SyncError(ErrorKind.NOT_FOUND, message, details=details or None)
