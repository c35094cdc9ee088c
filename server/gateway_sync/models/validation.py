from typing import Any, Optional

from sqlalchemy import event

from gateway_sync.core.errors import ErrorKind, SyncError


def require_prefix(value: Optional[str], prefix: str, field: str) -> None:
    if value and not value.startswith(prefix):
        raise SyncError(
            ErrorKind.INVALID_REQUEST,
            f"{field} must start with '{prefix}'",
            details={"field": field, "value": value},
        )


def reject(message: str, **details: Any) -> None:
    raise SyncError(ErrorKind.INVALID_REQUEST, message, details=details or None)


def normalize_email(value: Optional[str]) -> Optional[str]:
    return value.strip().lower() if value else value


def validate_before_write(model: type) -> type:
    """Run ``model.validate()`` before every INSERT and UPDATE of ``model``."""

    def _listener(mapper: Any, connection: Any, target: Any) -> None:  # noqa: ARG001
        target.validate()

    event.listen(model, "before_insert", _listener)
    event.listen(model, "before_update", _listener)
    return model
