from typing import Any

from pydantic import BaseModel


class TokenValidation(BaseModel):
    is_valid: bool
    token: dict[str, Any] | None = None
    error: str | None = None
    tracking_id: str | None = None
