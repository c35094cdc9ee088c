from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from gateway_sync.schemas.common import MirrorRead


class CardCreate(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    token_id: str
    validate_card: bool = Field(default=True, alias="validate")
    metadata: dict[str, Any] | None = None
    authentication_3ds: dict[str, Any] | None = Field(default=None, alias="authentication_3DS")

    model_config = ConfigDict(populate_by_name=True)


class CardUpdate(BaseModel):
    token_id: str | None = None
    metadata: dict[str, Any] | None = None


class CardRead(MirrorRead):
    culqi_card_id: str
    customer_id: str
    culqi_customer_id: str
    token_id: str
    last_four: str
    card_brand: str
    card_type: str


class CustomerCard(BaseModel):
    """Remote card joined with its local mirror, as listed on a customer."""

    id: str
    source_id: str
    email: str | None = None
    active: bool | None = None
    card_type: str | None = None
    card_brand: str | None = None
    last_four: str | None = None
    card_number: str | None = None
