from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from gateway_sync.models.charge import ChargeSourceType
from gateway_sync.schemas.common import MirrorRead


class AntifraudDetails(BaseModel):
    address: str
    address_city: str
    country_code: str = Field(min_length=2, max_length=2)
    first_name: str
    last_name: str
    phone_number: str


class ChargeCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(min_length=1, max_length=64)
    user_email: str = Field(max_length=255)
    amount: int = Field(gt=0, description="Amount in minor units, e.g. 10000 = 100.00")
    currency_code: Literal["PEN", "USD"] = "PEN"
    source_id: str
    source_type: ChargeSourceType
    capture: bool = True
    description: str | None = Field(default=None, max_length=80)
    installments: int | None = Field(default=None, ge=0, le=48)
    metadata: dict[str, Any] | None = None
    antifraud_details: AntifraudDetails | None = None
    authentication_3ds: dict[str, Any] | None = Field(default=None, alias="authentication_3DS")


class ChargeUpdate(BaseModel):
    metadata: dict[str, Any]


class ChargeRead(MirrorRead):
    culqi_charge_id: str
    user_id: str
    user_email: str
    source_id: str
    source_type: str
    amount: Decimal
    amount_refunded: Decimal
    currency_code: str
    description: str | None
    installments: int
    is_captured: bool
    is_paid: bool
    is_disputed: bool
    fraud_score: Decimal | None
    outcome_type: str | None
    outcome_code: str | None
    decline_code: str | None
    reference_code: str | None
    authorization_code: str | None
    culqi_creation_date: int | None
    capture_date: datetime | None
