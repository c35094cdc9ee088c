from typing import Any

from pydantic import BaseModel, Field

from gateway_sync.schemas.card import CustomerCard
from gateway_sync.schemas.common import MirrorRead

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class CustomerCreate(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    address: str = Field(min_length=5, max_length=100)
    address_city: str = Field(min_length=2, max_length=30)
    country_code: str = Field(min_length=2, max_length=2)
    phone_number: str = Field(min_length=5, max_length=15)
    metadata: dict[str, Any] | None = None


class CustomerUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=2, max_length=50)
    last_name: str | None = Field(default=None, min_length=2, max_length=50)
    email: str | None = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    address: str | None = Field(default=None, min_length=5, max_length=100)
    address_city: str | None = Field(default=None, min_length=2, max_length=30)
    country_code: str | None = Field(default=None, min_length=2, max_length=2)
    phone_number: str | None = Field(default=None, min_length=5, max_length=15)
    metadata: dict[str, Any] | None = None


class CustomerRead(MirrorRead):
    user_id: str
    user_email: str
    culqi_customer_id: str


class CustomerProfile(BaseModel):
    """Remote customer fields, read from the gateway's antifraud details."""

    email: str
    first_name: str = ""
    last_name: str = ""
    address: str = ""
    address_city: str = ""
    country_code: str = ""
    phone: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    cards: list[CustomerCard] = Field(default_factory=list)


class CustomerDetail(CustomerRead):
    profile: CustomerProfile | None = None
