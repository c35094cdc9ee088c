from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from gateway_sync.schemas.common import MirrorRead


class InitialCycles(BaseModel):
    count: int = Field(default=0, ge=0)
    has_initial_charge: bool = False
    amount: Decimal = Field(default=Decimal("0"), ge=0, description="Major units")
    interval_unit_time: int = Field(default=1, ge=1, le=6)


class PlanCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50, pattern=r"^\s*[A-Za-z0-9_-]+\s*$")
    name: str = Field(min_length=5, max_length=50)
    short_name: str = Field(min_length=5, max_length=50)
    description: str = Field(min_length=5, max_length=200)
    amount: Decimal = Field(gt=0, description="Major units, e.g. 100.00")
    currency_code: Literal["PEN", "USD"] = "PEN"
    interval_unit_time: int = Field(ge=1, le=6)
    interval_count: int = Field(gt=0)
    initial_cycles: InitialCycles = Field(default_factory=InitialCycles)
    image: str | None = Field(default=None, max_length=500)
    metadata: dict[str, Any] | None = None


class PlanUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=5, max_length=50)
    short_name: str | None = Field(default=None, min_length=5, max_length=50)
    description: str | None = Field(default=None, min_length=5, max_length=200)
    status: Literal[1, 2] | None = None
    image: str | None = Field(default=None, max_length=500)
    metadata: dict[str, Any] | None = None


class PlanFilters(BaseModel):
    status: int | None = Field(default=None, ge=1, le=2)
    amount: Decimal | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    creation_date_from: int | None = None
    creation_date_to: int | None = None
    limit: int = Field(default=50, ge=1, le=100)


class PlanRead(MirrorRead):
    culqi_plan_id: str
    culqi_slug: str | None
    code: str
    name: str
    short_name: str
    description: str
    amount: Decimal
    currency_code: str
    interval_unit_time: int
    interval_text: str
    interval_count: int
    initial_cycles_count: int
    has_initial_charge: bool
    initial_cycles_amount: Decimal
    initial_cycles_interval_unit_time: int
    image_url: str | None
    total_subscriptions: int
    status: int
    status_text: str
    culqi_creation_date: int | None


class PlanSummary(BaseModel):
    id: str
    culqi_plan_id: str
    code: str
    name: str
    amount: Decimal
    currency_code: str
    interval_text: str

    model_config = ConfigDict(from_attributes=True)
