from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field

from gateway_sync.schemas.common import MirrorRead, ORMModel
from gateway_sync.schemas.plan import PlanSummary


class SubscriptionCreate(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    user_email: str = Field(max_length=255)
    card_id: str = Field(description="Remote card id (crd_...)")
    plan_id: str = Field(description="Remote plan id (pln_...) or local plan code")
    tyc: Literal[True] = Field(description="Terms and conditions must be accepted")
    metadata: dict[str, Any] | None = None


class SubscriptionUpdate(BaseModel):
    card_id: str | None = None
    metadata: dict[str, Any] | None = None


class SubscriptionFilters(BaseModel):
    user_id: str | None = None
    plan_id: str | None = None
    status: int | None = Field(default=None, ge=1, le=6)
    creation_date_from: int | None = None
    creation_date_to: int | None = None
    limit: int = Field(default=50, ge=1, le=100)


class CustomerSummary(ORMModel):
    id: str
    culqi_customer_id: str
    user_email: str


class CardSummary(ORMModel):
    id: str
    culqi_card_id: str
    last_four: str
    card_brand: str


class SubscriptionRead(MirrorRead):
    culqi_subscription_id: str
    user_id: str
    user_email: str
    status: int
    status_text: str
    current_period: int
    total_periods: int | None
    next_billing_date: int | None
    trial_start: int | None
    trial_end: int | None
    culqi_creation_date: int | None
    cancellation_date: int | None
    terms_and_conditions: bool
    is_in_trial_period: bool = False
    customer: CustomerSummary
    card: CardSummary
    plan: PlanSummary


class UpcomingBilling(BaseModel):
    subscription_id: str
    culqi_subscription_id: str
    user_email: str
    plan_name: str
    amount: Decimal
    next_billing_date: int


class SubscriptionSummary(BaseModel):
    """Point-in-time snapshot of the local mirror; not reconciled against the gateway."""

    total: int
    active: int
    trial: int
    cancelled: int
    revenue_this_month: Decimal
    next_billings: list[UpcomingBilling]
    as_of: int
    source: Literal["local_mirror"] = "local_mirror"
