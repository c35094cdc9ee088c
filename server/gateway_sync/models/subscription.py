from __future__ import annotations

import time
from enum import IntEnum
from typing import Optional

from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gateway_sync.db.base import Base
from gateway_sync.models.card import Card
from gateway_sync.models.customer import Customer
from gateway_sync.models.mixins import Identifier, MirrorMixin
from gateway_sync.models.plan import Plan
from gateway_sync.models.validation import normalize_email, reject, require_prefix, validate_before_write


class SubscriptionStatus(IntEnum):
    CREATED = 1
    TRIAL = 2
    ACTIVE = 3
    CANCELLED = 4
    QUEUED = 5
    FINISHED = 6

    @property
    def text(self) -> str:
        return self.name.capitalize()


# Statuses from which update and cancel are allowed.
CANCELLABLE_STATUSES = frozenset(
    {
        SubscriptionStatus.CREATED,
        SubscriptionStatus.TRIAL,
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.QUEUED,
    }
)


@validate_before_write
class Subscription(MirrorMixin, Base):
    """Mirror of a recurring subscription binding a customer, a card and a plan.

    Gateway instants (``next_billing_date``, ``trial_start``, ``trial_end``,
    ``culqi_creation_date``, ``cancellation_date``) are epoch seconds.
    """

    __tablename__ = "culqi_subscriptions"

    id: Mapped[Identifier]
    culqi_subscription_id: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_id: Mapped[str] = mapped_column(ForeignKey("culqi_customers.id"), nullable=False, index=True)
    card_id: Mapped[str] = mapped_column(ForeignKey("culqi_cards.id"), nullable=False, index=True)
    plan_id: Mapped[str] = mapped_column(ForeignKey("culqi_plans.id"), nullable=False, index=True)
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=int(SubscriptionStatus.CREATED))
    current_period: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_periods: Mapped[int | None] = mapped_column(Integer, nullable=True)
    next_billing_date: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    trial_start: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    trial_end: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    culqi_creation_date: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    cancellation_date: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    terms_and_conditions: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    customer: Mapped[Customer] = relationship(lazy="joined")
    card: Mapped[Card] = relationship(lazy="joined")
    plan: Mapped[Plan] = relationship(lazy="joined")

    @property
    def status_text(self) -> str:
        try:
            return SubscriptionStatus(self.status).text
        except ValueError:
            return "Unknown"

    @property
    def can_be_cancelled(self) -> bool:
        return bool(self.is_active) and self.status in CANCELLABLE_STATUSES

    @property
    def is_in_trial_period(self) -> bool:
        return self.in_trial_period()

    def in_trial_period(self, now: Optional[int] = None) -> bool:
        """Trial membership from the stored window, independent of ``status``."""
        if not self.trial_start or not self.trial_end:
            return False
        now = int(time.time()) if now is None else now
        return self.trial_start <= now <= self.trial_end

    def validate(self) -> None:
        require_prefix(self.culqi_subscription_id, "sxn_", "culqi_subscription_id")
        self.user_email = normalize_email(self.user_email)
        if self.status is not None and not 1 <= self.status <= 6:
            reject("Subscription status must be between 1 and 6", status=self.status)
        if self.current_period is not None and self.current_period < 1:
            reject("Current period must be at least 1", current_period=self.current_period)


Index(
    "uq_culqi_subscriptions_active_user_plan",
    Subscription.user_id,
    Subscription.plan_id,
    unique=True,
    postgresql_where=(Subscription.status == int(SubscriptionStatus.ACTIVE)) & Subscription.is_active.is_(True),
    sqlite_where=(Subscription.status == int(SubscriptionStatus.ACTIVE)) & Subscription.is_active.is_(True),
)
