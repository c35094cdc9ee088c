from __future__ import annotations

import re
from decimal import Decimal
from enum import IntEnum

from sqlalchemy import BigInteger, Boolean, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from gateway_sync.db.base import Base
from gateway_sync.models.mixins import Identifier, MirrorMixin
from gateway_sync.models.validation import require_prefix, validate_before_write


class PlanStatus(IntEnum):
    ACTIVE = 1
    INACTIVE = 2


class IntervalUnit(IntEnum):
    DAILY = 1
    WEEKLY = 2
    MONTHLY = 3
    YEARLY = 4
    QUARTERLY = 5
    SEMIANNUAL = 6

    @property
    def text(self) -> str:
        return self.name.capitalize()


def normalize_plan_code(code: str) -> str:
    return code.strip().upper()


def slugify_short_name(short_name: str) -> str:
    return re.sub(r"\s+", "-", short_name.strip().lower())


@validate_before_write
class Plan(MirrorMixin, Base):
    """Mirror of a recurring-billing plan, addressable by remote id or local code."""

    __tablename__ = "culqi_plans"

    id: Mapped[Identifier]
    culqi_plan_id: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    culqi_slug: Mapped[str | None] = mapped_column(String(64), nullable=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    short_name: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False, default="PEN")
    interval_unit_time: Mapped[int] = mapped_column(Integer, nullable=False)
    interval_count: Mapped[int] = mapped_column(Integer, nullable=False)
    initial_cycles_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    has_initial_charge: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    initial_cycles_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False, default=Decimal("0.00")
    )
    initial_cycles_interval_unit_time: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    total_subscriptions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=int(PlanStatus.ACTIVE))
    culqi_creation_date: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    @property
    def interval_text(self) -> str:
        try:
            return IntervalUnit(self.interval_unit_time).text
        except ValueError:
            return "Unknown"

    @property
    def status_text(self) -> str:
        return "Active" if self.status == PlanStatus.ACTIVE else "Inactive"

    def validate(self) -> None:
        require_prefix(self.culqi_plan_id, "pln_", "culqi_plan_id")
        if self.code:
            self.code = normalize_plan_code(self.code)
        if self.short_name:
            self.short_name = slugify_short_name(self.short_name)
        if self.name:
            self.name = self.name.strip()
        if self.description:
            self.description = self.description.strip()
