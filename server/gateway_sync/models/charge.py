from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from gateway_sync.db.base import Base
from gateway_sync.models.mixins import Identifier, MirrorMixin
from gateway_sync.models.validation import normalize_email, reject, require_prefix, validate_before_write


class ChargeSourceType(str, Enum):
    TOKEN = "token"
    CARD = "card"


@validate_before_write
class Charge(MirrorMixin, Base):
    """Mirror of a one-time charge. Amounts are decimal major units."""

    __tablename__ = "culqi_charges"

    id: Mapped[Identifier]
    culqi_charge_id: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    source_id: Mapped[str] = mapped_column(String(40), nullable=False)
    source_type: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)
    amount_refunded: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), nullable=False, default=Decimal("0.00")
    )
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False, default="PEN")
    description: Mapped[str | None] = mapped_column(String(80), nullable=True)
    installments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_captured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_disputed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    fraud_score: Mapped[Decimal | None] = mapped_column(Numeric(precision=5, scale=2), nullable=True)
    outcome_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    outcome_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    decline_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    authorization_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    culqi_creation_date: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    capture_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def validate(self) -> None:
        require_prefix(self.culqi_charge_id, "chr_", "culqi_charge_id")
        self.user_email = normalize_email(self.user_email)
        amount = self.amount if self.amount is not None else Decimal("0")
        refunded = self.amount_refunded if self.amount_refunded is not None else Decimal("0")
        if amount < 0:
            reject("Charge amount cannot be negative", amount=str(amount))
        if refunded < 0:
            reject("Refunded amount cannot be negative", amount_refunded=str(refunded))
        if refunded > amount:
            reject(
                "Refunded amount cannot exceed the charged amount",
                amount=str(amount),
                amount_refunded=str(refunded),
            )
