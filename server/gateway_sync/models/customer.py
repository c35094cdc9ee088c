from __future__ import annotations

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from gateway_sync.db.base import Base
from gateway_sync.models.mixins import Identifier, MirrorMixin
from gateway_sync.models.validation import normalize_email, require_prefix, validate_before_write


@validate_before_write
class Customer(MirrorMixin, Base):
    """Mirror of a remote customer; one active row per internal user."""

    __tablename__ = "culqi_customers"

    id: Mapped[Identifier]
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    culqi_customer_id: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)

    def validate(self) -> None:
        self.user_email = normalize_email(self.user_email)
        require_prefix(self.culqi_customer_id, "cus_", "culqi_customer_id")


Index(
    "uq_culqi_customers_active_user",
    Customer.user_id,
    unique=True,
    postgresql_where=Customer.is_active.is_(True),
    sqlite_where=Customer.is_active.is_(True),
)
