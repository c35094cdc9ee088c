from __future__ import annotations

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gateway_sync.db.base import Base
from gateway_sync.models.customer import Customer
from gateway_sync.models.mixins import Identifier, MirrorMixin
from gateway_sync.models.validation import require_prefix, validate_before_write


@validate_before_write
class Card(MirrorMixin, Base):
    """Mirror of a card stored on a remote customer.

    ``last_four``, ``card_brand`` and ``card_type`` cache the remote card and
    are replaced whenever the backing token changes.
    """

    __tablename__ = "culqi_cards"

    id: Mapped[Identifier]
    culqi_card_id: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    customer_id: Mapped[str] = mapped_column(
        ForeignKey("culqi_customers.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    culqi_customer_id: Mapped[str] = mapped_column(String(40), nullable=False)
    token_id: Mapped[str] = mapped_column(String(40), nullable=False)
    last_four: Mapped[str] = mapped_column(String(4), nullable=False)
    card_brand: Mapped[str] = mapped_column(String(20), nullable=False)
    card_type: Mapped[str] = mapped_column(String(20), nullable=False)

    customer: Mapped[Customer] = relationship(lazy="joined")

    def validate(self) -> None:
        require_prefix(self.culqi_card_id, "crd_", "culqi_card_id")
        require_prefix(self.culqi_customer_id, "cus_", "culqi_customer_id")
        require_prefix(self.token_id, "tkn_", "token_id")
