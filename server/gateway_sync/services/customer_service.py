from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from gateway_sync.core.errors import invalid_request, not_found
from gateway_sync.core.logging import get_logger
from gateway_sync.models.card import Card
from gateway_sync.models.customer import Customer
from gateway_sync.schemas.card import CustomerCard
from gateway_sync.schemas.common import DeleteResult
from gateway_sync.schemas.customer import CustomerCreate, CustomerDetail, CustomerProfile, CustomerUpdate
from gateway_sync.services.base import MirrorSynchronizer, merge_metadata, reconcile_fields

logger = get_logger(__name__)


class CustomerSynchronizer(MirrorSynchronizer):
    """Keeps exactly one remote customer per internal user."""

    resource = "customer"

    async def find_active(self, user_id: str) -> Optional[Customer]:
        result = await self.session.execute(
            select(Customer).where(Customer.user_id == user_id, Customer.is_active.is_(True))
        )
        return result.scalars().first()

    async def require_active(self, user_id: str) -> Customer:
        customer = await self.find_active(user_id)
        if customer is None:
            raise not_found("Customer not found for this user", user_id=user_id)
        return customer

    async def find_by_remote_id(self, culqi_customer_id: str) -> Optional[Customer]:
        result = await self.session.execute(
            select(Customer).where(Customer.culqi_customer_id == culqi_customer_id)
        )
        return result.scalars().first()

    async def create(self, payload: CustomerCreate) -> CustomerDetail:
        """
        Create the remote customer for a user and mirror it.

        Args:
            payload: Customer identity and contact data

        Returns:
            CustomerDetail merged with the remote profile

        Raises:
            SyncError: INVALID_REQUEST if the user already has an active customer
            GatewayError: If the gateway rejects the customer
        """
        existing = await self.find_active(payload.user_id)
        if existing is not None:
            raise invalid_request(
                "Customer already exists for this user",
                culqi_customer_id=existing.culqi_customer_id,
            )

        body: Dict[str, Any] = payload.model_dump(exclude={"user_id", "metadata"})
        if payload.metadata:
            body["metadata"] = payload.metadata
        response = await self.client.request("/customers", method="POST", body=body)
        remote = response.data

        customer = Customer(
            user_id=payload.user_id,
            user_email=payload.email,
            culqi_customer_id=remote["id"],
            metadata_=payload.metadata,
        )
        try:
            await self.persist_created(customer, remote_id=remote["id"])
        except IntegrityError as exc:
            raise invalid_request(
                "Customer already exists for this user",
                culqi_customer_id=remote["id"],
            ) from exc
        logger.info("customer.created", user_id=payload.user_id, culqi_customer_id=remote["id"])
        return await self._detail(customer, remote)

    async def get(self, user_id: str) -> CustomerDetail:
        customer = await self.require_active(user_id)
        response = await self.client.request(f"/customers/{customer.culqi_customer_id}")
        changed = self.reconcile(customer, response.data)
        await self.save_changes(customer, changed, remote_id=customer.culqi_customer_id)
        return await self._detail(customer, response.data)

    async def update(self, user_id: str, payload: CustomerUpdate) -> CustomerDetail:
        fields = payload.model_dump(exclude_none=True)
        if not fields:
            raise invalid_request("At least one field must be provided for update")
        customer = await self.require_active(user_id)

        response = await self.client.request(
            f"/customers/{customer.culqi_customer_id}", method="PATCH", body=fields
        )
        changed = self.reconcile(customer, response.data)
        if payload.metadata:
            customer.metadata_ = merge_metadata(customer.metadata_, payload.metadata)
            changed.append("metadata")
        await self.save_changes(customer, changed, remote_id=customer.culqi_customer_id)
        logger.info("customer.updated", user_id=user_id, fields=sorted(fields))
        return await self._detail(customer, response.data)

    async def delete(self, user_id: str) -> DeleteResult:
        customer = await self.require_active(user_id)
        response = await self.client.request(f"/customers/{customer.culqi_customer_id}", method="DELETE")
        customer.is_active = False
        await self.save_changes(customer, ["is_active"], remote_id=customer.culqi_customer_id)
        logger.info("customer.deleted", user_id=user_id, culqi_customer_id=customer.culqi_customer_id)
        return DeleteResult(
            deleted=bool(response.data.get("deleted", True)),
            message=response.data.get("merchant_message"),
        )

    @staticmethod
    def reconcile(customer: Customer, remote: Dict[str, Any]) -> List[str]:
        email = remote.get("email")
        if not email:
            return []
        return reconcile_fields(customer, {"user_email": email.strip().lower()})

    async def _detail(self, customer: Customer, remote: Dict[str, Any]) -> CustomerDetail:
        antifraud = remote.get("antifraud_details") or {}
        profile = CustomerProfile(
            email=remote.get("email") or customer.user_email,
            first_name=antifraud.get("first_name") or "",
            last_name=antifraud.get("last_name") or "",
            address=antifraud.get("address") or "",
            address_city=antifraud.get("address_city") or "",
            country_code=antifraud.get("country_code") or "",
            phone=antifraud.get("phone") or "",
            metadata=remote.get("metadata") or {},
            cards=await self._known_cards(customer, remote.get("cards") or []),
        )
        detail = CustomerDetail.model_validate(customer)
        return detail.model_copy(update={"profile": profile, "synced": True, "culqi_data": remote})

    async def _known_cards(self, customer: Customer, remote_cards: List[Dict[str, Any]]) -> List[CustomerCard]:
        """Remote cards that have an active local mirror, in remote order."""
        card_ids = [card["id"] for card in remote_cards if card.get("id")]
        if not card_ids:
            return []
        result = await self.session.execute(
            select(Card).where(
                Card.culqi_card_id.in_(card_ids),
                Card.culqi_customer_id == customer.culqi_customer_id,
                Card.is_active.is_(True),
            )
        )
        local = {card.culqi_card_id: card for card in result.scalars().unique()}

        cards: List[CustomerCard] = []
        for remote_card in remote_cards:
            mirror = local.get(remote_card.get("id"))
            if mirror is None:
                continue
            source = remote_card.get("source") or {}
            iin = source.get("iin") or {}
            cards.append(
                CustomerCard(
                    id=mirror.id,
                    source_id=remote_card["id"],
                    email=source.get("email"),
                    active=remote_card.get("active"),
                    card_type=iin.get("card_type"),
                    card_brand=iin.get("card_brand"),
                    last_four=source.get("last_four"),
                    card_number=source.get("card_number"),
                )
            )
        return cards
