from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gateway_sync.core.config import Settings
from gateway_sync.core.errors import invalid_request, not_found
from gateway_sync.core.logging import get_logger
from gateway_sync.integrations.culqi import ChallengeRequired, CulqiClient
from gateway_sync.models.card import Card
from gateway_sync.models.customer import Customer
from gateway_sync.schemas.card import CardCreate, CardRead, CardUpdate
from gateway_sync.schemas.common import DeleteResult, MirrorList
from gateway_sync.services.base import MirrorSynchronizer, ReconcileOutcome, merge_metadata, reconcile_fields
from gateway_sync.services.customer_service import CustomerSynchronizer
from gateway_sync.services.token_service import TokenValidator

logger = get_logger(__name__)


def card_fields(remote: Dict[str, Any]) -> Dict[str, str]:
    """Token-derived card fields cached on the mirror."""
    source = remote.get("source") or {}
    iin = source.get("iin") or {}
    return {
        "last_four": source.get("last_four") or "",
        "card_brand": iin.get("card_brand") or "",
        "card_type": iin.get("card_type") or "",
    }


def card_view(outcome: ReconcileOutcome[Card]) -> CardRead:
    view = CardRead.model_validate(outcome.record)
    if outcome.synced:
        view = view.model_copy(update={"synced": True, "culqi_data": outcome.snapshot})
    return view


class CardSynchronizer(MirrorSynchronizer):
    """Attaches validated tokens to customers as stored cards."""

    resource = "card"

    def __init__(
        self,
        session: AsyncSession,
        client: CulqiClient,
        settings: Optional[Settings] = None,
        token_validator: Optional[TokenValidator] = None,
    ):
        super().__init__(session, client, settings)
        self.customers = CustomerSynchronizer(session, client, self.settings)
        self.tokens = token_validator or TokenValidator(client)

    async def require_card(self, user_id: str, card_id: str) -> Card:
        """Active card ``card_id`` (remote id) owned by the user's active customer."""
        result = await self.session.execute(
            select(Card)
            .join(Card.customer)
            .where(
                Card.culqi_card_id == card_id,
                Card.is_active.is_(True),
                Customer.user_id == user_id,
                Customer.is_active.is_(True),
            )
        )
        card = result.scalars().first()
        if card is None:
            raise not_found("Card not found for this user", card_id=card_id)
        return card

    async def create(self, payload: CardCreate) -> Union[CardRead, ChallengeRequired]:
        """
        Attach a token to the user's customer.

        Returns:
            CardRead when the gateway created the card, or the untouched
            ChallengeRequired payload when the bank asks for 3-D Secure; in
            that case nothing is persisted.

        Raises:
            SyncError: NOT_FOUND without an active customer, INVALID_REQUEST
                for an unusable token
        """
        customer = await self.customers.require_active(payload.user_id)

        validation = await self.tokens.validate(payload.token_id)
        if not validation.is_valid:
            raise invalid_request(validation.error or "Invalid token", token_id=payload.token_id)

        body: Dict[str, Any] = {
            "customer_id": customer.culqi_customer_id,
            "token_id": payload.token_id,
            "validate": payload.validate_card,
        }
        if payload.metadata:
            body["metadata"] = payload.metadata
        if payload.authentication_3ds:
            body["authentication_3DS"] = payload.authentication_3ds

        outcome = await self.client.create_resource("/cards", body)
        if isinstance(outcome, ChallengeRequired):
            logger.info("card.challenge_required", user_id=payload.user_id, tracking_id=outcome.tracking_id)
            return outcome

        remote = outcome.resource
        card = Card(
            culqi_card_id=remote["id"],
            customer=customer,
            culqi_customer_id=customer.culqi_customer_id,
            token_id=payload.token_id,
            metadata_=payload.metadata,
            **card_fields(remote),
        )
        await self.persist_created(card, remote_id=remote["id"])
        logger.info("card.created", user_id=payload.user_id, culqi_card_id=remote["id"], last_four=card.last_four)
        return card_view(ReconcileOutcome(record=card, snapshot=remote))

    async def get(self, user_id: str, card_id: str) -> CardRead:
        card = await self.require_card(user_id, card_id)
        response = await self.client.request(f"/cards/{card.culqi_card_id}")
        changed = self.reconcile(card, response.data)
        await self.save_changes(card, changed, remote_id=card.culqi_card_id)
        return card_view(ReconcileOutcome(record=card, snapshot=response.data, changed=changed))

    async def list(self, user_id: str) -> MirrorList[CardRead]:
        customer = await self.customers.require_active(user_id)
        result = await self.session.execute(
            select(Card)
            .where(Card.customer_id == customer.id, Card.is_active.is_(True))
            .order_by(Card.created_at.desc())
        )
        cards = list(result.scalars().all())
        return await self.reconcile_page(
            cards,
            endpoint=lambda card: f"/cards/{card.culqi_card_id}",
            apply=self.reconcile,
            view=card_view,
        )

    async def update(self, user_id: str, card_id: str, payload: CardUpdate) -> CardRead:
        fields = payload.model_dump(exclude_none=True)
        if not fields:
            raise invalid_request("At least one field must be provided for update")
        card = await self.require_card(user_id, card_id)

        if payload.token_id:
            validation = await self.tokens.validate(payload.token_id)
            if not validation.is_valid:
                raise invalid_request(validation.error or "Invalid token", token_id=payload.token_id)

        response = await self.client.request(f"/cards/{card.culqi_card_id}", method="PATCH", body=fields)

        changed: List[str] = []
        if payload.token_id:
            replaced: Dict[str, Any] = {"token_id": payload.token_id}
            if response.data.get("source"):
                replaced.update(card_fields(response.data))
            changed += reconcile_fields(card, replaced)
        if payload.metadata:
            card.metadata_ = merge_metadata(card.metadata_, payload.metadata)
            changed.append("metadata")
        await self.save_changes(card, changed, remote_id=card.culqi_card_id)
        logger.info("card.updated", user_id=user_id, culqi_card_id=card.culqi_card_id, fields=sorted(fields))
        return card_view(ReconcileOutcome(record=card, snapshot=response.data, changed=changed))

    async def delete(self, user_id: str, card_id: str) -> DeleteResult:
        card = await self.require_card(user_id, card_id)
        response = await self.client.request(f"/cards/{card.culqi_card_id}", method="DELETE")
        card.is_active = False
        await self.save_changes(card, ["is_active"], remote_id=card.culqi_card_id)
        logger.info("card.deleted", user_id=user_id, culqi_card_id=card.culqi_card_id)
        return DeleteResult(
            deleted=bool(response.data.get("deleted", True)),
            message=response.data.get("merchant_message"),
        )

    @staticmethod
    def reconcile(card: Card, remote: Dict[str, Any]) -> List[str]:
        if not remote.get("source"):
            return []
        return reconcile_fields(card, card_fields(remote))
