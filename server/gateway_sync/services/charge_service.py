from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gateway_sync.core.config import Settings
from gateway_sync.core.errors import invalid_request, not_found
from gateway_sync.core.logging import get_logger
from gateway_sync.core.money import to_major_units
from gateway_sync.integrations.culqi import ChallengeRequired, CulqiClient
from gateway_sync.models.card import Card
from gateway_sync.models.charge import Charge, ChargeSourceType
from gateway_sync.models.customer import Customer
from gateway_sync.models.mixins import utcnow
from gateway_sync.schemas.charge import ChargeCreate, ChargeRead, ChargeUpdate
from gateway_sync.schemas.common import MirrorList
from gateway_sync.services.base import (
    MirrorSynchronizer,
    ReconcileOutcome,
    from_epoch_millis,
    merge_metadata,
    reconcile_fields,
)
from gateway_sync.services.token_service import TokenValidator

logger = get_logger(__name__)


def charge_fields(remote: Dict[str, Any]) -> Dict[str, Any]:
    """Mirror columns derived from a remote charge; amounts arrive in minor units."""
    outcome = remote.get("outcome") or {}
    return {
        "amount": to_major_units(int(remote.get("amount") or 0)),
        "amount_refunded": to_major_units(int(remote.get("amount_refunded") or 0)),
        "currency_code": remote.get("currency_code") or "PEN",
        "installments": remote.get("installments") or 0,
        "is_captured": bool(remote.get("capture")),
        "is_paid": bool(remote.get("paid")),
        "is_disputed": bool(remote.get("dispute")),
        "fraud_score": remote.get("fraud_score"),
        "outcome_type": outcome.get("type"),
        "outcome_code": outcome.get("code"),
        "decline_code": outcome.get("decline_code"),
        "reference_code": remote.get("reference_code"),
        "authorization_code": remote.get("authorization_code"),
        "culqi_creation_date": remote.get("creation_date"),
        "capture_date": from_epoch_millis(remote.get("capture_date")),
    }


def charge_view(outcome: ReconcileOutcome[Charge]) -> ChargeRead:
    view = ChargeRead.model_validate(outcome.record)
    if outcome.synced:
        view = view.model_copy(update={"synced": True, "culqi_data": outcome.snapshot})
    return view


class ChargeSynchronizer(MirrorSynchronizer):
    """One-time charges against a token or a stored card."""

    resource = "charge"

    def __init__(
        self,
        session: AsyncSession,
        client: CulqiClient,
        settings: Optional[Settings] = None,
        token_validator: Optional[TokenValidator] = None,
    ):
        super().__init__(session, client, settings)
        self.tokens = token_validator or TokenValidator(client)

    async def require_charge(self, charge_id: str, user_id: Optional[str] = None) -> Charge:
        query = select(Charge).where(Charge.culqi_charge_id == charge_id)
        if user_id is not None:
            query = query.where(Charge.user_id == user_id)
        result = await self.session.execute(query)
        charge = result.scalars().first()
        if charge is None:
            raise not_found("Charge not found", charge_id=charge_id)
        return charge

    async def _check_source(self, payload: ChargeCreate) -> None:
        if payload.source_type == ChargeSourceType.TOKEN:
            validation = await self.tokens.validate(payload.source_id)
            if not validation.is_valid:
                raise invalid_request(validation.error or "Invalid token", source_id=payload.source_id)
            return
        if payload.source_type == ChargeSourceType.CARD:
            result = await self.session.execute(
                select(Card.id)
                .join(Card.customer)
                .where(
                    Card.culqi_card_id == payload.source_id,
                    Card.is_active.is_(True),
                    Customer.user_id == payload.user_id,
                    Customer.is_active.is_(True),
                )
            )
            if result.scalars().first() is None:
                raise not_found("Card not found for this user", source_id=payload.source_id)
            return
        raise invalid_request("Unsupported source type", source_type=str(payload.source_type))

    async def create(self, payload: ChargeCreate) -> Union[ChargeRead, ChallengeRequired]:
        """
        Charge a token or a stored card.

        Args:
            payload: Charge request; ``amount`` is in minor units

        Returns:
            ChargeRead when the charge was created, or ChallengeRequired with
            the gateway payload unchanged when 3-D Secure is needed

        Raises:
            SyncError: INVALID_REQUEST below the minimum amount or for an
                unusable source, NOT_FOUND for a card the user does not own
            GatewayError: PAYMENT_DECLINED and other gateway failures
        """
        minimum = self.settings.min_charge_amount
        if payload.amount < minimum:
            raise invalid_request(
                f"Minimum charge amount is {minimum} minor units",
                amount=payload.amount,
                minimum=minimum,
            )
        await self._check_source(payload)

        body: Dict[str, Any] = {
            "amount": payload.amount,
            "currency_code": payload.currency_code,
            "email": payload.user_email,
            "source_id": payload.source_id,
            "capture": payload.capture,
        }
        if payload.description:
            body["description"] = payload.description
        if payload.installments is not None:
            body["installments"] = payload.installments
        if payload.metadata:
            body["metadata"] = payload.metadata
        if payload.antifraud_details is not None:
            body["antifraud_details"] = payload.antifraud_details.model_dump()
        if payload.authentication_3ds:
            body["authentication_3DS"] = payload.authentication_3ds

        outcome = await self.client.create_resource("/charges", body)
        if isinstance(outcome, ChallengeRequired):
            logger.info("charge.challenge_required", user_id=payload.user_id, tracking_id=outcome.tracking_id)
            return outcome

        remote = outcome.resource
        charge = Charge(
            culqi_charge_id=remote["id"],
            user_id=payload.user_id,
            user_email=payload.user_email,
            source_id=payload.source_id,
            source_type=payload.source_type.value,
            description=remote.get("description") or payload.description or "",
            metadata_=payload.metadata,
            **charge_fields(remote),
        )
        await self.persist_created(charge, remote_id=remote["id"])
        logger.info(
            "charge.created",
            user_id=payload.user_id,
            culqi_charge_id=remote["id"],
            amount=str(charge.amount),
            currency=charge.currency_code,
        )
        return charge_view(ReconcileOutcome(record=charge, snapshot=remote))

    async def get(self, charge_id: str, user_id: Optional[str] = None) -> ChargeRead:
        charge = await self.require_charge(charge_id, user_id)
        response = await self.client.request(f"/charges/{charge.culqi_charge_id}")
        changed = self.reconcile(charge, response.data)
        await self.save_changes(charge, changed, remote_id=charge.culqi_charge_id)
        return charge_view(ReconcileOutcome(record=charge, snapshot=response.data, changed=changed))

    async def list_for_user(self, user_id: str, limit: int = 50, offset: int = 0) -> MirrorList[ChargeRead]:
        total = await self.session.scalar(select(func.count(Charge.id)).where(Charge.user_id == user_id))
        result = await self.session.execute(
            select(Charge)
            .where(Charge.user_id == user_id)
            .order_by(Charge.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        charges = list(result.scalars().all())
        return await self.reconcile_page(
            charges,
            endpoint=lambda charge: f"/charges/{charge.culqi_charge_id}",
            apply=self.reconcile,
            view=charge_view,
            total=total or 0,
        )

    async def update(self, charge_id: str, payload: ChargeUpdate) -> ChargeRead:
        """Merge metadata; amounts and flags stay remote-owned."""
        charge = await self.require_charge(charge_id)
        response = await self.client.request(
            f"/charges/{charge.culqi_charge_id}",
            method="PATCH",
            body={"metadata": payload.metadata},
        )
        charge.metadata_ = merge_metadata(charge.metadata_, payload.metadata)
        await self.save_changes(charge, ["metadata"], remote_id=charge.culqi_charge_id)
        logger.info("charge.updated", culqi_charge_id=charge.culqi_charge_id)
        view = ChargeRead.model_validate(charge)
        return view.model_copy(update={"culqi_data": response.data})

    async def capture(self, charge_id: str) -> ChargeRead:
        charge = await self.require_charge(charge_id)
        if charge.is_captured:
            raise invalid_request("Charge is already captured", charge_id=charge_id)

        response = await self.client.request(f"/charges/{charge.culqi_charge_id}/capture", method="POST")
        charge.is_captured = True
        charge.capture_date = from_epoch_millis(response.data.get("capture_date")) or utcnow()
        await self.save_changes(charge, ["is_captured", "capture_date"], remote_id=charge.culqi_charge_id)
        logger.info("charge.captured", culqi_charge_id=charge.culqi_charge_id)
        return charge_view(ReconcileOutcome(record=charge, snapshot=response.data))

    @staticmethod
    def reconcile(charge: Charge, remote: Dict[str, Any]) -> List[str]:
        """Refund, capture, payment and dispute state are remote-authoritative."""
        if "amount_refunded" not in remote and "capture" not in remote:
            return []
        updates: Dict[str, Any] = {
            "amount_refunded": to_major_units(int(remote.get("amount_refunded") or 0)),
            "is_captured": bool(remote.get("capture")),
            "is_paid": bool(remote.get("paid")),
            "is_disputed": bool(remote.get("dispute")),
        }
        if charge.capture_date is None and remote.get("capture_date"):
            updates["capture_date"] = from_epoch_millis(remote["capture_date"])
        return reconcile_fields(charge, updates)
