"""
Subscription Orchestrator

Binds a customer, a card and a plan into a remote subscription and manages
its lifecycle. Creation gates run in a fixed order and all of them are local
reads, so a failing gate never reaches the gateway:

    customer -> card owned by that customer -> active plan -> no Active
    subscription for the same (user, plan)

The last gate is serialized per (user, plan) with a short redis lock and
backed by a partial unique index.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gateway_sync.core.config import Settings
from gateway_sync.core.errors import invalid_request, not_found
from gateway_sync.core.logging import get_logger
from gateway_sync.integrations.culqi import CulqiClient
from gateway_sync.models.card import Card
from gateway_sync.models.plan import Plan, PlanStatus, normalize_plan_code
from gateway_sync.models.subscription import Subscription, SubscriptionStatus
from gateway_sync.schemas.common import DeleteResult, MirrorList
from gateway_sync.schemas.subscription import (
    SubscriptionCreate,
    SubscriptionFilters,
    SubscriptionRead,
    SubscriptionSummary,
    SubscriptionUpdate,
    UpcomingBilling,
)
from gateway_sync.services.base import MirrorSynchronizer, ReconcileOutcome, merge_metadata, reconcile_fields
from gateway_sync.services.customer_service import CustomerSynchronizer
from gateway_sync.services.plan_service import PlanManager

logger = get_logger(__name__)

LOCK_PREFIX = "gateway_sync:subscription:create:"
UPCOMING_BILLING_WINDOW_SECONDS = 30 * 24 * 60 * 60
UPCOMING_BILLING_LIMIT = 10


def subscription_view(outcome: ReconcileOutcome[Subscription]) -> SubscriptionRead:
    view = SubscriptionRead.model_validate(outcome.record)
    if outcome.synced:
        view = view.model_copy(update={"synced": True, "culqi_data": outcome.snapshot})
    return view


def month_bounds(now: datetime) -> tuple[int, int]:
    """Epoch-second bounds [start, end) of the UTC calendar month containing ``now``."""
    start = now.astimezone(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return int(start.timestamp()), int(end.timestamp())


async def _acquire_lock(redis_client: Optional[Redis], key: str, ttl_seconds: int) -> bool:
    """Take the per-(user, plan) create lock.

    An unreachable redis does not block creation; the partial unique index on
    Active subscriptions still rejects a duplicate.
    """
    if redis_client is None:
        return True
    try:
        async with redis_client.pipeline(transaction=True) as pipe:  # type: ignore[attr-defined]
            pipe.setnx(key, 1)
            pipe.expire(key, ttl_seconds)
            created, _ = await pipe.execute()
    except RedisError as exc:
        logger.warning("subscription.lock.unavailable", key=key, error=str(exc))
        return True
    return bool(created)


async def _release_lock(redis_client: Optional[Redis], key: str) -> None:
    if redis_client is None:
        return
    try:
        await redis_client.delete(key)
    except RedisError as exc:
        # The TTL expires the key.
        logger.warning("subscription.lock.release_failed", key=key, error=str(exc))


class SubscriptionOrchestrator(MirrorSynchronizer):
    """Lifecycle of recurring subscriptions."""

    resource = "subscription"

    def __init__(
        self,
        session: AsyncSession,
        client: CulqiClient,
        settings: Optional[Settings] = None,
        redis_client: Optional[Redis] = None,
    ):
        super().__init__(session, client, settings)
        self.redis_client = redis_client
        self.customers = CustomerSynchronizer(session, client, self.settings)
        self.plans = PlanManager(session, client, self.settings)

    async def _find(self, subscription_id: str, user_id: Optional[str], *, active_only: bool) -> Subscription:
        query = select(Subscription).where(Subscription.culqi_subscription_id == subscription_id)
        if active_only:
            query = query.where(Subscription.is_active.is_(True))
        if user_id is not None:
            query = query.where(Subscription.user_id == user_id)
        result = await self.session.execute(query)
        subscription = result.scalars().first()
        if subscription is None:
            raise not_found("Subscription not found", subscription_id=subscription_id)
        return subscription

    async def _owned_card(self, customer_id: str, card_id: str) -> Optional[Card]:
        result = await self.session.execute(
            select(Card).where(
                Card.culqi_card_id == card_id,
                Card.customer_id == customer_id,
                Card.is_active.is_(True),
            )
        )
        return result.scalars().first()

    async def create(self, payload: SubscriptionCreate) -> SubscriptionRead:
        """
        Subscribe a user's stored card to a plan.

        Args:
            payload: User, remote card id, plan id or code, accepted terms

        Returns:
            SubscriptionRead carrying the status the gateway reported

        Raises:
            SyncError: NOT_FOUND for a missing customer, card or plan;
                INVALID_REQUEST for an inactive plan, an existing Active
                subscription, or a concurrent create for the same pair
        """
        customer = await self.customers.find_active(payload.user_id)
        if customer is None:
            raise not_found("Customer not found. Create a customer first.", user_id=payload.user_id)

        card = await self._owned_card(customer.id, payload.card_id)
        if card is None:
            raise not_found("Card not found or does not belong to the customer", card_id=payload.card_id)

        plan = await self.plans.find(payload.plan_id)
        if plan is None:
            raise not_found("Plan not found", plan=payload.plan_id)
        if plan.status != PlanStatus.ACTIVE:
            raise invalid_request("Plan is not active", plan=plan.code)

        lock_key = f"{LOCK_PREFIX}{payload.user_id}:{plan.id}"
        if not await _acquire_lock(self.redis_client, lock_key, self.settings.subscription_lock_ttl_seconds):
            logger.info("subscription.create.locked", user_id=payload.user_id, plan_id=plan.id)
            raise invalid_request("A subscription for this plan is already being created", plan=plan.code)
        try:
            existing = await self.session.scalar(
                select(Subscription.id).where(
                    Subscription.user_id == payload.user_id,
                    Subscription.plan_id == plan.id,
                    Subscription.status == int(SubscriptionStatus.ACTIVE),
                    Subscription.is_active.is_(True),
                )
            )
            if existing is not None:
                raise invalid_request(f"An active subscription already exists for plan: {plan.name}", plan=plan.code)

            response = await self.client.request(
                "/recurrent/subscriptions/create",
                method="POST",
                body={
                    "card_id": card.culqi_card_id,
                    "plan_id": plan.culqi_plan_id,
                    "tyc": payload.tyc,
                    "metadata": payload.metadata or {},
                },
            )
            remote = response.data
            subscription = Subscription(
                culqi_subscription_id=remote["id"],
                user_id=payload.user_id,
                user_email=payload.user_email,
                customer=customer,
                card=card,
                plan=plan,
                status=remote.get("status") or int(SubscriptionStatus.CREATED),
                terms_and_conditions=payload.tyc,
                metadata_=payload.metadata,
                culqi_creation_date=remote.get("created_at"),
            )
            try:
                await self.persist_created(subscription, remote_id=remote["id"])
            except IntegrityError as exc:
                raise invalid_request(
                    f"An active subscription already exists for plan: {plan.name}",
                    plan=plan.code,
                    culqi_subscription_id=remote["id"],
                ) from exc
        finally:
            await _release_lock(self.redis_client, lock_key)

        await self.plans.recompute_subscription_count(plan.id)
        logger.info(
            "subscription.created",
            user_id=payload.user_id,
            culqi_subscription_id=subscription.culqi_subscription_id,
            status=subscription.status,
        )
        return subscription_view(ReconcileOutcome(record=subscription))

    async def get(self, subscription_id: str, user_id: Optional[str] = None) -> SubscriptionRead:
        subscription = await self._find(subscription_id, user_id, active_only=True)
        response = await self.client.request(f"/recurrent/subscriptions/{subscription.culqi_subscription_id}")
        changed = self.reconcile(subscription, response.data)
        await self.save_changes(subscription, changed, remote_id=subscription.culqi_subscription_id)
        return subscription_view(ReconcileOutcome(record=subscription, snapshot=response.data, changed=changed))

    async def list(self, filters: Optional[SubscriptionFilters] = None) -> MirrorList[SubscriptionRead]:
        filters = filters or SubscriptionFilters()
        query = select(Subscription).join(Subscription.plan)
        if filters.status not in (SubscriptionStatus.CANCELLED, SubscriptionStatus.FINISHED):
            query = query.where(Subscription.is_active.is_(True))
        if filters.user_id:
            query = query.where(Subscription.user_id == filters.user_id)
        if filters.plan_id:
            query = query.where(
                or_(Plan.culqi_plan_id == filters.plan_id, Plan.code == normalize_plan_code(filters.plan_id))
            )
        if filters.status is not None:
            query = query.where(Subscription.status == filters.status)
        if filters.creation_date_from is not None:
            query = query.where(Subscription.culqi_creation_date >= filters.creation_date_from)
        if filters.creation_date_to is not None:
            query = query.where(Subscription.culqi_creation_date <= filters.creation_date_to)

        result = await self.session.execute(query.order_by(Subscription.created_at.desc()).limit(filters.limit))
        subscriptions = list(result.scalars().all())
        return await self.reconcile_page(
            subscriptions,
            endpoint=lambda subscription: f"/recurrent/subscriptions/{subscription.culqi_subscription_id}",
            apply=self.reconcile,
            view=subscription_view,
        )

    async def list_by_plan(self, plan_ref: str, limit: int = 50) -> MirrorList[SubscriptionRead]:
        return await self.list(SubscriptionFilters(plan_id=plan_ref, limit=limit))

    async def list_active(self, limit: int = 50) -> MirrorList[SubscriptionRead]:
        return await self.list(SubscriptionFilters(status=int(SubscriptionStatus.ACTIVE), limit=limit))

    async def list_trial(self, limit: int = 50) -> MirrorList[SubscriptionRead]:
        return await self.list(SubscriptionFilters(status=int(SubscriptionStatus.TRIAL), limit=limit))

    async def list_cancelled(self, limit: int = 50) -> MirrorList[SubscriptionRead]:
        return await self.list(SubscriptionFilters(status=int(SubscriptionStatus.CANCELLED), limit=limit))

    async def list_for_user(self, user_id: str) -> MirrorList[SubscriptionRead]:
        """The user's active subscriptions, served from the mirror only."""
        result = await self.session.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id, Subscription.is_active.is_(True))
            .order_by(Subscription.created_at.desc())
        )
        return await self.reconcile_page(
            list(result.scalars().all()),
            endpoint=lambda subscription: f"/recurrent/subscriptions/{subscription.culqi_subscription_id}",
            apply=self.reconcile,
            view=subscription_view,
            limit=0,
        )

    async def update(
        self,
        subscription_id: str,
        payload: SubscriptionUpdate,
        user_id: Optional[str] = None,
    ) -> SubscriptionRead:
        """Swap the card and/or merge metadata; nothing else is user-mutable."""
        subscription = await self._find(subscription_id, user_id, active_only=False)
        if not subscription.can_be_cancelled:
            raise invalid_request(
                "Subscription cannot be modified in its current state",
                status=subscription.status,
            )
        if payload.card_id is None and not payload.metadata:
            raise invalid_request("At least one field must be provided for update")

        body: Dict[str, Any] = {}
        new_card: Optional[Card] = None
        if payload.card_id is not None:
            new_card = await self._owned_card(subscription.customer_id, payload.card_id)
            if new_card is None:
                raise not_found("New card not found or does not belong to the customer", card_id=payload.card_id)
            body["card_id"] = payload.card_id
        if payload.metadata:
            body["metadata"] = payload.metadata

        response = await self.client.request(
            f"/recurrent/subscriptions/{subscription.culqi_subscription_id}",
            method="PATCH",
            body=body,
        )

        changed: List[str] = []
        if new_card is not None and subscription.card_id != new_card.id:
            subscription.card = new_card
            changed.append("card_id")
        if payload.metadata:
            subscription.metadata_ = merge_metadata(subscription.metadata_, payload.metadata)
            changed.append("metadata")
        await self.save_changes(subscription, changed, remote_id=subscription.culqi_subscription_id)
        logger.info("subscription.updated", culqi_subscription_id=subscription.culqi_subscription_id, fields=changed)
        view = SubscriptionRead.model_validate(subscription)
        return view.model_copy(update={"culqi_data": response.data})

    async def cancel(self, subscription_id: str, user_id: Optional[str] = None) -> DeleteResult:
        subscription = await self._find(subscription_id, user_id, active_only=False)
        if not subscription.can_be_cancelled:
            raise invalid_request(
                "Subscription cannot be cancelled in its current state",
                status=subscription.status,
            )

        response = await self.client.request(
            f"/recurrent/subscriptions/{subscription.culqi_subscription_id}", method="DELETE"
        )
        subscription.status = int(SubscriptionStatus.CANCELLED)
        subscription.cancellation_date = int(time.time())
        subscription.is_active = False
        await self.save_changes(
            subscription,
            ["status", "cancellation_date", "is_active"],
            remote_id=subscription.culqi_subscription_id,
        )
        await self.plans.recompute_subscription_count(subscription.plan_id)
        logger.info("subscription.cancelled", culqi_subscription_id=subscription.culqi_subscription_id)
        return DeleteResult(
            deleted=True,
            message=response.data.get("merchant_message") or f"Subscription {subscription_id} cancelled",
        )

    async def summary(self, now: Optional[datetime] = None) -> SubscriptionSummary:
        """Fleet-wide snapshot computed from the local mirror only; no gateway calls."""
        now = now or datetime.now(timezone.utc)
        now_ts = int(now.timestamp())

        async def count(*conditions: Any) -> int:
            return await self.session.scalar(select(func.count(Subscription.id)).where(*conditions)) or 0

        active_flag = Subscription.is_active.is_(True)
        total = await count(active_flag)
        active = await count(active_flag, Subscription.status == int(SubscriptionStatus.ACTIVE))
        trial = await count(active_flag, Subscription.status == int(SubscriptionStatus.TRIAL))
        cancelled = await count(Subscription.status == int(SubscriptionStatus.CANCELLED))

        month_start, month_end = month_bounds(now)
        amounts = await self.session.scalars(
            select(Plan.amount)
            .select_from(Subscription)
            .join(Plan, Subscription.plan_id == Plan.id)
            .where(
                active_flag,
                Subscription.status == int(SubscriptionStatus.ACTIVE),
                Subscription.culqi_creation_date >= month_start,
                Subscription.culqi_creation_date < month_end,
            )
        )
        revenue = sum((Decimal(amount) for amount in amounts), Decimal("0.00"))

        upcoming = await self.session.scalars(
            select(Subscription)
            .where(
                active_flag,
                Subscription.status == int(SubscriptionStatus.ACTIVE),
                Subscription.next_billing_date.is_not(None),
                Subscription.next_billing_date <= now_ts + UPCOMING_BILLING_WINDOW_SECONDS,
            )
            .order_by(Subscription.next_billing_date.asc())
            .limit(UPCOMING_BILLING_LIMIT)
        )
        next_billings = [
            UpcomingBilling(
                subscription_id=subscription.id,
                culqi_subscription_id=subscription.culqi_subscription_id,
                user_email=subscription.user_email,
                plan_name=subscription.plan.name,
                amount=subscription.plan.amount,
                next_billing_date=subscription.next_billing_date,
            )
            for subscription in upcoming
        ]

        return SubscriptionSummary(
            total=total,
            active=active,
            trial=trial,
            cancelled=cancelled,
            revenue_this_month=revenue,
            next_billings=next_billings,
            as_of=now_ts,
        )

    @staticmethod
    def reconcile(subscription: Subscription, remote: Dict[str, Any]) -> List[str]:
        updates: Dict[str, Any] = {}
        if remote.get("status") is not None:
            updates["status"] = remote["status"]
        if remote.get("current_period") is not None:
            updates["current_period"] = remote["current_period"]
        if "next_billing_date" in remote:
            updates["next_billing_date"] = remote["next_billing_date"]
        if remote.get("trial_start"):
            updates["trial_start"] = remote["trial_start"]
        if remote.get("trial_end"):
            updates["trial_end"] = remote["trial_end"]
        return reconcile_fields(subscription, updates)
