"""
Plan Manager

CRUD over recurring-billing plan templates. Plans are addressable by their
remote id or by a local upper-case ``code``; amounts are decimal major units
locally and minor units only in outbound requests.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select

from gateway_sync.core.errors import invalid_request, not_found
from gateway_sync.core.logging import get_logger
from gateway_sync.core.money import to_minor_units
from gateway_sync.models.plan import Plan, PlanStatus, normalize_plan_code, slugify_short_name
from gateway_sync.models.subscription import Subscription, SubscriptionStatus
from gateway_sync.schemas.common import DeleteResult, MirrorList
from gateway_sync.schemas.plan import PlanCreate, PlanFilters, PlanRead, PlanUpdate
from gateway_sync.services.base import MirrorSynchronizer, ReconcileOutcome, merge_metadata, reconcile_fields

logger = get_logger(__name__)

PLAN_CODE_PATTERN = re.compile(r"^[A-Z0-9_-]+$")


def plan_view(outcome: ReconcileOutcome[Plan]) -> PlanRead:
    view = PlanRead.model_validate(outcome.record)
    if outcome.synced:
        view = view.model_copy(update={"synced": True, "culqi_data": outcome.snapshot})
    return view


class PlanManager(MirrorSynchronizer):
    """Recurring-billing plans mirrored with a human-readable code alias."""

    resource = "plan"

    async def find(self, plan_ref: str) -> Optional[Plan]:
        """Active plan by remote id or (case-insensitive) code."""
        result = await self.session.execute(
            select(Plan).where(
                or_(Plan.culqi_plan_id == plan_ref, Plan.code == normalize_plan_code(plan_ref)),
                Plan.is_active.is_(True),
            )
        )
        return result.scalars().first()

    async def require(self, plan_ref: str) -> Plan:
        plan = await self.find(plan_ref)
        if plan is None:
            raise not_found("Plan not found", plan=plan_ref)
        return plan

    async def create(self, payload: PlanCreate) -> PlanRead:
        """
        Create a plan remotely and mirror it.

        The code is normalised and checked for duplicates locally first, so a
        known-duplicate code never produces an orphaned remote plan.

        Raises:
            SyncError: INVALID_REQUEST for a malformed or duplicate code
        """
        code = normalize_plan_code(payload.code)
        if not PLAN_CODE_PATTERN.match(code):
            raise invalid_request("Plan code may only contain A-Z, 0-9, '-' and '_'", code=code)
        duplicate = await self.session.scalar(select(Plan.id).where(Plan.code == code))
        if duplicate is not None:
            raise invalid_request(f"A plan with code {code} already exists", code=code)

        cycles = payload.initial_cycles
        short_name = slugify_short_name(payload.short_name)
        body: Dict[str, Any] = {
            "name": payload.name.strip(),
            "short_name": short_name,
            "description": payload.description.strip(),
            "amount": to_minor_units(payload.amount),
            "currency": payload.currency_code,
            "interval_unit_time": payload.interval_unit_time,
            "interval_count": payload.interval_count,
            "initial_cycles": {
                "count": cycles.count,
                "has_initial_charge": cycles.has_initial_charge,
                "amount": to_minor_units(cycles.amount),
                "interval_unit_time": cycles.interval_unit_time,
            },
            "image": payload.image or "",
            "metadata": payload.metadata or {},
        }
        response = await self.client.request("/recurrent/plans/create", method="POST", body=body)
        remote = response.data

        plan = Plan(
            culqi_plan_id=remote["id"],
            culqi_slug=remote.get("slug"),
            code=code,
            name=payload.name,
            short_name=short_name,
            description=payload.description,
            amount=payload.amount,
            currency_code=payload.currency_code,
            interval_unit_time=payload.interval_unit_time,
            interval_count=payload.interval_count,
            initial_cycles_count=cycles.count,
            has_initial_charge=cycles.has_initial_charge,
            initial_cycles_amount=cycles.amount,
            initial_cycles_interval_unit_time=cycles.interval_unit_time,
            image_url=payload.image,
            metadata_=payload.metadata,
            status=int(PlanStatus.ACTIVE),
            total_subscriptions=0,
        )
        await self.persist_created(plan, remote_id=remote["id"])
        logger.info("plan.created", culqi_plan_id=remote["id"], code=code)
        return plan_view(ReconcileOutcome(record=plan))

    async def get(self, plan_ref: str) -> PlanRead:
        plan = await self.require(plan_ref)
        response = await self.client.request(f"/recurrent/plans/{plan.culqi_plan_id}")
        changed = self.reconcile(plan, response.data)
        await self.save_changes(plan, changed, remote_id=plan.culqi_plan_id)
        return plan_view(ReconcileOutcome(record=plan, snapshot=response.data, changed=changed))

    async def get_by_code(self, code: str) -> PlanRead:
        return await self.get(normalize_plan_code(code))

    async def list(self, filters: Optional[PlanFilters] = None) -> MirrorList[PlanRead]:
        filters = filters or PlanFilters()
        query = select(Plan).where(Plan.is_active.is_(True))
        if filters.status is not None:
            query = query.where(Plan.status == filters.status)
        if filters.amount is not None:
            query = query.where(Plan.amount == filters.amount)
        if filters.min_amount is not None:
            query = query.where(Plan.amount >= filters.min_amount)
        if filters.max_amount is not None:
            query = query.where(Plan.amount <= filters.max_amount)
        if filters.creation_date_from is not None:
            query = query.where(Plan.culqi_creation_date >= filters.creation_date_from)
        if filters.creation_date_to is not None:
            query = query.where(Plan.culqi_creation_date <= filters.creation_date_to)
        result = await self.session.execute(query.order_by(Plan.created_at.desc()).limit(filters.limit))
        plans = list(result.scalars().all())
        return await self.reconcile_page(
            plans,
            endpoint=lambda plan: f"/recurrent/plans/{plan.culqi_plan_id}",
            apply=self.reconcile,
            view=plan_view,
        )

    async def update(self, plan_ref: str, payload: PlanUpdate) -> PlanRead:
        plan = await self.require(plan_ref)
        fields = payload.model_dump(exclude_none=True)
        if not fields:
            raise invalid_request("At least one field must be provided for update")

        body: Dict[str, Any] = {}
        if payload.name:
            body["name"] = payload.name.strip()
        if payload.short_name:
            body["short_name"] = slugify_short_name(payload.short_name)
        if payload.description:
            body["description"] = payload.description.strip()
        if payload.status is not None:
            body["status"] = payload.status
        if payload.image:
            body["image"] = payload.image
        if payload.metadata:
            body["metadata"] = payload.metadata

        response = await self.client.request(
            f"/recurrent/plans/{plan.culqi_plan_id}", method="PATCH", body=body
        )

        local: Dict[str, Any] = {key: value for key, value in body.items() if key not in ("image", "metadata")}
        if payload.image:
            local["image_url"] = payload.image
        changed = reconcile_fields(plan, local)
        if payload.metadata:
            plan.metadata_ = merge_metadata(plan.metadata_, payload.metadata)
            changed.append("metadata")
        await self.save_changes(plan, changed, remote_id=plan.culqi_plan_id)
        logger.info("plan.updated", culqi_plan_id=plan.culqi_plan_id, fields=sorted(fields))
        view = PlanRead.model_validate(plan)
        return view.model_copy(update={"culqi_data": response.data})

    async def delete(self, plan_ref: str) -> DeleteResult:
        plan = await self.require(plan_ref)
        if plan.total_subscriptions > 0:
            raise invalid_request(
                "Cannot delete a plan with active subscriptions",
                total_subscriptions=plan.total_subscriptions,
            )
        response = await self.client.request(f"/recurrent/plans/{plan.culqi_plan_id}", method="DELETE")
        plan.is_active = False
        plan.status = int(PlanStatus.INACTIVE)
        await self.save_changes(plan, ["is_active", "status"], remote_id=plan.culqi_plan_id)
        logger.info("plan.deleted", culqi_plan_id=plan.culqi_plan_id, code=plan.code)
        return DeleteResult(
            deleted=True,
            message=response.data.get("merchant_message") or f"Plan {plan_ref} deleted",
        )

    async def activate(self, plan_ref: str) -> PlanRead:
        return await self.update(plan_ref, PlanUpdate(status=int(PlanStatus.ACTIVE)))

    async def deactivate(self, plan_ref: str) -> PlanRead:
        return await self.update(plan_ref, PlanUpdate(status=int(PlanStatus.INACTIVE)))

    async def recompute_subscription_count(self, plan_id: str) -> Optional[int]:
        """
        Recount Active subscriptions for a plan and store the result.

        Runs inside a savepoint and never raises: a failure is logged and
        reported as ``None`` so the calling operation is not aborted.

        Args:
            plan_id: Local plan id

        Returns:
            The new count, or None if the recompute failed
        """
        try:
            async with self.session.begin_nested():
                count = await self.session.scalar(
                    select(func.count(Subscription.id)).where(
                        Subscription.plan_id == plan_id,
                        Subscription.status == int(SubscriptionStatus.ACTIVE),
                        Subscription.is_active.is_(True),
                    )
                )
                plan = await self.session.get(Plan, plan_id)
                if plan is None:
                    raise LookupError(f"plan {plan_id} missing")
                plan.total_subscriptions = count or 0
            logger.info("plan.subscription_count.recomputed", plan_id=plan_id, total=plan.total_subscriptions)
            return plan.total_subscriptions
        except Exception as exc:
            logger.warning("plan.subscription_count.failed", plan_id=plan_id, error=str(exc))
            return None

    @staticmethod
    def reconcile(plan: Plan, remote: Dict[str, Any]) -> List[str]:
        updates: Dict[str, Any] = {}
        for local_name, remote_name in (
            ("total_subscriptions", "total_subscriptions"),
            ("status", "status"),
            ("culqi_creation_date", "creation_date"),
        ):
            if remote.get(remote_name) is not None:
                updates[local_name] = remote[remote_name]
        return reconcile_fields(plan, updates)
