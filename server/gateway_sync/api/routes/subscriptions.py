from fastapi import APIRouter, Depends, Query, status
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from gateway_sync.api.dependencies.database import get_db
from gateway_sync.api.dependencies.gateway import get_gateway_client
from gateway_sync.api.dependencies.redis import get_redis_client
from gateway_sync.integrations.culqi import CulqiClient
from gateway_sync.schemas.common import DeleteResult, MirrorList
from gateway_sync.schemas.subscription import (
    SubscriptionCreate,
    SubscriptionFilters,
    SubscriptionRead,
    SubscriptionSummary,
    SubscriptionUpdate,
)
from gateway_sync.services.subscription_service import SubscriptionOrchestrator

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


def get_orchestrator(
    session: AsyncSession = Depends(get_db),
    client: CulqiClient = Depends(get_gateway_client),
    redis_client: Redis | None = Depends(get_redis_client),
) -> SubscriptionOrchestrator:
    return SubscriptionOrchestrator(session, client, redis_client=redis_client)


@router.post("", response_model=SubscriptionRead, status_code=status.HTTP_201_CREATED)
async def create_subscription_endpoint(
    payload: SubscriptionCreate,
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
) -> SubscriptionRead:
    subscription = await orchestrator.create(payload)
    await orchestrator.session.commit()
    return subscription


@router.get("", response_model=MirrorList[SubscriptionRead])
async def list_subscriptions_endpoint(
    filters: SubscriptionFilters = Depends(),
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
) -> MirrorList[SubscriptionRead]:
    subscriptions = await orchestrator.list(filters)
    await orchestrator.session.commit()
    return subscriptions


@router.get("/summary", response_model=SubscriptionSummary)
async def subscription_summary_endpoint(
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
) -> SubscriptionSummary:
    return await orchestrator.summary()


@router.get("/active", response_model=MirrorList[SubscriptionRead])
async def list_active_subscriptions_endpoint(
    limit: int = Query(default=50, ge=1, le=100),
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
) -> MirrorList[SubscriptionRead]:
    subscriptions = await orchestrator.list_active(limit)
    await orchestrator.session.commit()
    return subscriptions


@router.get("/trial", response_model=MirrorList[SubscriptionRead])
async def list_trial_subscriptions_endpoint(
    limit: int = Query(default=50, ge=1, le=100),
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
) -> MirrorList[SubscriptionRead]:
    subscriptions = await orchestrator.list_trial(limit)
    await orchestrator.session.commit()
    return subscriptions


@router.get("/cancelled", response_model=MirrorList[SubscriptionRead])
async def list_cancelled_subscriptions_endpoint(
    limit: int = Query(default=50, ge=1, le=100),
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
) -> MirrorList[SubscriptionRead]:
    subscriptions = await orchestrator.list_cancelled(limit)
    await orchestrator.session.commit()
    return subscriptions


@router.get("/by-plan/{plan_ref}", response_model=MirrorList[SubscriptionRead])
async def list_plan_subscriptions_endpoint(
    plan_ref: str,
    limit: int = Query(default=50, ge=1, le=100),
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
) -> MirrorList[SubscriptionRead]:
    subscriptions = await orchestrator.list_by_plan(plan_ref, limit)
    await orchestrator.session.commit()
    return subscriptions


@router.get("/users/{user_id}", response_model=MirrorList[SubscriptionRead])
async def list_user_subscriptions_endpoint(
    user_id: str,
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
) -> MirrorList[SubscriptionRead]:
    return await orchestrator.list_for_user(user_id)


@router.get("/{subscription_id}", response_model=SubscriptionRead)
async def get_subscription_endpoint(
    subscription_id: str,
    user_id: str | None = None,
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
) -> SubscriptionRead:
    subscription = await orchestrator.get(subscription_id, user_id)
    await orchestrator.session.commit()
    return subscription


@router.patch("/{subscription_id}", response_model=SubscriptionRead)
async def update_subscription_endpoint(
    subscription_id: str,
    payload: SubscriptionUpdate,
    user_id: str | None = None,
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
) -> SubscriptionRead:
    subscription = await orchestrator.update(subscription_id, payload, user_id)
    await orchestrator.session.commit()
    return subscription


@router.delete("/{subscription_id}", response_model=DeleteResult)
async def cancel_subscription_endpoint(
    subscription_id: str,
    user_id: str | None = None,
    orchestrator: SubscriptionOrchestrator = Depends(get_orchestrator),
) -> DeleteResult:
    result = await orchestrator.cancel(subscription_id, user_id)
    await orchestrator.session.commit()
    return result
