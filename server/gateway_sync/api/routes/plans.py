from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from gateway_sync.api.dependencies.database import get_db
from gateway_sync.api.dependencies.gateway import get_gateway_client
from gateway_sync.integrations.culqi import CulqiClient
from gateway_sync.schemas.common import DeleteResult, MirrorList
from gateway_sync.schemas.plan import PlanCreate, PlanFilters, PlanRead, PlanUpdate
from gateway_sync.services.plan_service import PlanManager

router = APIRouter(prefix="/plans", tags=["plans"])


def get_plan_manager(
    session: AsyncSession = Depends(get_db),
    client: CulqiClient = Depends(get_gateway_client),
) -> PlanManager:
    return PlanManager(session, client)


@router.post("", response_model=PlanRead, status_code=status.HTTP_201_CREATED)
async def create_plan_endpoint(
    payload: PlanCreate,
    manager: PlanManager = Depends(get_plan_manager),
) -> PlanRead:
    plan = await manager.create(payload)
    await manager.session.commit()
    return plan


@router.get("", response_model=MirrorList[PlanRead])
async def list_plans_endpoint(
    filters: PlanFilters = Depends(),
    manager: PlanManager = Depends(get_plan_manager),
) -> MirrorList[PlanRead]:
    plans = await manager.list(filters)
    await manager.session.commit()
    return plans


@router.get("/by-code/{code}", response_model=PlanRead)
async def get_plan_by_code_endpoint(
    code: str,
    manager: PlanManager = Depends(get_plan_manager),
) -> PlanRead:
    plan = await manager.get_by_code(code)
    await manager.session.commit()
    return plan


@router.get("/{plan_ref}", response_model=PlanRead)
async def get_plan_endpoint(
    plan_ref: str,
    manager: PlanManager = Depends(get_plan_manager),
) -> PlanRead:
    plan = await manager.get(plan_ref)
    await manager.session.commit()
    return plan


@router.patch("/{plan_ref}", response_model=PlanRead)
async def update_plan_endpoint(
    plan_ref: str,
    payload: PlanUpdate,
    manager: PlanManager = Depends(get_plan_manager),
) -> PlanRead:
    plan = await manager.update(plan_ref, payload)
    await manager.session.commit()
    return plan


@router.delete("/{plan_ref}", response_model=DeleteResult)
async def delete_plan_endpoint(
    plan_ref: str,
    manager: PlanManager = Depends(get_plan_manager),
) -> DeleteResult:
    result = await manager.delete(plan_ref)
    await manager.session.commit()
    return result


@router.post("/{plan_ref}/activate", response_model=PlanRead)
async def activate_plan_endpoint(
    plan_ref: str,
    manager: PlanManager = Depends(get_plan_manager),
) -> PlanRead:
    plan = await manager.activate(plan_ref)
    await manager.session.commit()
    return plan


@router.post("/{plan_ref}/deactivate", response_model=PlanRead)
async def deactivate_plan_endpoint(
    plan_ref: str,
    manager: PlanManager = Depends(get_plan_manager),
) -> PlanRead:
    plan = await manager.deactivate(plan_ref)
    await manager.session.commit()
    return plan


@router.post("/{plan_ref}/recount")
async def recount_plan_subscriptions_endpoint(
    plan_ref: str,
    manager: PlanManager = Depends(get_plan_manager),
) -> dict[str, int | str | None]:
    plan = await manager.require(plan_ref)
    total = await manager.recompute_subscription_count(plan.id)
    await manager.session.commit()
    return {"plan_id": plan.culqi_plan_id, "total_subscriptions": total}
