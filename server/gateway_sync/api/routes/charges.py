from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from gateway_sync.api.dependencies.database import get_db
from gateway_sync.api.dependencies.gateway import get_gateway_client
from gateway_sync.integrations.culqi import ChallengeRequired, CulqiClient
from gateway_sync.schemas.charge import ChargeCreate, ChargeRead, ChargeUpdate
from gateway_sync.schemas.common import MirrorList
from gateway_sync.services.charge_service import ChargeSynchronizer

router = APIRouter(prefix="/charges", tags=["charges"])


def get_charge_service(
    session: AsyncSession = Depends(get_db),
    client: CulqiClient = Depends(get_gateway_client),
) -> ChargeSynchronizer:
    return ChargeSynchronizer(session, client)


@router.post("", response_model=None, status_code=status.HTTP_201_CREATED)
async def create_charge_endpoint(
    payload: ChargeCreate,
    response: Response,
    service: ChargeSynchronizer = Depends(get_charge_service),
) -> ChargeRead | dict[str, Any]:
    result = await service.create(payload)
    if isinstance(result, ChallengeRequired):
        response.status_code = status.HTTP_200_OK
        return result.payload
    await service.session.commit()
    return result


@router.get("", response_model=MirrorList[ChargeRead])
async def list_user_charges_endpoint(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    service: ChargeSynchronizer = Depends(get_charge_service),
) -> MirrorList[ChargeRead]:
    charges = await service.list_for_user(user_id, limit=limit, offset=offset)
    await service.session.commit()
    return charges


@router.get("/{charge_id}", response_model=ChargeRead)
async def get_charge_endpoint(
    charge_id: str,
    user_id: str | None = None,
    service: ChargeSynchronizer = Depends(get_charge_service),
) -> ChargeRead:
    charge = await service.get(charge_id, user_id)
    await service.session.commit()
    return charge


@router.patch("/{charge_id}", response_model=ChargeRead)
async def update_charge_endpoint(
    charge_id: str,
    payload: ChargeUpdate,
    service: ChargeSynchronizer = Depends(get_charge_service),
) -> ChargeRead:
    charge = await service.update(charge_id, payload)
    await service.session.commit()
    return charge


@router.post("/{charge_id}/capture", response_model=ChargeRead)
async def capture_charge_endpoint(
    charge_id: str,
    service: ChargeSynchronizer = Depends(get_charge_service),
) -> ChargeRead:
    charge = await service.capture(charge_id)
    await service.session.commit()
    return charge
