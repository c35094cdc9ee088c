from typing import Any

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from gateway_sync.api.dependencies.database import get_db
from gateway_sync.api.dependencies.gateway import get_gateway_client
from gateway_sync.integrations.culqi import ChallengeRequired, CulqiClient
from gateway_sync.schemas.card import CardCreate, CardRead, CardUpdate
from gateway_sync.schemas.common import DeleteResult, MirrorList
from gateway_sync.services.card_service import CardSynchronizer

router = APIRouter(prefix="/cards", tags=["cards"])


def get_card_service(
    session: AsyncSession = Depends(get_db),
    client: CulqiClient = Depends(get_gateway_client),
) -> CardSynchronizer:
    return CardSynchronizer(session, client)


@router.post("", response_model=None, status_code=status.HTTP_201_CREATED)
async def create_card_endpoint(
    payload: CardCreate,
    response: Response,
    service: CardSynchronizer = Depends(get_card_service),
) -> CardRead | dict[str, Any]:
    result = await service.create(payload)
    if isinstance(result, ChallengeRequired):
        # 3-D Secure: nothing was stored, the caller resubmits with authentication_3DS.
        response.status_code = status.HTTP_200_OK
        return result.payload
    await service.session.commit()
    return result


@router.get("", response_model=MirrorList[CardRead])
async def list_cards_endpoint(
    user_id: str,
    service: CardSynchronizer = Depends(get_card_service),
) -> MirrorList[CardRead]:
    cards = await service.list(user_id)
    await service.session.commit()
    return cards


@router.get("/{card_id}", response_model=CardRead)
async def get_card_endpoint(
    card_id: str,
    user_id: str,
    service: CardSynchronizer = Depends(get_card_service),
) -> CardRead:
    card = await service.get(user_id, card_id)
    await service.session.commit()
    return card


@router.patch("/{card_id}", response_model=CardRead)
async def update_card_endpoint(
    card_id: str,
    user_id: str,
    payload: CardUpdate,
    service: CardSynchronizer = Depends(get_card_service),
) -> CardRead:
    card = await service.update(user_id, card_id, payload)
    await service.session.commit()
    return card


@router.delete("/{card_id}", response_model=DeleteResult)
async def delete_card_endpoint(
    card_id: str,
    user_id: str,
    service: CardSynchronizer = Depends(get_card_service),
) -> DeleteResult:
    result = await service.delete(user_id, card_id)
    await service.session.commit()
    return result
