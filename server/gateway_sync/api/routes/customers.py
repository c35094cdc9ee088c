from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from gateway_sync.api.dependencies.database import get_db
from gateway_sync.api.dependencies.gateway import get_gateway_client
from gateway_sync.integrations.culqi import CulqiClient
from gateway_sync.schemas.common import DeleteResult
from gateway_sync.schemas.customer import CustomerCreate, CustomerDetail, CustomerUpdate
from gateway_sync.services.customer_service import CustomerSynchronizer

router = APIRouter(prefix="/customers", tags=["customers"])


def get_customer_service(
    session: AsyncSession = Depends(get_db),
    client: CulqiClient = Depends(get_gateway_client),
) -> CustomerSynchronizer:
    return CustomerSynchronizer(session, client)


@router.post("", response_model=CustomerDetail, status_code=status.HTTP_201_CREATED)
async def create_customer_endpoint(
    payload: CustomerCreate,
    service: CustomerSynchronizer = Depends(get_customer_service),
) -> CustomerDetail:
    customer = await service.create(payload)
    await service.session.commit()
    return customer


@router.get("/{user_id}", response_model=CustomerDetail)
async def get_customer_endpoint(
    user_id: str,
    service: CustomerSynchronizer = Depends(get_customer_service),
) -> CustomerDetail:
    customer = await service.get(user_id)
    await service.session.commit()
    return customer


@router.patch("/{user_id}", response_model=CustomerDetail)
async def update_customer_endpoint(
    user_id: str,
    payload: CustomerUpdate,
    service: CustomerSynchronizer = Depends(get_customer_service),
) -> CustomerDetail:
    customer = await service.update(user_id, payload)
    await service.session.commit()
    return customer


@router.delete("/{user_id}", response_model=DeleteResult)
async def delete_customer_endpoint(
    user_id: str,
    service: CustomerSynchronizer = Depends(get_customer_service),
) -> DeleteResult:
    result = await service.delete(user_id)
    await service.session.commit()
    return result
