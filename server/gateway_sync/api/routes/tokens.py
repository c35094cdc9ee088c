from fastapi import APIRouter, Depends

from gateway_sync.api.dependencies.gateway import get_gateway_client
from gateway_sync.integrations.culqi import CulqiClient
from gateway_sync.schemas.token import TokenValidation
from gateway_sync.services.token_service import TokenValidator

router = APIRouter(prefix="/tokens", tags=["tokens"])


@router.get("/{token_id}/validate", response_model=TokenValidation)
async def validate_token_endpoint(
    token_id: str,
    client: CulqiClient = Depends(get_gateway_client),
) -> TokenValidation:
    return await TokenValidator(client).validate(token_id)
