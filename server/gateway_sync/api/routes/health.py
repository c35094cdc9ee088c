from fastapi import APIRouter

from gateway_sync.core.config import get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_endpoint() -> dict[str, str]:
    settings = get_settings()
    return {"status": "ok", "environment": settings.environment}
