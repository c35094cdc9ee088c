from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from gateway_sync.core.errors import ErrorKind, SyncError
from gateway_sync.core.logging import get_logger

logger = get_logger(__name__)


async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    if exc.kind is ErrorKind.AUTH_MISCONFIGURED:
        logger.critical("gateway.auth_misconfigured", path=request.url.path, message=exc.message)
    else:
        logger.info(
            "request.failed",
            path=request.url.path,
            kind=exc.kind.value,
            tracking_id=exc.tracking_id,
        )
    return JSONResponse(status_code=exc.kind.http_status, content={"error": exc.to_dict()})


def register_exception_handlers(application: FastAPI) -> None:
    application.add_exception_handler(SyncError, sync_error_handler)  # type: ignore[arg-type]
