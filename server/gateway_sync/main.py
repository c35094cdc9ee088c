from fastapi import FastAPI

from gateway_sync.api.errors import register_exception_handlers
from gateway_sync.api.routes import cards, charges, customers, health, plans, subscriptions, tokens
from gateway_sync.core.config import get_settings
from gateway_sync.core.logging import configure_logging, get_logger
from gateway_sync.db.session import lifespan

configure_logging(get_settings().log_level)
logger = get_logger(__name__)


def create_application() -> FastAPI:
    settings = get_settings()
    application = FastAPI(title=settings.app_name, lifespan=lifespan)
    application.include_router(health.router)
    application.include_router(tokens.router)
    application.include_router(customers.router)
    application.include_router(cards.router)
    application.include_router(charges.router)
    application.include_router(plans.router)
    application.include_router(subscriptions.router)
    register_exception_handlers(application)
    return application


app = create_application()
