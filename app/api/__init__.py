"""
API module: HTTP endpoints for purchases, bundles, payment methods,
gateway callbacks and health.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

import database
from app.api import payment_webhook, payments
from app.api.errors import install_error_handlers
from app.core.logging_config import setup_logging
from app.services.gateways.registry import get_registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await database.init_db()
    get_registry()
    logger.info("Payment core started")
    try:
        yield
    finally:
        await database.close_pool()


def create_app(with_lifespan: bool = True) -> FastAPI:
    api = FastAPI(lifespan=lifespan if with_lifespan else None)
    install_error_handlers(api)
    api.include_router(payment_webhook.router)
    api.include_router(payments.router)

    @api.get("/health")
    async def health():
        return JSONResponse({"status": "ok", "db_ready": database.DB_READY})

    return api


app = create_app()
