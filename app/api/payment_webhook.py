"""
Payment gateway endpoints.

GET  /payments/gateways           gateways a payer can choose from
POST /payments/process/{gateway}  inbound gateway callback (confirmation)

Callbacks are idempotent. The first confirmation answers 200 with the
driver's processing payload plus "status": true; a duplicate delivery of an
already completed payment answers 200 with {"status": true, "payment_id": id}
and never reaches the driver again.

Status mapping:
- UnprocessableError → 422 (callback not authentic / unknown payment)
- NotFoundError → 404 (gateway not enabled)
- retryable GatewayError → 503 (gateway timeout / transport; provider should retry)
- other GatewayError → 502
"""

import logging

from fastapi import APIRouter, Depends, Request

from app.api.errors import error_response
from app.core.exceptions import (
    GatewayError,
    NotFoundError,
    UnprocessableError,
)
from app.services.gateways.base import CallbackRequest
from app.services.gateways.registry import GatewayRegistry, get_registry
from app.services.payments import service as payment_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments")


@router.get("/gateways")
async def gateways(registry: GatewayRegistry = Depends(get_registry)):
    return {"gateways": payment_service.list_enabled_gateways(registry)}


@router.post("/process/{gateway}")
async def process(
    gateway: str,
    request: Request,
    registry: GatewayRegistry = Depends(get_registry),
):
    callback = CallbackRequest(
        headers=dict(request.headers),
        body=await request.body(),
        query=dict(request.query_params),
    )
    try:
        response = await payment_service.confirm_from_callback(gateway, callback, registry=registry)
    except UnprocessableError:
        return error_response(422, "order-can-not-be-processed")
    except NotFoundError:
        logger.warning("PAYMENT_CALLBACK_UNKNOWN_GATEWAY gateway=%s", gateway)
        return error_response(404, "gateway-not-found")
    except GatewayError as e:
        logger.error("PAYMENT_CALLBACK_GATEWAY_ERROR gateway=%s retryable=%s error=%s", gateway, e.retryable, e)
        return error_response(503 if e.retryable else 502, "gateway-unavailable")
    return response
