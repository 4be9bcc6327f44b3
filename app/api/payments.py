"""
User-facing payment endpoints.

POST   /payments                       purchase (subscription_new / post / message)
PUT    /payments/price                 set own subscription price (major units)
POST   /payments/bundles               create or update own bundle for a term
DELETE /payments/bundles/{bundle_id}   delete own bundle
GET    /payments/methods               own payment methods
POST   /payments/methods               store a card through the card driver
PUT    /payments/methods/{id}/main     make a method the main one
DELETE /payments/methods/{id}          delete a method

The acting user comes from get_current_user_id. Authentication is not part
of this service: the default reads the X-User-Id header set by the gateway in
front of it, and deployments (and tests) override the dependency.

Domain errors are mapped to HTTP statuses by app.api.errors.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException
from pydantic import BaseModel

from app.services.bundles import service as bundle_service
from app.services.gateways.registry import GatewayRegistry, get_registry
from app.services.payment_methods import service as payment_method_service
from app.services.payments import service as payment_service
from app.services.pricing import service as pricing_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments")


def get_current_user_id(x_user_id: Optional[int] = Header(None)) -> int:
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Unauthenticated")
    return x_user_id


class PurchaseRequest(BaseModel):
    gateway: str
    type: str
    sub_id: Optional[int] = None
    post_id: Optional[int] = None
    message_id: Optional[int] = None
    bundle_id: Optional[int] = None


class PriceRequest(BaseModel):
    """Price in major units; stored ×100"""
    price: float


class BundleRequest(BaseModel):
    months: int
    discount: int


@router.post("")
async def store(
    body: PurchaseRequest,
    user_id: int = Depends(get_current_user_id),
    registry: GatewayRegistry = Depends(get_registry),
):
    refs = body.model_dump(exclude_none=True, exclude={"gateway", "type"})
    return await payment_service.purchase(user_id, body.type, body.gateway, refs, registry=registry)


@router.put("/price")
async def price(body: PriceRequest, user_id: int = Depends(get_current_user_id)):
    return await pricing_service.set_subscription_price(user_id, body.price)


@router.post("/bundles")
async def bundle_store(body: BundleRequest, user_id: int = Depends(get_current_user_id)):
    bundles = await bundle_service.upsert_bundle(user_id, body.months, body.discount)
    return {"bundles": bundles}


@router.delete("/bundles/{bundle_id}")
async def bundle_destroy(bundle_id: int, user_id: int = Depends(get_current_user_id)):
    bundles = await bundle_service.delete_bundle(bundle_id, user_id)
    return {"bundles": bundles}


@router.get("/methods")
async def method_index(user_id: int = Depends(get_current_user_id)):
    return {"methods": await payment_method_service.list_methods(user_id)}


@router.post("/methods")
async def method_store(
    raw_input: Dict[str, Any] = Body(...),
    user_id: int = Depends(get_current_user_id),
    registry: GatewayRegistry = Depends(get_registry),
):
    # Everything except the label is driver input (token, setup intent...)
    title = raw_input.pop("title", None)
    return await payment_method_service.create_method(user_id, raw_input, title, registry=registry)


@router.put("/methods/{method_id}/main")
async def method_main(method_id: int, user_id: int = Depends(get_current_user_id)):
    return {"methods": await payment_method_service.set_main_method(method_id, user_id)}


@router.delete("/methods/{method_id}")
async def method_destroy(method_id: int, user_id: int = Depends(get_current_user_id)):
    return {"methods": await payment_method_service.delete_method(method_id, user_id)}
