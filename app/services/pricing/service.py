"""
Pricing Service Layer

Resolves what a purchase request buys, who receives the money and how much
it costs. Pure reads: nothing is written here.

Amount rules:
- post / message → the entity's price
- subscription_new → the seller's subscription price, or the discounted
  price of one of the seller's bundles when bundle_id is given
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import config
import database
from app.constants.payments import BUNDLE_KEY, REFERENCE_KEYS, PaymentType
from app.core.exceptions import ForbiddenError, InvalidInputError, NotFoundError
from app.services.bundles import service as bundle_service

logger = logging.getLogger(__name__)


@dataclass
class ResolvedPurchase:
    """Outcome of purchase resolution, stored verbatim on the Payment"""
    recipient_id: int
    amount: int  # minor units
    info: Dict[str, Any]
    target_user: Optional[Dict[str, Any]] = None  # subscription_new only
    bundle: Optional[Dict[str, Any]] = field(default=None)  # with derived price


def parse_payment_type(payment_type: Any) -> PaymentType:
    try:
        return PaymentType(payment_type)
    except ValueError:
        raise InvalidInputError(f"Unknown payment type: {payment_type}") from None


def _reference_id(refs: Mapping[str, Any], key: str) -> int:
    value = refs.get(key)
    if value is None or value == "":
        raise InvalidInputError(f"{key} is required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{key} must be an integer, got {value!r}") from None


def _reject_self_purchase(payer_id: int, recipient_id: int, payment_type: PaymentType) -> None:
    if payer_id == recipient_id:
        logger.warning(f"SELF_PURCHASE_REJECTED user={payer_id} type={payment_type.value}")
        raise ForbiddenError(f"User {payer_id} cannot purchase their own {payment_type.value}")


async def _resolve_subscription(payer_id: int, refs: Mapping[str, Any]) -> ResolvedPurchase:
    sub_id = _reference_id(refs, "sub_id")
    info: Dict[str, Any] = {"sub_id": sub_id}

    target = await database.get_user(sub_id)
    if not target:
        raise NotFoundError(f"User not found: sub_id={sub_id}")
    _reject_self_purchase(payer_id, target["id"], PaymentType.SUBSCRIPTION_NEW)

    amount = target["price"] or 0
    bundle = None
    if refs.get(BUNDLE_KEY):
        bundle_id = _reference_id(refs, BUNDLE_KEY)
        info[BUNDLE_KEY] = bundle_id
        # Scoped to the seller: another seller's bundle is NotFound, not a discount
        bundle = await bundle_service.get_user_bundle(target["id"], bundle_id, owner_price=amount)
        amount = bundle["price"]

    return ResolvedPurchase(
        recipient_id=target["id"],
        amount=amount,
        info=info,
        target_user=target,
        bundle=bundle,
    )


async def _resolve_single(payer_id: int, payment_type: PaymentType, refs: Mapping[str, Any]) -> ResolvedPurchase:
    key = REFERENCE_KEYS[payment_type]
    ref_id = _reference_id(refs, key)

    if payment_type == PaymentType.POST:
        entity = await database.get_post(ref_id)
    else:
        entity = await database.get_message(ref_id)
    if not entity:
        raise NotFoundError(f"{payment_type.value} not found: {key}={ref_id}")
    _reject_self_purchase(payer_id, entity["user_id"], payment_type)

    return ResolvedPurchase(
        recipient_id=entity["user_id"],
        amount=entity["price"] or 0,
        info={key: ref_id},
    )


async def resolve_purchase(payer_id: int, payment_type: Any, refs: Mapping[str, Any]) -> ResolvedPurchase:
    """
    Determine recipient and amount of a purchase.

    Args:
        payer_id: Acting user id
        payment_type: "subscription_new" | "post" | "message"
        refs: Request fields; only the type's reference key (sub_id / post_id /
            message_id) and bundle_id (subscriptions only) are read

    Returns:
        ResolvedPurchase ready for payment creation

    Raises:
        InvalidInputError: unknown type or missing reference id
        NotFoundError: target entity or bundle does not exist
        ForbiddenError: payer is the recipient
    """
    payment_type = parse_payment_type(payment_type)
    if payment_type == PaymentType.SUBSCRIPTION_NEW:
        resolved = await _resolve_subscription(payer_id, refs)
    else:
        resolved = await _resolve_single(payer_id, payment_type, refs)

    logger.info(
        f"PURCHASE_RESOLVED payer={payer_id} type={payment_type.value} "
        f"to={resolved.recipient_id} amount={resolved.amount} info={resolved.info}"
    )
    return resolved


async def set_subscription_price(user_id: int, price: Any) -> Dict[str, Any]:
    """
    Set the seller's subscription price.

    Args:
        user_id: Seller id
        price: Price in major units (e.g. 4.99); stored in minor units

    Raises:
        InvalidInputError: price not a number or outside [0, PRICING_CAP_SUBSCRIPTION]
        NotFoundError: user does not exist
    """
    try:
        price_value = float(price)
    except (TypeError, ValueError):
        raise InvalidInputError(f"price must be a number, got {price!r}") from None
    if not 0 <= price_value <= config.PRICING_CAP_SUBSCRIPTION:
        raise InvalidInputError(
            f"price must be between 0 and {config.PRICING_CAP_SUBSCRIPTION}, got {price}"
        )

    minor = int(round(price_value * 100))
    user = await database.update_user_price(user_id, minor)
    if not user:
        raise NotFoundError(f"User not found: user_id={user_id}")
    logger.info(f"SUBSCRIPTION_PRICE_SET user={user_id} price={minor}")
    return user
