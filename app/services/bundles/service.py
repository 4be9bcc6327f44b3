"""
Bundle Service Layer

Seller-defined multi-month discount tiers. One bundle per (owner, months);
storing a bundle for an existing term updates its discount in place.

A bundle's price is never stored: it is derived on read from the owner's
current subscription price, so a price change re-prices every bundle.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import config
import database
from app.core.exceptions import ForbiddenError, InvalidInputError, NotFoundError
from app.core.structured_logger import log_event

logger = logging.getLogger(__name__)


def bundle_price(owner_price: int, discount: int) -> int:
    """
    Discounted price of a bundle in minor units.

    Truncates toward zero: 999 at 15% → 849.
    """
    return owner_price * (100 - discount) // 100


def with_price(bundle: Dict[str, Any], owner_price: int) -> Dict[str, Any]:
    """Copy of the bundle row with the derived price attached"""
    priced = dict(bundle)
    priced["price"] = bundle_price(owner_price, bundle["discount"])
    return priced


def _whole_number(name: str, value: Any) -> int:
    if isinstance(value, float) and not value.is_integer():
        raise InvalidInputError(f"{name} must be a whole number, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{name} must be an integer, got {value!r}") from None


def validate_bundle_terms(months: Any, discount: Any) -> Tuple[int, int]:
    """Coerce months and discount to int and check their ranges"""
    months = _whole_number("months", months)
    discount = _whole_number("discount", discount)
    if not config.BUNDLE_MIN_MONTHS <= months <= config.BUNDLE_MAX_MONTHS:
        raise InvalidInputError(
            f"months must be between {config.BUNDLE_MIN_MONTHS} and {config.BUNDLE_MAX_MONTHS}, got {months}"
        )
    if not 0 <= discount <= config.PRICING_CAP_DISCOUNT:
        raise InvalidInputError(
            f"discount must be between 0 and {config.PRICING_CAP_DISCOUNT}, got {discount}"
        )
    return months, discount


async def _owner_price(user_id: int) -> int:
    user = await database.get_user(user_id)
    if not user:
        raise NotFoundError(f"User not found: user_id={user_id}")
    return user["price"] or 0


async def list_bundles(user_id: int) -> List[Dict[str, Any]]:
    """All bundles of the user ordered by term, each with its derived price"""
    owner_price = await _owner_price(user_id)
    bundles = await database.get_user_bundles(user_id)
    return [with_price(b, owner_price) for b in bundles]


async def get_user_bundle(user_id: int, bundle_id: int, owner_price: Optional[int] = None) -> Dict[str, Any]:
    """
    Bundle of a specific owner, with price.

    Raises:
        NotFoundError: bundle missing or owned by someone else
    """
    bundle = await database.get_user_bundle(user_id, bundle_id)
    if not bundle:
        raise NotFoundError(f"Bundle not found: bundle_id={bundle_id}, user_id={user_id}")
    if owner_price is None:
        owner_price = await _owner_price(user_id)
    return with_price(bundle, owner_price)


async def upsert_bundle(user_id: int, months: int, discount: int) -> List[Dict[str, Any]]:
    """
    Create or update the user's bundle for `months`.

    Returns:
        The user's bundles after the write

    Raises:
        InvalidInputError: months or discount not an integer or out of range
    """
    months, discount = validate_bundle_terms(months, discount)
    bundle = await database.upsert_bundle(user_id, months, discount)
    log_event(
        logger,
        component="bundles",
        operation="upsert",
        outcome="success",
        correlation_id=bundle["id"],
        user_id=user_id,
        months=months,
        discount=discount,
    )
    return await list_bundles(user_id)


async def delete_bundle(bundle_id: int, acting_user_id: int) -> List[Dict[str, Any]]:
    """
    Delete a bundle owned by the actor.

    Returns:
        The actor's remaining bundles

    Raises:
        NotFoundError: bundle does not exist
        ForbiddenError: bundle belongs to another user
    """
    bundle = await database.get_bundle(bundle_id)
    if not bundle:
        raise NotFoundError(f"Bundle not found: bundle_id={bundle_id}")
    if bundle["user_id"] != acting_user_id:
        log_event(
            logger,
            component="bundles",
            operation="delete",
            outcome="rejected",
            correlation_id=bundle_id,
            reason="not_owner",
            level="warning",
        )
        raise ForbiddenError(f"Bundle {bundle_id} is not owned by user {acting_user_id}")

    await database.delete_bundle(bundle_id)
    log_event(
        logger,
        component="bundles",
        operation="delete",
        outcome="success",
        correlation_id=bundle_id,
        user_id=acting_user_id,
    )
    return await list_bundles(acting_user_id)
