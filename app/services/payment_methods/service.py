"""
Payment Method Service Layer

Stored payment instruments (cards) of a user.

Invariant: a user with at least one method has exactly one main method.

Every read-modify-write on a user's methods runs in one transaction holding
the owner's advisory lock (database.lock_payment_methods), so concurrent
set-main / create / delete calls of the same owner are serialized and the
invariant holds after each commit.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

import config
import database
from app.core.exceptions import (
    ForbiddenError,
    NotFoundError,
    UnconfiguredError,
    UnprocessableError,
)
from app.core.structured_logger import log_event
from app.services.gateways.base import call_driver
from app.services.gateways.registry import GatewayRegistry, get_registry

logger = logging.getLogger(__name__)


async def _get_owned_method(method_id: int, acting_user_id: int, operation: str) -> Dict[str, Any]:
    method = await database.get_payment_method(method_id)
    if not method:
        raise NotFoundError(f"Payment method not found: method_id={method_id}")
    if method["user_id"] != acting_user_id:
        log_event(
            logger,
            component="payment_methods",
            operation=operation,
            outcome="rejected",
            correlation_id=method_id,
            reason="not_owner",
            level="warning",
        )
        raise ForbiddenError(f"Payment method {method_id} is not owned by user {acting_user_id}")
    return method


async def list_methods(user_id: int) -> List[Dict[str, Any]]:
    """All payment methods of the user, each with its main flag"""
    return await database.get_payment_methods(user_id)


async def set_main_method(method_id: int, acting_user_id: int) -> List[Dict[str, Any]]:
    """
    Make one method the owner's main method.

    Sweeps every method of the owner (main = id == method_id) instead of
    swapping two rows, which also repairs any earlier inconsistency.

    Returns:
        The owner's methods after the change

    Raises:
        NotFoundError: method does not exist (or was deleted meanwhile)
        ForbiddenError: method belongs to another user
    """
    method = await _get_owned_method(method_id, acting_user_id, "set_main")
    owner_id = method["user_id"]

    async with database.transaction() as conn:
        await database.lock_payment_methods(owner_id, conn)
        methods = await database.get_payment_methods(owner_id, conn=conn)
        if not any(m["id"] == method_id for m in methods):
            raise NotFoundError(f"Payment method not found: method_id={method_id}")
        for m in methods:
            main = m["id"] == method_id
            if m["main"] != main:
                await database.set_payment_method_main(m["id"], main, conn=conn)
        result = await database.get_payment_methods(owner_id, conn=conn)

    logger.info(f"PAYMENT_METHOD_MAIN_SET user={owner_id} method_id={method_id}")
    return result


async def create_method(
    user_id: int,
    raw_input: Mapping[str, Any],
    title: Optional[str] = None,
    *,
    registry: Optional[GatewayRegistry] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Store a card through the card driver.

    The new method becomes main iff the user has no main method yet.

    Args:
        user_id: Owner
        raw_input: Onboarding fields as received (token, setup intent id...)
        title: User-facing label

    Raises:
        UnconfiguredError: no card driver enabled (nothing written)
        NotFoundError: user does not exist
        UnprocessableError: the driver could not produce card info (nothing written)
        GatewayError: driver call timed out or failed
    """
    registry = registry or get_registry()
    driver = registry.cc_driver()
    if driver is None:
        logger.error("CC_DRIVER_NOT_SET payment method creation rejected")
        raise UnconfiguredError("Card driver is not configured")

    user = await database.get_user(user_id)
    if not user:
        raise NotFoundError(f"User not found: user_id={user_id}")

    info = await call_driver(
        driver.extract_card_info(raw_input, user),
        gateway=driver.id,
        operation="extract_card_info",
        timeout=config.GATEWAY_TIMEOUT if timeout is None else timeout,
    )
    if not info:
        log_event(
            logger,
            component="payment_methods",
            operation="create",
            outcome="rejected",
            reason="card_info_unavailable",
            level="warning",
            user_id=user_id,
            gateway=driver.id,
        )
        raise UnprocessableError("Payment method could not be stored")

    async with database.transaction() as conn:
        await database.lock_payment_methods(user_id, conn)
        has_main = await database.get_main_payment_method(user_id, conn=conn) is not None
        method = await database.create_payment_method(
            user_id=user_id,
            method_type=database.PAYMENT_METHOD_TYPE_CARD,
            info=info,
            title=title,
            main=not has_main,
            conn=conn,
        )

    log_event(
        logger,
        component="payment_methods",
        operation="create",
        outcome="success",
        correlation_id=method["id"],
        user_id=user_id,
        main=method["main"],
    )
    return method


async def delete_method(method_id: int, acting_user_id: int) -> List[Dict[str, Any]]:
    """
    Delete a payment method; promote the oldest remaining one if main was removed.

    Returns:
        The owner's remaining methods

    Raises:
        NotFoundError: method does not exist
        ForbiddenError: method belongs to another user
    """
    method = await _get_owned_method(method_id, acting_user_id, "delete")
    owner_id = method["user_id"]
    promoted = None

    async with database.transaction() as conn:
        await database.lock_payment_methods(owner_id, conn)
        await database.delete_payment_method(method_id, conn=conn)
        if await database.get_main_payment_method(owner_id, conn=conn) is None:
            remaining = await database.get_payment_methods(owner_id, conn=conn)
            if remaining:
                promoted = remaining[0]["id"]
                await database.set_payment_method_main(promoted, True, conn=conn)
        result = await database.get_payment_methods(owner_id, conn=conn)

    log_event(
        logger,
        component="payment_methods",
        operation="delete",
        outcome="success",
        correlation_id=method_id,
        user_id=owner_id,
        promoted=promoted,
    )
    return result
