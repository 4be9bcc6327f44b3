"""
Payment Service Layer

Creates payment records, dispatches them to gateway drivers and completes
them on confirmed gateway callbacks.

State machine per payment:
    pending --(gateway confirms)--> complete      (terminal)

EXTERNAL DEPENDENCIES POLICY:
- Every driver call is bounded by a timeout (config.GATEWAY_TIMEOUT unless the
  caller passes one)
- Timeout / transport failure → GatewayTimeoutError / GatewayUnavailableError (retryable)
- Dispatch failure leaves the payment pending for reconciliation; it is never
  rolled back and never completed
- Confirmation is idempotent: the payment row is locked, an already complete
  payment short-circuits without touching the gateway again
"""

import logging
from typing import Any, Dict, Mapping, Optional

import config
import database
from app.constants.payments import PaymentStatus, PaymentType
from app.core.exceptions import (
    ConflictError,
    PaymentServiceError,
    UnprocessableError,
)
from app.core.structured_logger import elapsed_ms, log_event
from app.services.gateways.base import CallbackRequest, call_driver
from app.services.gateways.registry import GatewayRegistry, get_registry
from app.services.pricing import service as pricing_service
from app.services.pricing.service import ResolvedPurchase

logger = logging.getLogger(__name__)


def _timeout(timeout: Optional[float]) -> float:
    return config.GATEWAY_TIMEOUT if timeout is None else timeout


async def create_and_dispatch(
    payer_id: int,
    payment_type: Any,
    gateway_id: str,
    resolved: ResolvedPurchase,
    *,
    registry: Optional[GatewayRegistry] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Persist a pending payment and hand it to the gateway.

    Args:
        payer_id: Acting user id
        payment_type: Purchase type
        gateway_id: Enabled gateway id
        resolved: Output of pricing_service.resolve_purchase, stored verbatim
        registry: Gateway registry (process registry by default)
        timeout: Driver call timeout in seconds

    Returns:
        The driver's response, unchanged (redirect URL, invoice, client secret...)

    Raises:
        GatewayNotFoundError: gateway not enabled (nothing written)
        GatewayError: driver call failed (payment stays pending)
    """
    registry = registry or get_registry()
    payment_type = pricing_service.parse_payment_type(payment_type)
    registry.ensure_enabled(gateway_id)
    driver = registry.driver(gateway_id)

    payment = await database.create_payment(
        user_id=payer_id,
        to_id=resolved.recipient_id,
        payment_type=payment_type.value,
        info=resolved.info,
        amount=resolved.amount,
        gateway=driver.id,
    )
    logger.info(
        f"PAYMENT_CREATED payment_id={payment['id']} payer={payer_id} to={resolved.recipient_id} "
        f"type={payment_type.value} amount={resolved.amount} gateway={driver.id}"
    )

    if payment_type == PaymentType.SUBSCRIPTION_NEW:
        operation = "subscribe"
        call = driver.subscribe(payment, resolved.target_user, resolved.bundle)
    else:
        operation = "buy"
        call = driver.buy(payment)

    with elapsed_ms() as duration:
        try:
            response = await call_driver(
                call,
                gateway=driver.id,
                operation=operation,
                timeout=_timeout(timeout),
            )
        except PaymentServiceError as e:
            log_event(
                logger,
                component="payments",
                operation=operation,
                outcome="failed",
                correlation_id=payment["id"],
                duration_ms=duration(),
                reason=type(e).__name__,
                level="error",
                gateway=driver.id,
                retryable=e.retryable,
            )
            raise

    log_event(
        logger,
        component="payments",
        operation=operation,
        outcome="success",
        correlation_id=payment["id"],
        duration_ms=duration(),
        gateway=driver.id,
    )
    return response


async def purchase(
    payer_id: int,
    payment_type: Any,
    gateway_id: str,
    refs: Mapping[str, Any],
    *,
    registry: Optional[GatewayRegistry] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Resolve, record and dispatch a purchase in one call.

    The gateway is checked before resolution so an unknown gateway never
    costs an entity lookup, let alone a payment row.
    """
    registry = registry or get_registry()
    registry.ensure_enabled(gateway_id)
    resolved = await pricing_service.resolve_purchase(payer_id, payment_type, refs)
    return await create_and_dispatch(
        payer_id,
        payment_type,
        gateway_id,
        resolved,
        registry=registry,
        timeout=timeout,
    )


async def confirm_from_callback(
    gateway_id: str,
    request: CallbackRequest,
    *,
    registry: Optional[GatewayRegistry] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Complete the payment referenced by an inbound gateway callback.

    Safe under duplicate and concurrent delivery: the payment row is locked
    for the whole confirmation, so process_payment runs at most once per
    payment. A repeated confirmation returns success without calling the
    gateway.

    Returns:
        Processing payload with "status": True

    Raises:
        GatewayNotFoundError: gateway not enabled
        UnprocessableError: callback not authentic or not mapped to a payment of this gateway
        GatewayError: processing failed; payment stays pending, caller may retry
    """
    registry = registry or get_registry()
    driver = registry.driver(gateway_id)
    timeout = _timeout(timeout)

    payment_id = await call_driver(
        driver.validate_callback(request),
        gateway=driver.id,
        operation="validate_callback",
        timeout=timeout,
    )
    if payment_id is None:
        log_event(
            logger,
            component="payments",
            operation="confirm",
            outcome="rejected",
            reason="callback_not_recognized",
            level="warning",
            gateway=driver.id,
        )
        raise UnprocessableError("Order can not be processed")

    with elapsed_ms() as duration:
        async with database.transaction() as conn:
            payment = await database.get_payment_for_update(payment_id, conn)
            if payment is None or payment["gateway"] != driver.id:
                log_event(
                    logger,
                    component="payments",
                    operation="confirm",
                    outcome="rejected",
                    correlation_id=payment_id,
                    reason="payment_not_found" if payment is None else "gateway_mismatch",
                    level="warning",
                    gateway=driver.id,
                )
                raise UnprocessableError("Order can not be processed")

            if payment["status"] == PaymentStatus.COMPLETE.value:
                logger.info(f"PAYMENT_ALREADY_COMPLETE payment_id={payment_id} gateway={driver.id}")
                return {"status": True, "payment_id": payment_id}

            response = await call_driver(
                registry.process_payment(payment),
                gateway=driver.id,
                operation="process_payment",
                timeout=timeout,
            )

            if not await database.complete_payment(payment_id, conn=conn):
                # Unreachable while the row lock is held
                raise ConflictError(f"Payment {payment_id} left pending state concurrently")

    response["status"] = True
    logger.info(
        f"PAYMENT_COMPLETED payment_id={payment_id} gateway={driver.id} "
        f"amount={payment['amount']} to={payment['to_id']}"
    )
    log_event(
        logger,
        component="payments",
        operation="confirm",
        outcome="success",
        correlation_id=payment_id,
        duration_ms=duration(),
        gateway=driver.id,
    )
    return response


def list_enabled_gateways(registry: Optional[GatewayRegistry] = None):
    """Gateways a payer can choose from (card drivers folded into one "cc" entry)"""
    return (registry or get_registry()).list_for_selection()
