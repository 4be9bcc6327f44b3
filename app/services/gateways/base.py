"""
Gateway driver contract.

A driver is a pluggable integration with one external payment provider.
The core only relies on the capabilities below; how a driver talks to its
provider is its own business.

Capabilities:
- id / name / is_card           identification
- buy(payment)                  single-shot purchase (post, message)
- subscribe(payment, user, b)   subscription purchase, may set up recurring billing
- validate_callback(request)    authenticate an inbound callback → payment id or None
- process_payment(payment)      finalize money movement for a confirmed payment
- extract_card_info(raw, user)  card drivers only: tokenize onboarding input → info or None
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Mapping, Optional

import httpx

from app.core.exceptions import (
    PaymentServiceError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    GatewayDispatchError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallbackRequest:
    """Transport-independent view of an inbound gateway callback"""
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""
    query: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup"""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default


class GatewayDriver:
    """
    Base for gateway drivers.

    Subclasses set `id` and `name` and override the capabilities they
    support. Card drivers set `is_card = True` and implement
    extract_card_info.
    """

    id: str = ""
    name: str = ""
    is_card: bool = False

    def is_configured(self) -> bool:
        """False if the driver lacks credentials; the registry skips it"""
        return True

    async def buy(self, payment: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError(f"{self.id} does not support buy")

    async def subscribe(
        self,
        payment: Dict[str, Any],
        target_user: Dict[str, Any],
        bundle: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        raise NotImplementedError(f"{self.id} does not support subscribe")

    async def validate_callback(self, request: CallbackRequest) -> Optional[int]:
        raise NotImplementedError(f"{self.id} does not accept callbacks")

    async def process_payment(self, payment: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError(f"{self.id} does not process payments")

    async def extract_card_info(self, raw_input: Mapping[str, Any], user: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        raise NotImplementedError(f"{self.id} is not a card driver")


async def call_driver(
    call: Awaitable[Any],
    *,
    gateway: str,
    operation: str,
    timeout: float,
) -> Any:
    """
    Await a driver call bounded by timeout and map failures to domain errors.

    - asyncio.TimeoutError → GatewayTimeoutError (retryable)
    - transport errors → GatewayUnavailableError (retryable)
    - domain errors raised by the driver → propagated as-is
    - anything else → GatewayDispatchError (terminal)
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning(f"GATEWAY_TIMEOUT gateway={gateway} operation={operation} timeout={timeout}s")
        raise GatewayTimeoutError(f"{gateway} {operation} timed out after {timeout}s") from e
    except PaymentServiceError:
        raise
    except (httpx.TransportError, httpx.HTTPStatusError, ConnectionError, OSError) as e:
        logger.warning(f"GATEWAY_UNAVAILABLE gateway={gateway} operation={operation} error={type(e).__name__}")
        raise GatewayUnavailableError(f"{gateway} {operation} failed: {e}") from e
    except Exception as e:
        logger.error(f"GATEWAY_ERROR gateway={gateway} operation={operation} error={type(e).__name__}: {e}")
        raise GatewayDispatchError(f"{gateway} {operation} failed: {e}") from e
