"""
Gateway Driver Layer

Driver contract, the process-wide registry of enabled drivers, and the
bundled Crypto Pay wallet driver.
"""

from app.services.gateways.base import (
    CallbackRequest,
    GatewayDriver,
    call_driver,
)
from app.services.gateways.registry import (
    CC_GATEWAY_ID,
    GatewayRegistry,
    build_registry,
    get_registry,
)

__all__ = [
    "CallbackRequest",
    "GatewayDriver",
    "call_driver",
    "CC_GATEWAY_ID",
    "GatewayRegistry",
    "build_registry",
    "get_registry",
]
