"""
Gateway Driver Registry

Holds the drivers enabled for this process, keyed by gateway id. Built once
at startup from config.ENABLED_GATEWAYS and never mutated afterwards.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import config
from app.services.gateways.base import GatewayDriver
from app.core.exceptions import GatewayNotFoundError

logger = logging.getLogger(__name__)

# Id of the synthetic selection entry standing for "any card driver"
CC_GATEWAY_ID = "cc"


class GatewayRegistry:
    """Immutable id → driver mapping with card-driver awareness"""

    def __init__(self, drivers: Iterable[GatewayDriver]):
        by_id: Dict[str, GatewayDriver] = {}
        for driver in drivers:
            if driver.id in by_id:
                raise ValueError(f"Duplicate gateway driver id: {driver.id}")
            by_id[driver.id] = driver
        self._drivers: Dict[str, GatewayDriver] = by_id
        self._ordered: Tuple[GatewayDriver, ...] = tuple(by_id.values())

        card_drivers = [d for d in self._ordered if d.is_card]
        if len(card_drivers) > 1:
            raise ValueError(
                f"Only one card driver may be enabled, got: {[d.id for d in card_drivers]}"
            )
        self._cc_driver: Optional[GatewayDriver] = card_drivers[0] if card_drivers else None

    def enabled_drivers(self) -> Tuple[GatewayDriver, ...]:
        """Configured drivers in configuration order"""
        return self._ordered

    def is_enabled(self, gateway_id: str) -> bool:
        return gateway_id in self._drivers

    def ensure_enabled(self, gateway_id: str) -> None:
        """Raise GatewayNotFoundError unless gateway_id is an enabled driver"""
        if not self.is_enabled(gateway_id):
            raise GatewayNotFoundError(f"Gateway is not enabled: {gateway_id}")

    def driver(self, gateway_id: str) -> GatewayDriver:
        """Exact-match driver lookup"""
        try:
            return self._drivers[gateway_id]
        except KeyError:
            raise GatewayNotFoundError(f"Gateway is not enabled: {gateway_id}") from None

    def cc_driver(self) -> Optional[GatewayDriver]:
        """The card-capable driver, or None"""
        return self._cc_driver

    def list_for_selection(self) -> List[Dict[str, str]]:
        """
        Gateways offered to payers.

        Card drivers are not listed one by one; a single "cc" entry stands for
        them. Its name is left empty for the presentation layer to localize.
        """
        entries = [
            {"id": d.id, "name": d.name}
            for d in self._ordered
            if not d.is_card
        ]
        if self._cc_driver is not None:
            entries.append({"id": CC_GATEWAY_ID, "name": ""})
        return entries

    async def process_payment(self, payment: Mapping[str, Any]) -> Dict[str, Any]:
        """Finalize money movement through the driver the payment was created with"""
        driver = self.driver(payment["gateway"])
        response = await driver.process_payment(payment)
        return dict(response or {})


def build_registry(
    enabled: Iterable[str],
    factories: Mapping[str, Callable[[], GatewayDriver]],
) -> GatewayRegistry:
    """
    Instantiate enabled drivers.

    Unknown ids and drivers missing their own configuration are skipped with
    a warning so one broken provider does not take the others down.
    """
    drivers = []
    for gateway_id in enabled:
        factory = factories.get(gateway_id)
        if factory is None:
            logger.warning(f"GATEWAY_UNKNOWN gateway={gateway_id} skipped")
            continue
        driver = factory()
        if not driver.is_configured():
            logger.warning(f"GATEWAY_NOT_CONFIGURED gateway={gateway_id} skipped")
            continue
        drivers.append(driver)
    registry = GatewayRegistry(drivers)
    logger.info(
        "GATEWAYS_ENABLED %s cc=%s",
        [d.id for d in registry.enabled_drivers()],
        registry.cc_driver().id if registry.cc_driver() else None,
    )
    return registry


def default_factories() -> Dict[str, Callable[[], GatewayDriver]]:
    from app.services.gateways.cryptobot import CryptoBotDriver
    return {
        CryptoBotDriver.id: CryptoBotDriver,
    }


_registry: Optional[GatewayRegistry] = None


def get_registry() -> GatewayRegistry:
    """Process-wide registry built from config on first use"""
    global _registry
    if _registry is None:
        _registry = build_registry(config.ENABLED_GATEWAYS, default_factories())
    return _registry
