"""Gateway registry: one adapter per enabled payment method."""
from typing import Dict, Iterator, List, Type

import httpx
import structlog

from config import Settings
from core.exceptions import ConfigError, UnknownProvider
from core.types import PaymentMethod
from gateways.base import PaymentGateway
from gateways.fapshi import FapshiGateway
from gateways.mtn_momo import MtnMomoGateway
from gateways.offline import OfflineGateway
from gateways.swychr import SwychrGateway

logger = structlog.get_logger(__name__)

GATEWAY_CLASSES: Dict[PaymentMethod, Type[PaymentGateway]] = {
    PaymentMethod.MTN_MOMO: MtnMomoGateway,
    PaymentMethod.FAPSHI: FapshiGateway,
    PaymentMethod.SWYCHR: SwychrGateway,
    PaymentMethod.OFFLINE: OfflineGateway,
}


class GatewayRegistry:
    """
    Selects the adapter bound to an order's payment method.

    Adapters are chosen by the stored method, never by payload shape.
    """

    def __init__(self, gateways: Dict[PaymentMethod, PaymentGateway]):
        self._gateways = dict(gateways)

    def __contains__(self, method: object) -> bool:
        return method in self._gateways

    def __iter__(self) -> Iterator[PaymentGateway]:
        return iter(self._gateways.values())

    @property
    def methods(self) -> List[PaymentMethod]:
        return list(self._gateways)

    def get(self, method: PaymentMethod) -> PaymentGateway:
        """
        Adapter for a payment method.

        Raises:
            UnknownProvider: If the method is not enabled
        """
        try:
            return self._gateways[method]
        except KeyError:
            raise UnknownProvider(
                f"Payment method {method.value} is not enabled", payment_method=method.value
            )

    def for_provider(self, provider: str) -> PaymentGateway:
        """
        Adapter for a provider name taken from a URL.

        Raises:
            UnknownProvider: If the name is unknown or not enabled
        """
        try:
            method = PaymentMethod(provider)
        except ValueError:
            raise UnknownProvider(f"Unknown payment provider {provider}", provider=provider)
        return self.get(method)


def build_gateway_registry(settings: Settings, http_client: httpx.AsyncClient) -> GatewayRegistry:
    """
    Instantiate every enabled gateway.

    Raises:
        ConfigError: If any enabled gateway is missing secrets
    """
    gateways: Dict[PaymentMethod, PaymentGateway] = {}
    missing: List[str] = []

    for name in settings.get_enabled_payment_methods():
        method = PaymentMethod(name)
        gateway_class = GATEWAY_CLASSES[method]
        absent = gateway_class.missing_settings(settings)
        if absent:
            missing.extend(absent)
            continue
        gateways[method] = gateway_class(settings, http_client)

    if missing:
        logger.error("gateway_configuration_missing", missing=missing)
        raise ConfigError(
            f"Enabled payment gateways are missing settings: {', '.join(missing)}",
            missing=missing,
        )

    logger.info("gateways_configured", methods=[m.value for m in gateways])
    return GatewayRegistry(gateways)
