"""
Service container wired once per process from ``Settings``.

The API lifespan and the workers build it with ``build_services``;
tests construct their own and hand it to ``create_app``.
"""
from dataclasses import dataclass

import httpx
import structlog

from config import Settings
from core.checkout import CheckoutService
from core.order_store import OrderStore
from core.reconciliation import ReconciliationEngine
from core.sweeper import StaleOrderSweeper
from database.connection import Database
from gateways.registry import GatewayRegistry, build_gateway_registry
from monitoring.health import HealthCheck
from notifications.dispatcher import NotificationDispatcher
from notifications.transport import HttpFunctionTransport, NotificationTransport

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    """Everything a request handler or worker needs."""

    settings: Settings
    database: Database
    http_client: httpx.AsyncClient
    store: OrderStore
    gateways: GatewayRegistry
    dispatcher: NotificationDispatcher
    engine: ReconciliationEngine
    checkout: CheckoutService
    sweeper: StaleOrderSweeper
    health: HealthCheck

    async def aclose(self) -> None:
        """Flush notifications, then release HTTP and database resources."""
        await self.dispatcher.aclose()
        await self.http_client.aclose()
        await self.database.close()
        logger.info("services_closed")


def build_services(
    settings: Settings,
    database: Database | None = None,
    http_client: httpx.AsyncClient | None = None,
    transport: NotificationTransport | None = None,
) -> Services:
    """
    Wire every component from settings.

    Raises:
        ConfigError: If an enabled gateway is missing secrets
    """
    database = database or Database(settings)
    http_client = http_client or httpx.AsyncClient(
        timeout=httpx.Timeout(settings.gateway_timeout_seconds)
    )
    transport = transport or HttpFunctionTransport(settings, http_client)

    store = OrderStore(database.session_factory)
    gateways = build_gateway_registry(settings, http_client)
    dispatcher = NotificationDispatcher.from_settings(settings, transport)

    return Services(
        settings=settings,
        database=database,
        http_client=http_client,
        store=store,
        gateways=gateways,
        dispatcher=dispatcher,
        engine=ReconciliationEngine(store, gateways, dispatcher),
        checkout=CheckoutService(settings, store, gateways, dispatcher),
        sweeper=StaleOrderSweeper.from_settings(settings, store, dispatcher),
        health=HealthCheck(database, gateways),
    )
