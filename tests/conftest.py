"""
Pytest configuration and fixtures.

Storage runs on a temporary sqlite file through aiosqlite, provider APIs
are served by ``httpx.MockTransport`` and notifications are recorded
instead of sent.
"""
import asyncio
import json
from collections import defaultdict, deque
from datetime import timedelta
from typing import Any, AsyncGenerator, Callable, Deque, Dict, List, Optional, Tuple, Union

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from api.services import Services, build_services
from config import Settings
from core.order_store import OrderStore
from core.types import LineItem, NewOrder, OrderSnapshot, PaymentMethod
from database.connection import Database
from database.models import Order, utcnow
from gateways.base import compute_signature

FAPSHI_WEBHOOK_SECRET = "fapshi-webhook-secret"
MOMO_BASE_URL = "https://momo.test"
FAPSHI_BASE_URL = "https://fapshi.test"
SWYCHR_BASE_URL = "https://swychr.test/api/payin"
SWYCHR_STATUS_URL = "https://swychr-status.test/payment/status"

Scripted = Union[httpx.Response, Exception]


class FakeProviders:
    """
    In-process MTN MoMo, Fapshi and Swychr APIs.

    Default answers are healthy; ``script`` queues one-off responses (or
    exceptions) for a method and path, consumed in order.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.token_calls = 0
        self.token_delay = 0.0
        self.momo_status = "PENDING"
        self.fapshi_status = "created"
        self.swychr_status = "pending"
        self.swychr_token_calls = 0
        self._scripts: Dict[Tuple[str, str], Deque[Scripted]] = defaultdict(deque)

    def script(self, method: str, path: str, *responses: Scripted) -> None:
        self._scripts[(method, path)].extend(responses)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)

        if self._scripts.get(key):
            scripted = self._scripts[key].popleft()
            if isinstance(scripted, Exception):
                raise scripted
            return scripted

        path = request.url.path
        if path == "/collection/token/":
            self.token_calls += 1
            if self.token_delay:
                await asyncio.sleep(self.token_delay)
            return httpx.Response(
                200, json={"access_token": f"token-{self.token_calls}", "expires_in": 3600}
            )
        if path == "/collection/v1_0/requesttopay" and request.method == "POST":
            return httpx.Response(202)
        if path.startswith("/collection/v1_0/requesttopay/"):
            return httpx.Response(200, json={"status": self.momo_status, "amount": "6000"})
        if path == "/v1/payments":
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "checkout_url": f"https://checkout.fapshi.test/{body['reference']}",
                    "reference": f"FAP-{body['reference']}",
                },
            )
        if path.startswith("/payment-status/"):
            return httpx.Response(200, json=[{"status": self.fapshi_status}])
        if path == "/api/payin/admin/auth":
            self.swychr_token_calls += 1
            return httpx.Response(
                200, json={"data": {"token": f"swychr-token-{self.swychr_token_calls}"}}
            )
        if path == "/api/payin/create_payment_links":
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "data": {
                        "payment_link": f"https://pay.swychr.test/{body['transaction_id']}",
                        "payment_link_id": f"LINK-{body['transaction_id']}",
                    }
                },
            )
        if path.startswith("/payment/status/"):
            return httpx.Response(
                200,
                json={"data": {"status": self.swychr_status, "amount": 6000}},
            )
        return httpx.Response(404, json={"message": "not found"})


class RecordingTransport:
    """Notification transport that records calls; names in ``failing`` raise."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.failing: set = set()

    async def send(self, function_name: str, payload: Dict[str, Any]) -> None:
        self.calls.append((function_name, payload))
        if function_name in self.failing:
            raise RuntimeError(f"{function_name} is down")

    def kinds(self) -> List[str]:
        return [payload["notificationType"] for _, payload in self.calls]

    def sent(self, kind: str) -> List[Tuple[str, Dict[str, Any]]]:
        return [(name, p) for name, p in self.calls if p["notificationType"] == kind]


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        app_name="order-reconciliation-test",
        app_env="test",
        log_level="DEBUG",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        enabled_payment_methods="mtn_momo,fapshi,swychr,offline",
        mtn_momo_base_url=MOMO_BASE_URL,
        mtn_momo_api_user="momo-user",
        mtn_momo_api_key="momo-key",
        mtn_momo_subscription_key="momo-subscription",
        fapshi_base_url=FAPSHI_BASE_URL,
        fapshi_secret_key="fapshi-secret",
        fapshi_public_key="fapshi-public",
        fapshi_api_user="fapshi-user",
        fapshi_webhook_secret=FAPSHI_WEBHOOK_SECRET,
        swychr_base_url=SWYCHR_BASE_URL,
        swychr_status_url=SWYCHR_STATUS_URL,
        swychr_api_email="ops@example.com",
        swychr_api_password="swychr-password",
        gateway_retry_max_attempts=3,
        gateway_retry_base_delay=0.0,
        notification_timeout_seconds=1.0,
    )


@pytest_asyncio.fixture
async def database(test_settings: Settings) -> AsyncGenerator[Database, Any]:
    """Fresh sqlite database with all tables."""
    engine = create_async_engine(test_settings.database_url, poolclass=NullPool)
    db = Database(test_settings, engine=engine)
    await db.init_db()
    yield db
    await db.close()


@pytest.fixture
def store(database: Database) -> OrderStore:
    return OrderStore(database.session_factory)


@pytest.fixture
def fake_providers() -> FakeProviders:
    return FakeProviders()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest_asyncio.fixture
async def http_client(fake_providers: FakeProviders) -> AsyncGenerator[httpx.AsyncClient, Any]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_providers)) as client:
        yield client


@pytest_asyncio.fixture
async def services(
    test_settings: Settings,
    database: Database,
    http_client: httpx.AsyncClient,
    transport: RecordingTransport,
) -> AsyncGenerator[Services, Any]:
    """Fully wired services on the fake providers."""
    services = build_services(
        test_settings, database=database, http_client=http_client, transport=transport
    )
    yield services
    await services.dispatcher.drain()


@pytest_asyncio.fixture
async def client(services: Services) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client."""
    from api.main import create_app

    app = create_app(services=services)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_order() -> Callable[..., NewOrder]:
    """Factory for checkout payloads."""

    def _make(
        order_number: str = "CT-20250101-0001",
        payment_method: PaymentMethod = PaymentMethod.MTN_MOMO,
        quantity: int = 2,
        unit_price: int = 2500,
        delivery_fee: int = 1000,
    ) -> NewOrder:
        subtotal = quantity * unit_price
        return NewOrder(
            order_number=order_number,
            customer_name="Amina Njoya",
            customer_phone="670 00 00 00",
            customer_email="amina@example.com",
            delivery_address="Rue 1.234, Bonapriso",
            town="Douala",
            items=[LineItem("Ndole", "Chez Mama", quantity, unit_price)],
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            total=subtotal + delivery_fee,
            payment_method=payment_method,
        )

    return _make


@pytest.fixture
def pending_order(
    store: OrderStore, make_order: Callable[..., NewOrder]
) -> Callable[..., Any]:
    """Create a pending order, optionally with a provider reference."""

    async def _create(
        order_number: str = "CT-20250101-0001",
        payment_method: PaymentMethod = PaymentMethod.MTN_MOMO,
        reference: Optional[str] = "momo-ref-0001",
    ) -> OrderSnapshot:
        order = await store.create(make_order(order_number, payment_method))
        if reference:
            await store.assign_reference(order_number, reference)
            order = await store.get(order_number)
        return order

    return _create


async def backdate(database: Database, order_number: str, hours: float) -> None:
    """Move an order's creation time into the past."""
    async with database.session_factory() as db:
        await db.execute(
            update(Order)
            .where(Order.order_number == order_number)
            .values(created_at=utcnow() - timedelta(hours=hours))
        )
        await db.commit()


@pytest.fixture
def age_order(database: Database) -> Callable[[str, float], Any]:
    async def _age(order_number: str, hours: float) -> None:
        await backdate(database, order_number, hours)

    return _age


def momo_callback(
    status: str,
    reference: Optional[str] = "momo-ref-0001",
    order_number: Optional[str] = "CT-20250101-0001",
) -> bytes:
    """Raw MoMo callback body."""
    body: Dict[str, Any] = {"status": status, "amount": "6000", "currency": "XAF"}
    if reference:
        body["referenceId"] = reference
    if order_number:
        body["externalId"] = order_number
    return json.dumps(body).encode()


def fapshi_callback(
    status: str, order_number: str = "CT-20250101-0002"
) -> Tuple[bytes, Dict[str, str]]:
    """Raw Fapshi webhook body and its signature header."""
    raw = json.dumps({"reference": order_number, "status": status, "amount": 6000}).encode()
    return raw, {"x-fapshi-signature": compute_signature(FAPSHI_WEBHOOK_SECRET, raw)}


@pytest.fixture
def momo_body() -> Callable[..., bytes]:
    return momo_callback


@pytest.fixture
def fapshi_body() -> Callable[..., Tuple[bytes, Dict[str, str]]]:
    return fapshi_callback


def swychr_callback(
    status: str,
    order_number: str = "CT-20250101-0004",
    payment_link_id: str = "LINK-CT-20250101-0004",
) -> bytes:
    """Raw Swychr webhook body."""
    return json.dumps(
        {
            "payment_link_id": payment_link_id,
            "payment_reference": order_number,
            "status": status,
            "amount": 6000,
            "currency": "XAF",
        }
    ).encode()


@pytest.fixture
def swychr_body() -> Callable[..., bytes]:
    return swychr_callback
