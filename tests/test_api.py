"""
API tests through the ASGI app with injected services.
"""
import httpx
import pytest
from httpx import AsyncClient

from core.types import PaymentMethod
from gateways import GatewayRegistry

REQUEST_TO_PAY = "/collection/v1_0/requesttopay"


def disable_method(services, disabled: PaymentMethod) -> None:
    """Swap in a registry without ``disabled`` wherever one is held."""
    registry = GatewayRegistry(
        {
            method: services.gateways.get(method)
            for method in services.gateways.methods
            if method is not disabled
        }
    )
    services.gateways = registry
    services.checkout.gateways = registry
    services.engine.gateways = registry


def checkout_payload(**overrides) -> dict:
    payload = {
        "order_number": "CT-20250101-0001",
        "customer_name": "Amina Njoya",
        "customer_phone": "+237 670 00 00 00",
        "customer_email": "amina@example.com",
        "delivery_address": "Rue 1.234, Bonapriso",
        "town": "Douala",
        "items": [
            {"name": "Ndole", "restaurant": "Chez Mama", "quantity": 2, "unit_price": 2500}
        ],
        "subtotal": 5000,
        "delivery_fee": 1000,
        "total": 6000,
        "payment_method": "mtn_momo",
    }
    payload.update(overrides)
    return payload


class TestOrderEndpoints:
    """Order intake and lookup."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_order(self, client: AsyncClient) -> None:
        response = await client.post("/orders", json=checkout_payload())

        assert response.status_code == 201
        data = response.json()
        assert data["order"]["order_number"] == "CT-20250101-0001"
        assert data["order"]["payment_status"] == "pending"
        assert data["order"]["payment_reference"]
        assert data["checkout_url"] is None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_fapshi_order(self, client: AsyncClient) -> None:
        response = await client.post(
            "/orders", json=checkout_payload(payment_method="fapshi")
        )

        assert response.status_code == 201
        assert response.json()["checkout_url"].startswith("https://checkout.fapshi.test/")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_swychr_order(self, client: AsyncClient) -> None:
        response = await client.post(
            "/orders", json=checkout_payload(payment_method="swychr")
        )

        assert response.status_code == 201
        data = response.json()
        assert data["checkout_url"] == "https://pay.swychr.test/CT-20250101-0001"
        assert data["order"]["payment_reference"] == "CT-20250101-0001"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_totals_must_add_up(self, client: AsyncClient) -> None:
        response = await client.post("/orders", json=checkout_payload(total=5000))

        assert response.status_code == 422

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_duplicate_order_number(self, client: AsyncClient) -> None:
        await client.post("/orders", json=checkout_payload())

        response = await client.post("/orders", json=checkout_payload())

        assert response.status_code == 409

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_disabled_payment_method(self, client: AsyncClient, services) -> None:
        disable_method(services, PaymentMethod.FAPSHI)

        response = await client.post(
            "/orders", json=checkout_payload(payment_method="fapshi")
        )

        assert response.status_code == 422
        assert (await client.get("/orders/CT-20250101-0001")).status_code == 404

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_provider_rejection_is_payment_required(
        self, client: AsyncClient, fake_providers
    ) -> None:
        fake_providers.script(
            "POST", REQUEST_TO_PAY, httpx.Response(400, json={"message": "invalid payer"})
        )

        response = await client.post("/orders", json=checkout_payload())

        assert response.status_code == 402
        detail = response.json()["detail"]
        assert detail["provider"] == "mtn_momo"
        assert detail["provider_detail"] == {"message": "invalid payer"}

        order = await client.get("/orders/CT-20250101-0001")
        assert order.json()["payment_status"] == "pending"
        assert "Payment initiation failed" in order.json()["notes"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_provider_outage_is_unavailable(
        self, client: AsyncClient, fake_providers
    ) -> None:
        fake_providers.script(
            "POST",
            REQUEST_TO_PAY,
            httpx.Response(503),
            httpx.Response(503),
            httpx.Response(503),
        )

        response = await client.post("/orders", json=checkout_payload())

        assert response.status_code == 503

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_get_missing_order(self, client: AsyncClient) -> None:
        response = await client.get("/orders/CT-19990101-0000")

        assert response.status_code == 404

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_add_note(self, client: AsyncClient) -> None:
        await client.post("/orders", json=checkout_payload())

        response = await client.post(
            "/orders/CT-20250101-0001/notes", json={"text": "Leave at the gate"}
        )

        assert response.status_code == 200
        assert response.json()["notes"].endswith("Leave at the gate")
        missing = await client.post("/orders/CT-0/notes", json={"text": "x"})
        assert missing.status_code == 404

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_poll_payment_status(self, client: AsyncClient, fake_providers) -> None:
        await client.post("/orders", json=checkout_payload())
        fake_providers.momo_status = "SUCCESSFUL"

        response = await client.get("/orders/CT-20250101-0001/payment-status")

        assert response.status_code == 200
        data = response.json()
        assert data["payment_status"] == "paid"
        assert data["outcome"] == "applied"


class TestWebhookEndpoint:
    """Provider callbacks over HTTP."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_momo_webhook_applies(
        self, client: AsyncClient, pending_order, momo_body
    ) -> None:
        await pending_order()

        response = await client.post("/webhooks/mtn_momo", content=momo_body("SUCCESSFUL"))

        assert response.status_code == 200
        assert response.json() == {
            "received": True,
            "outcome": "applied",
            "order_number": "CT-20250101-0001",
        }
        order = await client.get("/orders/CT-20250101-0001")
        assert order.json()["payment_status"] == "paid"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_forged_webhook_rejected(
        self, client: AsyncClient, pending_order, fapshi_body
    ) -> None:
        await pending_order("CT-20250101-0002", PaymentMethod.FAPSHI, reference="FAP-1")
        raw, _ = fapshi_body("successful")

        response = await client.post(
            "/webhooks/fapshi", content=raw, headers={"x-fapshi-signature": "0" * 64}
        )

        assert response.status_code == 401
        order = await client.get("/orders/CT-20250101-0002")
        assert order.json()["payment_status"] == "pending"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_non_ascii_signature_rejected(
        self, client: AsyncClient, pending_order, fapshi_body
    ) -> None:
        await pending_order("CT-20250101-0002", PaymentMethod.FAPSHI, reference="FAP-1")
        raw, _ = fapshi_body("successful")

        response = await client.post(
            "/webhooks/fapshi",
            content=raw,
            headers={"x-fapshi-signature": "café".encode("utf-8")},
        )

        assert response.status_code == 401
        order = await client.get("/orders/CT-20250101-0002")
        assert order.json()["payment_status"] == "pending"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_overflowing_amount_still_acknowledged(
        self, client: AsyncClient, pending_order
    ) -> None:
        await pending_order()
        raw = (
            b'{"status": "SUCCESSFUL", "referenceId": "momo-ref-0001",'
            b' "externalId": "CT-20250101-0001", "amount": 1e400}'
        )

        response = await client.post("/webhooks/mtn_momo", content=raw)

        assert response.status_code == 200
        assert response.json()["outcome"] == "applied"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_signed_fapshi_webhook(
        self, client: AsyncClient, pending_order, fapshi_body
    ) -> None:
        await pending_order("CT-20250101-0002", PaymentMethod.FAPSHI, reference="FAP-1")
        raw, headers = fapshi_body("successful")

        response = await client.post("/webhooks/fapshi", content=raw, headers=headers)

        assert response.status_code == 200
        assert response.json()["outcome"] == "applied"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_swychr_webhook_applies(
        self, client: AsyncClient, pending_order, swychr_body
    ) -> None:
        await pending_order(
            "CT-20250101-0004", PaymentMethod.SWYCHR, reference="CT-20250101-0004"
        )

        response = await client.post("/webhooks/swychr", content=swychr_body("failed"))

        assert response.status_code == 200
        assert response.json()["outcome"] == "applied"
        order = await client.get("/orders/CT-20250101-0004")
        assert order.json()["payment_status"] == "failed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_malformed_webhook(self, client: AsyncClient) -> None:
        response = await client.post("/webhooks/mtn_momo", content=b"{not json")

        assert response.status_code == 400

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_order_acknowledged(self, client: AsyncClient, momo_body) -> None:
        response = await client.post(
            "/webhooks/mtn_momo",
            content=momo_body("SUCCESSFUL", reference="ghost", order_number="CT-0"),
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "order_not_found"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_provider(self, client: AsyncClient) -> None:
        response = await client.post("/webhooks/paypal", content=b"{}")

        assert response.status_code == 404

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_disabled_provider_webhook(
        self, client: AsyncClient, services, fapshi_body
    ) -> None:
        disable_method(services, PaymentMethod.FAPSHI)
        raw, headers = fapshi_body("successful")

        response = await client.post("/webhooks/fapshi", content=raw, headers=headers)

        assert response.status_code == 404
        assert response.json()["detail"] == "Unknown provider"


class TestAdminEndpoints:
    """Offline confirmation and manual sweeps."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_confirm_offline(self, client: AsyncClient) -> None:
        await client.post(
            "/orders",
            json=checkout_payload(order_number="CT-20250101-0003", payment_method="offline"),
        )

        response = await client.post(
            "/admin/orders/CT-20250101-0003/confirm", json={"confirmed_by": "ops"}
        )

        assert response.status_code == 200
        assert response.json() == {
            "order_number": "CT-20250101-0003",
            "payment_status": "paid",
            "outcome": "applied",
        }

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_confirm_non_offline_order(self, client: AsyncClient) -> None:
        await client.post("/orders", json=checkout_payload())

        response = await client.post("/admin/orders/CT-20250101-0001/confirm", json={})

        assert response.status_code == 404

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_sweep(self, client: AsyncClient, pending_order, age_order) -> None:
        await pending_order()
        await age_order("CT-20250101-0001", 30)

        response = await client.post("/admin/sweep")

        assert response.status_code == 200
        assert response.json()["reminded"] == ["CT-20250101-0001"]


class TestMonitoringEndpoints:
    """Health, metrics and request ids."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "database" in data["checks"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_liveness_and_readiness(self, client: AsyncClient) -> None:
        assert (await client.get("/health/live")).status_code == 200
        assert (await client.get("/health/ready")).status_code == 200

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_metrics_endpoint(self, client: AsyncClient) -> None:
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client: AsyncClient) -> None:
        response = await client.get("/", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"
        assert (await client.get("/")).headers["X-Request-ID"]
