"""
Notification dispatcher tests.

Delivery is best effort: one primary, at most one fallback, never raises.
"""
import asyncio
import json

import httpx
import pytest

from notifications import (
    FallbackPolicy,
    HttpFunctionTransport,
    NotificationDispatcher,
    NotificationKind,
    NotificationRequest,
    NotificationTransportError,
    RecipientChannel,
)


@pytest.fixture
def dispatcher(test_settings, transport) -> NotificationDispatcher:
    return NotificationDispatcher.from_settings(test_settings, transport)


class SlowTransport:
    """Primary hangs, fallback answers."""

    def __init__(self) -> None:
        self.delivered = []

    async def send(self, function_name, payload) -> None:
        if function_name == "slow":
            await asyncio.sleep(5)
        self.delivered.append(function_name)


class TestFallbackPolicy:
    """Channel policies."""

    @pytest.mark.unit
    def test_chain(self) -> None:
        assert FallbackPolicy("a").chain == ("a",)
        assert FallbackPolicy("a", "b").chain == ("a", "b")

    @pytest.mark.unit
    def test_default_policies(self, dispatcher) -> None:
        admin = dispatcher.policies[RecipientChannel.ADMIN]
        customer = dispatcher.policies[RecipientChannel.CUSTOMER]

        assert admin.chain == ("send-admin-notification-resend", "send-admin-notification")
        assert customer.chain == ("send-payment-notification", "send-user-notification")


class TestDispatch:
    """Primary, fallback and total failure."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_primary_success(self, dispatcher, transport, pending_order) -> None:
        order = await pending_order()
        request = NotificationRequest.for_order(order, NotificationKind.ORDER_PLACED)

        result = await dispatcher.dispatch(request)

        assert result.delivered_via == "send-admin-notification-resend"
        assert result.attempts == 1
        [(name, payload)] = transport.calls
        assert payload["notificationType"] == "order_placed"
        assert payload["recipient"] == "admin"
        assert payload["orderNumber"] == "CT-20250101-0001"
        assert payload["orderData"]["total"] == 6000

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_falls_back_once(self, dispatcher, transport, pending_order) -> None:
        order = await pending_order()
        transport.failing = {"send-payment-notification"}
        request = NotificationRequest.for_order(order, NotificationKind.PAYMENT_SUCCESS)

        result = await dispatcher.dispatch(request)

        assert result.delivered_via == "send-user-notification"
        assert [name for name, _ in transport.calls] == [
            "send-payment-notification",
            "send-user-notification",
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_total_failure_does_not_raise(self, dispatcher, transport, pending_order) -> None:
        order = await pending_order()
        transport.failing = {"send-payment-notification", "send-user-notification"}
        request = NotificationRequest.for_order(order, NotificationKind.PAYMENT_FAILED)

        result = await dispatcher.dispatch(request)

        assert result.delivered is False
        assert result.attempts == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_hung_primary_times_out(self, pending_order) -> None:
        order = await pending_order()
        transport = SlowTransport()
        dispatcher = NotificationDispatcher(
            transport,
            {RecipientChannel.ADMIN: FallbackPolicy("slow", "fast")},
            attempt_timeout=0.05,
        )

        result = await dispatcher.dispatch(
            NotificationRequest.for_order(order, NotificationKind.STATUS_UPDATE, stage="test")
        )

        assert result.delivered_via == "fast"
        assert transport.delivered == ["fast"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_submit_runs_in_background(self, dispatcher, transport, pending_order) -> None:
        order = await pending_order()

        task = dispatcher.submit(
            NotificationRequest.for_order(order, NotificationKind.PAYMENT_PENDING_LONG)
        )
        assert dispatcher.pending == 1

        await dispatcher.drain()

        assert task.done()
        assert dispatcher.pending == 0
        assert transport.kinds() == ["payment_pending_long"]


class TestHttpFunctionTransport:
    """HTTP invocation of sending functions."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_posts_to_named_function(self, test_settings) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        settings = test_settings.model_copy(
            update={
                "notification_base_url": "https://functions.test/v1/",
                "notification_api_key": "fn-key",
            }
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            await HttpFunctionTransport(settings, http).send("send-user-notification", {"a": 1})

        [request] = seen
        assert str(request.url) == "https://functions.test/v1/send-user-notification"
        assert request.headers["Authorization"] == "Bearer fn-key"
        assert json.loads(request.content) == {"a": 1}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_error_status_raises(self, test_settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            with pytest.raises(NotificationTransportError) as exc_info:
                await HttpFunctionTransport(test_settings, http).send("fn", {})

        assert exc_info.value.status_code == 500
        assert exc_info.value.function_name == "fn"
