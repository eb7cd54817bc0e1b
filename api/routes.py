"""
API routes for orders, provider webhooks, administration and monitoring.
"""
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import (
    AuthError,
    ConfigError,
    DuplicateOrderNumber,
    GatewayRejected,
    GatewayUnavailable,
    InvalidSignature,
    MalformedPayload,
    OrderNotFound,
    UnknownProvider,
)
from core.types import CanonicalStatus

from .schemas import (
    AddNoteRequest,
    ConfirmOfflineRequest,
    ConfirmOfflineResponse,
    CreateOrderRequest,
    CreateOrderResponse,
    HealthCheckResponse,
    OrderResponse,
    PaymentStatusResponse,
    SweepResponse,
    WebhookResponse,
)
from .services import Services

logger = structlog.get_logger(__name__)

# Create routers
order_router = APIRouter(prefix="/orders", tags=["orders"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
monitoring_router = APIRouter(tags=["monitoring"])


def get_services(request: Request) -> Services:
    """Services built at startup (or injected by tests)."""
    return request.app.state.services


@order_router.post(
    "",
    response_model=CreateOrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit an order",
    description="Persist a checkout payload as a pending order and start its payment",
)
async def create_order(
    payload: CreateOrderRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Create an order and initiate payment with its gateway."""
    logger.info(
        "api_create_order_request",
        order_number=payload.order_number,
        payment_method=payload.payment_method.value,
        total=payload.total,
    )

    try:
        result = await services.checkout.place_order(payload.to_new_order())

    except UnknownProvider:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Payment method {payload.payment_method.value} is not available",
        )

    except DuplicateOrderNumber as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)

    except GatewayRejected as e:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={"message": e.message, "provider": e.provider, "provider_detail": e.detail},
        )

    except GatewayUnavailable as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Payment provider unavailable, please try again: {e.message}",
        )

    except (AuthError, ConfigError) as e:
        logger.error("api_create_order_gateway_misconfigured", error=e.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Payment could not be started",
        )

    return {
        "order": OrderResponse.from_snapshot(result.order),
        "checkout_url": result.checkout_url,
    }


@order_router.get(
    "/{order_number}",
    response_model=OrderResponse,
    summary="Get order",
)
async def get_order(
    order_number: str,
    services: Services = Depends(get_services),
) -> OrderResponse:
    """Get an order by its order number."""
    order = await services.store.get(order_number)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return OrderResponse.from_snapshot(order)


@order_router.post(
    "/{order_number}/notes",
    response_model=OrderResponse,
    summary="Append a note",
    description="Append timestamped free text to the order notes",
)
async def add_note(
    order_number: str,
    payload: AddNoteRequest,
    services: Services = Depends(get_services),
) -> OrderResponse:
    """Append a note; safe to retry."""
    try:
        order = await services.store.append_note(order_number, payload.text)
    except OrderNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return OrderResponse.from_snapshot(order)


@order_router.get(
    "/{order_number}/payment-status",
    response_model=PaymentStatusResponse,
    summary="Poll payment status",
    description="Query the payment provider and reconcile the order",
)
async def poll_payment_status(
    order_number: str,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Client-side status check while the customer waits for confirmation."""
    try:
        result = await services.engine.poll(order_number)
    except OrderNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    return {
        "order_number": order_number,
        "payment_status": result.order.payment_status.value,
        "payment_reference": result.order.payment_reference,
        "outcome": result.outcome.value,
    }


@webhook_router.post(
    "/{provider}",
    response_model=WebhookResponse,
    summary="Payment provider webhook",
    description="Verify and apply a provider status callback",
)
async def provider_webhook(
    provider: str,
    request: Request,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """
    Handle a provider webhook.

    Any structurally valid payload is acknowledged with 200, including
    unknown orders, duplicates and conflicts, so providers stop retrying.
    Only storage failures answer 5xx.
    """
    body = await request.body()

    try:
        result = await services.engine.handle_webhook(provider, body, request.headers)

    except UnknownProvider:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown provider")

    except InvalidSignature as e:
        logger.warning("api_webhook_invalid_signature", provider=provider, error=e.message)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    except MalformedPayload as e:
        logger.warning("api_webhook_malformed_payload", provider=provider, error=e.message)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    except SQLAlchemyError as e:
        logger.error("api_webhook_storage_error", provider=provider, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        )

    return {
        "received": True,
        "outcome": result.outcome.value,
        "order_number": result.order.order_number if result.order else None,
    }


@admin_router.post(
    "/orders/{order_number}/confirm",
    response_model=ConfirmOfflineResponse,
    summary="Confirm offline payment",
    description="Mark an offline order paid (or failed) after manual verification",
)
async def confirm_offline_payment(
    order_number: str,
    payload: ConfirmOfflineRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Settle an offline order through the same conditional transition."""
    try:
        result = await services.engine.confirm_offline(
            order_number,
            CanonicalStatus(payload.status),
            actor=payload.confirmed_by,
        )
    except OrderNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    except UnknownProvider as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)

    if result.order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    return {
        "order_number": order_number,
        "payment_status": result.order.payment_status.value,
        "outcome": result.outcome.value,
    }


@admin_router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Run stale-order sweep",
    description="Request reminders for orders pending beyond the stale threshold",
)
async def run_sweep(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Run the sweeper once."""
    report = await services.sweeper.run()
    return {
        "stale_orders": report.stale_orders,
        "reminded": report.reminded,
        "skipped": report.skipped,
    }


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await services.health.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness check",
    description="Kubernetes liveness endpoint",
)
async def liveness(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Liveness endpoint."""
    return await services.health.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness check",
    description="Kubernetes readiness endpoint",
)
async def readiness(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Readiness endpoint."""
    result = await services.health.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
