"""
Payment status poller background worker.

Webhooks get lost. Every ``status_poll_interval_seconds`` this worker
asks the providers about a batch of pending orders that already have a
provider reference and feeds the answers through the reconciliation
engine, so those orders still converge.
"""
import argparse
import asyncio
import signal
import time
from collections import Counter
from typing import Any, Dict, Optional

import structlog

from api.services import Services, build_services
from config import get_settings
from core.order_store import OrderStore
from core.reconciliation import ReconciliationEngine
from monitoring.logging import setup_logging
from monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


async def poll_pending_orders(
    engine: ReconciliationEngine, store: OrderStore, batch_size: int = 50
) -> Dict[str, int]:
    """
    Poll one batch of pending orders.

    A failure for one order is logged and the batch continues. The batch
    is stamped as polled up front, so the next cycle moves on to orders
    that have waited longest, whatever this cycle's outcome.

    Returns:
        Dict[str, int]: Count of orders per outcome (plus ``error``)
    """
    start_time = time.time()
    orders = await store.find_pending_with_reference(limit=batch_size)
    await store.mark_polled([order.order_number for order in orders])
    outcomes: Counter = Counter()

    for order in orders:
        try:
            result = await engine.poll(order.order_number)
            outcomes[result.outcome.value] += 1
        except Exception as e:
            outcomes["error"] += 1
            logger.error(
                "status_poll_order_failed",
                order_number=order.order_number,
                error_type=type(e).__name__,
                error=str(e),
            )

    metrics.record_status_poll(time.time() - start_time)
    logger.info("status_poll_completed", polled=len(orders), outcomes=dict(outcomes))
    return dict(outcomes)


async def start_status_poller(
    interval_seconds: Optional[float] = None, once: bool = False
) -> None:
    """
    Start the status poller worker.

    Args:
        interval_seconds: Seconds between poll cycles (defaults to settings)
        once: Poll a single batch and exit
    """
    settings = get_settings()
    setup_logging(settings)
    interval = interval_seconds or settings.status_poll_interval_seconds

    logger.info(
        "status_poller_starting",
        interval_seconds=interval,
        batch_size=settings.status_poll_batch_size,
    )

    services: Services = build_services(settings)
    running = True

    def signal_handler(sig: int, frame: Any) -> None:
        nonlocal running
        logger.info("status_poller_shutdown_signal_received", signal=sig)
        running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await services.database.init_db()

        while running:
            try:
                await poll_pending_orders(
                    services.engine, services.store, settings.status_poll_batch_size
                )
            except Exception as e:
                logger.error("status_poller_execution_error", error=str(e))

            if once:
                break

            remaining = interval
            while remaining > 0 and running:
                sleep_time = min(remaining, 5)
                await asyncio.sleep(sleep_time)
                remaining -= sleep_time

    finally:
        await services.aclose()
        logger.info("status_poller_stopped")


def main() -> None:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(description="Payment status poller")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between cycles")
    parser.add_argument("--once", action="store_true", help="Poll one batch and exit")
    args = parser.parse_args()

    asyncio.run(start_status_poller(interval_seconds=args.interval, once=args.once))


if __name__ == "__main__":
    main()
