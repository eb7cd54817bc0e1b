"""
Stale-order sweeper background worker.

Runs the sweeper every ``sweeper_interval_seconds``.
"""
import argparse
import asyncio
import signal
from typing import Any, Optional

import structlog

from api.services import Services, build_services
from config import get_settings
from core.sweeper import SweepReport
from monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


async def run_sweep_once(services: Services) -> SweepReport:
    """Sweep once and wait for the reminders to be handed to the transport."""
    report = await services.sweeper.run()
    await services.dispatcher.drain()
    return report


async def start_sweeper_worker(
    interval_seconds: Optional[float] = None, once: bool = False
) -> None:
    """
    Start the sweeper worker.

    Runs until SIGINT/SIGTERM.

    Args:
        interval_seconds: Seconds between sweeps (defaults to settings)
        once: Sweep a single time and exit
    """
    settings = get_settings()
    setup_logging(settings)
    interval = interval_seconds or settings.sweeper_interval_seconds

    logger.info("sweeper_worker_starting", interval_seconds=interval)

    services = build_services(settings)
    running = True

    def signal_handler(sig: int, frame: Any) -> None:
        nonlocal running
        logger.info("sweeper_worker_shutdown_signal_received", signal=sig)
        running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await services.database.init_db()

        while running:
            try:
                await run_sweep_once(services)
            except Exception as e:
                logger.error("sweeper_execution_error", error=str(e))
                # Keep running even if one sweep fails

            if once:
                break

            # Sleep in short chunks to react to shutdown signals
            remaining = interval
            while remaining > 0 and running:
                sleep_time = min(remaining, 5)
                await asyncio.sleep(sleep_time)
                remaining -= sleep_time

    finally:
        await services.aclose()
        logger.info("sweeper_worker_stopped")


def main() -> None:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(description="Stale-order sweeper worker")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between sweeps")
    parser.add_argument("--once", action="store_true", help="Sweep once and exit")
    args = parser.parse_args()

    asyncio.run(start_sweeper_worker(interval_seconds=args.interval, once=args.once))


if __name__ == "__main__":
    main()
