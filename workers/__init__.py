"""Background workers for async processing."""
from .status_poller import poll_pending_orders, start_status_poller
from .sweeper_worker import run_sweep_once, start_sweeper_worker

__all__ = [
    "poll_pending_orders",
    "run_sweep_once",
    "start_status_poller",
    "start_sweeper_worker",
]
