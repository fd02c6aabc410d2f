"""Subscription expiration sweep worker.

Usage:
    python -m hodos.workers.expiration_sweep --once
    python -m hodos.workers.expiration_sweep --loop

Settings:
- SUBSCRIPTION_GRACE_DAYS (default 7)
- EXPIRY_WARNING_DAYS (default 3)
- SWEEP_LOOP_SECONDS (default 3600)
"""
from __future__ import annotations

import argparse
import logging
import time
from typing import Optional

from hodos.core.config import settings
from hodos.core.logging import configure_logging
from hodos.features.subscriptions.sweeper import run_expiration_sweep

logger = logging.getLogger("hodos.workers.sweep")


def _sweep_once(grace_days: Optional[int], warning_days: Optional[int]) -> None:
    result = run_expiration_sweep(grace_days=grace_days, warning_days=warning_days)
    print(
        f"[sweep-worker] expired={result.expired} cancelled={result.cancelled} "
        f"expiring_soon={result.expiring_soon}"
    )


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Subscription expiration sweep")
    parser.add_argument("--once", action="store_true", help="Run one sweep and exit")
    parser.add_argument("--loop", action="store_true", help="Run in continuous loop")
    parser.add_argument("--grace-days", type=int, default=None, help="Override SUBSCRIPTION_GRACE_DAYS")
    parser.add_argument("--warning-days", type=int, default=None, help="Override EXPIRY_WARNING_DAYS")
    parser.add_argument(
        "--sleep",
        type=int,
        default=settings.SWEEP_LOOP_SECONDS,
        help="Seconds to sleep between sweeps (when --loop)",
    )
    args = parser.parse_args(argv)

    configure_logging(settings.ENV)

    if args.once:
        _sweep_once(args.grace_days, args.warning_days)
        return

    # Default to loop mode when not explicitly once
    print(f"[sweep-worker] Starting loop (sleep={args.sleep}s). CTRL+C to stop.")
    try:
        while True:
            try:
                _sweep_once(args.grace_days, args.warning_days)
            except Exception:
                # The run is recorded as failed; try again next tick
                logger.exception("[sweep-worker] sweep failed")
            time.sleep(args.sleep)
    except KeyboardInterrupt:
        print("[sweep-worker] Stopped")


if __name__ == "__main__":
    main()
