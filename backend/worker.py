"""
Expiration worker: marks OPEN rooms whose expiry has passed as EXPIRED and
publishes the final snapshot to anyone watching the room.

Run it next to the API under systemd/supervisor:

    python -m backend.worker
"""

from __future__ import annotations

import argparse
import logging
import time
from typing import Optional

from backend import rooms as room_service
from backend.config import get_settings
from backend.db import DbClient
from backend.dependencies import get_db_client, get_event_bus
from backend.events import RoomEventBus

logger = logging.getLogger(__name__)


def process_expired(
    *,
    db: Optional[DbClient] = None,
    bus: Optional[RoomEventBus] = None,
    now: Optional[float] = None,
) -> int:
    """
    Expire every overdue room once. Returns the number of rooms expired.
    """
    db = db or get_db_client()
    bus = bus or get_event_bus()
    expired = room_service.expire_rooms(db, bus, now=now)
    if expired:
        logger.info("Expired %d rooms", len(expired))
    return len(expired)


def run_loop(poll_interval_seconds: float | None = None) -> None:
    """
    Simple polling loop. Failures are logged and retried on the next tick.
    """
    interval = poll_interval_seconds or get_settings().expiry_poll_seconds
    db = get_db_client()
    bus = get_event_bus()
    while True:
        try:
            process_expired(db=db, bus=bus)
        except Exception:
            logger.exception("Failed to expire rooms")
        time.sleep(interval)


def main() -> int:
    parser = argparse.ArgumentParser(description="Room expiration worker")
    parser.add_argument(
        "--interval-seconds",
        type=float,
        default=None,
        help="Seconds between sweeps (defaults to EXPIRY_POLL_SECONDS)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    if args.once:
        process_expired()
        return 0
    run_loop(args.interval_seconds)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
