#!/usr/bin/env python3
"""
Waterfall ticker — the periodic timer that drives offer-window expiry.

The engine never fires on its own; this loop POSTs /api/runs/tick every
TICK_INTERVAL_SECONDS so expired stages time out and escalate.

Usage:
    python scripts/run_ticker.py                      # loop forever
    python scripts/run_ticker.py --once               # single tick, then exit
    python scripts/run_ticker.py --interval 10 --url http://localhost:8080
"""
import sys
import os
import time
import argparse
import logging

import requests

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from waterfall.config import API_BASE_URL, TICK_INTERVAL_SECONDS
from waterfall.logging_config import configure_logging

logger = logging.getLogger('scripts.run_ticker')


def tick_once(base_url: str) -> int:
    """POST one tick. Returns the number of runs advanced, or -1 on failure."""
    try:
        resp = requests.post(f"{base_url.rstrip('/')}/api/runs/tick", json={}, timeout=10)
        resp.raise_for_status()
        advanced = resp.json().get('advanced', 0)
        if advanced:
            logger.info("Tick advanced %d runs", advanced)
        return advanced
    except requests.RequestException as e:
        logger.error("Tick failed: %s", e)
        return -1


def main(argv=None):
    parser = argparse.ArgumentParser(description='Drive waterfall offer-window expiry.')
    parser.add_argument('--url', default=API_BASE_URL, help='Dispatch API base URL')
    parser.add_argument('--interval', type=int, default=TICK_INTERVAL_SECONDS, help='Seconds between ticks')
    parser.add_argument('--once', action='store_true', help='Tick once and exit')
    args = parser.parse_args(argv)

    configure_logging()

    if args.once:
        return 0 if tick_once(args.url) >= 0 else 1

    logger.info("Ticking %s every %ds", args.url, args.interval)
    while True:
        tick_once(args.url)
        time.sleep(args.interval)


if __name__ == '__main__':
    sys.exit(main())
