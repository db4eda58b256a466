#!/usr/bin/env python3
"""Feed polling worker.

Runs one polling pass (or scheduled, POLL_MODE=scheduled) over all active
feeds that are due and queues new items as pending imports.
"""

from __future__ import annotations

import logging
import os
import time

import schedule
from dotenv import load_dotenv

from autoposter.config import Config, ConfigurationError
from autoposter.logging_setup import setup_logging
from autoposter.services import build_poller, build_store

logger = logging.getLogger("poll_feeds_worker")


def run_once(config: Config) -> None:
    if not config.poller_enabled:
        logger.info("RSS_POLLER_ENABLED is off, skipping poll")
        return
    store = build_store(config)
    result = build_poller(config, store).poll_all_feeds()
    logger.info(
        f"[poll] feeds_checked={result.feeds_checked} new={result.new_items_found} "
        f"duplicates={result.duplicates_skipped} errors={len(result.errors)}"
    )
    for err in result.errors:
        logger.error(f"[poll] {err['feed_name']} ({err['feed_id']}): {err['error']}")


def _run_safely(config: Config) -> None:
    try:
        run_once(config)
    except Exception as e:
        logger.error(f"Polling pass failed: {e}")


def run_scheduled(config: Config) -> None:
    schedule.every(config.poll_interval_minutes).minutes.do(_run_safely, config)
    _run_safely(config)
    while True:
        schedule.run_pending()
        time.sleep(5)


def main() -> int:
    load_dotenv()
    setup_logging()
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    mode = (os.environ.get("POLL_MODE") or "once").lower().strip()
    if mode in ("scheduled", "daemon"):
        run_scheduled(config)
    else:
        run_once(config)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
