#!/usr/bin/env python3
"""Import processing worker.

Runs one batch of pending imports through extraction, rewrite and post
creation (or scheduled, PROCESS_MODE=scheduled).
"""

from __future__ import annotations

import logging
import os
import signal
import time

import schedule
from dotenv import load_dotenv

from autoposter.config import Config, ConfigurationError
from autoposter.logging_setup import setup_logging
from autoposter.processing.content_processor import ContentProcessor
from autoposter.services import build_processor, build_rate_limiter, build_store, build_translator

logger = logging.getLogger("process_imports_worker")


class ProcessWorker:
    def __init__(self, config: Config, processor: ContentProcessor):
        self.config = config
        self.processor = processor
        self.shutdown_requested = False

    def install_signal_handlers(self) -> None:
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating graceful shutdown...")
            self.shutdown_requested = True
            self.processor.rate_limiter.clear()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def run_once(self) -> None:
        if self.shutdown_requested:
            return
        try:
            result = self.processor.process_pending_batch(self.config.batch_size)
        except Exception as e:
            logger.error(f"Processing batch failed: {e}")
            return
        logger.info(
            f"[process] processed={result.processed} successful={result.successful} failed={result.failed}"
        )

    def run_scheduled(self) -> None:
        schedule.every(self.config.process_interval_minutes).minutes.do(self.run_once)
        self.run_once()
        while not self.shutdown_requested:
            schedule.run_pending()
            time.sleep(1)
        logger.info("Worker stopped")


def main() -> int:
    load_dotenv()
    setup_logging()
    try:
        config = Config.from_env(require_ai=True)
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    if not config.poller_enabled:
        logger.info("RSS_POLLER_ENABLED is off, nothing to do")
        return 0

    store = build_store(config)
    processor = build_processor(config, store, build_translator(config), build_rate_limiter(config))
    worker = ProcessWorker(config, processor)
    worker.install_signal_handlers()

    mode = (os.environ.get("PROCESS_MODE") or "once").lower().strip()
    if mode in ("scheduled", "daemon"):
        worker.run_scheduled()
    else:
        worker.run_once()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
