#!/usr/bin/env python3
"""Reset failed imports to pending so the next batch retries them."""

from __future__ import annotations

import argparse
import logging
from datetime import datetime, timezone

from dotenv import load_dotenv

from autoposter.config import Config, ConfigurationError
from autoposter.logging_setup import setup_logging
from autoposter.processing.maintenance import reprocess_failed
from autoposter.services import build_store

logger = logging.getLogger("reprocess_failed")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Reset failed imports back to pending")
    parser.add_argument("--days", type=int, default=None, help="Only imports processed in the last N days")
    args = parser.parse_args(argv)

    load_dotenv()
    setup_logging()
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    store = build_store(config)
    count = reprocess_failed(store, now=datetime.now(timezone.utc), days=args.days)
    print(f"[reprocess] reset={count}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
