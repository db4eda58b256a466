#!/usr/bin/env python3
"""Delete completed and failed import records older than N days."""

from __future__ import annotations

import argparse
import logging
from datetime import datetime, timezone

from dotenv import load_dotenv

from autoposter.config import Config, ConfigurationError
from autoposter.logging_setup import setup_logging
from autoposter.processing.maintenance import cleanup_old_imports
from autoposter.services import build_store

logger = logging.getLogger("cleanup_old_imports")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Delete old completed/failed import records")
    parser.add_argument("--older-than", type=int, default=30, help="Age in days (default 30)")
    args = parser.parse_args(argv)
    if args.older_than < 1:
        parser.error("--older-than must be at least 1")

    load_dotenv()
    setup_logging()
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    store = build_store(config)
    count = cleanup_old_imports(store, now=datetime.now(timezone.utc), older_than_days=args.older_than)
    print(f"[cleanup] deleted={count}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
