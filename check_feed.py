#!/usr/bin/env python3
"""Fetch a feed and print its latest items, to validate it before adding it."""

from __future__ import annotations

import argparse
import logging

from dotenv import load_dotenv

from autoposter.config import Config, ConfigurationError
from autoposter.ingestion.feed_poller import FeedPoller
from autoposter.logging_setup import setup_logging

logger = logging.getLogger("check_feed")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Validate an RSS/Atom feed URL")
    parser.add_argument("url", help="Feed URL")
    args = parser.parse_args(argv)

    load_dotenv()
    setup_logging()
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    # No store needed: test_feed never writes
    poller = FeedPoller(None, timeout=config.request_timeout, user_agent=config.user_agent)
    try:
        info = poller.test_feed(args.url)
    except Exception as e:
        print(f"Feed check failed: {e}")
        return 1

    print(f"Title:       {info['feed_title'] or '-'}")
    print(f"Description: {info['feed_description'] or '-'}")
    print(f"Link:        {info['feed_link'] or '-'}")
    print(f"Items found: {info['items_found']}")
    for i, item in enumerate(info["latest_items"], 1):
        print(f"  {i}. {item['title']}")
        print(f"     {item['link']}")
        if item["published"]:
            print(f"     {item['published']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
