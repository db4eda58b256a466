"""Postgres schema management for the importer.

Schema creation is idempotent (CREATE IF NOT EXISTS) so every worker can call
it on startup.
"""

from __future__ import annotations

from typing import Iterable, Optional

import psycopg


SCHEMA_STATEMENTS: list[str] = [
    # Polled sources
    """
    CREATE TABLE IF NOT EXISTS feeds (
      id BIGSERIAL PRIMARY KEY,
      name TEXT NOT NULL,
      url TEXT NOT NULL UNIQUE,
      active BOOLEAN NOT NULL DEFAULT TRUE,
      check_interval INTEGER NOT NULL DEFAULT 60 CHECK (check_interval >= 5),
      last_checked TIMESTAMPTZ,
      items_processed INTEGER NOT NULL DEFAULT 0,
      max_items_per_check INTEGER NOT NULL DEFAULT 5 CHECK (max_items_per_check BETWEEN 1 AND 20),
      translate_content BOOLEAN NOT NULL DEFAULT TRUE,
      auto_publish TEXT NOT NULL DEFAULT 'draft', -- draft|scheduled|published
      category_id BIGINT,
      tag_ids BIGINT[] NOT NULL DEFAULT '{}',
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_feeds_active_last_checked ON feeds (active, last_checked NULLS FIRST);",
    # Import queue; original_url is the dedup key
    """
    CREATE TABLE IF NOT EXISTS imported_posts (
      id BIGSERIAL PRIMARY KEY,
      original_url TEXT NOT NULL UNIQUE,
      original_title TEXT NOT NULL,
      feed_id BIGINT REFERENCES feeds(id) ON DELETE SET NULL,
      post_id BIGINT,
      status TEXT NOT NULL DEFAULT 'pending', -- pending|processing|completed|failed
      error_message TEXT,
      retry_count INTEGER NOT NULL DEFAULT 0,
      metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
      content_style TEXT NOT NULL DEFAULT 'short',
      translation_tokens INTEGER NOT NULL DEFAULT 0,
      locked_at TIMESTAMPTZ,
      locked_by TEXT,
      processed_at TIMESTAMPTZ,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_imported_posts_status_created ON imported_posts (status, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_imported_posts_feed_title ON imported_posts (feed_id, original_title);",
    "CREATE INDEX IF NOT EXISTS idx_imported_posts_processed_at ON imported_posts (processed_at DESC);",
    # Writing styles for the AI rewrite
    """
    CREATE TABLE IF NOT EXISTS content_styles (
      key TEXT PRIMARY KEY,
      prompt TEXT NOT NULL,
      max_tokens INTEGER NOT NULL DEFAULT 4096
    );
    """,
    # Uploaded assets
    """
    CREATE TABLE IF NOT EXISTS media (
      id BIGSERIAL PRIMARY KEY,
      filename TEXT NOT NULL,
      mime_type TEXT NOT NULL,
      alt TEXT,
      size_bytes INTEGER NOT NULL,
      data BYTEA NOT NULL,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    # Created posts
    """
    CREATE TABLE IF NOT EXISTS posts (
      id BIGSERIAL PRIMARY KEY,
      title TEXT NOT NULL,
      slug TEXT NOT NULL UNIQUE,
      excerpt TEXT,
      content TEXT NOT NULL,
      status TEXT NOT NULL DEFAULT 'draft', -- draft|published
      published_at TIMESTAMPTZ,
      meta JSONB,
      hero_image_id BIGINT REFERENCES media(id) ON DELETE SET NULL,
      category_ids BIGINT[] NOT NULL DEFAULT '{}',
      tag_ids BIGINT[] NOT NULL DEFAULT '{}',
      locale TEXT NOT NULL DEFAULT 'hr',
      source_url TEXT,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_posts_status_published ON posts (status, published_at DESC);",
]


def ensure_postgres_schema(pg_dsn: str, *, statements: Optional[Iterable[str]] = None) -> None:
    """Ensure Postgres schema exists."""
    stmts = list(statements) if statements is not None else SCHEMA_STATEMENTS
    with psycopg.connect(pg_dsn, autocommit=True) as conn:
        with conn.cursor() as cur:
            for s in stmts:
                cur.execute(s)
