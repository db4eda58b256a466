"""Postgres-backed store for feeds, the import queue, posts and media.

Plain psycopg + SQL; one short-lived connection per operation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set

import psycopg
from psycopg import errors, sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from autoposter.storage.base import IMPORT_UPDATABLE_FIELDS, DuplicateImportError, Store, StoreError
from autoposter.storage.records import ContentStyle, Feed, ImportRecord, NewImport, STATUS_PENDING, STATUS_PROCESSING

_FEED_COLUMNS = (
    "id, name, url, active, check_interval, last_checked, items_processed, "
    "max_items_per_check, translate_content, auto_publish, category_id, tag_ids"
)
_IMPORT_COLUMNS = (
    "id, original_url, original_title, feed_id, post_id, status, error_message, retry_count, "
    "metadata, content_style, translation_tokens, locked_at, locked_by, processed_at, created_at"
)


def _feed_from_row(row: Dict[str, Any]) -> Feed:
    return Feed(
        id=row["id"],
        name=row["name"] or "Unknown",
        url=row["url"],
        active=bool(row["active"]),
        check_interval=int(row["check_interval"] or 60),
        last_checked=row["last_checked"],
        items_processed=int(row["items_processed"] or 0),
        max_items_per_check=int(row["max_items_per_check"] or 5),
        translate_content=bool(row["translate_content"]),
        auto_publish=row["auto_publish"] or "draft",
        category_id=row["category_id"],
        tag_ids=list(row["tag_ids"] or []),
    )


def _import_from_row(row: Dict[str, Any]) -> ImportRecord:
    return ImportRecord(
        id=row["id"],
        original_url=row["original_url"],
        original_title=row["original_title"],
        feed_id=row["feed_id"],
        post_id=row["post_id"],
        status=row["status"],
        error_message=row["error_message"],
        retry_count=int(row["retry_count"] or 0),
        metadata=dict(row["metadata"] or {}),
        content_style=row["content_style"] or "short",
        translation_tokens=int(row["translation_tokens"] or 0),
        locked_at=row["locked_at"],
        locked_by=row["locked_by"],
        processed_at=row["processed_at"],
        created_at=row["created_at"],
    )


@dataclass
class PostgresStore(Store):
    pg_dsn: str

    def _connect(self):
        return psycopg.connect(self.pg_dsn, autocommit=True, row_factory=dict_row)

    def _fetch_all(self, query, params=None) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()

    def _fetch_one(self, query, params=None) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchone()

    def _execute(self, query, params=None) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.rowcount

    def ping(self) -> bool:
        try:
            row = self._fetch_one("SELECT 1 AS ok")
            return bool(row and row["ok"] == 1)
        except psycopg.Error:
            return False

    # Feeds

    def list_active_feeds(self, *, limit: int = 100) -> List[Feed]:
        rows = self._fetch_all(
            f"""
            SELECT {_FEED_COLUMNS}
            FROM feeds
            WHERE active = TRUE
            ORDER BY last_checked ASC NULLS FIRST, id ASC
            LIMIT %s
            """,
            (max(1, int(limit)),),
        )
        return [_feed_from_row(r) for r in rows]

    def list_feeds(self, *, limit: int = 100) -> List[Feed]:
        rows = self._fetch_all(
            f"SELECT {_FEED_COLUMNS} FROM feeds ORDER BY id ASC LIMIT %s",
            (max(1, int(limit)),),
        )
        return [_feed_from_row(r) for r in rows]

    def get_feed(self, feed_id: Any) -> Optional[Feed]:
        row = self._fetch_one(f"SELECT {_FEED_COLUMNS} FROM feeds WHERE id = %s", (feed_id,))
        return _feed_from_row(row) if row else None

    def mark_feed_checked(self, feed_id: Any, *, checked_at: datetime, items_processed: int) -> None:
        self._execute(
            """
            UPDATE feeds
            SET last_checked = %s, items_processed = %s, updated_at = now()
            WHERE id = %s
            """,
            (checked_at, int(items_processed), feed_id),
        )

    # Import queue

    def get_import(self, import_id: Any) -> Optional[ImportRecord]:
        row = self._fetch_one(f"SELECT {_IMPORT_COLUMNS} FROM imported_posts WHERE id = %s", (import_id,))
        return _import_from_row(row) if row else None

    def find_import_by_url(self, original_url: str) -> Optional[ImportRecord]:
        row = self._fetch_one(
            f"SELECT {_IMPORT_COLUMNS} FROM imported_posts WHERE original_url = %s LIMIT 1",
            (original_url,),
        )
        return _import_from_row(row) if row else None

    def find_import_by_title(self, feed_id: Any, original_title: str) -> Optional[ImportRecord]:
        row = self._fetch_one(
            f"""
            SELECT {_IMPORT_COLUMNS} FROM imported_posts
            WHERE original_title = %s AND feed_id = %s
            LIMIT 1
            """,
            (original_title, feed_id),
        )
        return _import_from_row(row) if row else None

    def create_import(self, item: NewImport) -> ImportRecord:
        try:
            row = self._fetch_one(
                f"""
                INSERT INTO imported_posts (original_url, original_title, feed_id, status, retry_count, metadata, content_style)
                VALUES (%s, %s, %s, %s, 0, %s, %s)
                RETURNING {_IMPORT_COLUMNS}
                """,
                (
                    item.original_url,
                    item.original_title,
                    item.feed_id,
                    STATUS_PENDING,
                    Jsonb(item.metadata or {}),
                    item.content_style,
                ),
            )
        except errors.UniqueViolation as e:
            raise DuplicateImportError(f"Import already exists for {item.original_url}") from e
        if row is None:
            raise StoreError("INSERT into imported_posts returned no row")
        return _import_from_row(row)

    def find_pending_imports(self, *, lock_cutoff: datetime, limit: int) -> List[ImportRecord]:
        rows = self._fetch_all(
            f"""
            SELECT {_IMPORT_COLUMNS}
            FROM imported_posts
            WHERE status = ANY(%s)
              AND (locked_at IS NULL OR locked_at < %s)
            ORDER BY created_at ASC, id ASC
            LIMIT %s
            """,
            ([STATUS_PENDING, STATUS_PROCESSING], lock_cutoff, max(1, int(limit))),
        )
        return [_import_from_row(r) for r in rows]

    def find_imports(
        self,
        *,
        statuses: Sequence[str],
        processed_after: Optional[datetime] = None,
        processed_before: Optional[datetime] = None,
        limit: int = 1000,
    ) -> List[ImportRecord]:
        where = ["status = ANY(%s)"]
        params: List[Any] = [list(statuses)]
        if processed_after is not None:
            where.append("processed_at > %s")
            params.append(processed_after)
        if processed_before is not None:
            where.append("processed_at < %s")
            params.append(processed_before)
        params.append(max(1, int(limit)))
        rows = self._fetch_all(
            f"""
            SELECT {_IMPORT_COLUMNS}
            FROM imported_posts
            WHERE {' AND '.join(where)}
            ORDER BY created_at ASC
            LIMIT %s
            """,
            params,
        )
        return [_import_from_row(r) for r in rows]

    def update_import(self, import_id: Any, **fields: Any) -> None:
        unknown = set(fields) - set(IMPORT_UPDATABLE_FIELDS)
        if unknown:
            raise StoreError(f"Unknown import fields: {', '.join(sorted(unknown))}")
        if not fields:
            return
        assignments = []
        params: List[Any] = []
        for name, value in fields.items():
            assignments.append(sql.SQL("{} = %s").format(sql.Identifier(name)))
            params.append(Jsonb(value) if name == "metadata" else value)
        params.append(import_id)
        query = sql.SQL("UPDATE imported_posts SET {}, updated_at = now() WHERE id = %s").format(
            sql.SQL(", ").join(assignments)
        )
        if self._execute(query, params) == 0:
            raise StoreError(f"Import record {import_id} not found")

    def delete_import(self, import_id: Any) -> None:
        self._execute("DELETE FROM imported_posts WHERE id = %s", (import_id,))

    def count_imports(
        self,
        *,
        status: Optional[str] = None,
        feed_id: Optional[Any] = None,
        processed_after: Optional[datetime] = None,
    ) -> int:
        where = ["1=1"]
        params: List[Any] = []
        if status is not None:
            where.append("status = %s")
            params.append(status)
        if feed_id is not None:
            where.append("feed_id = %s")
            params.append(feed_id)
        if processed_after is not None:
            where.append("processed_at > %s")
            params.append(processed_after)
        row = self._fetch_one(
            f"SELECT COUNT(*) AS n FROM imported_posts WHERE {' AND '.join(where)}",
            params,
        )
        return int(row["n"] or 0) if row else 0

    def sum_translation_tokens(self, *, processed_after: datetime) -> int:
        row = self._fetch_one(
            """
            SELECT COALESCE(SUM(translation_tokens), 0) AS tokens
            FROM imported_posts
            WHERE status = 'completed' AND processed_at > %s
            """,
            (processed_after,),
        )
        return int(row["tokens"] or 0) if row else 0

    # Content styles

    def get_content_style(self, key: str) -> Optional[ContentStyle]:
        row = self._fetch_one("SELECT key, prompt, max_tokens FROM content_styles WHERE key = %s", (key,))
        if not row:
            return None
        return ContentStyle(key=row["key"], prompt=row["prompt"], max_tokens=int(row["max_tokens"] or 4096))

    # Posts and media

    def list_post_slugs(self) -> Set[str]:
        rows = self._fetch_all("SELECT slug FROM posts")
        return {r["slug"] for r in rows if r["slug"]}

    def create_post(self, data: Dict[str, Any]) -> Any:
        row = self._fetch_one(
            """
            INSERT INTO posts (
              title, slug, excerpt, content, status, published_at, meta,
              hero_image_id, category_ids, tag_ids, locale, source_url
            )
            VALUES (
              %(title)s, %(slug)s, %(excerpt)s, %(content)s, %(status)s, %(published_at)s, %(meta)s,
              %(hero_image_id)s, %(category_ids)s, %(tag_ids)s, %(locale)s, %(source_url)s
            )
            RETURNING id
            """,
            {
                "title": data["title"],
                "slug": data["slug"],
                "excerpt": data.get("excerpt"),
                "content": data["content"],
                "status": data.get("status") or "draft",
                "published_at": data.get("published_at"),
                "meta": Jsonb(data.get("meta") or {}),
                "hero_image_id": data.get("hero_image_id"),
                "category_ids": list(data.get("category_ids") or []),
                "tag_ids": list(data.get("tag_ids") or []),
                "locale": data.get("locale") or "hr",
                "source_url": data.get("source_url"),
            },
        )
        if row is None:
            raise StoreError("INSERT into posts returned no row")
        return int(row["id"])

    def create_media(self, *, data: bytes, filename: str, mime_type: str, alt: str) -> Any:
        row = self._fetch_one(
            """
            INSERT INTO media (filename, mime_type, alt, size_bytes, data)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING id
            """,
            (filename, mime_type, alt, len(data), data),
        )
        if row is None:
            raise StoreError("INSERT into media returned no row")
        return int(row["id"])
