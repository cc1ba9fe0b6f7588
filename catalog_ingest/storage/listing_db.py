# catalog_ingest/storage/listing_db.py

"""SQLite-backed listing store."""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from catalog_ingest.config.settings import Settings
from catalog_ingest.errors import PersistenceFailure
from catalog_ingest.filters.deduplicator import normalize_url
from catalog_ingest.models.job import WorkItem
from catalog_ingest.models.listing import SavedListingRecord

logger = logging.getLogger("catalog_ingest.listing_db")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS listings (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    platform      TEXT    NOT NULL,
    canonical_url TEXT    NOT NULL,
    url           TEXT    NOT NULL,
    title         TEXT    NOT NULL,
    image         TEXT    NOT NULL DEFAULT '',
    price         TEXT    NOT NULL DEFAULT '',
    moq           TEXT    NOT NULL DEFAULT '',
    store_name    TEXT    NOT NULL DEFAULT '',
    description   TEXT    NOT NULL DEFAULT '',
    categories    TEXT    NOT NULL DEFAULT '[]',
    terms         TEXT    NOT NULL DEFAULT '[]',
    detail_json   TEXT,
    created_at    TEXT    NOT NULL,
    updated_at    TEXT    NOT NULL,
    UNIQUE (platform, canonical_url)
);

CREATE TABLE IF NOT EXISTS listing_categories (
    listing_id INTEGER NOT NULL
               REFERENCES listings(id) ON DELETE CASCADE,
    category   TEXT    NOT NULL,
    PRIMARY KEY (listing_id, category)
);

CREATE INDEX IF NOT EXISTS idx_listing_categories_category
    ON listing_categories(category);
CREATE INDEX IF NOT EXISTS idx_listings_created
    ON listings(platform, created_at);
"""


def _merge(existing: str, incoming: list[str]) -> list[str]:
    """Union two tag lists, keeping first-seen order."""
    try:
        current: Any = json.loads(existing or "[]")
    except json.JSONDecodeError:
        current = []
    if not isinstance(current, list):
        current = []
    return list(dict.fromkeys([*map(str, current), *incoming]))


class SqliteListingStore:
    """SQLite-backed :class:`ListingStore`.

    Listings are never deleted here; re-seen listings have their
    display fields refreshed and their coverage tags merged.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        path = db_path or Settings.DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(path), check_same_thread=False,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA)
        logger.debug("SqliteListingStore opened at %s", path)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # ── Writes ───────────────────────────────────────────

    def upsert_listings(
        self,
        records: list[SavedListingRecord],
        saved_at: datetime | None = None,
    ) -> int:
        """Upsert records by ``(platform, canonical_url)``.

        Returns the number of records written.  Any SQLite error rolls
        the whole batch back and raises :class:`PersistenceFailure`.
        """
        ts = (saved_at or datetime.now()).isoformat()
        count = 0
        try:
            cur = self._conn.cursor()
            for rec in records:
                canonical = rec.canonical_url or normalize_url(rec.url)
                if not canonical:
                    continue
                row = cur.execute(
                    "SELECT id, categories, terms FROM listings "
                    "WHERE platform = ? AND canonical_url = ?",
                    (rec.platform, canonical),
                ).fetchone()
                if row is None:
                    cur.execute(
                        "INSERT INTO listings (platform, canonical_url, "
                        "url, title, image, price, moq, store_name, "
                        "description, categories, terms, created_at, "
                        "updated_at) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            rec.platform, canonical, rec.url,
                            rec.title or "Product", rec.image,
                            rec.price_text, rec.moq_text, rec.store_name,
                            rec.description,
                            json.dumps(rec.categories, ensure_ascii=False),
                            json.dumps(rec.terms, ensure_ascii=False),
                            ts, ts,
                        ),
                    )
                    listing_id = cur.lastrowid
                    categories = rec.categories
                else:
                    listing_id = row[0]
                    categories = _merge(row[1], rec.categories)
                    terms = _merge(row[2], rec.terms)
                    cur.execute(
                        "UPDATE listings SET url = ?, title = ?, "
                        "image = COALESCE(NULLIF(?, ''), image), "
                        "price = COALESCE(NULLIF(?, ''), price), "
                        "moq = COALESCE(NULLIF(?, ''), moq), "
                        "store_name = COALESCE(NULLIF(?, ''), store_name), "
                        "categories = ?, terms = ?, updated_at = ? "
                        "WHERE id = ?",
                        (
                            rec.url, rec.title or "Product", rec.image,
                            rec.price_text, rec.moq_text, rec.store_name,
                            json.dumps(categories, ensure_ascii=False),
                            json.dumps(terms, ensure_ascii=False),
                            ts, listing_id,
                        ),
                    )
                cur.executemany(
                    "INSERT OR IGNORE INTO listing_categories "
                    "(listing_id, category) VALUES (?, ?)",
                    [(listing_id, c) for c in categories],
                )
                count += 1
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            raise PersistenceFailure(
                f"Listing upsert failed: {exc}"
            ) from exc

        if count:
            logger.info("Upserted %d listings at %s", count, ts)
        return count

    # ── Reads ────────────────────────────────────────────

    def count_listings(self, platform: str, category: str) -> int:
        """Count listings of a platform tagged with a category."""
        row = self._conn.execute(
            "SELECT COUNT(*) FROM listings l "
            "JOIN listing_categories c ON c.listing_id = l.id "
            "WHERE l.platform = ? AND c.category = ?",
            (platform, category),
        ).fetchone()
        return int(row[0]) if row else 0

    def listings_missing_detail(
        self,
        platform: str | None = None,
        limit: int | None = None,
    ) -> list[WorkItem]:
        """Listings with no detail yet, newest first."""
        sql = (
            "SELECT id, platform, url, title FROM listings "
            "WHERE detail_json IS NULL"
        )
        params: list[Any] = []
        if platform:
            sql += " AND platform = ?"
            params.append(platform)
        sql += " ORDER BY created_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = self._conn.execute(sql, params).fetchall()
        return [
            WorkItem(
                item_id=str(r[0]),
                label=r[3],
                payload={"platform": r[1], "url": r[2]},
            )
            for r in rows
        ]

    def get_listing(
        self, platform: str, url: str,
    ) -> dict[str, object] | None:
        """Return one stored listing by platform and (any form of) URL."""
        row = self._conn.execute(
            "SELECT id, platform, canonical_url, url, title, price, moq, "
            "       categories, terms, created_at "
            "FROM listings WHERE platform = ? AND canonical_url = ?",
            (platform, normalize_url(url)),
        ).fetchone()
        if row is None:
            return None
        return {
            "id": row[0],
            "platform": row[1],
            "canonical_url": row[2],
            "url": row[3],
            "title": row[4],
            "price": row[5],
            "moq": row[6],
            "categories": json.loads(row[7]),
            "terms": json.loads(row[8]),
            "created_at": row[9],
        }
