from __future__ import annotations

import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Set

import aiosqlite

from citysquare.models.content import NewsItem


SaveHook = Callable[[str], Awaitable[None]]

_COLUMNS = (
    "id, title, summary, content, category, timestamp, "
    "image_url, source, source_url, youtube_url, city"
)


class NewsStoreError(Exception):
    pass


def _row_to_item(row) -> NewsItem:
    return NewsItem(
        id=row[0],
        title=row[1],
        summary=row[2],
        content=row[3],
        category=row[4],
        timestamp=int(row[5]),
        image_url=row[6],
        source=row[7],
        source_url=row[8],
        youtube_url=row[9],
        city=row[10],
    )


class NewsStore:
    """
    SQLite persistence for news items.

    ``save`` is an upsert keyed by id, so concurrent or repeated writers are
    idempotent. After a successful save every registered hook runs once per
    saved category (retention enforcement is wired in this way).
    """

    def __init__(self, db_path: str = "data/citysquare.db"):
        self.db_path = db_path
        self.logger = logging.getLogger(__name__)
        self._save_hooks: List[SaveHook] = []

    def add_save_hook(self, hook: SaveHook) -> None:
        self._save_hooks.append(hook)

    async def initialize_db(self) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS news (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    summary TEXT,
                    content TEXT,
                    category TEXT NOT NULL,
                    timestamp INTEGER NOT NULL,
                    image_url TEXT,
                    source TEXT,
                    source_url TEXT,
                    youtube_url TEXT,
                    city TEXT
                );
                """
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_news_category_ts ON news(category, timestamp DESC);"
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_news_source_url ON news(source_url);"
            )
            await db.commit()

    async def get_by_category(
        self,
        category: str,
        city: Optional[str] = None,
        limit: Optional[int] = 50,
    ) -> List[NewsItem]:
        """Items in ``category`` newest first. ``limit=None`` returns all of them."""
        sql = f"SELECT {_COLUMNS} FROM news WHERE category = ?"
        params: list = [category]
        if city:
            sql += " AND city = ?"
            params.append(city)
        sql += " ORDER BY timestamp DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [_row_to_item(r) for r in rows]

    async def check_exists(self, urls: Iterable[str]) -> Set[str]:
        """Return the subset of ``urls`` already stored as a source_url."""
        urls = [u for u in dict.fromkeys(urls) if u]
        if not urls:
            return set()

        found: Set[str] = set()
        async with aiosqlite.connect(self.db_path) as db:
            # Chunk to stay under SQLite's bound-parameter limit
            for i in range(0, len(urls), 500):
                chunk = urls[i:i + 500]
                placeholders = ",".join("?" for _ in chunk)
                cursor = await db.execute(
                    f"SELECT DISTINCT source_url FROM news WHERE source_url IN ({placeholders})",
                    chunk,
                )
                found.update(row[0] for row in await cursor.fetchall())
        return found

    async def get_recent_titles(self, category: str, limit: int = 100) -> Set[str]:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT title FROM news WHERE category = ? ORDER BY timestamp DESC LIMIT ?",
                (category, limit),
            )
            rows = await cursor.fetchall()
        return {row[0] for row in rows}

    async def save(self, items: List[NewsItem]) -> None:
        """Upsert ``items`` in one transaction, then run save hooks per category.

        Raises ``NewsStoreError`` on write failure; hooks do not run in that case.
        """
        if not items:
            return

        rows = [
            (
                item.id, item.title, item.summary, item.content, item.category,
                int(item.timestamp), item.image_url, item.source, item.source_url,
                item.youtube_url, item.city,
            )
            for item in items
        ]
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.executemany(
                    f"""
                    INSERT INTO news ({_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        title = excluded.title,
                        summary = excluded.summary,
                        content = excluded.content,
                        category = excluded.category,
                        timestamp = excluded.timestamp,
                        image_url = excluded.image_url,
                        source = excluded.source,
                        source_url = excluded.source_url,
                        youtube_url = excluded.youtube_url,
                        city = excluded.city
                    """,
                    rows,
                )
                await db.commit()
        except aiosqlite.Error as e:
            self.logger.error(f"❌ News save failed for {len(items)} items: {e}")
            raise NewsStoreError(f"Failed to save news items: {e}") from e

        self.logger.info(f"💾 Saved {len(items)} news items")

        for category in dict.fromkeys(item.category for item in items):
            for hook in self._save_hooks:
                try:
                    await hook(category)
                except Exception as e:  # noqa: BLE001
                    self.logger.error(f"❌ Post-save hook failed for {category}: {e}", exc_info=True)

    async def delete_many(self, ids: Iterable[str]) -> int:
        ids = list(dict.fromkeys(ids))
        if not ids:
            return 0
        deleted = 0
        try:
            async with aiosqlite.connect(self.db_path) as db:
                for i in range(0, len(ids), 500):
                    chunk = ids[i:i + 500]
                    placeholders = ",".join("?" for _ in chunk)
                    cursor = await db.execute(f"DELETE FROM news WHERE id IN ({placeholders})", chunk)
                    deleted += cursor.rowcount or 0
                await db.commit()
        except aiosqlite.Error as e:
            raise NewsStoreError(f"Failed to delete news items: {e}") from e
        return deleted

    async def get_last_update_time(self, category: str) -> int:
        """``max(timestamp)`` over the category, or 0 when it is empty."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT MAX(timestamp) FROM news WHERE category = ?", (category,)
            )
            row = await cursor.fetchone()
        return int(row[0]) if row and row[0] is not None else 0

    async def count(self, category: str) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT COUNT(*) FROM news WHERE category = ?", (category,))
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def clear_category(self, category: str) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM news WHERE category = ?", (category,))
            await db.commit()
            return cursor.rowcount or 0
