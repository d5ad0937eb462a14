import logging
from typing import List

from citysquare.models.content import NewsItem, SearchCandidate
from citysquare.services.news_store import NewsStore


RECENT_TITLE_WINDOW = 100


class DeduplicationService:
    """
    Two-stage duplicate guard around the model call.

    ``filter_new_candidates`` runs before summarization and drops candidates
    whose URL is already stored. ``filter_new_items`` runs before persistence and
    drops items whose title exactly matches one of the category's recent titles.
    Neither check is atomic; the store's upsert keeps double inserts harmless.
    """

    def __init__(self, store: NewsStore, recent_title_window: int = RECENT_TITLE_WINDOW):
        self.store = store
        self.recent_title_window = recent_title_window
        self.logger = logging.getLogger(__name__)

    async def filter_new_candidates(self, candidates: List[SearchCandidate]) -> List[SearchCandidate]:
        if not candidates:
            return []
        existing = await self.store.check_exists(c.link for c in candidates)

        kept: List[SearchCandidate] = []
        seen_links = set()
        for candidate in candidates:
            if candidate.link in existing or candidate.link in seen_links:
                continue
            seen_links.add(candidate.link)
            kept.append(candidate)

        self.logger.info(f"🔁 URL dedup: {len(candidates)} → {len(kept)} ({len(existing)} already stored)")
        return kept

    async def filter_new_items(self, items: List[NewsItem]) -> List[NewsItem]:
        if not items:
            return []

        kept: List[NewsItem] = []
        titles_by_category = {}
        for item in items:
            if item.category not in titles_by_category:
                titles_by_category[item.category] = await self.store.get_recent_titles(
                    item.category, self.recent_title_window
                )
            existing_titles = titles_by_category[item.category]
            if item.title in existing_titles:
                self.logger.debug(f"Duplicate title skipped: {item.title[:60]}")
                continue
            # Also catches the same title twice within one batch
            existing_titles.add(item.title)
            kept.append(item)

        if len(kept) < len(items):
            self.logger.info(f"🔁 Title dedup: {len(items)} → {len(kept)}")
        return kept
