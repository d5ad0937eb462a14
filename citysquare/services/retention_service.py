import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from citysquare.models.content import NewsItem
from citysquare.services.blob_storage import BlobStorage, BlobStorageError, is_generated_asset
from citysquare.services.category_resolver import CategoryResolver
from citysquare.services.config_service import ConfigService
from citysquare.services.news_store import NewsStore


AGE_CUTOFF_MS = 48 * 60 * 60 * 1000


@dataclass
class RetentionReport:
    category: str
    count_limit: int
    expired_ids: List[str] = field(default_factory=list)
    overflow_ids: List[str] = field(default_factory=list)
    evicted_ids: List[str] = field(default_factory=list)
    blobs_deleted: int = 0


def select_evictions(items: List[NewsItem], count_limit: int, now_ms: int, age_cutoff_ms: int = AGE_CUTOFF_MS):
    """Return ``(expired_ids, overflow_ids, evicted_ids)``.

    An item is evicted when it is older than the cutoff OR falls outside the
    newest ``count_limit`` items. The union preserves newest-first order.
    """
    ordered = sorted(items, key=lambda i: (i.timestamp, i.id), reverse=True)
    cutoff = now_ms - age_cutoff_ms

    expired = [i.id for i in ordered if i.timestamp < cutoff]
    overflow = [i.id for i in ordered[max(0, count_limit):]]

    evicted = list(dict.fromkeys(expired + overflow))
    position = {item.id: n for n, item in enumerate(ordered)}
    evicted.sort(key=position.__getitem__)
    return expired, overflow, evicted


class RetentionEnforcer:
    """
    Evicts items per category by age and by count, and removes generated
    images belonging to evicted items. The count limit is read fresh from
    configuration on every pass; the age cutoff is fixed.
    """

    def __init__(
        self,
        store: NewsStore,
        config_service: ConfigService,
        storage: Optional[BlobStorage] = None,
        resolver: Optional[CategoryResolver] = None,
        clock: Optional[Callable[[], float]] = None,
        age_cutoff_ms: int = AGE_CUTOFF_MS,
    ):
        self.store = store
        self.config_service = config_service
        self.storage = storage
        self.resolver = resolver or CategoryResolver()
        self.clock = clock or time.time
        self.age_cutoff_ms = age_cutoff_ms
        self.logger = logging.getLogger(__name__)

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    async def enforce(self, category: str) -> RetentionReport:
        config = await self.config_service.get()
        count_limit = self.resolver.retention_limit(category, config.news)
        items = await self.store.get_by_category(category, limit=None)

        expired, overflow, evicted = select_evictions(items, count_limit, self._now_ms(), self.age_cutoff_ms)
        report = RetentionReport(
            category=category,
            count_limit=count_limit,
            expired_ids=expired,
            overflow_ids=overflow,
            evicted_ids=evicted,
        )
        if not evicted:
            return report

        evicted_set = set(evicted)
        report.blobs_deleted = await self._delete_generated_images(
            [i for i in items if i.id in evicted_set]
        )

        await self.store.delete_many(evicted)
        self.logger.info(
            f"🧹 Retention {category}: evicted {len(evicted)} "
            f"(expired {len(expired)}, over limit {len(overflow)}, limit {count_limit})"
        )
        return report

    async def _delete_generated_images(self, items: List[NewsItem]) -> int:
        if self.storage is None:
            return 0
        paths = []
        for item in items:
            if is_generated_asset(item.image_url):
                path = self.storage.path_from_public_url(item.image_url)
                if path:
                    paths.append(path)
        if not paths:
            return 0
        try:
            await self.storage.delete(paths)
        except BlobStorageError as e:
            self.logger.warning(f"⚠️ Could not delete {len(paths)} generated image(s): {e}")
            return 0
        return len(paths)
