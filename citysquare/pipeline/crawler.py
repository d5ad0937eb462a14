"""
The crawler run: one category from search query to persisted items.

Stages execute strictly in order. Any stage that ends with nothing to pass
on ends the run cleanly, and no stage failure escapes ``run``.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from citysquare.models.content import NewsCategory, NewsItem, NewsUpdated, QueryPlan, SearchCandidate, SummaryResult
from citysquare.services.ai_service import AIServiceError
from citysquare.services.candidate_filter import CandidateFilter
from citysquare.services.category_resolver import CategoryResolver, is_default_context
from citysquare.services.config_service import ConfigService
from citysquare.services.content_fetcher import ContentFetcher
from citysquare.services.deduplication_service import DeduplicationService
from citysquare.services.image_service import ImageService, is_http_url
from citysquare.services.news_store import NewsStore, NewsStoreError
from citysquare.services.search_gateway import SearchGateway
from citysquare.services.summarization_service import SummarizationService
from citysquare.services.update_publisher import UpdatePublisher
from citysquare.utils.logging_config import PerformanceTracker, log_stage_metrics


MIN_MANUAL_CONTENT_CHARS = 100
# Candidates sent to the model, as a multiple of the category's article target
SUMMARY_CANDIDATE_FACTOR = 2


class CrawlerError(Exception):
    pass


@dataclass
class RunResult:
    category: str
    effective_category: str
    context: Optional[str] = None
    searched: int = 0
    filtered: int = 0
    deduplicated: int = 0
    summarized: int = 0
    saved: int = 0
    item_ids: List[str] = field(default_factory=list)
    stopped_at: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def source_label(source_name: Optional[str]) -> str:
    return f"CitySquare 整理自 {(source_name or '').strip() or '互联网'}"


class NewsCrawler:
    """
    Orchestrates a full category run and exposes the driver entry points
    ``run``, ``force_refresh``, ``should_update`` and ``insert_url``.
    """

    def __init__(
        self,
        store: NewsStore,
        config_service: ConfigService,
        search: SearchGateway,
        summarizer: SummarizationService,
        images: ImageService,
        fetcher: Optional[ContentFetcher] = None,
        resolver: Optional[CategoryResolver] = None,
        candidate_filter: Optional[CandidateFilter] = None,
        dedup: Optional[DeduplicationService] = None,
        publisher: Optional[UpdatePublisher] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.store = store
        self.config_service = config_service
        self.search = search
        self.summarizer = summarizer
        self.images = images
        self.fetcher = fetcher
        self.resolver = resolver or CategoryResolver()
        self.candidate_filter = candidate_filter or CandidateFilter(self.resolver)
        self.dedup = dedup or DeduplicationService(store)
        self.publisher = publisher
        self.clock = clock or time.time
        self.logger = logging.getLogger(__name__)

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    async def should_update(self, category: str, context: Optional[str] = None) -> bool:
        """True when the effective category's newest item is older than its refresh interval."""
        effective, _ = self.resolver.resolve(category, context)
        config = await self.config_service.get()
        interval_ms = self.resolver.refresh_interval_minutes(effective, config.news) * 60 * 1000
        last_update = await self.store.get_last_update_time(effective)
        return (self._now_ms() - last_update) > interval_ms

    async def run_if_stale(self, category: str, context: Optional[str] = None) -> Optional[RunResult]:
        if not await self.should_update(category, context):
            self.logger.debug(f"{category} is fresh, skipping")
            return None
        return await self.run(category, context)

    async def force_refresh(self, category: str, context: Optional[str] = None) -> RunResult:
        self.logger.info(f"⚡ Force refresh for {category}" + (f" ({context})" if context else ""))
        return await self.run(category, context)

    async def run(self, category: str, context: Optional[str] = None) -> RunResult:
        """Execute the full pipeline for one category. Stage failures never escape."""
        if not category or not category.strip():
            raise CrawlerError("category is required")

        effective, effective_context = self.resolver.resolve(category, context)
        result = RunResult(category=category, effective_category=effective, context=effective_context)

        self.logger.info(f"🚀 Crawler running for {category}" + (f" ({context})" if context else "") + f" → {effective}")
        try:
            with PerformanceTracker(f"crawl {effective}", self.logger):
                await self._run_stages(result, category, context)
        except Exception as e:  # noqa: BLE001
            result.error = str(e)
            self.logger.error(f"❌ Crawler run for {category} failed: {e}", exc_info=True)
        return result

    async def _run_stages(self, result: RunResult, category: str, context: Optional[str]) -> None:
        config = await self.config_service.get()
        plan = self.resolver.build_query_plan(category, context, config.news)

        started = time.perf_counter()
        candidates = await self.search.search(plan.build_query(), plan.time_window)
        result.searched = len(candidates)
        if not candidates:
            result.stopped_at = "search"
            self.logger.info(f"No search results for {plan.category}")
            return

        candidates = self.candidate_filter.filter(candidates, plan.category, plan.context)
        result.filtered = len(candidates)
        log_stage_metrics(self.logger, "filter", result.searched, result.filtered,
                          (time.perf_counter() - started) * 1000, category=plan.category)
        if not candidates:
            result.stopped_at = "filter"
            return

        candidates = await self.dedup.filter_new_candidates(candidates)
        result.deduplicated = len(candidates)
        if not candidates:
            result.stopped_at = "dedup"
            self.logger.info(f"All candidates for {plan.category} already stored")
            return

        candidates = candidates[: max(1, plan.article_count) * SUMMARY_CANDIDATE_FACTOR]

        contents: Dict[str, Optional[str]] = {}
        if self.fetcher is not None:
            contents = await self.fetcher.fetch_many([c.link for c in candidates])

        started = time.perf_counter()
        try:
            summaries = await self.summarizer.summarize(candidates, plan, contents)
        except AIServiceError as e:
            result.stopped_at = "summarize"
            result.error = str(e)
            self.logger.error(f"❌ Summarization failed for {plan.category}, ending run with no new items: {e}")
            return
        result.summarized = len(summaries)
        log_stage_metrics(self.logger, "summarize", len(candidates), len(summaries),
                          (time.perf_counter() - started) * 1000, category=plan.category)
        if not summaries:
            result.stopped_at = "summarize"
            return

        items = await self._assemble(summaries[: plan.article_count], candidates, plan)
        items = await self.dedup.filter_new_items(items)
        if not items:
            result.stopped_at = "title-dedup"
            return

        try:
            await self.store.save(items)
        except NewsStoreError as e:
            result.stopped_at = "save"
            result.error = str(e)
            return

        result.saved = len(items)
        result.item_ids = [i.id for i in items]
        await self._publish(plan.category, items, plan.context)

    async def _assemble(
        self,
        summaries: List[SummaryResult],
        candidates: List[SearchCandidate],
        plan: QueryPlan,
    ) -> List[NewsItem]:
        now_ms = self._now_ms()
        city = plan.context if plan.category == NewsCategory.LOCAL and not is_default_context(plan.context) else None

        items: List[NewsItem] = []
        for index, summary in enumerate(summaries):
            candidate = candidates[summary.id]
            item_id = f"news-{plan.category}-{now_ms}-{index}"
            image_url = await self.images.resolve(candidate, summary.title, plan.category, item_id)
            items.append(NewsItem(
                id=item_id,
                title=summary.title,
                summary=summary.summary,
                content=summary.content or summary.summary,
                category=plan.category,
                timestamp=now_ms,
                source=source_label(summary.source_name or candidate.metadata.get("og:site_name")),
                image_url=image_url,
                source_url=candidate.link.strip(),
                youtube_url=summary.youtube_url if is_http_url(summary.youtube_url) else None,
                city=city,
            ))
        return items

    async def _publish(self, category: str, items: List[NewsItem], city: Optional[str]) -> None:
        if self.publisher is None:
            return
        await self.publisher.publish(NewsUpdated(
            category=category,
            item_ids=[i.id for i in items],
            timestamp=self._now_ms(),
            city=city if category == NewsCategory.LOCAL else None,
        ))

    async def insert_url(self, url: str, category: str, city: Optional[str] = None) -> Optional[NewsItem]:
        """Manually ingest one article URL into ``category``."""
        if self.fetcher is None:
            raise CrawlerError("manual insert requires a ContentFetcher")
        category = self.resolver.normalize(category)
        url = url.strip()

        if await self.store.check_exists([url]):
            self.logger.info(f"Already stored, skipping: {url}")
            return None

        article = await self.fetcher.fetch_article(url)
        content = article.text if article else None
        if not content or len(content) < MIN_MANUAL_CONTENT_CHARS:
            self.logger.warning(f"⚠️ Content too short or missing for {url}, skipping")
            return None

        try:
            summary = await self.summarizer.summarize_one(url, content)
        except AIServiceError as e:
            self.logger.error(f"❌ Summarization failed for {url}: {e}")
            return None
        if summary is None:
            self.logger.warning(f"⚠️ Model returned no usable summary for {url}")
            return None

        now_ms = self._now_ms()
        item_id = f"manual-{now_ms}-{uuid.uuid4().hex[:6]}"
        image_url = await self.images.resolve(None, summary.title, category, item_id)
        # A video embedded in the page wins over one the model found
        youtube_url = article.video_url
        if youtube_url is None and is_http_url(summary.youtube_url):
            youtube_url = summary.youtube_url
        item = NewsItem(
            id=item_id,
            title=summary.title,
            summary=summary.summary,
            content=summary.content or summary.summary,
            category=category,
            timestamp=now_ms,
            source=source_label(summary.source_name),
            image_url=image_url,
            source_url=url,
            youtube_url=youtube_url,
            city=city if category == NewsCategory.LOCAL and not is_default_context(city) else None,
        )

        if not await self.dedup.filter_new_items([item]):
            self.logger.info(f"Duplicate title, skipping: {item.title}")
            return None

        try:
            await self.store.save([item])
        except NewsStoreError as e:
            self.logger.error(f"❌ Manual insert save failed: {e}")
            return None

        self.logger.info(f"✅ Inserted {item.id}: {item.title}")
        await self._publish(category, [item], item.city)
        return item
