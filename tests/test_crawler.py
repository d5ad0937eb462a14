"""End-to-end tests for a crawler run with in-process fakes."""

from unittest.mock import AsyncMock, Mock

import pytest

from conftest import run, FakeSearch, ScriptedAI, make_item
from citysquare.models.content import NewsCategory, SearchCandidate
from citysquare.pipeline.crawler import CrawlerError, NewsCrawler, source_label
from citysquare.services.ai_service import AIService
from citysquare.services.content_fetcher import ArticleContent
from citysquare.services.image_service import ImageService
from citysquare.services.summarization_service import SummarizationService
from citysquare.services.update_publisher import UpdatePublisher


NOW_MS = 1_700_000_000_000
LONG_TEXT = "The city council approved a new transit line on Tuesday evening. " * 5


def clock():
    return NOW_MS / 1000


def canada_candidates(n: int = 3):
    return [
        SearchCandidate(
            title=f"Federal story number {i}",
            link=f"https://cbc.ca/news/politics/story-{i}",
            snippet="Ottawa announces new policy",
            metadata={"og:image": f"https://cbc.ca/images/{i}.jpg"},
        )
        for i in range(n)
    ]


def make_crawler(store, config_service, candidates=None, ai=None, fetcher=None, publisher=None):
    search = FakeSearch(candidates if candidates is not None else canada_candidates())
    crawler = NewsCrawler(
        store=store,
        config_service=config_service,
        search=search,
        summarizer=SummarizationService(ai or ScriptedAI()),
        images=ImageService(None, None),
        fetcher=fetcher,
        publisher=publisher,
        clock=clock,
    )
    return crawler, search


class TestRun:
    def test_run_saves_summarized_items(self, store, config_service) -> None:
        crawler, search = make_crawler(store, config_service)

        result = run(crawler.run(NewsCategory.CANADA))

        assert result.ok
        assert result.saved == 3
        assert search.queries == [("Canada news", "24 hours")]
        items = run(store.get_by_category(NewsCategory.CANADA))
        assert {i.source_url for i in items} == {c.link for c in canada_candidates()}
        assert all(i.source == "CitySquare 整理自 CBC" for i in items)
        assert all(i.timestamp == NOW_MS for i in items)
        assert all(i.id.startswith(f"news-Canada-{NOW_MS}-") for i in items)
        assert items[0].image_url.startswith("https://cbc.ca/images/")

    def test_second_run_adds_nothing(self, store, config_service) -> None:
        crawler, _ = make_crawler(store, config_service)

        first = run(crawler.run(NewsCategory.CANADA))
        second = run(crawler.run(NewsCategory.CANADA))

        assert first.saved == 3
        assert second.saved == 0
        assert second.stopped_at == "dedup"
        assert run(store.count(NewsCategory.CANADA)) == 3

    def test_summarizer_failure_ends_run_cleanly(self, store, config_service) -> None:
        client = Mock()
        client.aio.models.generate_content = AsyncMock(side_effect=RuntimeError("backend down"))
        sleeps = []

        async def record_sleep(seconds):
            sleeps.append(seconds)

        ai = AIService(client=client, sleep=record_sleep)
        crawler, _ = make_crawler(store, config_service, ai=ai)

        result = run(crawler.run(NewsCategory.CANADA))

        assert result.saved == 0
        assert result.stopped_at == "summarize"
        assert not result.ok
        assert client.aio.models.generate_content.await_count == 3
        assert sleeps == [1.0, 2.0]
        assert run(store.count(NewsCategory.CANADA)) == 0

    def test_empty_search_stops_early(self, store, config_service) -> None:
        ai = ScriptedAI()
        crawler, _ = make_crawler(store, config_service, candidates=[], ai=ai)

        result = run(crawler.run(NewsCategory.CANADA))

        assert result.stopped_at == "search"
        assert ai.calls == 0

    def test_filter_rejecting_everything_skips_model(self, store, config_service) -> None:
        ai = ScriptedAI()
        candidates = [SearchCandidate(title="BBC News", link="https://bbc.com/news")]
        crawler, _ = make_crawler(store, config_service, candidates=candidates, ai=ai)

        result = run(crawler.run(NewsCategory.CANADA))

        assert result.stopped_at == "filter"
        assert ai.calls == 0

    def test_local_city_resolves_to_region(self, store, config_service) -> None:
        candidates = [SearchCandidate(
            title="CBC Toronto: City approves new transit line",
            link="https://cbc.ca/news/toronto/transit-2024",
            snippet="...",
        )]
        crawler, search = make_crawler(store, config_service, candidates=candidates)

        result = run(crawler.run(NewsCategory.LOCAL, "Toronto"))

        assert result.effective_category == NewsCategory.GTA
        assert result.saved == 1
        assert "site:cbc.ca" in search.queries[0][0]
        saved = run(store.get_by_category(NewsCategory.GTA))
        assert saved[0].city is None
        assert saved[0].image_url is None
        assert run(store.count(NewsCategory.LOCAL)) == 0

    def test_literal_local_city_is_stamped_on_items(self, store, config_service) -> None:
        candidates = [SearchCandidate(
            title="Nowhereville fair returns this weekend",
            link="https://example.com/local/nowhereville-fair",
        )]
        events = []
        publisher = UpdatePublisher(webhook_url="")
        publisher.subscribe(events.append)
        crawler, _ = make_crawler(store, config_service, candidates=candidates, publisher=publisher)

        run(crawler.run(NewsCategory.LOCAL, "Nowhereville"))

        items = run(store.get_by_category(NewsCategory.LOCAL, city="Nowhereville"))
        assert len(items) == 1
        assert len(events) == 1
        assert events[0].category == NewsCategory.LOCAL
        assert events[0].city == "Nowhereville"
        assert events[0].item_ids == [items[0].id]

    def test_empty_category_is_rejected(self, store, config_service) -> None:
        crawler, _ = make_crawler(store, config_service)

        with pytest.raises(CrawlerError):
            run(crawler.run("  "))


class TestShouldUpdate:
    def test_empty_category_is_stale(self, store, config_service) -> None:
        crawler, _ = make_crawler(store, config_service)

        assert run(crawler.should_update(NewsCategory.CANADA)) is True

    def test_recent_item_is_fresh(self, store, config_service) -> None:
        run(store.save([make_item("a", NewsCategory.CANADA, NOW_MS - 60 * 1000)]))
        crawler, _ = make_crawler(store, config_service)

        assert run(crawler.should_update(NewsCategory.CANADA)) is False

    def test_item_older_than_interval_is_stale(self, store, config_service) -> None:
        run(store.save([make_item("a", NewsCategory.CANADA, NOW_MS - 121 * 60 * 1000)]))
        crawler, _ = make_crawler(store, config_service)

        assert run(crawler.should_update(NewsCategory.CANADA)) is True

    def test_run_if_stale_skips_fresh_but_force_refresh_runs(self, store, config_service) -> None:
        run(store.save([make_item("a", NewsCategory.CANADA, NOW_MS)]))
        crawler, search = make_crawler(store, config_service)

        assert run(crawler.run_if_stale(NewsCategory.CANADA)) is None
        assert search.queries == []

        result = run(crawler.force_refresh(NewsCategory.CANADA))
        assert result.saved == 3


class TestInsertUrl:
    URL = "https://cbc.ca/news/canada/manual-story"

    def test_inserts_article(self, store, config_service) -> None:
        fetcher = Mock()
        fetcher.fetch_article = AsyncMock(return_value=ArticleContent(LONG_TEXT))
        crawler, _ = make_crawler(store, config_service, fetcher=fetcher)

        item = run(crawler.insert_url(self.URL, "canada"))

        assert item is not None
        assert item.id.startswith(f"manual-{NOW_MS}-")
        assert item.category == NewsCategory.CANADA
        assert item.source == source_label("CBC")
        assert run(store.check_exists([self.URL])) == {self.URL}

    def test_short_content_is_skipped(self, store, config_service) -> None:
        fetcher = Mock()
        fetcher.fetch_article = AsyncMock(return_value=ArticleContent("Too short to be an article."))
        crawler, _ = make_crawler(store, config_service, fetcher=fetcher)

        assert run(crawler.insert_url(self.URL, NewsCategory.CANADA)) is None
        assert run(store.count(NewsCategory.CANADA)) == 0

    def test_existing_url_is_skipped_without_fetch(self, store, config_service) -> None:
        run(store.save([make_item("a", NewsCategory.CANADA, 1, source_url=self.URL)]))
        fetcher = Mock()
        fetcher.fetch_article = AsyncMock(return_value=ArticleContent(LONG_TEXT))
        crawler, _ = make_crawler(store, config_service, fetcher=fetcher)

        assert run(crawler.insert_url(self.URL, NewsCategory.CANADA)) is None
        fetcher.fetch_article.assert_not_awaited()

    def test_embedded_video_wins_over_model_link(self, store, config_service) -> None:
        fetcher = Mock()
        fetcher.fetch_article = AsyncMock(
            return_value=ArticleContent(LONG_TEXT, video_url="https://www.youtube.com/embed/abc123")
        )
        ai = ScriptedAI(youtube_url="https://www.youtube.com/watch?v=model")
        crawler, _ = make_crawler(store, config_service, ai=ai, fetcher=fetcher)

        item = run(crawler.insert_url(self.URL, NewsCategory.CANADA))

        assert item.youtube_url == "https://www.youtube.com/embed/abc123"

    def test_model_video_link_used_when_page_has_none(self, store, config_service) -> None:
        fetcher = Mock()
        fetcher.fetch_article = AsyncMock(return_value=ArticleContent(LONG_TEXT))
        ai = ScriptedAI(youtube_url="https://www.youtube.com/watch?v=model")
        crawler, _ = make_crawler(store, config_service, ai=ai, fetcher=fetcher)

        item = run(crawler.insert_url(self.URL, NewsCategory.CANADA))

        assert item.youtube_url == "https://www.youtube.com/watch?v=model"

    def test_requires_fetcher(self, store, config_service) -> None:
        crawler, _ = make_crawler(store, config_service)

        with pytest.raises(CrawlerError):
            run(crawler.insert_url(self.URL, NewsCategory.CANADA))


class TestSourceLabel:
    def test_fallback_label(self) -> None:
        assert source_label("") == "CitySquare 整理自 互联网"
        assert source_label(None) == "CitySquare 整理自 互联网"
        assert source_label(" CBC ") == "CitySquare 整理自 CBC"
