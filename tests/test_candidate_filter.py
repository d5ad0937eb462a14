"""Tests for candidate filtering heuristics."""

import pytest

from citysquare.models.content import NewsCategory, SearchCandidate
from citysquare.services.candidate_filter import CandidateFilter, is_boilerplate_title, is_deep_link


def candidate(title: str, link: str, snippet: str = "") -> SearchCandidate:
    return SearchCandidate(title=title, link=link, snippet=snippet)


class TestDeepLink:
    @pytest.mark.parametrize("url", [
        "https://bbc.com/news",
        "https://bbc.com/",
        "https://bbc.com",
        "https://www.cbc.ca/index.html",
        "https://example.com/tag/toronto",
        "https://example.com/category/politics/",
        "ftp://example.com/some/long/article-path",
        "not a url",
    ])
    def test_rejects_listing_and_root_paths(self, url) -> None:
        assert is_deep_link(url) is False

    def test_accepts_long_article_path(self) -> None:
        assert is_deep_link("https://cbc.ca/news/toronto/transit-2024") is True

    def test_rejects_short_path_without_query(self) -> None:
        assert is_deep_link("https://example.com/a/b") is False

    def test_accepts_short_path_with_long_query(self) -> None:
        assert is_deep_link("https://example.com/story?id=123456") is True


class TestBoilerplateTitle:
    @pytest.mark.parametrize("title", [
        "CP24 Live Stream",
        "Breaking News - Toronto Star",
        "Press Release: Q3 results",
        "新闻首页",
        "多伦多直播",
    ])
    def test_rejects_boilerplate(self, title) -> None:
        assert is_boilerplate_title(title) is True

    def test_accepts_real_headline(self) -> None:
        assert is_boilerplate_title("CBC Toronto: City approves new transit line") is False

    @pytest.mark.parametrize("title", [
        "Toronto unveils bold design in new waterfront park",
        "Questions about user privacy at Toronto library",
        "Local radio station marks 50 years on air in Toronto",
    ])
    def test_phrases_inside_ordinary_words_are_not_boilerplate(self, title) -> None:
        assert is_boilerplate_title(title) is False


class TestCandidateFilter:
    def test_gta_scenario_candidate_passes(self) -> None:
        item = candidate(
            "CBC Toronto: City approves new transit line",
            "https://cbc.ca/news/toronto/transit-2024",
            "...",
        )

        assert CandidateFilter().filter([item], NewsCategory.GTA, "Toronto") == [item]

    def test_root_listing_rejected_regardless_of_title(self) -> None:
        item = candidate("Toronto transit line approved", "https://bbc.com/news", "toronto")

        assert CandidateFilter().filter([item], NewsCategory.GTA, "Toronto") == []

    def test_regional_keyword_required(self) -> None:
        off_region = candidate("Calgary opens new library branch", "https://cbc.ca/news/calgary/library-2024")
        member_city = candidate("Markham council votes on budget", "https://yorkregion.com/news/markham-budget-vote")

        kept = CandidateFilter().filter([off_region, member_city], NewsCategory.GTA, "Toronto")

        assert kept == [member_city]

    def test_strict_location_check_for_literal_local(self) -> None:
        match = candidate("Nowhereville fair returns", "https://example.com/local/nowhereville-fair")
        miss = candidate("County fair returns", "https://example.com/local/county-fair-2024")

        kept = CandidateFilter().filter([match, miss], NewsCategory.LOCAL, "Nowhereville")

        assert kept == [match]

    def test_location_checks_skipped_for_national_categories(self) -> None:
        item = candidate("Federal budget tabled in Ottawa", "https://cbc.ca/news/politics/budget-2024")

        assert CandidateFilter().filter([item], NewsCategory.CANADA) == [item]

    def test_default_local_context_is_not_a_location_filter(self) -> None:
        item = candidate("Community garden opens", "https://example.com/news/community-garden")

        assert CandidateFilter().filter([item], NewsCategory.LOCAL, "本地") == [item]

    def test_region_keywords_match_whole_words(self) -> None:
        lavalier = candidate("Lavalier microphones reviewed", "https://example.com/reviews/lavalier-mics-2024")
        laval = candidate("Laval opens new metro station", "https://example.com/news/laval-metro-2024")

        kept = CandidateFilter().filter([lavalier, laval], NewsCategory.MONTREAL, "Montreal")

        assert kept == [laval]

    def test_literal_place_matches_whole_words(self) -> None:
        inside_word = candidate("Parisville bakery wins award", "https://example.com/local/parisville-bakery")
        exact = candidate("Paris council meets tonight", "https://example.com/local/paris-council-2024")

        kept = CandidateFilter().filter([inside_word, exact], NewsCategory.LOCAL, "Paris")

        assert kept == [exact]
