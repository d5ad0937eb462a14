import logging
import re
from typing import List, Optional
from urllib.parse import urlparse

from citysquare.models.content import NewsCategory, SearchCandidate
from citysquare.services.category_resolver import CategoryResolver, contains_term, is_default_context


MIN_PATH_LENGTH = 10
MIN_QUERY_LENGTH = 5

# Generic top-level paths that are listings, never articles
GENERIC_PATHS = {
    "home", "index", "index.html", "index.htm", "index.php", "default.aspx",
    "news", "latest", "local", "world", "canada", "politics", "business",
    "category", "categories", "tag", "tags", "topic", "topics", "section", "sections",
    "live", "video", "videos", "archive", "archives", "search", "about", "contact",
}

# Listing prefixes where "/tag/<name>" style paths are still index pages
LISTING_PREFIXES = {"tag", "tags", "category", "categories", "topic", "topics", "author", "section"}

# Matched on word boundaries
BOILERPLATE_TITLE_PHRASES = [
    "live stream", "livestream", "watch live", "live updates", "breaking news",
    "latest news", "top stories", "news headlines", "headlines today",
    "press release", "investor relations", "about us", "contact us", "our team",
    "careers at", "advertise with us", "subscribe to", "sign in", "home page", "homepage",
    "page not found", "tag:", "category:", "posts tagged",
    "station profile", "tv schedule",
]

# CJK has no word separators, so these match as substrings
BOILERPLATE_TITLE_PHRASES_ZH = [
    "直播", "突发新闻", "最新新闻", "新闻首页", "新闻中心", "首页", "新闻稿",
    "关于我们", "联系我们", "公司简介", "企业介绍", "栏目", "标签", "归档",
]

_BOILERPLATE_PATTERN = re.compile(
    r"(?<![a-z0-9])(?:" + "|".join(re.escape(p) for p in BOILERPLATE_TITLE_PHRASES) + r")(?![a-z0-9])"
)


def is_deep_link(url: str) -> bool:
    """Heuristic for "this URL points at an article, not a section or homepage"."""
    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False

    path = parsed.path or ""
    stripped = path.strip("/").lower()
    if not stripped:
        return False

    segments = [s for s in stripped.split("/") if s]
    if stripped in GENERIC_PATHS:
        return False
    if len(segments) <= 2 and segments[0] in LISTING_PREFIXES:
        return False

    return len(path) > MIN_PATH_LENGTH or len(parsed.query) > MIN_QUERY_LENGTH


def is_boilerplate_title(title: str) -> bool:
    lowered = (title or "").lower()
    if _BOILERPLATE_PATTERN.search(lowered):
        return True
    return any(phrase in lowered for phrase in BOILERPLATE_TITLE_PHRASES_ZH)


class CandidateFilter:
    """
    Rejects low-value or mismatched search results before any content fetch
    or model call is spent on them. Checks run cheapest and least selective first.
    """

    def __init__(self, resolver: Optional[CategoryResolver] = None):
        self.resolver = resolver or CategoryResolver()
        self.logger = logging.getLogger(__name__)

    def filter(
        self,
        candidates: List[SearchCandidate],
        category: str,
        context: Optional[str] = None,
    ) -> List[SearchCandidate]:
        """Apply deep-link, boilerplate and location checks in order.

        ``category`` is the effective category produced by the resolver.
        """
        total = len(candidates)

        kept = [c for c in candidates if is_deep_link(c.link)]
        deep_link_rejected = total - len(kept)

        before = len(kept)
        kept = [c for c in kept if not is_boilerplate_title(c.title)]
        boilerplate_rejected = before - len(kept)

        before = len(kept)
        if category == NewsCategory.LOCAL and not is_default_context(context):
            place = context.strip().lower()
            kept = [c for c in kept if contains_term(self._haystack(c), place)]
        location_rejected = before - len(kept)

        before = len(kept)
        region = self.resolver.region_for(category)
        if region:
            kept = [
                c for c in kept
                if any(contains_term(self._haystack(c), keyword) for keyword in region.keywords)
            ]
        region_rejected = before - len(kept)

        self.logger.info(
            f"🔍 Filter {category}: {total} → {len(kept)} "
            f"(deep-link -{deep_link_rejected}, boilerplate -{boilerplate_rejected}, "
            f"location -{location_rejected}, region -{region_rejected})"
        )
        return kept

    @staticmethod
    def _haystack(candidate: SearchCandidate) -> str:
        return f"{candidate.title} {candidate.snippet}".lower()
