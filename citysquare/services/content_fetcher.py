"""
Article text extraction for server-side runs.

Fetches raw markup with a browser-like user agent and reduces it to plain
structured text: headings prefixed with ``###``, list items bulleted,
paragraphs separated by blank lines.
"""

import asyncio
import logging
import re
import ssl
from dataclasses import dataclass
from typing import Dict, List, Optional

import aiohttp
import certifi
from bs4 import BeautifulSoup, Tag


USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

NOISE_SELECTORS = (
    "script, style, noscript, iframe, nav, header, footer, "
    ".ad, .advertisement, .menu, .sidebar, .cookie-banner, .popup"
)
SKIP_SUBTREE_SELECTORS = ".related-posts, .comments, .share-buttons"
WALK_TAGS = ["h1", "h2", "h3", "p", "li"]
MIN_FRAGMENT_LENGTH = 10


@dataclass(frozen=True)
class SelectorStrategy:
    name: str
    selector: str


# Evaluated in order; the first container that yields text wins
CONTAINER_STRATEGIES: List[SelectorStrategy] = [
    SelectorStrategy("netease-body", ".post_body"),
    SelectorStrategy("netease-endtext", "#endText"),
    SelectorStrategy("article", "article"),
    SelectorStrategy("main", "main"),
    SelectorStrategy("post-content", ".post-content"),
    SelectorStrategy("article-body", ".article-body"),
    SelectorStrategy("body", "body"),
]


def _clean(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _walk_container(container: Tag) -> str:
    parts: List[str] = []
    for element in container.find_all(WALK_TAGS):
        text = _clean(element.get_text(" ", strip=True))
        if len(text) <= MIN_FRAGMENT_LENGTH:
            continue
        if element.name in ("h1", "h2", "h3"):
            parts.append(f"\n### {text}\n")
        elif element.name == "li":
            parts.append(f"- {text}\n")
        else:
            parts.append(f"{text}\n\n")
    return "".join(parts).strip()


@dataclass(frozen=True)
class ArticleContent:
    text: str
    video_url: Optional[str] = None


def extract_video_url(soup: BeautifulSoup) -> Optional[str]:
    """First embedded YouTube player or YouTube link on the page.

    Must run before noise removal, which strips iframes.
    """
    node = soup.select_one("iframe[src*=youtube]")
    url = node.get("src") if node is not None else None
    if not url:
        node = soup.select_one("a[href*=youtu]")
        url = node.get("href") if node is not None else None
    if not url:
        return None
    url = url.strip()
    if url.startswith("//"):
        url = f"https:{url}"
    if not url.startswith(("http://", "https://")):
        return None
    return url


def extract_article(html: str, strategies: Optional[List[SelectorStrategy]] = None) -> Optional[ArticleContent]:
    """Extract readable article text and any embedded video link, or None if no text survives."""
    if not html:
        return None

    soup = BeautifulSoup(html, "html.parser")
    video_url = extract_video_url(soup)
    for selector in (NOISE_SELECTORS, SKIP_SUBTREE_SELECTORS):
        for node in soup.select(selector):
            # Nested matches are already gone with their ancestor
            if not node.decomposed:
                node.decompose()

    for strategy in strategies or CONTAINER_STRATEGIES:
        container = soup.select_one(strategy.selector)
        if container is None:
            continue
        text = _walk_container(container)
        if text:
            return ArticleContent(text=text, video_url=video_url)
    return None


def extract_text(html: str, strategies: Optional[List[SelectorStrategy]] = None) -> Optional[str]:
    """Extract readable article text from raw HTML, or None if nothing survives."""
    article = extract_article(html, strategies)
    return article.text if article else None


class ContentFetcher:
    """
    Retrieves article pages over aiohttp and extracts their text.
    Every failure mode yields ``None``; callers treat missing content as
    "fall back to the search snippet".
    """

    def __init__(self, timeout_seconds: float = 10.0, concurrency: int = 5):
        self.session: Optional[aiohttp.ClientSession] = None
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.concurrency = max(1, concurrency)
        self.headers = {
            "User-Agent": USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9,zh-CN;q=0.8",
        }
        self.logger = logging.getLogger(__name__)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp ClientSession with proper SSL configuration."""
        if self.session is None or self.session.closed:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            connector = aiohttp.TCPConnector(ssl=ssl_context)
            self.session = aiohttp.ClientSession(
                headers=self.headers,
                timeout=self.timeout,
                connector=connector,
            )
        return self.session

    async def close_session(self):
        if self.session and not self.session.closed:
            await self.session.close()
            self.session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close_session()
        return False

    async def fetch(self, url: str) -> Optional[str]:
        """Fetch ``url`` and return its extracted text, or None."""
        article = await self.fetch_article(url)
        return article.text if article else None

    async def fetch_article(self, url: str) -> Optional[ArticleContent]:
        """Fetch ``url`` and return its text plus any embedded video link, or None."""
        try:
            session = await self._get_session()
            async with session.get(url) as response:
                if response.status != 200:
                    self.logger.warning(f"Failed to fetch {url}: HTTP {response.status}")
                    return None
                html = await response.text(errors="replace")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.warning(f"Error fetching content from {url}: {e}")
            return None

        article = extract_article(html)
        if article is None:
            self.logger.debug(f"No readable content extracted from {url}")
        return article

    async def fetch_many(self, urls: List[str]) -> Dict[str, Optional[str]]:
        """Fetch several URLs with bounded concurrency; best effort per URL."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(url: str) -> Optional[str]:
            async with semaphore:
                return await self.fetch(url)

        results = await asyncio.gather(*(_bounded(u) for u in urls), return_exceptions=True)
        contents: Dict[str, Optional[str]] = {}
        for url, result in zip(urls, results):
            if isinstance(result, Exception):
                self.logger.warning(f"Content fetch for {url} raised: {result}")
                contents[url] = None
            else:
                contents[url] = result
        fetched = sum(1 for v in contents.values() if v)
        self.logger.info(f"📄 Fetched content for {fetched}/{len(urls)} articles")
        return contents
