import asyncio
import logging
import math
import os
import re
import ssl
from typing import Any, Dict, List, Optional

import aiohttp
import certifi

from citysquare.models.content import SearchCandidate


GOOGLE_CSE_ENDPOINT = "https://www.googleapis.com/customsearch/v1"
PAGE_SIZE = 10  # API maximum per request


class SearchGatewayError(Exception):
    pass


def recency_to_date_restrict(window: Optional[str]) -> str:
    """Translate a human time window ("48 hours", "7 days") to a CSE dateRestrict value."""
    text = (window or "").strip().lower()
    if not text:
        return "d1"
    if "week" in text:
        return "w1"
    match = re.search(r"(\d+)\s*(hour|hr|h|day|d)", text)
    if match:
        amount = int(match.group(1))
        unit = match.group(2)
        if unit.startswith("h"):
            return f"d{max(1, math.ceil(amount / 24))}"
        if amount == 7:
            return "w1"
        return f"d{max(1, amount)}"
    if "48" in text:
        return "d2"
    return "d1"


class SearchGateway:
    """
    Google Custom Search client.

    Missing credentials, quota errors and network failures all degrade to an
    empty result list; search is never fatal for a run.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        cx: Optional[str] = None,
        max_results: int = 20,
    ):
        self.api_key = api_key or os.getenv("GOOGLE_SEARCH_API_KEY") or os.getenv("GEMINI_API_KEY")
        self.cx = cx or os.getenv("GOOGLE_SEARCH_CX")
        self.max_results = max(1, max_results)
        self.session: Optional[aiohttp.ClientSession] = None
        self.timeout = aiohttp.ClientTimeout(total=20)
        self.logger = logging.getLogger(__name__)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            connector = aiohttp.TCPConnector(ssl=ssl_context)
            self.session = aiohttp.ClientSession(timeout=self.timeout, connector=connector)
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

    async def search(self, query: str, recency_window: Optional[str] = None) -> List[SearchCandidate]:
        """Run ``query`` restricted to ``recency_window``, paginating up to ``max_results``."""
        if not self.api_key or not self.cx:
            self.logger.warning("⚠️ Google Search credentials missing (GOOGLE_SEARCH_API_KEY / GOOGLE_SEARCH_CX)")
            return []

        date_restrict = recency_to_date_restrict(recency_window)
        candidates: List[SearchCandidate] = []
        seen_links = set()
        start = 1

        while len(candidates) < self.max_results:
            try:
                page = await self._fetch_page(query, date_restrict, start)
            except SearchGatewayError as e:
                self.logger.error(f"❌ Search failed for '{query}' (start={start}): {e}")
                break

            for raw in page:
                candidate = self._to_candidate(raw)
                if candidate and candidate.link not in seen_links:
                    seen_links.add(candidate.link)
                    candidates.append(candidate)

            if len(page) < PAGE_SIZE:
                break
            start += PAGE_SIZE

        self.logger.info(f"🔍 Search '{query}' [{date_restrict}] returned {len(candidates)} results")
        return candidates[: self.max_results]

    async def _fetch_page(self, query: str, date_restrict: str, start: int) -> List[Dict[str, Any]]:
        params = {
            "key": self.api_key,
            "cx": self.cx,
            "q": query,
            "dateRestrict": date_restrict,
            "num": str(PAGE_SIZE),
            "start": str(start),
            "sort": "date",
        }
        try:
            session = await self._get_session()
            async with session.get(GOOGLE_CSE_ENDPOINT, params=params) as response:
                if response.status != 200:
                    body = await response.text()
                    raise SearchGatewayError(f"HTTP {response.status}: {body[:200]}")
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SearchGatewayError(str(e)) from e

        items = data.get("items") if isinstance(data, dict) else None
        return items or []

    @staticmethod
    def _to_candidate(raw: Dict[str, Any]) -> Optional[SearchCandidate]:
        link = (raw.get("link") or "").strip()
        title = (raw.get("title") or "").strip()
        if not link or not title:
            return None

        pagemap = raw.get("pagemap") or {}
        image_hint = None
        cse_images = pagemap.get("cse_image") or []
        if cse_images and isinstance(cse_images[0], dict):
            image_hint = cse_images[0].get("src")

        metadata: Dict[str, Any] = {}
        metatags = pagemap.get("metatags") or []
        if metatags and isinstance(metatags[0], dict):
            for key in ("og:image", "og:description", "og:site_name"):
                if metatags[0].get(key):
                    metadata[key] = metatags[0][key]

        return SearchCandidate(
            title=title,
            link=link,
            snippet=(raw.get("snippet") or "").strip(),
            image_hint=image_hint,
            metadata=metadata,
        )
