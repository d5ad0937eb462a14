import asyncio
import json
from typing import Dict, List, Optional

import pytest

from citysquare.models.content import NewsItem, SearchCandidate
from citysquare.services.ai_service import AIServiceError
from citysquare.services.config_service import ConfigService
from citysquare.services.news_store import NewsStore


def run(coro):
    return asyncio.run(coro)


class FakeSearch:
    """SearchGateway stand-in returning a fixed candidate list and recording queries."""

    def __init__(self, candidates: Optional[List[SearchCandidate]] = None):
        self.candidates = candidates or []
        self.queries: List[tuple] = []

    async def search(self, query: str, recency_window: Optional[str] = None) -> List[SearchCandidate]:
        self.queries.append((query, recency_window))
        return list(self.candidates)


class ScriptedAI:
    """AIService stand-in: echoes one summary per article in the prompt."""

    def __init__(self, fail: bool = False, youtube_url: Optional[str] = None):
        self.fail = fail
        self.youtube_url = youtube_url
        self.calls = 0
        self.prompts = {}

    def format_prompt(self, prompt_key: str, context: Dict) -> List[Dict]:
        return [
            {"role": "system", "content": prompt_key},
            {"role": "user", "content": json.dumps(context, ensure_ascii=False)},
        ]

    async def generate_with_retry(self, messages, json_mode=True, max_tokens=None) -> str:
        self.calls += 1
        if self.fail:
            raise AIServiceError("backend unavailable")
        context = json.loads(messages[1]["content"])
        if "articles" in context:
            count = context["articles"].count("[id=")
        else:
            count = 1
        payload = [
            {
                "id": i,
                "title": f"标题 {i}: " + context.get("topic", context.get("url", "")),
                "summary": "摘要" * 100,
                "content": "正文",
                "source_name": "CBC",
                "youtube_url": self.youtube_url,
            }
            for i in range(count)
        ]
        return "```json\n" + json.dumps(payload, ensure_ascii=False) + "\n```"

    async def generate_image(self, prompt: str):
        return None


def make_item(item_id: str, category: str, timestamp: int, **kwargs) -> NewsItem:
    defaults = dict(
        title=f"title {item_id}",
        summary="summary",
        content="content",
        source="CitySquare 整理自 CBC",
    )
    defaults.update(kwargs)
    return NewsItem(id=item_id, category=category, timestamp=timestamp, **defaults)


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "citysquare.db")


@pytest.fixture
def store(db_path) -> NewsStore:
    news_store = NewsStore(db_path=db_path)
    run(news_store.initialize_db())
    return news_store


@pytest.fixture
def config_service(db_path) -> ConfigService:
    service = ConfigService(db_path=db_path)
    run(service.initialize_db())
    return service
