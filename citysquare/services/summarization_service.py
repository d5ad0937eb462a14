import json
import logging
import re
from typing import Dict, List, Optional

from pydantic import BaseModel, ValidationError, field_validator

from citysquare.models.content import QueryPlan, SearchCandidate, SummaryResult
from citysquare.services.ai_service import AIService
from citysquare.services.content_fetcher import ContentFetcher


class SummaryLLM(BaseModel):
    """Schema one element of the model's JSON array must satisfy."""

    id: int
    title: str
    summary: str
    content: str = ""
    source_name: str = ""
    youtube_url: Optional[str] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title is blank")
        return value.strip()

    @field_validator("content", "source_name", mode="before")
    @classmethod
    def none_to_empty(cls, value):
        return "" if value is None else value


_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```$")


def clean_json_string(text: str) -> str:
    """Isolate the JSON array in a model response.

    Strips markdown code fences and anything outside the first ``[`` and the
    last ``]``. Returns ``"[]"`` when no bracket pair exists.
    """
    cleaned = (text or "").strip()
    cleaned = _FENCE_START.sub("", cleaned)
    cleaned = _FENCE_END.sub("", cleaned)

    first = cleaned.find("[")
    last = cleaned.rfind("]")
    if first == -1 or last == -1 or last < first:
        return "[]"
    return cleaned[first:last + 1]


def parse_summary_response(
    text: str,
    valid_ids: Optional[set] = None,
    logger: Optional[logging.Logger] = None,
) -> List[SummaryResult]:
    """Parse and validate a model response. Invalid elements are dropped one by one."""
    logger = logger or logging.getLogger(__name__)
    try:
        data = json.loads(clean_json_string(text))
    except json.JSONDecodeError as e:
        logger.warning(f"⚠️ Model response is not valid JSON, treating as empty: {e}")
        return []

    if not isinstance(data, list):
        return []

    results: List[SummaryResult] = []
    seen_ids = set()
    for element in data:
        if not isinstance(element, dict):
            continue
        try:
            parsed = SummaryLLM.model_validate(element)
        except ValidationError as e:
            logger.debug(f"Dropping invalid summary element: {e.errors()[0]['msg']}")
            continue
        if valid_ids is not None and parsed.id not in valid_ids:
            logger.debug(f"Dropping summary with unmapped id {parsed.id}")
            continue
        if parsed.id in seen_ids:
            continue
        seen_ids.add(parsed.id)
        results.append(SummaryResult(**parsed.model_dump()))
    return results


class SummarizationService:
    """
    Turns filtered search candidates into feed-ready Chinese summaries with a
    single batched model call per run.
    """

    def __init__(
        self,
        ai_service: AIService,
        fetcher: Optional[ContentFetcher] = None,
        per_article_chars: int = 3000,
        single_article_chars: int = 8000,
    ):
        self.ai = ai_service
        self.fetcher = fetcher
        self.per_article_chars = per_article_chars
        self.single_article_chars = single_article_chars
        self.logger = logging.getLogger(__name__)

    def _context_for(self, candidate: SearchCandidate, contents: Dict[str, Optional[str]]) -> str:
        """Best available context: fetched text, then snippet, then og:description."""
        full_text = contents.get(candidate.link)
        if full_text:
            return full_text[: self.per_article_chars]
        return candidate.snippet or candidate.og_description or ""

    def build_articles_block(
        self,
        candidates: List[SearchCandidate],
        contents: Optional[Dict[str, Optional[str]]] = None,
    ) -> str:
        contents = contents or {}
        blocks = []
        for index, candidate in enumerate(candidates):
            blocks.append(
                f"[id={index}]\n"
                f"Title: {candidate.title}\n"
                f"URL: {candidate.link}\n"
                f"Context: {self._context_for(candidate, contents)}"
            )
        return "\n\n".join(blocks)

    async def summarize(
        self,
        candidates: List[SearchCandidate],
        plan: QueryPlan,
        contents: Optional[Dict[str, Optional[str]]] = None,
        prompt_key: str = "batch_summary",
    ) -> List[SummaryResult]:
        """Summarize ``candidates``; each result's ``id`` is the candidate's index.

        Model failures after retries raise ``AIServiceError``.
        """
        if not candidates:
            return []

        messages = self.ai.format_prompt(prompt_key, {
            "topic": plan.topic,
            "time_window": plan.time_window,
            "keywords": plan.keywords,
            "article_count": plan.article_count,
            "articles": self.build_articles_block(candidates, contents),
        })
        raw = await self.ai.generate_with_retry(messages, json_mode=True)
        results = parse_summary_response(raw, set(range(len(candidates))), self.logger)
        self.logger.info(f"✍️ Summarized {len(results)}/{len(candidates)} candidates for {plan.category}")
        return results

    async def summarize_one(self, url: str, content: Optional[str] = None) -> Optional[SummaryResult]:
        """Manual-insert variant: summarize a single article by URL."""
        if content is None:
            if self.fetcher is None:
                raise ValueError("summarize_one needs either content or a ContentFetcher")
            content = await self.fetcher.fetch(url)
        if not content:
            self.logger.warning(f"⚠️ No content to summarize for {url}")
            return None

        messages = self.ai.format_prompt("single_summary", {
            "url": url,
            "content": content[: self.single_article_chars],
        })
        raw = await self.ai.generate_with_retry(messages, json_mode=True)
        results = parse_summary_response(raw, {0}, self.logger)
        return results[0] if results else None
