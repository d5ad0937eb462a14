"""
Content models for the CitySquare news crawler.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


class NewsCategory:
    """Canonical category codes as string constants (Enum-like).

    Custom categories are plain strings defined in configuration, so category
    values are kept as ``str`` everywhere instead of an Enum type.
    """
    LOCAL = "Local"
    CANADA = "Canada"
    USA = "USA"
    CHINA = "China"
    INTERNATIONAL = "International"

    # Regional codes that LOCAL resolves to
    GTA = "GTA"
    VANCOUVER = "Vancouver"
    MONTREAL = "Montreal"
    OTTAWA = "Ottawa"
    CALGARY = "Calgary"
    EDMONTON = "Edmonton"
    WATERLOO = "Waterloo"
    HAMILTON = "Hamilton"
    WINDSOR = "Windsor"
    LONDON_ON = "London_ON"

    @classmethod
    def canonical(cls) -> List[str]:
        """Top-level categories, in scheduling order."""
        return [cls.LOCAL, cls.CANADA, cls.USA, cls.CHINA, cls.INTERNATIONAL]

    @classmethod
    def regional(cls) -> List[str]:
        return [
            cls.GTA, cls.VANCOUVER, cls.MONTREAL, cls.OTTAWA, cls.CALGARY,
            cls.EDMONTON, cls.WATERLOO, cls.HAMILTON, cls.WINDSOR, cls.LONDON_ON,
        ]

    @classmethod
    def is_reserved(cls, code: str) -> bool:
        """True when ``code`` is a canonical or regional code."""
        reserved = {c.lower() for c in cls.canonical() + cls.regional()}
        return (code or "").strip().lower() in reserved


@dataclass
class SearchCandidate:
    """A single search result. Ephemeral, never persisted directly."""

    title: str
    link: str
    snippet: str = ""
    image_hint: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def og_image(self) -> Optional[str]:
        return self.metadata.get("og:image")

    @property
    def og_description(self) -> Optional[str]:
        return self.metadata.get("og:description")


@dataclass
class NewsItem:
    """The persisted unit of the news feed.

    ``timestamp`` is ingestion time in epoch milliseconds. It drives both
    ordering and retention.
    """

    id: str
    title: str
    summary: str
    content: str
    category: str
    timestamp: int
    source: str
    image_url: Optional[str] = None
    source_url: Optional[str] = None
    youtube_url: Optional[str] = None
    city: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def __hash__(self):
        return hash(self.id)

    def __eq__(self, other):
        if not isinstance(other, NewsItem):
            return False
        return self.id == other.id


@dataclass
class QueryPlan:
    """Everything a run needs to query search and prompt the model for one category."""

    category: str
    context: Optional[str]
    topic: str
    keywords: str
    article_count: int
    time_window: str
    site_filter: List[str] = field(default_factory=list)
    place_keywords: List[str] = field(default_factory=list)

    def build_query(self) -> str:
        query = self.topic if "news" in self.topic.lower() else f"{self.topic} news"
        if self.site_filter:
            sites = " OR ".join(f"site:{domain}" for domain in self.site_filter)
            query = f"{query} ({sites})"
        return query


@dataclass
class SummaryResult:
    """A validated model output element, mapped back to its candidate by ``id``."""

    id: int
    title: str
    summary: str
    content: str = ""
    source_name: str = ""
    youtube_url: Optional[str] = None


@dataclass
class NewsUpdated:
    """Published after a successful save so presentation layers can refresh."""

    category: str
    item_ids: List[str]
    timestamp: int
    city: Optional[str] = None
