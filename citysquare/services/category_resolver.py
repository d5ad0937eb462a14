"""
Category resolution for the news crawler.

Maps free-text locations and category tokens onto canonical category codes and
derives the search topic, keywords, counts and windows a run should use.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from citysquare.models.content import NewsCategory, QueryPlan
from citysquare.services.config_service import NewsSettings

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_CONTEXTS = {"", "本地", "local"}
LOCAL_PLACEHOLDER_TOPIC = "您所在的城市"


@dataclass(frozen=True)
class RegionProfile:
    """A fixed regional category with its aliases, search topic and trusted sources."""
    code: str
    aliases: Tuple[str, ...]
    topic_places: Tuple[str, ...]
    keywords: Tuple[str, ...]
    sites: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def topic(self) -> str:
        return " OR ".join(f'"{place}"' for place in self.topic_places)


# Table order is match priority: "Richmond Hill" must hit GTA before
# Vancouver's "richmond" alias gets a chance.
REGION_TABLE: List[RegionProfile] = [
    RegionProfile(
        code=NewsCategory.GTA,
        aliases=(
            "toronto", "多伦多", "大多伦多", "gta", "mississauga", "密西沙加",
            "brampton", "布兰普顿", "markham", "万锦", "richmond hill", "列治文山",
            "vaughan", "旺市", "scarborough", "士嘉堡", "north york", "北约克",
            "etobicoke", "怡陶碧谷", "oakville", "奥克维尔",
        ),
        topic_places=("Toronto", "Mississauga", "Brampton", "Markham", "Vaughan", "Richmond Hill"),
        keywords=(
            "toronto", "gta", "mississauga", "brampton", "markham", "vaughan",
            "richmond hill", "scarborough", "north york", "etobicoke", "oakville",
            "多伦多", "万锦", "密西沙加",
        ),
        sites=("cbc.ca", "thestar.com", "cp24.com", "toronto.ctvnews.ca", "blogto.com", "toronto.com"),
    ),
    RegionProfile(
        code=NewsCategory.VANCOUVER,
        aliases=(
            "vancouver", "温哥华", "burnaby", "本拿比", "richmond", "列治文",
            "surrey", "素里", "coquitlam", "高贵林",
        ),
        topic_places=("Vancouver", "Burnaby", "Richmond BC", "Surrey", "Coquitlam"),
        keywords=("vancouver", "burnaby", "richmond", "surrey", "coquitlam", "温哥华", "列治文", "本拿比"),
        sites=("vancouversun.com", "cbc.ca", "bc.ctvnews.ca", "dailyhive.com", "vancouverisawesome.com"),
    ),
    RegionProfile(
        code=NewsCategory.MONTREAL,
        aliases=("montreal", "montréal", "蒙特利尔", "满地可", "laval", "拉瓦尔"),
        topic_places=("Montreal", "Laval"),
        keywords=("montreal", "montréal", "laval", "蒙特利尔", "满地可"),
        sites=("montrealgazette.com", "cbc.ca", "montreal.ctvnews.ca", "mtlblog.com"),
    ),
    RegionProfile(
        code=NewsCategory.OTTAWA,
        aliases=("ottawa", "渥太华", "gatineau", "kanata"),
        topic_places=("Ottawa", "Gatineau"),
        keywords=("ottawa", "gatineau", "kanata", "渥太华"),
        sites=("ottawacitizen.com", "cbc.ca", "ottawa.ctvnews.ca", "ottawamatters.com"),
    ),
    RegionProfile(
        code=NewsCategory.CALGARY,
        aliases=("calgary", "卡尔加里", "卡城"),
        topic_places=("Calgary",),
        keywords=("calgary", "卡尔加里", "卡城"),
        sites=("calgaryherald.com", "cbc.ca", "calgary.ctvnews.ca", "calgary.citynews.ca"),
    ),
    RegionProfile(
        code=NewsCategory.EDMONTON,
        aliases=("edmonton", "埃德蒙顿", "爱民顿", "st. albert", "sherwood park"),
        topic_places=("Edmonton", "St. Albert", "Sherwood Park"),
        keywords=("edmonton", "st. albert", "sherwood park", "埃德蒙顿", "爱民顿"),
        sites=("edmontonjournal.com", "cbc.ca", "edmonton.ctvnews.ca", "edmonton.citynews.ca"),
    ),
    RegionProfile(
        code=NewsCategory.WATERLOO,
        aliases=("waterloo", "滑铁卢", "kitchener", "基奇纳", "cambridge", "剑桥市"),
        topic_places=("Waterloo", "Kitchener", "Cambridge Ontario"),
        keywords=("waterloo", "kitchener", "cambridge", "滑铁卢", "基奇纳"),
        sites=("therecord.com", "cbc.ca", "kitchener.ctvnews.ca", "kitchenertoday.com"),
    ),
    RegionProfile(
        code=NewsCategory.HAMILTON,
        aliases=("hamilton", "汉密尔顿", "哈密尔顿", "stoney creek", "ancaster"),
        topic_places=("Hamilton Ontario", "Stoney Creek", "Ancaster"),
        keywords=("hamilton", "stoney creek", "ancaster", "汉密尔顿", "哈密尔顿"),
        sites=("thespec.com", "cbc.ca", "chch.com"),
    ),
    RegionProfile(
        code=NewsCategory.WINDSOR,
        aliases=("windsor", "温莎", "tecumseh", "lasalle"),
        topic_places=("Windsor Ontario", "Tecumseh", "LaSalle"),
        keywords=("windsor", "tecumseh", "lasalle", "温莎"),
        sites=("windsorstar.com", "cbc.ca", "windsor.ctvnews.ca"),
    ),
    RegionProfile(
        code=NewsCategory.LONDON_ON,
        aliases=("london", "伦敦"),
        topic_places=("London Ontario",),
        keywords=("london", "伦敦"),
        sites=("lfpress.com", "cbc.ca", "london.ctvnews.ca"),
    ),
]

_REGIONS_BY_CODE = {profile.code: profile for profile in REGION_TABLE}


def is_default_context(context: Optional[str]) -> bool:
    return (context or "").strip().lower() in DEFAULT_LOCAL_CONTEXTS


def contains_term(text: str, term: str) -> bool:
    """Match ``term`` in lowercased ``text``.

    Latin-script terms must stand on word boundaries so "laval" does not hit
    "lavalier"; CJK terms have no word separators and match as substrings.
    """
    term = term.lower()
    if not term.isascii():
        return term in text
    return re.search(rf"(?<![a-z0-9]){re.escape(term)}(?![a-z0-9])", text) is not None


class CategoryResolver:
    """
    Resolves (category, context) pairs to the effective category and derives
    the per-category query plan, refresh interval and retention limit.
    """

    def __init__(self, regions: Optional[List[RegionProfile]] = None):
        self.regions = regions if regions is not None else REGION_TABLE
        self.logger = logging.getLogger(__name__)

    def normalize(self, category: str) -> str:
        """Canonicalize the case of known codes; anything else passes through unchanged."""
        token = (category or "").strip()
        for code in NewsCategory.canonical() + NewsCategory.regional():
            if code.lower() == token.lower():
                return code
        return category

    def resolve(self, category: str, context: Optional[str] = None) -> Tuple[str, Optional[str]]:
        """Return ``(effective_category, effective_context)``.

        LOCAL with a real place name is matched against the alias table; the
        first matching region wins. Without a match LOCAL stays LOCAL and the
        context is kept as a literal place name.
        """
        category = self.normalize(category)
        if category != NewsCategory.LOCAL or is_default_context(context):
            return category, context

        needle = context.strip().lower()
        for profile in self.regions:
            if any(contains_term(needle, alias) for alias in profile.aliases):
                self.logger.debug(f"Resolved LOCAL '{context}' to {profile.code}")
                return profile.code, context

        return NewsCategory.LOCAL, context.strip()

    def region_for(self, category: str) -> Optional[RegionProfile]:
        for profile in self.regions:
            if profile.code == category:
                return profile
        return None

    def build_query_plan(
        self,
        category: str,
        context: Optional[str],
        settings: NewsSettings,
    ) -> QueryPlan:
        """Resolve first, then derive topic, keywords, count and window for the effective category."""
        effective, effective_context = self.resolve(category, context)
        extra_keywords = settings.extra_keywords or ""

        region = self.region_for(effective)
        if region:
            return QueryPlan(
                category=effective,
                context=effective_context,
                topic=region.topic,
                keywords=extra_keywords,
                article_count=settings.local_article_count or 15,
                time_window=settings.local_time_window or "48 hours",
                site_filter=list(region.sites),
                place_keywords=list(region.keywords),
            )

        if effective == NewsCategory.LOCAL:
            literal = not is_default_context(effective_context)
            return QueryPlan(
                category=effective,
                context=effective_context if literal else None,
                topic=effective_context if literal else LOCAL_PLACEHOLDER_TOPIC,
                keywords=extra_keywords,
                article_count=settings.local_article_count or 15,
                time_window=settings.local_time_window or "48 hours",
                place_keywords=[effective_context] if literal else [],
            )

        if effective == NewsCategory.CANADA:
            return QueryPlan(
                category=effective,
                context=None,
                topic="Canada",
                keywords=settings.canada_keywords or extra_keywords,
                article_count=settings.canada_article_count or 10,
                time_window=settings.canada_time_window or "24 hours",
            )

        if effective == NewsCategory.USA:
            return QueryPlan(
                category=effective,
                context=None,
                topic="United States",
                keywords=settings.usa_keywords or extra_keywords,
                article_count=settings.usa_article_count or 10,
                time_window=settings.usa_time_window or "24 hours",
            )

        if effective == NewsCategory.CHINA:
            return QueryPlan(
                category=effective,
                context=None,
                topic="China",
                keywords=extra_keywords,
                article_count=settings.china_article_count or 10,
                time_window=settings.china_time_window or "24 hours",
            )

        if effective == NewsCategory.INTERNATIONAL:
            return QueryPlan(
                category=effective,
                context=None,
                topic="Global International News",
                keywords=extra_keywords,
                article_count=settings.intl_article_count or 8,
                time_window=settings.intl_time_window or "48 hours",
            )

        custom = settings.find_custom(effective)
        if custom:
            keywords = f"{extra_keywords}, {custom.keywords}" if custom.keywords else extra_keywords
            return QueryPlan(
                category=effective,
                context=None,
                topic=custom.topic,
                keywords=keywords,
                article_count=custom.article_count or 10,
                time_window=custom.time_window or "24 hours",
            )

        self.logger.warning(f"⚠️ Unknown category '{effective}', using it as a raw topic")
        return QueryPlan(
            category=effective,
            context=effective_context,
            topic=effective,
            keywords=extra_keywords,
            article_count=settings.global_article_count or 8,
            time_window=settings.global_time_window or "24 hours",
        )

    def refresh_interval_minutes(self, category: str, settings: NewsSettings) -> int:
        category = self.normalize(category)
        if category == NewsCategory.LOCAL or category in _REGIONS_BY_CODE:
            return settings.local_refresh_interval or 720
        if category == NewsCategory.CANADA:
            return settings.canada_refresh_interval or 120
        if category == NewsCategory.USA:
            return settings.usa_refresh_interval or 120
        if category == NewsCategory.CHINA:
            return settings.china_refresh_interval or 720
        if category == NewsCategory.INTERNATIONAL:
            return settings.intl_refresh_interval or 120
        custom = settings.find_custom(category)
        if custom:
            return custom.refresh_interval or 120
        return 120

    def retention_limit(self, category: str, settings: NewsSettings) -> int:
        category = self.normalize(category)
        if category == NewsCategory.LOCAL or category in _REGIONS_BY_CODE:
            return settings.local_retention_limit or 50
        if category == NewsCategory.CANADA:
            return settings.canada_retention_limit or 50
        if category == NewsCategory.USA:
            return settings.usa_retention_limit or 50
        if category == NewsCategory.CHINA:
            return settings.china_retention_limit or 50
        if category == NewsCategory.INTERNATIONAL:
            return settings.intl_retention_limit or 50
        custom = settings.find_custom(category)
        if custom:
            return custom.retention_limit or 50
        return 50

    def scheduled_categories(self, settings: NewsSettings) -> List[str]:
        """Canonical categories followed by the currently configured custom ones."""
        return NewsCategory.canonical() + [c.id for c in settings.custom_categories]
