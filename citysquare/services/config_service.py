import json
import logging
from typing import Any, Dict, List, Optional

import aiosqlite
from pydantic import BaseModel, Field, ValidationError, field_validator

from citysquare.models.content import NewsCategory


NEWS_SETTINGS_KEY = "news_settings"


class ConfigError(Exception):
    pass


class CustomCategory(BaseModel):
    """A user-defined category, scheduled alongside the canonical ones."""

    id: str
    name: str
    topic: str
    keywords: str = ""
    time_window: Optional[str] = "24 hours"
    article_count: Optional[int] = Field(default=10, ge=0)
    retention_limit: Optional[int] = Field(default=50, ge=0)
    refresh_interval: Optional[int] = Field(default=120, ge=0)

    @field_validator("id")
    @classmethod
    def id_must_not_shadow_canonical(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("custom category id must not be empty")
        if NewsCategory.is_reserved(value):
            raise ValueError(f"custom category id '{value}' collides with a canonical category")
        return value


def _default_custom_categories() -> List[CustomCategory]:
    return [
        CustomCategory(
            id="europe",
            name="欧洲",
            topic="Europe News",
            keywords=(
                "Russia Ukraine War, Europe News, EU Politics, Germany News, "
                "UK News, France News, 俄乌局势, 欧洲局势"
            ),
            time_window="24 hours",
            refresh_interval=120,
            article_count=10,
            retention_limit=50,
        )
    ]


class NewsSettings(BaseModel):
    """News crawler settings. Every field has a declared default.

    Optional numeric fields may be stored as ``None`` or ``0``; readers then
    apply the per-category fallbacks in ``category_resolver``.
    """

    local_article_count: Optional[int] = Field(default=10, ge=0)
    global_article_count: Optional[int] = Field(default=10, ge=0)
    local_time_window: Optional[str] = "48 hours"
    global_time_window: Optional[str] = "7 days"
    extra_keywords: str = "Sports, Military, Technology, Heartwarming stories, Science, Health, Education"

    # Refresh intervals (minutes)
    local_refresh_interval: Optional[int] = Field(default=120, ge=0)
    canada_refresh_interval: Optional[int] = Field(default=120, ge=0)
    usa_refresh_interval: Optional[int] = Field(default=120, ge=0)
    china_refresh_interval: Optional[int] = Field(default=120, ge=0)
    intl_refresh_interval: Optional[int] = Field(default=120, ge=0)

    # Retention limits (items per category)
    local_retention_limit: Optional[int] = Field(default=50, ge=0)
    canada_retention_limit: Optional[int] = Field(default=50, ge=0)
    usa_retention_limit: Optional[int] = Field(default=50, ge=0)
    china_retention_limit: Optional[int] = Field(default=50, ge=0)
    intl_retention_limit: Optional[int] = Field(default=50, ge=0)

    usa_article_count: Optional[int] = Field(default=10, ge=0)
    usa_time_window: Optional[str] = "24 hours"
    usa_keywords: Optional[str] = "Politics, Tech, Wall Street, Hollywood, Silicon Valley, NASA"

    canada_article_count: Optional[int] = Field(default=10, ge=0)
    canada_time_window: Optional[str] = "24 hours"
    canada_keywords: Optional[str] = None

    china_article_count: Optional[int] = Field(default=10, ge=0)
    china_time_window: Optional[str] = "24 hours"

    intl_article_count: Optional[int] = Field(default=10, ge=0)
    intl_time_window: Optional[str] = "48 hours"

    custom_categories: List[CustomCategory] = Field(default_factory=_default_custom_categories)

    def find_custom(self, category_id: str) -> Optional[CustomCategory]:
        for custom in self.custom_categories:
            if custom.id == category_id:
                return custom
        return None


class AppConfig(BaseModel):
    news: NewsSettings = Field(default_factory=NewsSettings)


def merge_news_settings(stored: Dict[str, Any], logger: Optional[logging.Logger] = None) -> NewsSettings:
    """Overlay stored values on the defaults one field at a time.

    Unknown keys are ignored. A stored value that fails validation is replaced
    by that field's default, and an invalid custom category is dropped on its own
    without discarding the others.
    """
    logger = logger or logging.getLogger(__name__)
    merged = NewsSettings().model_dump()

    for key, value in (stored or {}).items():
        if key not in NewsSettings.model_fields:
            logger.debug(f"Ignoring unknown news setting '{key}'")
            continue

        if key == "custom_categories":
            if value is None:
                value = []
            if not isinstance(value, list):
                logger.warning(f"⚠️ Stored custom_categories is not a list: {value!r}, using default")
                continue
            categories = []
            seen_ids = set()
            for raw in value:
                try:
                    custom = CustomCategory.model_validate(raw)
                except ValidationError as e:
                    logger.warning(f"⚠️ Dropping invalid custom category {raw!r}: {e.errors()[0]['msg']}")
                    continue
                # Later entries with an already seen id are dropped
                if custom.id in seen_ids:
                    logger.warning(f"⚠️ Dropping duplicate custom category id '{custom.id}'")
                    continue
                seen_ids.add(custom.id)
                categories.append(custom.model_dump())
            merged[key] = categories
            continue

        try:
            NewsSettings.model_validate({**merged, key: value})
        except ValidationError:
            logger.warning(f"⚠️ Invalid value for news setting '{key}': {value!r}, using default")
            continue
        merged[key] = value

    return NewsSettings.model_validate(merged)


class ConfigService:
    """
    Key/value settings store backed by the crawler's SQLite database.
    Values are JSON documents; reads always fall back to defaults.
    """

    def __init__(self, db_path: str = "data/citysquare.db"):
        self.db_path = db_path
        self.logger = logging.getLogger(__name__)

    async def initialize_db(self) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS app_config (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )
            await db.commit()

    async def get(self) -> AppConfig:
        """Load the current configuration, merged field by field over defaults."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "SELECT value FROM app_config WHERE key = ?", (NEWS_SETTINGS_KEY,)
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            self.logger.warning(f"⚠️ Could not read app_config, using defaults: {e}")
            return AppConfig()

        if not row:
            return AppConfig()

        try:
            stored = json.loads(row[0])
        except (TypeError, ValueError) as e:
            self.logger.warning(f"⚠️ Stored news settings are not valid JSON, using defaults: {e}")
            return AppConfig()

        if not isinstance(stored, dict):
            self.logger.warning("⚠️ Stored news settings are not an object, using defaults")
            return AppConfig()

        return AppConfig(news=merge_news_settings(stored, self.logger))

    async def save(self, config: AppConfig) -> None:
        payload = json.dumps(config.news.model_dump(), ensure_ascii=False)
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO app_config (key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value
                    """,
                    (NEWS_SETTINGS_KEY, payload),
                )
                await db.commit()
        except aiosqlite.Error as e:
            self.logger.error(f"❌ Config save failed: {e}")
            raise ConfigError(f"Failed to save configuration: {e}") from e
        self.logger.info("✅ Configuration saved")
