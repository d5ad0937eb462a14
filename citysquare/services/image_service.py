import io
import logging
import re
from typing import Optional
from urllib.parse import urlparse

from PIL import Image, UnidentifiedImageError

from citysquare.models.content import NewsCategory, SearchCandidate
from citysquare.services.ai_service import AIService, AIServiceError
from citysquare.services.blob_storage import GENERATED_PREFIX, BlobStorage, BlobStorageError


WESTERN_CATEGORIES = {NewsCategory.USA, NewsCategory.CANADA, NewsCategory.INTERNATIONAL}
BREAKER_STATUS_CODES = {403, 404}


def is_http_url(url: Optional[str]) -> bool:
    if not url:
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def compress_image(data: bytes, max_side: int = 1024, quality: int = 80) -> bytes:
    """Downscale to ``max_side`` and re-encode as JPEG."""
    img = Image.open(io.BytesIO(data)).convert("RGB")
    w, h = img.size
    scale = min(1.0, max_side / max(w, h))
    if scale < 1.0:
        img = img.resize((int(w * scale), int(h * scale)), Image.LANCZOS)
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def _slug(text: str) -> str:
    slug = re.sub(r"[^a-zA-Z0-9]+", "-", text).strip("-").lower()
    return slug[:60] or "news"


class ImageService:
    """
    Resolves a lead image for each accepted item: open-graph image, then the
    search thumbnail, then a generated image uploaded to blob storage.

    Generation is guarded by a circuit breaker. A "not found" or 403 from the
    image backend disables generation for the lifetime of this service.
    """

    def __init__(
        self,
        ai_service: Optional[AIService],
        storage: Optional[BlobStorage],
        generation_enabled: bool = True,
    ):
        self.ai = ai_service
        self.storage = storage
        self.generation_enabled = generation_enabled and ai_service is not None
        self.logger = logging.getLogger(__name__)

    async def resolve(self, candidate: Optional[SearchCandidate], headline: str, category: str, item_id: str) -> Optional[str]:
        if candidate is not None:
            if is_http_url(candidate.og_image):
                return candidate.og_image.strip()
            if is_http_url(candidate.image_hint):
                return candidate.image_hint.strip()
        return await self.generate_and_upload(headline, category, item_id)

    def build_prompt(self, headline: str, category: str) -> str:
        cfg = (self.ai.prompts.get("news_image") if self.ai else None) or {}
        if category in WESTERN_CATEGORIES:
            visual_context = cfg.get("western_context", "")
        elif category == NewsCategory.CHINA:
            visual_context = cfg.get("china_context", "")
        else:
            visual_context = ""
        template = cfg.get("template") or 'Editorial news photograph for the headline: "{headline}". {visual_context}'
        return template.format(headline=headline, visual_context=visual_context).strip()

    def _trips_breaker(self, error: AIServiceError) -> bool:
        if error.status_code in BREAKER_STATUS_CODES:
            return True
        message = str(error).lower()
        return "not found" in message or "403" in message

    async def generate_and_upload(self, headline: str, category: str, item_id: str) -> Optional[str]:
        """Generate, compress and upload one image. Any failure leaves the item imageless."""
        if not self.generation_enabled:
            return None
        if self.storage is None or not self.storage.configured:
            self.logger.debug("Blob storage not configured, skipping image generation")
            return None

        try:
            data = await self.ai.generate_image(self.build_prompt(headline, category))
        except AIServiceError as e:
            if self._trips_breaker(e):
                self.generation_enabled = False
                self.logger.warning(f"⚠️ Image backend unavailable ({e}); disabling image generation for this run")
            else:
                self.logger.warning(f"⚠️ Image generation failed for '{headline[:40]}': {e}")
            return None

        if not data:
            return None

        try:
            data = compress_image(data)
        except (UnidentifiedImageError, OSError) as e:
            self.logger.warning(f"⚠️ Could not compress generated image, uploading as-is: {e}")

        path = f"{GENERATED_PREFIX}{_slug(item_id)}.jpg"
        try:
            return await self.storage.upload(path, data, content_type="image/jpeg")
        except BlobStorageError as e:
            self.logger.error(f"❌ Image upload failed, keeping item without image: {e}")
            return None
