import os
import json
import asyncio
import yaml
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types


DEFAULT_PROMPTS_PATH = Path(__file__).resolve().parent.parent / "config" / "prompts.yaml"


class AIServiceError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AIService:
    """
    Gemini access for the crawler: prompt templates, JSON-mode text
    generation with bounded retry, and single-shot image generation.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        prompts_path: Optional[str] = None,
        client: Optional[Any] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.api_key = api_key or os.getenv("GEMINI_API_KEY")
        if not self.api_key and client is None:
            raise ValueError("Gemini API key required. Set GEMINI_API_KEY or pass api_key parameter.")

        self.client = client or genai.Client(api_key=self.api_key)

        self.prompts_path = str(prompts_path or DEFAULT_PROMPTS_PATH)
        self.prompts = self._load_prompts()

        params = self.prompts.get("parameters", {}) if isinstance(self.prompts, dict) else {}
        model_cfg = params.get("gemini", {}) if isinstance(params, dict) else {}
        self.model = os.getenv("GEMINI_MODEL") or model_cfg.get("model", "gemini-2.5-flash")
        self.image_model = os.getenv("GEMINI_IMAGE_MODEL") or model_cfg.get("image_model", "imagen-3.0-generate-002")
        self.temperature = float(model_cfg.get("temperature", 0.4))

        self.max_attempts = 3
        self.backoff_seconds = 1.0
        self.request_timeout = 120.0
        self.max_tokens = 8192
        self._sleep = sleep or asyncio.sleep

        self.logger = logging.getLogger(__name__)

    def _load_prompts(self) -> Dict[str, Any]:
        """Load prompts from YAML configuration file."""
        try:
            with open(self.prompts_path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except FileNotFoundError as e:
            raise AIServiceError(f"Prompts file not found at {self.prompts_path}") from e
        except yaml.YAMLError as e:
            raise AIServiceError(f"Error parsing YAML at {self.prompts_path}: {e}") from e

    async def test_connection(self) -> bool:
        """Ping the API to validate connectivity and key."""
        try:
            self.logger.info("🔍 Testing AI service connection...")
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents="ping",
                config=types.GenerateContentConfig(max_output_tokens=100),
            )
            self.logger.info(f"✅ AI service test response: {response.text or 'No content'}")
            return bool(response.text)
        except Exception as e:
            self.logger.error(f"❌ AI service test connection failed: {e}")
            self.logger.error(f"   Model: {self.model}")
            return False

    def format_prompt(self, prompt_key: str, context: Dict[str, Any]) -> List[Dict]:
        """Construct messages array from prompt templates and context."""
        cfg = self.prompts.get(prompt_key)
        if not cfg:
            raise AIServiceError(f"Unknown prompt '{prompt_key}' in {self.prompts_path}")

        master_persona = self.prompts.get("master_persona", "")
        system_part = cfg.get("system", "")
        template = cfg.get("template", "")
        system_text = (master_persona + "\n" + system_part).strip()

        try:
            user_text = template.format(**context)
        except (KeyError, IndexError, ValueError):
            # Fall back to JSON injection when the template does not match the context
            user_text = template + "\n\nContext JSON:\n" + json.dumps(context, ensure_ascii=False)

        return [
            {"role": "system", "content": system_text},
            {"role": "user", "content": user_text},
        ]

    async def generate_text(
        self,
        messages: List[Dict],
        json_mode: bool = True,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Single Gemini call. Returns the raw response text, which callers must treat as untrusted."""
        system_instruction = None
        contents = []
        for msg in messages:
            if msg.get("role") == "system":
                system_instruction = msg["content"]
            else:
                contents.append(msg["content"])

        config_params: Dict[str, Any] = {
            "max_output_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature,
        }
        if system_instruction:
            config_params["system_instruction"] = system_instruction
        if json_mode:
            config_params["response_mime_type"] = "application/json"

        try:
            response = await asyncio.wait_for(
                self.client.aio.models.generate_content(
                    model=self.model,
                    contents=contents,
                    config=types.GenerateContentConfig(**config_params),
                ),
                timeout=self.request_timeout,
            )
        except asyncio.TimeoutError as e:
            raise AIServiceError(f"Gemini API call timed out after {self.request_timeout:.0f} seconds") from e
        except genai_errors.APIError as e:
            raise AIServiceError(f"Gemini API error: {e}", status_code=getattr(e, "code", None)) from e
        except Exception as e:
            raise AIServiceError(f"Failed to call Gemini API: {e}") from e

        return response.text or ""

    async def generate_with_retry(
        self,
        messages: List[Dict],
        json_mode: bool = True,
        max_tokens: Optional[int] = None,
    ) -> str:
        """``generate_text`` with up to ``max_attempts`` tries and linear backoff.

        The wait after attempt ``n`` (1-based) is ``n * backoff_seconds``. The last
        error propagates.
        """
        last_error: Optional[AIServiceError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.generate_text(messages, json_mode=json_mode, max_tokens=max_tokens)
            except AIServiceError as e:
                last_error = e
                self.logger.warning(f"⚠️ Gemini attempt {attempt}/{self.max_attempts} failed: {e}")
                if attempt < self.max_attempts:
                    await self._sleep(attempt * self.backoff_seconds)

        self.logger.error(f"❌ Gemini call failed after {self.max_attempts} attempts")
        raise last_error

    async def generate_image(self, prompt: str) -> Optional[bytes]:
        """Generate one image. Fail-fast: no retry, errors carry the HTTP status when known."""
        try:
            response = await asyncio.wait_for(
                self.client.aio.models.generate_images(
                    model=self.image_model,
                    prompt=prompt,
                    config=types.GenerateImagesConfig(number_of_images=1),
                ),
                timeout=self.request_timeout,
            )
        except asyncio.TimeoutError as e:
            raise AIServiceError("Image generation timed out") from e
        except genai_errors.APIError as e:
            raise AIServiceError(f"Image generation failed: {e}", status_code=getattr(e, "code", None)) from e
        except Exception as e:
            raise AIServiceError(f"Image generation failed: {e}") from e

        for generated in response.generated_images or []:
            image = getattr(generated, "image", None)
            if image is not None and image.image_bytes:
                return image.image_bytes
        return None
