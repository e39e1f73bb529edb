"""
Gemini collaborator for structured lesson content and slide images.

The google-genai client is synchronous; calls run in a worker thread so the
event loop stays free. Model fallback and retries live in
agents.generation.retry; each method here makes exactly one attempt against
one model.
"""

import asyncio
import base64
import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from google import genai
from google.genai import types

from agents.config import GEMINI_API_KEY
from agents.generation.config import RetryConfig
from agents.generation.exceptions import (
    ContentBlockedError,
    MissingConfigError,
    ProviderResponseError,
)
from agents.generation.retry import RetryCallback, run_with_deadline
from setup_logging_optimized import get_logger

logger = get_logger(__name__)


@dataclass
class GroundingSource:
    uri: str
    title: str


@dataclass
class StructuredResult:
    data: Any
    grounding_sources: List[GroundingSource] = field(default_factory=list)
    model_used: Optional[str] = None


def _parse_json_text(text: Optional[str], label: str) -> Any:
    raw = (text or '').strip()
    if not raw:
        raise ProviderResponseError(f"Gemini returned an empty response for {label}.")
    # Some models still wrap JSON in a markdown fence
    if raw.startswith('```'):
        raw = raw.strip('`')
        if raw.lower().startswith('json'):
            raw = raw[4:]
        raw = raw.strip()
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse Gemini JSON for {label}: {raw[:200]}")
        raise ProviderResponseError(f"Gemini returned invalid JSON for {label}.", cause=e)


def _grounding_sources(response: Any) -> List[GroundingSource]:
    sources = []
    candidates = getattr(response, 'candidates', None) or []
    if not candidates:
        return sources
    metadata = getattr(candidates[0], 'grounding_metadata', None)
    for chunk in getattr(metadata, 'grounding_chunks', None) or []:
        web = getattr(chunk, 'web', None)
        uri = getattr(web, 'uri', None)
        title = getattr(web, 'title', None)
        if uri and title:
            sources.append(GroundingSource(uri=uri, title=title))
    return sources


class GeminiService:
    """Single-attempt calls against one Gemini model."""

    def __init__(self, api_key: Optional[str] = None, client: Optional[Any] = None):
        self.api_key = api_key or GEMINI_API_KEY or os.getenv("GOOGLE_API_KEY")
        self._client = client
        self.is_available = bool(client is not None or self.api_key)
        if not self.is_available:
            logger.warning("GEMINI_API_KEY not set. Lesson generation is disabled.")

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise MissingConfigError("GEMINI_API_KEY is not configured")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    # --- text ---

    async def generate_structured_once(
        self,
        model: str,
        prompt: str,
        schema: Dict[str, Any],
        temperature: float,
        use_search: bool = False,
        label: str = "generation",
    ) -> StructuredResult:
        config_kwargs: Dict[str, Any] = {
            'response_mime_type': 'application/json',
            'response_schema': schema,
            'temperature': temperature,
        }
        if use_search:
            config_kwargs['tools'] = [types.Tool(google_search=types.GoogleSearch())]
        config = types.GenerateContentConfig(**config_kwargs)

        def _invoke():
            return self.client.models.generate_content(model=model, contents=prompt, config=config)

        response = await asyncio.to_thread(_invoke)
        data = _parse_json_text(getattr(response, 'text', None), label)
        return StructuredResult(data=data, grounding_sources=_grounding_sources(response), model_used=model)

    async def generate_structured(
        self,
        prompt: str,
        schema: Dict[str, Any],
        models: Sequence[str],
        temperature: float,
        use_search: bool = False,
        label: str = "generation",
        retry: Optional[RetryConfig] = None,
        on_retry: Optional[RetryCallback] = None,
    ) -> StructuredResult:
        """Structured JSON from the first model that answers."""
        async def attempt(model: str) -> StructuredResult:
            return await self.generate_structured_once(model, prompt, schema, temperature, use_search, label)

        return await run_with_deadline(attempt, models, retry, on_retry=on_retry)

    # --- images ---

    async def generate_image_once(self, model: str, prompt: str, aspect_ratio: str = "16:9") -> str:
        """One image as a data URL.

        Raises ContentBlockedError when the safety filter refused, or
        ProviderResponseError when the model answered without an image.
        """
        if model.startswith('imagen'):
            return await self._generate_with_imagen(model, prompt, aspect_ratio)
        return await self._generate_with_gemini(model, prompt, aspect_ratio)

    async def _generate_with_imagen(self, model: str, prompt: str, aspect_ratio: str) -> str:
        config = types.GenerateImagesConfig(number_of_images=1, aspect_ratio=aspect_ratio)

        def _invoke():
            return self.client.models.generate_images(model=model, prompt=prompt, config=config)

        response = await asyncio.to_thread(_invoke)
        generated = (getattr(response, 'generated_images', None) or [None])[0]
        image = getattr(generated, 'image', None)
        image_bytes = getattr(image, 'image_bytes', None)
        if image_bytes:
            mime_type = getattr(image, 'mime_type', None) or 'image/png'
            return f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('utf-8')}"

        reason = getattr(generated, 'rai_filtered_reason', None)
        if reason:
            raise ContentBlockedError(reason)
        raise ProviderResponseError("No image data found in the model response.", status=502)

    async def _generate_with_gemini(self, model: str, prompt: str, aspect_ratio: str) -> str:
        config = types.GenerateContentConfig(
            response_modalities=['IMAGE', 'TEXT'],
            image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
        )

        def _invoke():
            return self.client.models.generate_content(model=model, contents=prompt, config=config)

        response = await asyncio.to_thread(_invoke)

        block_reason = getattr(getattr(response, 'prompt_feedback', None), 'block_reason', None)
        if block_reason:
            raise ContentBlockedError(str(block_reason))

        explanation = []
        for candidate in getattr(response, 'candidates', None) or []:
            content = getattr(candidate, 'content', None)
            for part in getattr(content, 'parts', None) or []:
                inline = getattr(part, 'inline_data', None)
                data = getattr(inline, 'data', None)
                if data:
                    if isinstance(data, str):
                        b64 = data
                    else:
                        b64 = base64.b64encode(data).decode('utf-8')
                    mime_type = getattr(inline, 'mime_type', None) or 'image/png'
                    return f"data:{mime_type};base64,{b64}"
                text = getattr(part, 'text', None)
                if text:
                    explanation.append(text)
            finish_reason = str(getattr(candidate, 'finish_reason', '') or '')
            if 'SAFETY' in finish_reason.upper() or 'PROHIBITED' in finish_reason.upper():
                raise ContentBlockedError(finish_reason)

        if explanation:
            logger.warning(f"{model} returned text instead of an image: {' '.join(explanation)[:200]}")
            raise ProviderResponseError("The model returned text instead of an image.", status=502)
        raise ProviderResponseError("No image data found in the model response.", status=502)

    async def generate_image(
        self,
        prompt: str,
        style_directives: str,
        models: Sequence[str],
        aspect_ratio: str = "16:9",
        retry: Optional[RetryConfig] = None,
        on_retry: Optional[RetryCallback] = None,
    ) -> str:
        """Data URL of a generated image from the first model that produces one."""
        final_prompt = f'{style_directives} The image should depict: "{prompt}"'

        async def attempt(model: str) -> str:
            return await self.generate_image_once(model, final_prompt, aspect_ratio)

        return await run_with_deadline(attempt, models, retry, on_retry=on_retry)
