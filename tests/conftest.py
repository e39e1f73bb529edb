"""Shared fixtures for the lesson generation tests."""

from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from agents.generation.config import (
    GenerationConfig,
    ImageSearchConfig,
    ModelConfig,
    QuotaConfig,
    RetryConfig,
)
from models.images import ImageCandidate, ImageProvider, RankedImageCandidate
from services.usage_tracker import UsageTracker
from utils.storage import MemoryStorageBackend

TODAY = date(2026, 10, 18)


@pytest.fixture
def today():
    return lambda: TODAY


@pytest.fixture
def quota() -> QuotaConfig:
    return QuotaConfig(max_generations=5, max_images=20, storage_dir='unused', poll_interval=0.01)


@pytest.fixture
def backend() -> MemoryStorageBackend:
    return MemoryStorageBackend()


@pytest.fixture
def tracker(backend, quota, today) -> UsageTracker:
    return UsageTracker(backend.context(), quota, today=today)


@pytest.fixture
def search_config() -> ImageSearchConfig:
    return ImageSearchConfig(
        page_size=5,
        attempts_per_call=2,
        request_timeout=1.0,
        min_confidence=0.45,
        fallback_top_n=3,
        max_image_bytes=1024,
        download_timeout=1.0,
        cache_ttl=60.0,
        proxy_path='/image-proxy',
        trusted_host_suffixes=['upload.wikimedia.org', 'images-assets.nasa.gov'],
    )


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_attempts_per_model=3, base_delay=0.8, max_delay=3.2, max_jitter=0.0, deadline_seconds=5.0)


@pytest.fixture
def generation_config(quota, retry_config, search_config) -> GenerationConfig:
    return GenerationConfig(
        quota=quota,
        retry=retry_config,
        models=ModelConfig(text_models=['text-a', 'text-b'], image_models=['image-a']),
        image_search=search_config,
        images_disabled=False,
        open_images_first=True,
    )


@pytest.fixture
def mock_gemini():
    gemini = MagicMock()
    gemini.generate_structured = AsyncMock()
    gemini.generate_image = AsyncMock(return_value='data:image/png;base64,AAAA')
    return gemini


def make_candidate(identifier: str, url: str = None, **overrides) -> ImageCandidate:
    fields = dict(
        id=identifier,
        title=f"Image {identifier}",
        url=url or f"https://example.org/{identifier}.jpg",
        source_provider=ImageProvider.OPENVERSE,
    )
    fields.update(overrides)
    return ImageCandidate(**fields)


def make_ranked(identifier: str, confidence: float, **overrides) -> RankedImageCandidate:
    return RankedImageCandidate.from_candidate(make_candidate(identifier, **overrides), confidence)
