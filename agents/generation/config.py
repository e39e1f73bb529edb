"""
Configuration management for lesson generation.

Centralized configuration with:
- Type safety
- Environment variable support
- Validation
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Any, List

from agents import config as global_config


@dataclass
class QuotaConfig:
    """Daily usage limits and where they are persisted"""
    max_generations: int = field(default_factory=lambda: global_config.MAX_DAILY_GENERATIONS)
    max_images: int = field(default_factory=lambda: global_config.MAX_DAILY_IMAGES)
    storage_dir: str = field(default_factory=lambda: global_config.USAGE_STORAGE_DIR)
    poll_interval: float = field(default_factory=lambda: float(os.getenv('USAGE_POLL_INTERVAL', '2.0')))

    def limit_for(self, kind: str) -> int:
        return self.max_generations if kind == 'generations' else self.max_images


@dataclass
class RetryConfig:
    """Provider retry policy"""
    max_attempts_per_model: int = field(default_factory=lambda: int(os.getenv('AI_MAX_RETRIES', '3')))
    base_delay: float = field(default_factory=lambda: float(os.getenv('AI_RETRY_DELAY', '0.8')))
    max_delay: float = 3.2
    max_jitter: float = 0.35
    deadline_seconds: float = field(default_factory=lambda: float(os.getenv('AI_DEADLINE', '60')))


@dataclass
class ModelConfig:
    """Ordered model lists (primary first)"""
    text_models: List[str] = field(default_factory=lambda: list(global_config.TEXT_MODELS))
    image_models: List[str] = field(default_factory=lambda: list(global_config.IMAGE_MODELS))
    image_aspect_ratio: str = "16:9"


@dataclass
class ImageSearchConfig:
    """Open image search and resolution"""
    page_size: int = field(default_factory=lambda: int(os.getenv('IMAGE_SEARCH_PAGE_SIZE', '20')))
    attempts_per_call: int = 2
    request_timeout: float = field(default_factory=lambda: float(os.getenv('IMAGE_SEARCH_TIMEOUT', '12')))
    raw_query_ceiling: int = 200
    min_confidence: float = field(default_factory=lambda: float(os.getenv('IMAGE_MIN_CONFIDENCE', '0.45')))
    fallback_top_n: int = 3
    max_image_bytes: int = field(default_factory=lambda: int(os.getenv('IMAGE_MAX_BYTES', str(5 * 1024 * 1024))))
    download_timeout: float = 15.0
    cache_ttl: float = 3600.0
    proxy_path: str = field(default_factory=lambda: global_config.IMAGE_PROXY_PATH)
    trusted_host_suffixes: List[str] = field(default_factory=lambda: list(global_config.TRUSTED_IMAGE_HOST_SUFFIXES))


@dataclass
class GenerationConfig:
    """Top-level configuration for lesson generation."""
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    models: ModelConfig = field(default_factory=ModelConfig)
    image_search: ImageSearchConfig = field(default_factory=ImageSearchConfig)
    images_disabled: bool = field(default_factory=lambda: global_config.IMAGES_DISABLED)
    open_images_first: bool = field(default_factory=lambda: global_config.OPEN_IMAGES_FIRST)

    def validate(self) -> None:
        """Raise InvalidConfigError on values that cannot work"""
        from agents.generation.exceptions import InvalidConfigError

        if self.quota.max_generations < 0 or self.quota.max_images < 0:
            raise InvalidConfigError("Daily limits must be non-negative")
        if self.retry.max_attempts_per_model < 1:
            raise InvalidConfigError("At least one attempt per model is required")
        if not self.models.text_models:
            raise InvalidConfigError("No text models configured")
        if not 0.0 <= self.image_search.min_confidence <= 1.0:
            raise InvalidConfigError("min_confidence must be within [0, 1]")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'limits': {
                'generations': self.quota.max_generations,
                'images': self.quota.max_images,
            },
            'text_models': self.models.text_models,
            'image_models': self.models.image_models,
            'images_disabled': self.images_disabled,
            'open_images_first': self.open_images_first,
        }


@lru_cache(maxsize=1)
def get_config() -> GenerationConfig:
    """Process-wide configuration (validated once)."""
    config = GenerationConfig()
    config.validate()
    return config
