"""
Persisted daily usage counters.

The canonical record is one JSON blob under a versioned key. Three legacy
scalar keys are still mirrored on every write because older clients read
them directly.
"""

import json
import math
import re
from datetime import date
from typing import Any, Callable, Optional

from models.usage import UsageState
from setup_logging_optimized import get_logger
from utils.storage import KeyValueStorage

logger = get_logger(__name__)

STORAGE_KEY = 'sayuna_usage_state_v2'
LEGACY_DATE_KEY = 'sayuna_usage_date'
LEGACY_GENERATION_KEY = 'sayuna_generation_count'
LEGACY_IMAGE_KEY = 'sayuna_image_count'

USAGE_KEYS = (STORAGE_KEY, LEGACY_DATE_KEY, LEGACY_GENERATION_KEY, LEGACY_IMAGE_KEY)

_LEADING_INT = re.compile(r'^\s*([+-]?\d+)')


def format_day(day: date) -> str:
    """Same shape as JS Date.toDateString(), e.g. 'Sun Oct 18 2026'."""
    return day.strftime('%a %b %d %Y')


def sanitize_count(value: Any, max_value: int) -> int:
    """Parse a stored count leniently and clamp it to [0, max_value]."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, float):
        if not math.isfinite(value):
            return 0
        parsed = int(value)
    elif isinstance(value, int):
        parsed = value
    else:
        match = _LEADING_INT.match(str(value))
        if not match:
            return 0
        parsed = int(match.group(1))
    if parsed < 0:
        return 0
    return min(parsed, max_value)


class UsageStore:
    """Reads and writes UsageState against a KeyValueStorage."""

    def __init__(
        self,
        storage: KeyValueStorage,
        max_generations: int,
        max_images: int,
        today: Optional[Callable[[], date]] = None,
    ):
        self.storage = storage
        self.max_generations = max_generations
        self.max_images = max_images
        self._today = today or date.today

    def today(self) -> str:
        return format_day(self._today())

    def empty_state(self, day: Optional[str] = None) -> UsageState:
        return UsageState(date=day or self.today(), generations=0, images=0)

    def normalize(self, raw: Any, day: Optional[str] = None) -> UsageState:
        """Reset on date mismatch, otherwise sanitize both counts."""
        day = day or self.today()
        if isinstance(raw, UsageState):
            raw = raw.model_dump()
        if not isinstance(raw, dict) or raw.get('date') != day:
            return self.empty_state(day)
        return UsageState(
            date=day,
            generations=sanitize_count(raw.get('generations'), self.max_generations),
            images=sanitize_count(raw.get('images'), self.max_images),
        )

    def _read_legacy(self, day: str) -> UsageState:
        try:
            if self.storage.get_item(LEGACY_DATE_KEY) != day:
                return self.empty_state(day)
            return UsageState(
                date=day,
                generations=sanitize_count(self.storage.get_item(LEGACY_GENERATION_KEY), self.max_generations),
                images=sanitize_count(self.storage.get_item(LEGACY_IMAGE_KEY), self.max_images),
            )
        except Exception as e:
            logger.warning(f"Failed to read legacy usage keys, resetting to defaults: {e}")
            return self.empty_state(day)

    def read(self) -> UsageState:
        """Current state for today. A rollover reset is returned, not persisted."""
        day = self.today()
        try:
            raw_state = self.storage.get_item(STORAGE_KEY)
            if raw_state:
                return self.normalize(json.loads(raw_state), day)
        except Exception as e:
            logger.warning(f"Failed to parse usage state, falling back to legacy keys: {e}")
        return self._read_legacy(day)

    def write(self, state: UsageState) -> None:
        """Persist the canonical record and mirror the legacy keys."""
        try:
            self.storage.set_item(STORAGE_KEY, state.model_dump_json())
            self.storage.set_item(LEGACY_DATE_KEY, state.date)
            self.storage.set_item(LEGACY_GENERATION_KEY, str(state.generations))
            self.storage.set_item(LEGACY_IMAGE_KEY, str(state.images))
        except Exception as e:
            logger.warning(f"Failed to persist usage state: {e}")
