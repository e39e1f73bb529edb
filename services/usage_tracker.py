"""
Daily usage tracking for generations and images.

Every mutation re-reads storage first instead of trusting an in-memory
counter, so several contexts (tabs, worker processes) sharing one storage
stay within the limits. The local `snapshot` is only a view and is refreshed
on every mutation and whenever another context changes the usage keys.
"""

from typing import Callable, Optional

from agents.generation.config import QuotaConfig, get_config
from models.usage import UsageKind, UsageLimits, UsageSnapshot, UsageState, USAGE_KINDS
from services.usage_store import USAGE_KEYS, UsageStore
from setup_logging_optimized import get_logger
from utils.storage import KeyValueStorage

logger = get_logger(__name__)


class UsageTracker:
    """try/increment/decrement semantics on top of UsageStore."""

    def __init__(
        self,
        storage: KeyValueStorage,
        quota: Optional[QuotaConfig] = None,
        today=None,
        on_change: Optional[Callable[[UsageSnapshot], None]] = None,
    ):
        quota = quota or get_config().quota
        self.limits = UsageLimits(generations=quota.max_generations, images=quota.max_images)
        self.store = UsageStore(storage, quota.max_generations, quota.max_images, today=today)
        self.on_change = on_change
        self._state = self.store.empty_state()
        self._unsubscribe = storage.on_external_change(USAGE_KEYS, self._handle_external_change)
        self.refresh()

    # --- view ---

    @property
    def generations(self) -> int:
        return self._state.generations

    @property
    def images(self) -> int:
        return self._state.images

    @property
    def can_generate(self) -> bool:
        return self._state.generations < self.limits.generations

    @property
    def can_generate_image(self) -> bool:
        return self._state.images < self.limits.images

    def remaining(self, kind: UsageKind) -> int:
        return max(0, self.limits.limit_for(kind) - self._state.count(kind))

    @property
    def snapshot(self) -> UsageSnapshot:
        return UsageSnapshot(
            generations=self._state.generations,
            images=self._state.images,
            limits=self.limits,
            can_generate=self.can_generate,
            can_generate_image=self.can_generate_image,
        )

    def _set_view(self, state: UsageState) -> None:
        self._state = state
        if self.on_change:
            try:
                self.on_change(self.snapshot)
            except Exception as e:
                logger.error(f"Usage change listener failed: {e}")

    # --- mutations ---

    def refresh(self) -> UsageState:
        """Re-read storage, persist any rollover reset and update the view."""
        current = self.store.read()
        self.store.write(current)
        self._set_view(current)
        return current

    def _mutate(self, mutator: Callable[[UsageState], UsageState]) -> UsageState:
        with self.store.storage.transaction():
            current = self.store.read()
            next_state = self.store.normalize(mutator(current), current.date)
            self.store.write(next_state)
        self._set_view(next_state)
        return next_state

    def try_increment(self, kind: UsageKind) -> bool:
        """Admission gate: consume one slot if one is left today."""
        self._check_kind(kind)
        limit = self.limits.limit_for(kind)
        admitted = False

        def mutator(state: UsageState) -> UsageState:
            nonlocal admitted
            if state.count(kind) >= limit:
                return state
            admitted = True
            return state.with_count(kind, state.count(kind) + 1)

        self._mutate(mutator)
        if not admitted:
            logger.info(f"Daily {kind} limit reached ({limit})")
        return admitted

    def increment(self, kind: UsageKind) -> None:
        """Unconditional increment; the stored count is still clamped to the limit."""
        self._check_kind(kind)
        self._mutate(lambda state: state.with_count(kind, state.count(kind) + 1))

    def decrement(self, kind: UsageKind) -> None:
        """Give back a reserved slot. Never goes below zero."""
        self._check_kind(kind)
        self._mutate(lambda state: state.with_count(kind, max(0, state.count(kind) - 1)))

    # --- lifecycle ---

    def _handle_external_change(self, key: Optional[str]) -> None:
        if key is None or key in USAGE_KEYS:
            logger.debug(f"Usage key {key} changed in another context, refreshing")
            self.refresh()

    def close(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    @staticmethod
    def _check_kind(kind: str) -> None:
        if kind not in USAGE_KINDS:
            raise ValueError(f"Unknown usage kind: {kind}")
