"""
Open educational image lookup: search -> rank -> resolve.

Used by the slide pipeline before spending an AI image generation and by
the /api/open-images endpoint.
"""

from typing import List, Optional, Set

from agents.generation.config import ImageSearchConfig, get_config
from models.images import ImageCandidate, OpenEducationalImage, RankedImageCandidate, ResolvedImage
from services.image_query import query_tokens
from services.image_ranker import ImageRanker
from services.image_resolver import ImageResolver
from services.open_image_search_service import OpenImageSearchService, normalize_url
from setup_logging_optimized import get_logger
from utils.ttl_cache import TTLCache

logger = get_logger(__name__)


def build_attribution(candidate: ImageCandidate) -> str:
    """'creator | source | LICENSE version'"""
    source = candidate.source_name or candidate.source_provider.value or 'open source'
    creator = candidate.creator or 'Unknown creator'
    if candidate.license:
        version = f" {candidate.license_version}" if candidate.license_version else ''
        license_text = f"{candidate.license.upper()}{version}"
    else:
        license_text = 'Open license'
    return f"{creator} | {source} | {license_text}"


class ImageSelectionScope:
    """URLs already placed in one presentation, so a deck never repeats an image."""

    def __init__(self):
        self._seen: Set[str] = set()

    def is_used(self, url: str) -> bool:
        return normalize_url(url) in self._seen

    def mark_used(self, url: str) -> None:
        self._seen.add(normalize_url(url))

    def reset(self) -> None:
        self._seen.clear()

    def __len__(self) -> int:
        return len(self._seen)


class OpenImageService:
    """Finds and materializes the best open image for a prompt."""

    def __init__(
        self,
        search_service: Optional[OpenImageSearchService] = None,
        ranker: Optional[ImageRanker] = None,
        resolver: Optional[ImageResolver] = None,
        config: Optional[ImageSearchConfig] = None,
    ):
        self.config = config or get_config().image_search
        self.search_service = search_service or OpenImageSearchService(self.config)
        self.ranker = ranker or ImageRanker()
        self.resolver = resolver or ImageResolver(config=self.config)
        self._search_cache: TTLCache[List[ImageCandidate]] = TTLCache(self.config.cache_ttl)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        await self.search_service.close()
        await self.resolver.downloader.close()

    async def _search(self, query: str, language: str) -> List[ImageCandidate]:
        key = (query.strip().lower(), language.upper())
        cached = self._search_cache.get(key)
        if cached is not None:
            logger.debug(f"Search cache hit for '{query[:60]}'")
            return cached
        candidates = await self.search_service.search(query, language)
        self._search_cache.set(key, candidates)
        return candidates

    async def find_ranked(self, query: str, language: str = 'EN',
                          scope: Optional[ImageSelectionScope] = None) -> List[RankedImageCandidate]:
        query = (query or '').strip()[:self.config.raw_query_ceiling]
        if not query:
            return []
        tokens = query_tokens(f"{query} educational" if language.upper() == 'FIL' else query)
        if not tokens:
            return []
        candidates = await self._search(query, language)
        if scope is not None:
            candidates = [c for c in candidates if not scope.is_used(c.url)]
        return self.ranker.rank(candidates, tokens)

    async def find_image(self, query: str, language: str = 'EN',
                         scope: Optional[ImageSelectionScope] = None) -> Optional[ResolvedImage]:
        """Best resolvable open image for `query`, or None."""
        ranked = await self.find_ranked(query, language, scope)
        if not ranked:
            return None
        resolved = await self.resolver.resolve(ranked)
        if resolved is not None and scope is not None:
            scope.mark_used(resolved.candidate.url if resolved.candidate else resolved.source_url)
        return resolved

    async def find_educational_image(self, query: str, language: str = 'EN',
                                     scope: Optional[ImageSelectionScope] = None) -> Optional[OpenEducationalImage]:
        """Client-facing shape with attribution."""
        resolved = await self.find_image(query, language, scope)
        if resolved is None or resolved.candidate is None:
            return None
        candidate = resolved.candidate
        return OpenEducationalImage(
            url=resolved.display_url,
            sourceUrl=resolved.source_url,
            title=candidate.title or 'Educational image',
            source=candidate.source_name or candidate.source_provider.value,
            license=candidate.license or 'open',
            creator=candidate.creator,
            attribution=build_attribution(candidate),
            confidence=round(candidate.confidence, 3),
            landingUrl=candidate.landing_url,
        )

    def sweep_cache(self) -> int:
        return self._search_cache.sweep()
