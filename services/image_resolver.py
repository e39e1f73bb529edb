"""
Turns ranked image candidates into something a slide can display.

Search results are only references: the URL may be dead, blocked for
cross-origin use, or not an image at all, so each candidate has to be
materialized before it counts.
"""

from typing import Iterable, List, Optional, Sequence
from urllib.parse import quote

from agents.generation.config import ImageSearchConfig, get_config
from agents.generation.exceptions import AssetResolutionError
from models.images import RankedImageCandidate, ResolvedImage
from services.image_downloader import ImageDownloader, is_trusted_host
from setup_logging_optimized import get_logger

logger = get_logger(__name__)


def resolution_order(ranked: Sequence[RankedImageCandidate], min_confidence: float,
                     fallback_top_n: int) -> List[RankedImageCandidate]:
    """Admitted candidates in rank order, then the top-N not yet listed."""
    admitted = [candidate for candidate in ranked if candidate.confidence >= min_confidence]
    order = list(admitted)
    seen = {candidate.id for candidate in admitted}
    for candidate in ranked[:fallback_top_n]:
        if candidate.id not in seen:
            order.append(candidate)
            seen.add(candidate.id)
    return order


class ImageResolver:
    """Walks ranked candidates until one resolves."""

    def __init__(self, downloader: Optional[ImageDownloader] = None, config: Optional[ImageSearchConfig] = None):
        self.config = config or get_config().image_search
        self.downloader = downloader or ImageDownloader(self.config)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.downloader.close()

    def proxy_url_for(self, url: str) -> str:
        return f"{self.config.proxy_path}?u={quote(url, safe='')}"

    def _candidate_urls(self, candidate: RankedImageCandidate) -> Iterable[str]:
        yield candidate.url
        if candidate.thumbnail_url and candidate.thumbnail_url != candidate.url:
            yield candidate.thumbnail_url

    async def resolve_candidate(self, candidate: RankedImageCandidate) -> ResolvedImage:
        """Proxy reference for trusted hosts, embedded bytes otherwise.

        Raises AssetResolutionError when no URL of the candidate works.
        """
        last_error: Optional[Exception] = None
        for url in self._candidate_urls(candidate):
            if is_trusted_host(url, self.config.trusted_host_suffixes):
                return ResolvedImage(source_url=url, proxy_url=self.proxy_url_for(url), candidate=candidate)
            try:
                data_url, mime_type = await self.downloader.fetch_as_data_url(url)
            except AssetResolutionError as e:
                logger.debug(f"Could not fetch {url[:80]}: {e.message}")
                last_error = e
                continue
            return ResolvedImage(source_url=url, embedded_data=data_url, content_type=mime_type, candidate=candidate)
        raise AssetResolutionError(
            f"No usable image for candidate {candidate.id}",
            cause=last_error,
            context={'candidate': candidate.id},
        )

    async def resolve(self, ranked: Sequence[RankedImageCandidate]) -> Optional[ResolvedImage]:
        """First candidate that materializes, or None if every attempt failed."""
        order = resolution_order(ranked, self.config.min_confidence, self.config.fallback_top_n)
        for position, candidate in enumerate(order):
            try:
                resolved = await self.resolve_candidate(candidate)
            except AssetResolutionError as e:
                logger.debug(f"Candidate {candidate.id} failed: {e.message}")
                continue
            if candidate.confidence < self.config.min_confidence:
                logger.info(f"Using below-threshold candidate {candidate.id} (confidence {candidate.confidence})")
            else:
                logger.debug(f"Resolved candidate {candidate.id} at position {position}")
            return resolved
        if order:
            logger.info(f"None of {len(order)} image candidates could be resolved")
        return None
