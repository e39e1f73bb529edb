"""
Open image search across three independent backends.

- Openverse: general open-media index
- Wikimedia Commons: curated institutional media
- NASA Image and Video Library: scientific imagery

Every backend response is parsed into its own tagged record type and mapped
to ImageCandidate right here; nothing backend-specific leaves this module.
"""

import asyncio
import html
import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from urllib.parse import urlsplit, urlunsplit

import aiohttp
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from agents.config import USER_AGENT
from agents.generation.config import ImageSearchConfig, get_config
from agents.generation.exceptions import (
    RETRYABLE_STATUS_CODES,
    ProviderError,
    TerminalProviderError,
    TransientProviderError,
)
from models.images import ImageCandidate, ImageProvider
from services.image_query import build_query_variants
from setup_logging_optimized import get_logger

logger = get_logger(__name__)

OPENVERSE_URL = "https://api.openverse.org/v1/images/"
WIKIMEDIA_URL = "https://commons.wikimedia.org/w/api.php"
NASA_URL = "https://images-api.nasa.gov/search"

# Openverse providers with reliable educational media
OPENVERSE_SOURCES = "wikimedia,smithsonian,met,flickr"

# How many query variants each backend gets
VARIANTS_PER_BACKEND = {
    ImageProvider.OPENVERSE: 3,
    ImageProvider.WIKIMEDIA: 2,
    ImageProvider.NASA: 2,
}

NON_IMAGE_EXTENSIONS = ('.pdf', '.djvu', '.ogg', '.oga', '.ogv', '.webm', '.mp3', '.mp4', '.wav', '.mid', '.stl')

_TAG_RE = re.compile(r'<[^>]+>')


def normalize_url(url: str) -> str:
    """Dedup key: lowercase scheme/host, no query or fragment, no trailing slash."""
    parts = urlsplit((url or '').strip())
    path = parts.path.rstrip('/')
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, '', ''))


def _strip_markup(value: Optional[str]) -> str:
    if not value:
        return ''
    return html.unescape(_TAG_RE.sub(' ', value)).strip()


def _looks_like_image(url: str, mime: Optional[str] = None) -> bool:
    if mime:
        return mime.lower().startswith('image/')
    return not urlsplit(url).path.lower().endswith(NON_IMAGE_EXTENSIONS)


# === Backend record variants ===

class OpenverseTag(BaseModel):
    name: str = ""


class OpenverseRecord(BaseModel):
    backend: Literal["openverse"] = "openverse"
    id: str
    title: Optional[str] = None
    url: Optional[str] = None
    thumbnail: Optional[str] = None
    foreign_landing_url: Optional[str] = None
    creator: Optional[str] = None
    license: Optional[str] = None
    license_version: Optional[str] = None
    source: Optional[str] = None
    provider: Optional[str] = None
    tags: List[Union[OpenverseTag, str]] = Field(default_factory=list)
    mature: bool = False
    filetype: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None

    def to_candidate(self) -> Optional[ImageCandidate]:
        url = self.url or self.thumbnail
        if not url or self.mature:
            return None
        mime = f"image/{self.filetype}" if self.filetype else None
        if not _looks_like_image(url, mime):
            return None
        tags = {tag if isinstance(tag, str) else tag.name for tag in self.tags}
        return ImageCandidate(
            id=f"openverse:{self.id}",
            title=self.title or '',
            url=url,
            thumbnail_url=self.thumbnail,
            landing_url=self.foreign_landing_url,
            source_provider=ImageProvider.OPENVERSE,
            license=self.license or '',
            license_version=self.license_version or '',
            creator=self.creator or '',
            source_name=self.source or self.provider or 'openverse',
            tags=frozenset(tag.strip().lower() for tag in tags if tag and tag.strip()),
            width=self.width,
            height=self.height,
            provider_asset_id=self.id,
        )


class WikimediaImageInfo(BaseModel):
    url: Optional[str] = None
    thumburl: Optional[str] = None
    descriptionurl: Optional[str] = None
    mime: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    extmetadata: Dict[str, Any] = Field(default_factory=dict)

    def meta(self, key: str) -> str:
        entry = self.extmetadata.get(key)
        if isinstance(entry, dict):
            return _strip_markup(str(entry.get('value') or ''))
        return ''


class WikimediaRecord(BaseModel):
    backend: Literal["wikimedia"] = "wikimedia"
    pageid: int
    title: str = ""
    imageinfo: List[WikimediaImageInfo] = Field(default_factory=list)

    def to_candidate(self) -> Optional[ImageCandidate]:
        if not self.imageinfo:
            return None
        info = self.imageinfo[0]
        if not info.url or not _looks_like_image(info.url, info.mime):
            return None
        title = self.title
        if title.startswith('File:'):
            title = title[len('File:'):]
        title = re.sub(r'\.[A-Za-z0-9]{2,5}$', '', title).replace('_', ' ')
        categories = info.meta('Categories')
        license_name = info.meta('LicenseShortName')
        return ImageCandidate(
            id=f"wikimedia:{self.pageid}",
            title=title,
            description=info.meta('ImageDescription'),
            url=info.url,
            thumbnail_url=info.thumburl,
            landing_url=info.descriptionurl,
            source_provider=ImageProvider.WIKIMEDIA,
            license=license_name,
            creator=info.meta('Artist'),
            source_name='wikimedia',
            tags=frozenset(c.strip().lower() for c in categories.split('|') if c.strip()),
            width=info.width,
            height=info.height,
            provider_asset_id=str(self.pageid),
        )


class NasaItemData(BaseModel):
    nasa_id: str
    title: str = ""
    description: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    media_type: str = "image"
    photographer: Optional[str] = None
    center: Optional[str] = None


class NasaLink(BaseModel):
    href: str
    rel: Optional[str] = None
    render: Optional[str] = None


class NasaRecord(BaseModel):
    backend: Literal["nasa"] = "nasa"
    data: List[NasaItemData] = Field(default_factory=list)
    links: List[NasaLink] = Field(default_factory=list)

    def to_candidate(self) -> Optional[ImageCandidate]:
        if not self.data or not self.links:
            return None
        item = self.data[0]
        if item.media_type != 'image':
            return None
        preview = self.links[0].href
        # The search API only links the thumbnail; the medium rendition sits beside it.
        url = preview.replace('~thumb.', '~medium.') if '~thumb.' in preview else preview
        if not _looks_like_image(url):
            return None
        return ImageCandidate(
            id=f"nasa:{item.nasa_id}",
            title=item.title,
            description=_strip_markup(item.description),
            url=url,
            thumbnail_url=preview if preview != url else None,
            landing_url=f"https://images.nasa.gov/details/{item.nasa_id}",
            source_provider=ImageProvider.NASA,
            license='pdm',
            creator=item.photographer or item.center or 'NASA',
            source_name='nasa',
            tags=frozenset(k.strip().lower() for k in item.keywords if k and k.strip()),
            provider_asset_id=item.nasa_id,
        )


BackendRecord = Annotated[
    Union[OpenverseRecord, WikimediaRecord, NasaRecord],
    Field(discriminator='backend'),
]

_RECORD_ADAPTER = TypeAdapter(BackendRecord)


def parse_records(provider: ImageProvider, payload: Any) -> List[ImageCandidate]:
    """Map one backend payload to candidates, skipping malformed records."""
    if not isinstance(payload, dict):
        return []
    if provider == ImageProvider.OPENVERSE:
        raw_records = payload.get('results') or []
    elif provider == ImageProvider.WIKIMEDIA:
        pages = (payload.get('query') or {}).get('pages') or []
        raw_records = list(pages.values()) if isinstance(pages, dict) else pages
        # generator=search returns pages keyed by id; keep search rank order
        raw_records = sorted(
            (r for r in raw_records if isinstance(r, dict)),
            key=lambda r: r.get('index', 0),
        )
    else:
        raw_records = (payload.get('collection') or {}).get('items') or []

    candidates = []
    skipped = 0
    for raw in raw_records:
        if not isinstance(raw, dict):
            skipped += 1
            continue
        try:
            record = _RECORD_ADAPTER.validate_python({**raw, 'backend': provider.value})
        except ValidationError:
            skipped += 1
            continue
        candidate = record.to_candidate()
        if candidate:
            candidates.append(candidate)
    if skipped:
        logger.debug(f"{provider.value}: skipped {skipped} malformed records")
    return candidates


def merge_candidates(groups: List[List[ImageCandidate]]) -> List[ImageCandidate]:
    """Flatten and dedup by normalized URL; first occurrence wins."""
    seen = set()
    merged = []
    for group in groups:
        for candidate in group:
            key = normalize_url(candidate.url)
            if key in seen:
                continue
            seen.add(key)
            merged.append(candidate)
    return merged


class OpenImageSearchService:
    """Concurrent keyword search over the open image backends."""

    def __init__(self, config: Optional[ImageSearchConfig] = None, session: Optional[aiohttp.ClientSession] = None):
        self.config = config or get_config().image_search
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
                headers={'User-Agent': USER_AGENT},
            )
            self._owns_session = True
        return self._session

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    # --- request building ---

    def _build_request(self, provider: ImageProvider, query: str):
        if provider == ImageProvider.OPENVERSE:
            return OPENVERSE_URL, {
                'q': query,
                'mature': 'false',
                'page_size': str(self.config.page_size),
                'license': 'by,by-sa,cc0,pdm',
                'source': OPENVERSE_SOURCES,
            }
        if provider == ImageProvider.WIKIMEDIA:
            return WIKIMEDIA_URL, {
                'action': 'query',
                'format': 'json',
                'formatversion': '2',
                'generator': 'search',
                'gsrsearch': f"{query} filetype:bitmap",
                'gsrnamespace': '6',
                'gsrlimit': str(self.config.page_size),
                'prop': 'imageinfo',
                'iiprop': 'url|size|mime|extmetadata',
                'iiurlwidth': '1280',
                'origin': '*',
            }
        return NASA_URL, {
            'q': query,
            'media_type': 'image',
            'page_size': str(self.config.page_size),
        }

    # --- HTTP ---

    async def _get_json(self, url: str, params: Dict[str, str]) -> Any:
        """One GET; raises ProviderError on a non-2xx status."""
        session = await self._get_session()
        async with session.get(url, params=params) as response:
            if response.status >= 400:
                raise ProviderError(f"Search backend returned {response.status}", status=response.status)
            return await response.json(content_type=None)

    async def _fetch_json(self, url: str, params: Dict[str, str]) -> Any:
        """GET with immediate retry on 429/5xx and network errors."""
        attempts = max(1, self.config.attempts_per_call)
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                return await self._get_json(url, params)
            except ProviderError as e:
                last_error = e
                if e.status not in RETRYABLE_STATUS_CODES:
                    raise TerminalProviderError(e.message, status=e.status, cause=e)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
            logger.debug(f"Search request to {url} failed (attempt {attempt}/{attempts}): {last_error}")
        status = getattr(last_error, 'status', None)
        raise TransientProviderError(f"Search backend unavailable: {last_error}", status=status, cause=last_error)

    async def _search_backend(self, provider: ImageProvider, query: str) -> List[ImageCandidate]:
        url, params = self._build_request(provider, query)
        payload = await self._fetch_json(url, params)
        return parse_records(provider, payload)

    # --- public API ---

    async def search(self, query: str, language: str = 'EN') -> List[ImageCandidate]:
        """Search all backends concurrently and merge the results.

        A backend that fails is logged and skipped; whatever succeeded is
        returned. Raises TransientProviderError when no call succeeded so the
        outage is not mistaken for an empty result.
        """
        variants = build_query_variants(query, language, self.config.raw_query_ceiling)
        if not variants:
            return []

        jobs = []
        for provider in ImageProvider:
            for variant in variants[:VARIANTS_PER_BACKEND[provider]]:
                jobs.append((provider, variant))

        results = await asyncio.gather(
            *(self._search_backend(provider, variant) for provider, variant in jobs),
            return_exceptions=True,
        )

        groups = []
        for (provider, variant), result in zip(jobs, results):
            if isinstance(result, BaseException):
                logger.warning(f"{provider.value} search failed for '{variant[:60]}': {result}")
                continue
            groups.append(result)

        if not groups:
            raise TransientProviderError(f"All {len(jobs)} open image searches failed", context={"query": query[:60]})

        merged = merge_candidates(groups)
        logger.info(f"Open image search '{query[:60]}': {len(merged)} candidates from {len(groups)}/{len(jobs)} calls")
        return merged
