"""
Server-side image fetching for candidates that cannot be proxied.

Bytes are pulled with a size ceiling and an image/* content-type check, then
negotiated into a format every slide renderer handles (JPEG, PNG, GIF).
Anything else Pillow can decode is transcoded to PNG.
"""

import asyncio
import base64
from io import BytesIO
from typing import Iterable, Optional, Tuple
from urllib.parse import urlsplit

import aiohttp
from PIL import Image, UnidentifiedImageError

from agents.config import USER_AGENT
from agents.generation.config import ImageSearchConfig, get_config
from agents.generation.exceptions import AssetResolutionError, ImageFormatError, ImageSizeError
from setup_logging_optimized import get_logger

logger = get_logger(__name__)

# Pillow format name -> MIME type kept as-is
PASSTHROUGH_FORMATS = {
    'JPEG': 'image/jpeg',
    'PNG': 'image/png',
    'GIF': 'image/gif',
}

REQUEST_HEADERS = {
    'User-Agent': USER_AGENT,
    'Accept': 'image/webp,image/apng,image/*,*/*;q=0.8',
}


def is_trusted_host(url: str, suffixes: Iterable[str]) -> bool:
    """http(s) URL whose host is a listed domain or a subdomain of one."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if parts.scheme not in ('http', 'https'):
        return False
    host = (parts.hostname or '').lower()
    if not host:
        return False
    for suffix in suffixes:
        suffix = suffix.lower()
        if host == suffix.lstrip('.') or host.endswith(suffix if suffix.startswith('.') else f'.{suffix}'):
            return True
    return False


def negotiate_format(data: bytes) -> Tuple[bytes, str]:
    """Return (bytes, mime) in a renderer-friendly format.

    Raises ImageFormatError when the payload is not a decodable image.
    """
    try:
        with Image.open(BytesIO(data)) as image:
            image_format = (image.format or '').upper()
            if image_format in PASSTHROUGH_FORMATS:
                image.verify()
                return data, PASSTHROUGH_FORMATS[image_format]

            image.load()
            if image.mode not in ('RGB', 'RGBA', 'L', 'LA', 'P'):
                image = image.convert('RGBA')
            output = BytesIO()
            image.save(output, format='PNG', optimize=True)
            logger.debug(f"Transcoded {image_format or 'unknown'} image to PNG")
            return output.getvalue(), 'image/png'
    except UnidentifiedImageError as e:
        raise ImageFormatError("Payload is not a recognizable image", cause=e)
    except (OSError, ValueError, SyntaxError) as e:
        raise ImageFormatError("Image data is corrupt or unsupported", cause=e)


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('utf-8')}"


class ImageDownloader:
    """Fetches images with a byte ceiling."""

    def __init__(self, config: Optional[ImageSearchConfig] = None, session: Optional[aiohttp.ClientSession] = None):
        self.config = config or get_config().image_search
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.download_timeout),
                headers=REQUEST_HEADERS,
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

    async def fetch(self, url: str) -> Tuple[bytes, str]:
        """Download raw bytes; returns (bytes, content-type header)."""
        max_bytes = self.config.max_image_bytes
        session = await self._get_session()
        try:
            async with session.get(url, allow_redirects=True) as response:
                if response.status != 200:
                    raise AssetResolutionError(f"Upstream returned HTTP {response.status}", context={'url': url})

                content_type = (response.headers.get('Content-Type') or '').split(';')[0].strip().lower()
                if not content_type.startswith('image/'):
                    raise ImageFormatError(f"Not an image (content-type: {content_type or 'missing'})", context={'url': url})

                declared = response.content_length
                if declared is not None and declared > max_bytes:
                    raise ImageSizeError(f"Image too large: {declared} > {max_bytes} bytes", context={'url': url})

                buffer = bytearray()
                async for chunk in response.content.iter_chunked(64 * 1024):
                    buffer.extend(chunk)
                    if len(buffer) > max_bytes:
                        raise ImageSizeError(f"Image exceeds {max_bytes} bytes", context={'url': url})
                if not buffer:
                    raise AssetResolutionError("Empty image body", context={'url': url})
                return bytes(buffer), content_type
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AssetResolutionError(f"Network error fetching image: {e}", cause=e, context={'url': url})

    async def fetch_as_data_url(self, url: str) -> Tuple[str, str]:
        """Fetch, negotiate format and embed. Returns (data URL, mime)."""
        data, _ = await self.fetch(url)
        data, mime_type = await asyncio.to_thread(negotiate_format, data)
        return to_data_url(data, mime_type), mime_type
