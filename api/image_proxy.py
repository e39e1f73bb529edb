"""
Pass-through image endpoint for trusted open-media hosts.

Slides reference trusted images as /image-proxy?u=<url> so browsers and the
deck exporter can load them without cross-origin problems.
"""

from fastapi import APIRouter, Query
from fastapi.responses import Response

from agents.generation.config import get_config
from agents.generation.exceptions import AssetResolutionError, ImageFormatError, ImageSizeError
from services.image_downloader import ImageDownloader, is_trusted_host
from setup_logging_optimized import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Image Proxy"])

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET,OPTIONS',
    'Access-Control-Allow-Headers': 'Content-Type',
}
CACHE_CONTROL = 'public, max-age=86400'


def _text(status_code: int, message: str) -> Response:
    return Response(content=message, status_code=status_code, media_type='text/plain', headers=CORS_HEADERS)


async def fetch_upstream(url: str):
    """(bytes, content type) of the upstream image."""
    async with ImageDownloader(get_config().image_search) as downloader:
        return await downloader.fetch(url)


@router.options("/image-proxy")
async def image_proxy_preflight():
    return Response(status_code=204, headers=CORS_HEADERS)


@router.get("/image-proxy")
async def image_proxy(u: str = Query(default="", description="Upstream image URL")):
    config = get_config().image_search
    if not u or not is_trusted_host(u, config.trusted_host_suffixes):
        return _text(400, 'Invalid or disallowed image URL')

    try:
        data, content_type = await fetch_upstream(u)
    except ImageFormatError:
        return _text(415, 'Upstream content is not an image')
    except ImageSizeError:
        return _text(413, 'Upstream image is too large')
    except AssetResolutionError as e:
        logger.warning(f"Image proxy upstream failure for {u[:100]}: {e.message}")
        return _text(502, 'Failed to fetch upstream image')

    return Response(
        content=data,
        media_type=content_type,
        headers={**CORS_HEADERS, 'Cache-Control': CACHE_CONTROL},
    )
