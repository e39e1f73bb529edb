"""
Open educational image lookup endpoint.
"""

from typing import Optional

from pydantic import BaseModel, Field

from models.images import OpenEducationalImage
from services.open_image_service import OpenImageService
from setup_logging_optimized import get_logger

logger = get_logger(__name__)


class OpenImageResponse(BaseModel):
    """Best open image for the query, or null"""
    image: Optional[OpenEducationalImage] = Field(default=None)


async def process_open_image_search(service: OpenImageService, query: str, lang: str = 'EN') -> OpenImageResponse:
    """Never raises for upstream problems; a failed lookup is just no image."""
    language = (lang or 'EN').upper()
    try:
        image = await service.find_educational_image(query, language)
    except Exception as e:
        logger.error(f"Open image lookup failed for '{query[:60]}': {e}")
        return OpenImageResponse(image=None)
    return OpenImageResponse(image=image)
