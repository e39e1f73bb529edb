from enum import Enum
from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ImageProvider(str, Enum):
    """Open image search backends"""
    OPENVERSE = "openverse"   # general open-media index
    WIKIMEDIA = "wikimedia"   # curated institutional media (Wikimedia Commons)
    NASA = "nasa"             # scientific imagery (NASA Image and Video Library)


class ImageCandidate(BaseModel):
    """A search result for a prospective slide image (provider-neutral)."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    description: str = ""
    url: str
    thumbnail_url: Optional[str] = None
    landing_url: Optional[str] = None
    source_provider: ImageProvider
    license: str = ""
    license_version: str = ""
    creator: str = ""
    source_name: str = ""   # collection the backend got it from (e.g. "smithsonian")
    tags: FrozenSet[str] = Field(default_factory=frozenset)
    width: Optional[int] = None
    height: Optional[int] = None
    provider_asset_id: Optional[str] = None


class RankedImageCandidate(ImageCandidate):
    """Candidate annotated with the ranker's relevance score."""
    confidence: float = Field(ge=0.0, le=1.0)

    @classmethod
    def from_candidate(cls, candidate: ImageCandidate, confidence: float) -> "RankedImageCandidate":
        return cls(**candidate.model_dump(), confidence=confidence)


class ResolvedImage(BaseModel):
    """A candidate turned into something displayable.

    Exactly one of `embedded_data` (a base64 data URL) or `proxy_url`
    (pass-through endpoint for trusted hosts) is set.
    """
    source_url: str
    embedded_data: Optional[str] = None
    proxy_url: Optional[str] = None
    content_type: Optional[str] = None
    candidate: Optional[RankedImageCandidate] = None

    @model_validator(mode="after")
    def _exactly_one_payload(self):
        if (self.embedded_data is None) == (self.proxy_url is None):
            raise ValueError("exactly one of embedded_data / proxy_url must be set")
        return self

    @property
    def display_url(self) -> str:
        return self.proxy_url or self.embedded_data


class OpenEducationalImage(BaseModel):
    """Best open image for a prompt, as returned to the client"""
    url: str = Field(..., description="Displayable URL (proxy path or data URL)")
    sourceUrl: str = Field(..., description="Original upstream image URL")
    title: str = Field(default="Educational image")
    source: str = Field(default="openverse")
    license: str = Field(default="open")
    creator: str = Field(default="")
    attribution: str = Field(default="")
    confidence: float = Field(default=0.0)
    landingUrl: Optional[str] = None
