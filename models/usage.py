from typing import Literal

from pydantic import BaseModel, Field

UsageKind = Literal["generations", "images"]
USAGE_KINDS = ("generations", "images")


class UsageState(BaseModel):
    """Daily usage counters as persisted in local storage."""
    date: str = Field(description="Calendar day the counters belong to (e.g. 'Sun Oct 18 2026')")
    generations: int = Field(default=0, ge=0, description="Text generations used today")
    images: int = Field(default=0, ge=0, description="Images used today")

    def count(self, kind: UsageKind) -> int:
        return self.generations if kind == "generations" else self.images

    def with_count(self, kind: UsageKind, value: int) -> "UsageState":
        return self.model_copy(update={kind: value})


class UsageLimits(BaseModel):
    generations: int
    images: int

    def limit_for(self, kind: UsageKind) -> int:
        return self.generations if kind == "generations" else self.images


class UsageSnapshot(BaseModel):
    """What a context currently shows the user."""
    generations: int = 0
    images: int = 0
    limits: UsageLimits
    can_generate: bool = True
    can_generate_image: bool = True
