from pydantic import BaseModel, Field, field_validator
from typing import List, Literal, Optional
from uuid import uuid4

ImageStyle = Literal['photorealistic', 'illustration', 'infographic', 'diagram', 'historical photo', 'none']
IMAGE_STYLES = ('photorealistic', 'illustration', 'infographic', 'diagram', 'historical photo', 'none')

TeachingLevel = Literal['K-12', 'College']
Language = Literal['EN', 'FIL']
GenerationStatus = Literal['pending', 'loading', 'done']

# imageUrl placeholders that are not images
IMAGE_ERROR = 'error'
IMAGE_LOADING = 'loading'
IMAGE_LIMIT_REACHED = 'limit_reached'
IMAGE_SENTINELS = (IMAGE_ERROR, IMAGE_LOADING, IMAGE_LIMIT_REACHED)


def clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


class ImageOverlayLabel(BaseModel):
    """Manual label drawn over a slide image"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    text: str = ""
    x: float = Field(default=50.0, description="Percentage from left (0-100)")
    y: float = Field(default=50.0, description="Percentage from top (0-100)")
    fontSize: Optional[int] = Field(default=None, description="Label text size in px")

    @field_validator('x', 'y')
    @classmethod
    def _clamp(cls, value: float) -> float:
        return clamp_percent(value)


class Slide(BaseModel):
    title: str
    content: List[str] = Field(default_factory=list, description="One bullet point or paragraph per entry")
    imagePrompt: Optional[str] = Field(default=None, description="Descriptive prompt for a relevant image (English)")
    imageStyle: Optional[ImageStyle] = None
    imageUrl: Optional[str] = Field(default=None, description="Data/proxy URL of the image, or a status sentinel")
    imageAttribution: Optional[str] = Field(default=None, description="Credit line when the image is an open image")
    imageOverlays: List[ImageOverlayLabel] = Field(default_factory=list)
    speakerNotes: str = ""

    @field_validator('imageStyle', mode='before')
    @classmethod
    def _known_style(cls, value):
        # Models occasionally invent styles; fall back to illustration
        if value is None or value in IMAGE_STYLES:
            return value
        return 'illustration'


class Presentation(BaseModel):
    title: str
    slides: List[Slide] = Field(default_factory=list)


class DayPlan(BaseModel):
    dayNumber: int
    title: str
    focus: str = Field(default="", description="What this day covers")
    generationStatus: GenerationStatus = 'pending'


class LessonBlueprint(BaseModel):
    mainTitle: str
    subject: str
    gradeLevel: str = ""
    quarter: str = ""
    learningCompetency: str
    smartObjectives: List[str] = Field(default_factory=list, description="SMART objectives for the teacher's plan")
    studentFacingObjectives: List[str] = Field(default_factory=list, description="Objectives shown on the student slides")
    days: List[DayPlan] = Field(default_factory=list)


def has_displayable_image(slide: Slide) -> bool:
    """True when imageUrl holds an actual image rather than a sentinel."""
    url = slide.imageUrl
    return bool(url) and url not in IMAGE_SENTINELS
