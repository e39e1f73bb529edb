"""
Per-user lesson state: the presentation being built, the weekly blueprint,
and the manual edits a teacher makes between generations.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from models.lesson import (
    DayPlan,
    ImageOverlayLabel,
    Language,
    LessonBlueprint,
    Presentation,
    Slide,
    TeachingLevel,
    clamp_percent,
)
from services.open_image_service import ImageSelectionScope


@dataclass
class LessonSession:
    teaching_level: TeachingLevel = 'K-12'
    lesson_format: str = 'K-12'
    language: Language = 'EN'
    source_content: str = ""
    topic: str = ""
    objectives: str = ""
    presentation: Optional[Presentation] = None
    blueprint: Optional[LessonBlueprint] = None
    current_slide: int = 0
    image_scope: ImageSelectionScope = field(default_factory=ImageSelectionScope)

    @property
    def content(self) -> str:
        """Uploaded document text, or the typed topic when there is none."""
        return self.source_content.strip() or self.topic.strip()

    @property
    def slides(self) -> List[Slide]:
        return self.presentation.slides if self.presentation else []

    def slide(self, index: int) -> Slide:
        if not self.presentation or not 0 <= index < len(self.presentation.slides):
            raise IndexError(f"No slide at index {index}")
        return self.presentation.slides[index]

    def replace_slide(self, index: int, slide: Slide) -> Slide:
        self.slide(index)
        self.presentation.slides[index] = slide
        return slide

    def day(self, index: int) -> DayPlan:
        if not self.blueprint or not 0 <= index < len(self.blueprint.days):
            raise IndexError(f"No day at index {index}")
        return self.blueprint.days[index]

    def append_slides(self, slides: List[Slide], title: str) -> int:
        """Append slides; returns the index of the first new one."""
        if self.presentation is None:
            self.presentation = Presentation(title=title, slides=[])
        start = len(self.presentation.slides)
        self.presentation.slides.extend(slides)
        return start

    # --- teacher edits ---

    def update_speaker_notes(self, index: int, notes: str) -> Slide:
        slide = self.slide(index)
        return self.replace_slide(index, slide.model_copy(update={'speakerNotes': notes}))

    def update_image_overlays(self, index: int, overlays: List[ImageOverlayLabel]) -> Slide:
        slide = self.slide(index)
        overlays = [ImageOverlayLabel.model_validate(overlay) for overlay in overlays]
        return self.replace_slide(index, slide.model_copy(update={'imageOverlays': overlays}))

    def move_overlay(self, index: int, overlay_id: str, x: float, y: float) -> Slide:
        slide = self.slide(index)
        overlays = []
        found = False
        for overlay in slide.imageOverlays:
            if overlay.id == overlay_id:
                overlay = overlay.model_copy(update={'x': clamp_percent(x), 'y': clamp_percent(y)})
                found = True
            overlays.append(overlay)
        if not found:
            raise KeyError(f"No overlay {overlay_id} on slide {index}")
        return self.replace_slide(index, slide.model_copy(update={'imageOverlays': overlays}))

    def upload_image(self, index: int, data_url: str) -> Slide:
        """Replace the slide image with an uploaded one; the prompt is cleared so it isn't regenerated."""
        slide = self.slide(index)
        return self.replace_slide(index, slide.model_copy(update={
            'imageUrl': data_url,
            'imagePrompt': '',
            'imageAttribution': None,
        }))

    def reset(self) -> None:
        self.source_content = ""
        self.topic = ""
        self.objectives = ""
        self.presentation = None
        self.blueprint = None
        self.current_slide = 0
        self.image_scope.reset()
