"""
Lesson generation orchestrator.

Every quota-consuming flow follows the same path:

    idle -> reserving_quota -> calling_provider (-> retrying) -> post_processing
         -> committed | rolled_back
    reserving_quota -> blocked   (daily limit reached, no provider call)

The generation slot is reserved up front and given back if anything fails
before the result is committed. Slide images are filled in afterwards,
one slide at a time, within the image allowance left when the batch started.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, TypeVar

from pydantic import ValidationError

from agents.config import BLUEPRINT_TEMPERATURE, LECTURE_TEMPERATURE, LESSON_TEMPERATURE
from agents.generation.config import GenerationConfig, get_config
from agents.generation.content_cleaner import (
    append_sources_slide,
    blueprint_intro_slides,
    build_slides,
    image_prompt_for,
)
from agents.generation.exceptions import (
    ContentBlockedError,
    GenerationError,
    ProviderError,
    ProviderResponseError,
    QuotaExceededError,
)
from agents.generation.lesson_session import LessonSession
from agents.generation.retry import RetryState
from agents.prompts.generation.lesson_prompts import (
    BLUEPRINT_SCHEMA,
    DAY_SLIDES_SCHEMA,
    LECTURE_SCHEMA,
    LESSON_SCHEMA,
    get_blueprint_prompt,
    get_college_lecture_prompt,
    get_day_slides_prompt,
    get_single_lesson_prompt,
    get_style_directives,
)
from models.lesson import (
    IMAGE_ERROR,
    IMAGE_LIMIT_REACHED,
    IMAGE_LOADING,
    LessonBlueprint,
    Presentation,
    Slide,
)
from services.gemini_service import GeminiService, StructuredResult
from services.open_image_service import ImageSelectionScope, OpenImageService
from services.usage_tracker import UsageTracker
from setup_logging_optimized import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class GenerationPhase(Enum):
    IDLE = "idle"
    RESERVING_QUOTA = "reserving_quota"
    CALLING_PROVIDER = "calling_provider"
    RETRYING = "retrying"
    POST_PROCESSING = "post_processing"
    GENERATING_IMAGES = "generating_images"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    BLOCKED = "blocked"


@dataclass
class GenerationProgress:
    phase: GenerationPhase
    message: str = ""
    progress: Optional[float] = None  # 0-100 while images are generated


ProgressCallback = Callable[[GenerationProgress], None]


class LessonOrchestrator:
    """Drives lecture, single-lesson, weekly-blueprint and per-day generation."""

    def __init__(
        self,
        tracker: UsageTracker,
        gemini: Optional[GeminiService] = None,
        open_images: Optional[OpenImageService] = None,
        config: Optional[GenerationConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.tracker = tracker
        self.gemini = gemini or GeminiService()
        self.open_images = open_images
        self.config = config or get_config()
        self.on_progress = on_progress
        self.phase = GenerationPhase.IDLE

    # --- state ---

    def _enter(self, phase: GenerationPhase, message: str = "", progress: Optional[float] = None) -> None:
        self.phase = phase
        logger.debug(f"Generation phase: {phase.value} {message}".rstrip())
        if self.on_progress:
            try:
                self.on_progress(GenerationProgress(phase=phase, message=message, progress=progress))
            except Exception as e:
                logger.error(f"Progress listener failed: {e}")

    def _on_retry(self, state: RetryState) -> None:
        self._enter(GenerationPhase.RETRYING, f"Retrying with {state.current_model} (attempt {state.attempt})")

    async def _with_reserved_generation(self, label: str, work: Callable[[], Awaitable[T]]) -> T:
        """Reserve a generation slot, run `work`, and give the slot back if it fails."""
        self._enter(GenerationPhase.RESERVING_QUOTA, label)
        if not self.tracker.try_increment('generations'):
            self._enter(GenerationPhase.BLOCKED, "Daily generation limit reached")
            raise QuotaExceededError('generations', self.tracker.limits.generations)

        committed = False
        try:
            result = await work()
            committed = True
            self._enter(GenerationPhase.COMMITTED, label)
            return result
        finally:
            if not committed:
                self.tracker.decrement('generations')
                self._enter(GenerationPhase.ROLLED_BACK, label)
                logger.warning(f"{label} failed; generation slot released")

    async def _call_structured(self, prompt: str, schema: dict, temperature: float,
                               use_search: bool, label: str) -> StructuredResult:
        self._enter(GenerationPhase.CALLING_PROVIDER, label)
        return await self.gemini.generate_structured(
            prompt,
            schema,
            self.config.models.text_models,
            temperature,
            use_search=use_search,
            label=label,
            retry=self.config.retry,
            on_retry=self._on_retry,
        )

    @staticmethod
    def _slides_from(result: StructuredResult, label: str) -> List[Slide]:
        data = result.data if isinstance(result.data, dict) else {}
        raw_slides = data.get('slides')
        if not isinstance(raw_slides, list):
            raise ProviderResponseError(f"Response for {label} has no slides.")
        try:
            slides = build_slides(raw_slides)
        except ValidationError as e:
            raise ProviderResponseError(f"Response for {label} has malformed slides.", cause=e)
        if not slides:
            raise ProviderResponseError(f"Response for {label} has no usable slides.")
        return append_sources_slide(slides, result.grounding_sources)

    async def _presentation_flow(self, session: LessonSession, label: str, prompt: str,
                                 schema: dict, temperature: float) -> Presentation:
        async def work() -> Presentation:
            result = await self._call_structured(prompt, schema, temperature, True, label)
            self._enter(GenerationPhase.POST_PROCESSING, label)
            slides = self._slides_from(result, label)
            title = (result.data.get('title') or '').strip() or slides[0].title
            session.image_scope.reset()
            slides = await self.process_slides_for_images(slides, session.language, session.image_scope)
            return Presentation(title=title, slides=slides)

        presentation = await self._with_reserved_generation(label, work)
        session.presentation = presentation
        session.blueprint = None
        session.current_slide = 0
        return presentation

    # --- flows ---

    async def generate_college_lecture(self, session: LessonSession) -> Presentation:
        if not session.topic.strip() or not session.objectives.strip():
            raise ValueError("A college lecture needs both a topic and learning objectives")
        prompt = get_college_lecture_prompt(session.topic, session.objectives, session.language)
        return await self._presentation_flow(session, "college lecture generation", prompt,
                                             LECTURE_SCHEMA, LECTURE_TEMPERATURE)

    async def generate_single_lesson(self, session: LessonSession) -> Presentation:
        if not session.content:
            raise ValueError("Upload a lesson plan or enter a topic first")
        prompt = get_single_lesson_prompt(session.content, session.lesson_format, session.language)
        return await self._presentation_flow(session, "single lesson generation", prompt,
                                             LESSON_SCHEMA, LESSON_TEMPERATURE)

    async def create_weekly_blueprint(self, session: LessonSession) -> LessonBlueprint:
        """Weekly plan plus its title/objectives slides. Uses no generation quota."""
        if not session.content:
            raise ValueError("Upload a lesson plan or enter a topic first")
        label = "lesson blueprint generation"
        prompt = get_blueprint_prompt(session.content, session.lesson_format, session.language)
        result = await self._call_structured(prompt, BLUEPRINT_SCHEMA, BLUEPRINT_TEMPERATURE, False, label)

        self._enter(GenerationPhase.POST_PROCESSING, label)
        try:
            blueprint = LessonBlueprint.model_validate(result.data)
        except ValidationError as e:
            raise ProviderResponseError(f"Response for {label} is not a valid blueprint.", cause=e)
        blueprint = blueprint.model_copy(update={
            'days': [day.model_copy(update={'generationStatus': 'pending'}) for day in blueprint.days],
        })

        session.image_scope.reset()
        intro = await self.process_slides_for_images(
            blueprint_intro_slides(blueprint), session.language, session.image_scope, mute_progress=True,
        )
        session.blueprint = blueprint
        session.presentation = Presentation(title=blueprint.mainTitle, slides=intro)
        session.current_slide = 0
        self._enter(GenerationPhase.COMMITTED, label)
        return blueprint

    async def generate_day(self, session: LessonSession, day_index: int) -> int:
        """Generate one day's slides and append them. Returns the first new slide index."""
        if session.blueprint is None:
            raise ValueError("Create the weekly blueprint first")
        day = session.day(day_index)
        label = f"day {day.dayNumber} slide generation"

        async def work() -> List[Slide]:
            day.generationStatus = 'loading'
            result = await self._call_structured(
                get_day_slides_prompt(day, session.blueprint, session.content, session.lesson_format, session.language),
                DAY_SLIDES_SCHEMA, LESSON_TEMPERATURE, True, label,
            )
            self._enter(GenerationPhase.POST_PROCESSING, label)
            slides = self._slides_from(result, label)
            return await self.process_slides_for_images(slides, session.language, session.image_scope)

        try:
            slides = await self._with_reserved_generation(label, work)
        except Exception:
            day.generationStatus = 'pending'
            raise

        start = session.append_slides(slides, session.blueprint.mainTitle)
        day.generationStatus = 'done'
        session.current_slide = start
        return start

    # --- images ---

    async def _find_open_image(self, prompt: str, language: str, scope: Optional[ImageSelectionScope]):
        if not self.open_images or not self.config.open_images_first:
            return None
        try:
            return await self.open_images.find_educational_image(prompt, language, scope)
        except Exception as e:
            # Open images are best effort; the AI path still runs
            logger.warning(f"Open image lookup failed for '{prompt[:60]}': {e}")
            return None

    async def process_slides_for_images(
        self,
        slides: List[Slide],
        language: str,
        scope: Optional[ImageSelectionScope] = None,
        mute_progress: bool = False,
    ) -> List[Slide]:
        """Fill in slide images in order.

        Open images are tried first and cost nothing. AI images are limited
        to the image allowance left when the batch starts; slides past it get
        the limit_reached sentinel. After the provider reports a rate limit,
        no further AI images are attempted in this batch.
        """
        if self.config.images_disabled:
            return [slide.model_copy(update={'imageUrl': '', 'imagePrompt': ''}) for slide in slides]

        self.tracker.refresh()
        allowance = self.tracker.remaining('images')
        wanted = sum(1 for slide in slides if not slide.imageUrl and image_prompt_for(slide))
        planned = min(wanted, allowance)
        if wanted and not planned:
            logger.info("Daily image limit reached; AI images are skipped for this batch")

        if not mute_progress and wanted:
            self._enter(GenerationPhase.GENERATING_IMAGES, f"Preparing {wanted} images", 0.0)

        processed: List[Slide] = []
        ai_attempted = 0
        rate_limited = False

        for slide in slides:
            prompt = image_prompt_for(slide)
            if slide.imageUrl or not prompt:
                processed.append(slide)
                continue
            if not (slide.imagePrompt or '').strip():
                slide = slide.model_copy(update={'imagePrompt': prompt})

            open_image = await self._find_open_image(prompt, language, scope)
            if open_image is not None:
                processed.append(slide.model_copy(update={
                    'imageUrl': open_image.url,
                    'imageAttribution': open_image.attribution,
                }))
                continue

            if ai_attempted >= allowance:
                processed.append(slide.model_copy(update={'imageUrl': IMAGE_LIMIT_REACHED}))
                continue
            if rate_limited:
                processed.append(slide)
                continue

            ai_attempted += 1
            if not mute_progress and planned:
                self._enter(
                    GenerationPhase.GENERATING_IMAGES,
                    f"Generating image {ai_attempted} of {planned}",
                    min(100.0, ai_attempted / planned * 100),
                )
            image_url, rate_limited = await self._generate_ai_image(slide, prompt, language)
            processed.append(slide.model_copy(update={'imageUrl': image_url}))

        return processed

    async def _generate_ai_image(self, slide: Slide, prompt: str, language: str):
        """Returns (image url or error sentinel, provider rate limit hit)."""
        try:
            image_url = await self.gemini.generate_image(
                prompt,
                get_style_directives(slide.imageStyle or 'illustration', language),
                self.config.models.image_models,
                aspect_ratio=self.config.models.image_aspect_ratio,
                retry=self.config.retry,
            )
        except ContentBlockedError as e:
            logger.warning(f"Image blocked for '{prompt[:60]}': {e.reason}")
            return IMAGE_ERROR, False
        except ProviderError as e:
            logger.error(f"Image generation failed for '{prompt[:60]}': {e.message}")
            if e.is_rate_limit:
                logger.warning("Image provider quota exhausted; stopping image generation for this batch")
            return IMAGE_ERROR, e.is_rate_limit
        except GenerationError as e:
            logger.error(f"Image generation failed for '{prompt[:60]}': {e}")
            return IMAGE_ERROR, False
        self.tracker.increment('images')
        return image_url, False

    async def regenerate_image(self, session: LessonSession, slide_index: int, new_prompt: str) -> Slide:
        """New AI image for one slide; the slide ends with an image, 'error' or 'limit_reached'."""
        slide = session.slide(slide_index)
        slide = session.replace_slide(slide_index, slide.model_copy(update={
            'imagePrompt': new_prompt,
            'imageUrl': IMAGE_LOADING,
            'imageAttribution': None,
        }))

        self.tracker.refresh()
        if not self.tracker.can_generate_image:
            logger.info("Image regeneration refused: daily image limit reached")
            return session.replace_slide(slide_index, slide.model_copy(update={'imageUrl': IMAGE_LIMIT_REACHED}))

        style_slide = slide if slide.imageStyle != 'none' else slide.model_copy(update={'imageStyle': 'illustration'})
        image_url, _ = await self._generate_ai_image(style_slide, new_prompt, session.language)
        return session.replace_slide(slide_index, slide.model_copy(update={'imageUrl': image_url}))
