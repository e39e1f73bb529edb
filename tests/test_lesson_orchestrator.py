"""
Tests for LessonOrchestrator: quota reservation, rollback and slide images.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from agents.generation.exceptions import (
    ContentBlockedError,
    ProviderResponseError,
    QuotaExceededError,
    TerminalProviderError,
    TransientProviderError,
)
from agents.generation.lesson_orchestrator import GenerationPhase, LessonOrchestrator
from agents.generation.lesson_session import LessonSession
from models.images import OpenEducationalImage
from models.lesson import IMAGE_ERROR, IMAGE_LIMIT_REACHED, Slide
from services.gemini_service import GroundingSource, StructuredResult

AI_IMAGE = 'data:image/png;base64,AAAA'

LESSON_RESPONSE = {
    'title': 'The Water Cycle',
    'slides': [
        {'title': 'Evaporation', 'content': ['Water heats up.- It rises.'], 'imagePrompt': 'sun over a lake',
         'imageStyle': 'illustration', 'speakerNotes': 'Explain heat.'},
        {'title': 'Condensation', 'content': ['Clouds form.'], 'imagePrompt': 'clouds forming',
         'imageStyle': 'diagram', 'speakerNotes': ''},
        {'title': 'Quiz', 'content': ['What is rain?A. Water B. Fire'], 'imageStyle': 'none'},
    ],
}

BLUEPRINT_RESPONSE = {
    'mainTitle': 'Weather and Climate',
    'subject': 'Science',
    'gradeLevel': 'Grade 5',
    'quarter': 'Q4',
    'learningCompetency': 'Describe the water cycle',
    'smartObjectives': ['By Friday, students will diagram the water cycle.'],
    'studentFacingObjectives': ['I can draw the water cycle.'],
    'days': [
        {'dayNumber': 1, 'title': 'Evaporation', 'focus': 'Heat and water'},
        {'dayNumber': 2, 'title': 'Precipitation', 'focus': 'Rain and snow', 'generationStatus': 'done'},
    ],
}


def result(data, sources=None):
    return StructuredResult(data=data, grounding_sources=sources or [], model_used='text-a')


def image_slides(count: int):
    return [Slide(title=f"Slide {i}", content=['Point'], imagePrompt=f"volcano {i}", imageStyle='illustration')
            for i in range(count)]


@pytest.fixture
def phases():
    return []


@pytest.fixture
def orchestrator(tracker, mock_gemini, generation_config, phases):
    return LessonOrchestrator(
        tracker,
        gemini=mock_gemini,
        config=generation_config,
        on_progress=lambda progress: phases.append(progress.phase),
    )


@pytest.fixture
def session():
    return LessonSession(topic='The water cycle', objectives='Explain evaporation')


class TestPresentationFlows:
    """Lecture and single-lesson generation."""

    @pytest.mark.asyncio
    async def test_single_lesson_commits_and_fills_images(self, orchestrator, mock_gemini, tracker, session, phases):
        sources = [GroundingSource(uri='https://example.org/water', title='Water facts')]
        mock_gemini.generate_structured.return_value = result(LESSON_RESPONSE, sources)

        presentation = await orchestrator.generate_single_lesson(session)

        assert session.presentation is presentation
        assert presentation.title == 'The Water Cycle'
        assert [s.title for s in presentation.slides] == ['Evaporation', 'Condensation', 'Quiz', 'Sources']
        assert presentation.slides[0].content == ['Water heats up.', 'It rises.']
        assert presentation.slides[2].content == ['What is rain?', 'A. Water', 'B. Fire']
        assert presentation.slides[3].content == ['**Water facts**', 'https://example.org/water']
        assert [s.imageUrl for s in presentation.slides] == [AI_IMAGE, AI_IMAGE, None, None]
        assert tracker.generations == 1
        assert tracker.images == 2
        assert phases[0] == GenerationPhase.RESERVING_QUOTA
        assert GenerationPhase.GENERATING_IMAGES in phases
        assert orchestrator.phase == GenerationPhase.COMMITTED

    @pytest.mark.asyncio
    async def test_provider_failure_rolls_back_the_slot(self, orchestrator, mock_gemini, tracker, session, phases):
        mock_gemini.generate_structured.side_effect = TransientProviderError("overloaded", status=503)

        with pytest.raises(TransientProviderError):
            await orchestrator.generate_single_lesson(session)

        assert tracker.generations == 0
        assert session.presentation is None
        assert phases[-1] == GenerationPhase.ROLLED_BACK

    @pytest.mark.asyncio
    async def test_unusable_response_rolls_back(self, orchestrator, mock_gemini, tracker, session):
        mock_gemini.generate_structured.return_value = result({'title': 'Empty', 'slides': []})

        with pytest.raises(ProviderResponseError):
            await orchestrator.generate_single_lesson(session)

        assert tracker.generations == 0
        assert orchestrator.phase == GenerationPhase.ROLLED_BACK

    @pytest.mark.asyncio
    async def test_exhausted_quota_blocks_without_calling_provider(self, orchestrator, mock_gemini, tracker, session):
        for _ in range(5):
            tracker.try_increment('generations')

        with pytest.raises(QuotaExceededError) as exc_info:
            await orchestrator.generate_college_lecture(session)

        assert exc_info.value.kind == 'generations'
        mock_gemini.generate_structured.assert_not_awaited()
        assert orchestrator.phase == GenerationPhase.BLOCKED
        assert tracker.generations == 5

    @pytest.mark.asyncio
    async def test_lecture_needs_topic_and_objectives(self, orchestrator, tracker):
        with pytest.raises(ValueError):
            await orchestrator.generate_college_lecture(LessonSession(topic='Thermodynamics'))
        assert tracker.generations == 0

    @pytest.mark.asyncio
    async def test_lecture_uses_search_grounding(self, orchestrator, mock_gemini, session):
        mock_gemini.generate_structured.return_value = result(LESSON_RESPONSE)

        await orchestrator.generate_college_lecture(session)

        kwargs = mock_gemini.generate_structured.await_args.kwargs
        assert kwargs['use_search'] is True
        assert kwargs['label'] == 'college lecture generation'


class TestSlideImages:
    """process_slides_for_images"""

    @pytest.mark.asyncio
    async def test_allowance_is_fixed_at_batch_start(self, orchestrator, mock_gemini, tracker):
        for _ in range(18):
            tracker.increment('images')

        slides = await orchestrator.process_slides_for_images(image_slides(4), 'EN')

        assert [s.imageUrl for s in slides] == [AI_IMAGE, AI_IMAGE, IMAGE_LIMIT_REACHED, IMAGE_LIMIT_REACHED]
        assert mock_gemini.generate_image.await_count == 2
        assert tracker.images == 20

    @pytest.mark.asyncio
    async def test_rate_limit_stops_the_batch(self, orchestrator, mock_gemini, tracker):
        mock_gemini.generate_image.side_effect = TransientProviderError("quota", status=429)

        slides = await orchestrator.process_slides_for_images(image_slides(3), 'EN')

        assert [s.imageUrl for s in slides] == [IMAGE_ERROR, None, None]
        assert mock_gemini.generate_image.await_count == 1
        assert tracker.images == 0

    @pytest.mark.asyncio
    async def test_blocked_image_does_not_stop_the_batch(self, orchestrator, mock_gemini, tracker):
        mock_gemini.generate_image.side_effect = [ContentBlockedError("SAFETY"), AI_IMAGE]

        slides = await orchestrator.process_slides_for_images(image_slides(2), 'EN')

        assert [s.imageUrl for s in slides] == [IMAGE_ERROR, AI_IMAGE]
        assert tracker.images == 1

    @pytest.mark.asyncio
    async def test_terminal_error_marks_slide_and_continues(self, orchestrator, mock_gemini):
        mock_gemini.generate_image.side_effect = [TerminalProviderError("bad", status=400), AI_IMAGE]

        slides = await orchestrator.process_slides_for_images(image_slides(2), 'EN')

        assert [s.imageUrl for s in slides] == [IMAGE_ERROR, AI_IMAGE]

    @pytest.mark.asyncio
    async def test_missing_prompt_gets_fallback(self, orchestrator, mock_gemini):
        slide = Slide(title='Volcanoes', content=['Magma rises', 'Lava flows'])

        [processed] = await orchestrator.process_slides_for_images([slide], 'EN')

        assert processed.imagePrompt == 'Volcanoes. Magma rises, Lava flows'
        assert mock_gemini.generate_image.await_args.args[0] == 'Volcanoes. Magma rises, Lava flows'

    @pytest.mark.asyncio
    async def test_existing_images_are_kept(self, orchestrator, mock_gemini):
        slide = Slide(title='Uploaded', imagePrompt='x', imageUrl='data:image/png;base64,ZZZZ')

        [processed] = await orchestrator.process_slides_for_images([slide], 'EN')

        assert processed.imageUrl == 'data:image/png;base64,ZZZZ'
        mock_gemini.generate_image.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_open_images_are_free(self, tracker, mock_gemini, generation_config):
        open_images = MagicMock()
        open_images.find_educational_image = AsyncMock(return_value=OpenEducationalImage(
            url='/image-proxy?u=x', sourceUrl='https://upload.wikimedia.org/x.jpg',
            attribution='Jane | wikimedia | CC BY-SA 4.0',
        ))
        orchestrator = LessonOrchestrator(tracker, gemini=mock_gemini, open_images=open_images, config=generation_config)

        slides = await orchestrator.process_slides_for_images(image_slides(2), 'EN')

        assert [s.imageUrl for s in slides] == ['/image-proxy?u=x', '/image-proxy?u=x']
        assert slides[0].imageAttribution == 'Jane | wikimedia | CC BY-SA 4.0'
        mock_gemini.generate_image.assert_not_awaited()
        assert tracker.images == 0

    @pytest.mark.asyncio
    async def test_open_image_failure_falls_back_to_ai(self, tracker, mock_gemini, generation_config):
        open_images = MagicMock()
        open_images.find_educational_image = AsyncMock(side_effect=RuntimeError("search down"))
        orchestrator = LessonOrchestrator(tracker, gemini=mock_gemini, open_images=open_images, config=generation_config)

        [slide] = await orchestrator.process_slides_for_images(image_slides(1), 'EN')

        assert slide.imageUrl == AI_IMAGE

    @pytest.mark.asyncio
    async def test_disabled_images_clear_prompts(self, tracker, mock_gemini, generation_config):
        generation_config.images_disabled = True
        orchestrator = LessonOrchestrator(tracker, gemini=mock_gemini, config=generation_config)

        slides = await orchestrator.process_slides_for_images(image_slides(2), 'EN')

        assert all(s.imageUrl == '' and s.imagePrompt == '' for s in slides)
        mock_gemini.generate_image.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_progress_reports_percentages(self, tracker, mock_gemini, generation_config):
        progress = []
        orchestrator = LessonOrchestrator(tracker, gemini=mock_gemini, config=generation_config,
                                          on_progress=progress.append)

        await orchestrator.process_slides_for_images(image_slides(2), 'EN')

        percentages = [p.progress for p in progress if p.phase == GenerationPhase.GENERATING_IMAGES]
        assert percentages == [0.0, 50.0, 100.0]


class TestWeeklyFlow:
    """Blueprint and per-day generation."""

    @pytest.mark.asyncio
    async def test_blueprint_uses_no_generation_quota(self, orchestrator, mock_gemini, tracker, session):
        mock_gemini.generate_structured.return_value = result(BLUEPRINT_RESPONSE)

        blueprint = await orchestrator.create_weekly_blueprint(session)

        assert tracker.generations == 0
        assert [d.generationStatus for d in blueprint.days] == ['pending', 'pending']
        assert [s.title for s in session.presentation.slides] == ['Weather and Climate', 'Learning Objectives']
        assert mock_gemini.generate_structured.await_args.kwargs['use_search'] is False

    @pytest.mark.asyncio
    async def test_invalid_blueprint_is_a_response_error(self, orchestrator, mock_gemini, session):
        mock_gemini.generate_structured.return_value = result({'mainTitle': 'Missing fields'})

        with pytest.raises(ProviderResponseError):
            await orchestrator.create_weekly_blueprint(session)

    @pytest.mark.asyncio
    async def test_day_generation_appends_slides(self, orchestrator, mock_gemini, tracker, session):
        mock_gemini.generate_structured.return_value = result(BLUEPRINT_RESPONSE)
        await orchestrator.create_weekly_blueprint(session)
        mock_gemini.generate_structured.return_value = result({'slides': LESSON_RESPONSE['slides']})

        start = await orchestrator.generate_day(session, 0)

        assert start == 2
        assert session.current_slide == 2
        assert len(session.slides) == 5
        assert session.day(0).generationStatus == 'done'
        assert tracker.generations == 1

    @pytest.mark.asyncio
    async def test_failed_day_reverts_to_pending(self, orchestrator, mock_gemini, tracker, session):
        mock_gemini.generate_structured.return_value = result(BLUEPRINT_RESPONSE)
        await orchestrator.create_weekly_blueprint(session)
        mock_gemini.generate_structured.side_effect = TerminalProviderError("bad", status=400)

        with pytest.raises(TerminalProviderError):
            await orchestrator.generate_day(session, 0)

        assert session.day(0).generationStatus == 'pending'
        assert len(session.slides) == 2
        assert tracker.generations == 0

    @pytest.mark.asyncio
    async def test_day_needs_blueprint(self, orchestrator, session):
        with pytest.raises(ValueError):
            await orchestrator.generate_day(session, 0)


class TestRegenerateImage:

    @pytest.fixture
    def populated(self, session):
        session.append_slides(image_slides(2), 'Deck')
        return session

    @pytest.mark.asyncio
    async def test_new_image_replaces_old(self, orchestrator, mock_gemini, tracker, populated):
        slide = await orchestrator.regenerate_image(populated, 1, 'erupting volcano at night')

        assert slide.imageUrl == AI_IMAGE
        assert slide.imagePrompt == 'erupting volcano at night'
        assert populated.slide(1) is slide
        assert tracker.images == 1

    @pytest.mark.asyncio
    async def test_limit_reached_skips_provider(self, orchestrator, mock_gemini, tracker, populated):
        for _ in range(20):
            tracker.increment('images')

        slide = await orchestrator.regenerate_image(populated, 0, 'new prompt')

        assert slide.imageUrl == IMAGE_LIMIT_REACHED
        mock_gemini.generate_image.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_leaves_error_sentinel(self, orchestrator, mock_gemini, tracker, populated):
        mock_gemini.generate_image.side_effect = TransientProviderError("busy", status=503)

        slide = await orchestrator.regenerate_image(populated, 0, 'new prompt')

        assert slide.imageUrl == IMAGE_ERROR
        assert tracker.images == 0

    @pytest.mark.asyncio
    async def test_unknown_slide(self, orchestrator, populated):
        with pytest.raises(IndexError):
            await orchestrator.regenerate_image(populated, 9, 'x')
