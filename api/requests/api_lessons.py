"""
Lesson and lecture generation endpoints.

Each caller works against a server-side LessonSession identified by
`sessionId`. Sessions live in memory and expire after a period without use.
"""

import uuid
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from agents.generation.exceptions import (
    ConfigurationError,
    ContentBlockedError,
    GenerationError,
    QuotaExceededError,
    TerminalProviderError,
    TransientProviderError,
    describe_error,
)
from agents.generation.lesson_orchestrator import LessonOrchestrator
from agents.generation.lesson_session import LessonSession
from models.lesson import Language, LessonBlueprint, Presentation, Slide, TeachingLevel
from models.usage import UsageSnapshot
from services.usage_tracker import UsageTracker
from setup_logging_optimized import get_logger
from utils.ttl_cache import TTLCache

logger = get_logger(__name__)

router = APIRouter(prefix="/api/lessons", tags=["lessons"])

SESSION_TTL_SECONDS = 6 * 60 * 60
MAX_SESSIONS = 512


class LessonSessionStore:
    """In-memory sessions keyed by id; each access extends the expiry."""

    def __init__(self, ttl: float = SESSION_TTL_SECONDS, max_sessions: int = MAX_SESSIONS):
        self._sessions: TTLCache[LessonSession] = TTLCache(ttl, max_sessions)

    def get(self, session_id: str) -> Optional[LessonSession]:
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions.set(session_id, session)
        return session

    def require(self, session_id: str) -> LessonSession:
        session = self.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Lesson session not found or expired")
        return session

    def get_or_create(self, session_id: Optional[str]) -> Tuple[str, LessonSession]:
        """Returns (session_id, session); unknown or missing ids start a new session."""
        if session_id:
            session = self.get(session_id)
            if session is not None:
                return session_id, session
        session_id = uuid.uuid4().hex
        session = LessonSession()
        self._sessions.set(session_id, session)
        return session_id, session

    def discard(self, session_id: str) -> None:
        self._sessions.pop(session_id)

    def sweep(self) -> int:
        return self._sessions.sweep()

    def __len__(self) -> int:
        return len(self._sessions)


# --- request / response models ---

class LessonSettingsRequest(BaseModel):
    """Inputs for lecture, single-lesson and blueprint generation"""
    sessionId: Optional[str] = Field(default=None, description="Existing session to reuse")
    teachingLevel: TeachingLevel = 'K-12'
    lessonFormat: str = 'K-12'
    language: Language = 'EN'
    topic: str = ""
    objectives: str = Field(default="", description="Learning objectives (college lectures)")
    sourceContent: str = Field(default="", description="Text extracted from an uploaded lesson plan")


class DayRequest(BaseModel):
    sessionId: str
    dayIndex: int = Field(ge=0)


class RegenerateImageRequest(BaseModel):
    sessionId: str
    slideIndex: int = Field(ge=0)
    prompt: str = Field(min_length=1)


class LessonResponse(BaseModel):
    sessionId: str
    presentation: Optional[Presentation] = None
    blueprint: Optional[LessonBlueprint] = None
    currentSlide: int = 0
    usage: UsageSnapshot


class DayResponse(LessonResponse):
    firstSlideIndex: int


class RegenerateImageResponse(BaseModel):
    sessionId: str
    slideIndex: int
    slide: Slide
    usage: UsageSnapshot


# --- dependencies ---

def get_session_store(request: Request) -> LessonSessionStore:
    return request.app.state.lesson_sessions


def get_usage_tracker(request: Request) -> UsageTracker:
    return request.app.state.usage


def get_lesson_orchestrator(request: Request,
                            tracker: UsageTracker = Depends(get_usage_tracker)) -> LessonOrchestrator:
    """A fresh orchestrator per request; the services behind it are shared."""
    state = request.app.state
    return LessonOrchestrator(tracker, gemini=state.gemini, open_images=state.open_images)


# --- helpers ---

def error_status(error: Exception) -> int:
    if isinstance(error, QuotaExceededError):
        return 429
    if isinstance(error, ContentBlockedError):
        return 422
    if isinstance(error, TransientProviderError):
        return 504 if error.status == 504 else 503
    if isinstance(error, TerminalProviderError):
        return 502
    return 500


def raise_for_generation_error(error: GenerationError, label: str) -> None:
    status = error_status(error)
    if isinstance(error, QuotaExceededError):
        logger.info(f"{label} refused: {error}")
    elif isinstance(error, ConfigurationError):
        logger.error(f"{label} is misconfigured: {error}")
    else:
        logger.error(f"{label} failed ({status}): {error}")
    raise HTTPException(status_code=status, detail=describe_error(error))


def apply_settings(session: LessonSession, request: LessonSettingsRequest) -> None:
    session.teaching_level = request.teachingLevel
    session.lesson_format = request.lessonFormat
    session.language = request.language
    session.topic = request.topic
    session.objectives = request.objectives
    session.source_content = request.sourceContent


def lesson_response(session_id: str, session: LessonSession, tracker: UsageTracker) -> LessonResponse:
    return LessonResponse(
        sessionId=session_id,
        presentation=session.presentation,
        blueprint=session.blueprint,
        currentSlide=session.current_slide,
        usage=tracker.snapshot,
    )


async def _run_settings_flow(flow_name: str, request: LessonSettingsRequest,
                             store: LessonSessionStore, orchestrator: LessonOrchestrator) -> LessonResponse:
    session_id, session = store.get_or_create(request.sessionId)
    apply_settings(session, request)
    flow = getattr(orchestrator, flow_name)
    try:
        await flow(session)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GenerationError as e:
        raise_for_generation_error(e, flow_name)
    return lesson_response(session_id, session, orchestrator.tracker)


# --- routes ---

@router.post("/lecture", response_model=LessonResponse)
async def generate_lecture(
    request: LessonSettingsRequest,
    store: LessonSessionStore = Depends(get_session_store),
    orchestrator: LessonOrchestrator = Depends(get_lesson_orchestrator),
):
    """College lecture deck from a topic and learning objectives."""
    return await _run_settings_flow('generate_college_lecture', request, store, orchestrator)


@router.post("/single", response_model=LessonResponse)
async def generate_single_lesson(
    request: LessonSettingsRequest,
    store: LessonSessionStore = Depends(get_session_store),
    orchestrator: LessonOrchestrator = Depends(get_lesson_orchestrator),
):
    """One K-12 lesson deck from an uploaded plan or a topic."""
    return await _run_settings_flow('generate_single_lesson', request, store, orchestrator)


@router.post("/blueprint", response_model=LessonResponse)
async def create_blueprint(
    request: LessonSettingsRequest,
    store: LessonSessionStore = Depends(get_session_store),
    orchestrator: LessonOrchestrator = Depends(get_lesson_orchestrator),
):
    """Weekly plan with its title and objectives slides."""
    return await _run_settings_flow('create_weekly_blueprint', request, store, orchestrator)


@router.post("/day", response_model=DayResponse)
async def generate_day(
    request: DayRequest,
    store: LessonSessionStore = Depends(get_session_store),
    orchestrator: LessonOrchestrator = Depends(get_lesson_orchestrator),
):
    """Slides for one day of the weekly plan, appended to the deck."""
    session = store.require(request.sessionId)
    try:
        start = await orchestrator.generate_day(session, request.dayIndex)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GenerationError as e:
        raise_for_generation_error(e, f"day {request.dayIndex + 1} generation")
    base = lesson_response(request.sessionId, session, orchestrator.tracker)
    return DayResponse(**base.model_dump(), firstSlideIndex=start)


@router.post("/regenerate-image", response_model=RegenerateImageResponse)
async def regenerate_image(
    request: RegenerateImageRequest,
    store: LessonSessionStore = Depends(get_session_store),
    orchestrator: LessonOrchestrator = Depends(get_lesson_orchestrator),
):
    """New AI image for one slide. The slide carries 'limit_reached' or 'error' when none was made."""
    session = store.require(request.sessionId)
    try:
        slide = await orchestrator.regenerate_image(session, request.slideIndex, request.prompt.strip())
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return RegenerateImageResponse(
        sessionId=request.sessionId,
        slideIndex=request.slideIndex,
        slide=slide,
        usage=orchestrator.tracker.snapshot,
    )


@router.get("/{session_id}", response_model=LessonResponse)
async def get_lesson(
    session_id: str,
    store: LessonSessionStore = Depends(get_session_store),
    tracker: UsageTracker = Depends(get_usage_tracker),
):
    session = store.require(session_id)
    tracker.refresh()
    return lesson_response(session_id, session, tracker)


@router.delete("/{session_id}")
async def reset_lesson(session_id: str, store: LessonSessionStore = Depends(get_session_store)):
    """Start over: drops the deck, the blueprint and the used-image history."""
    session = store.require(session_id)
    session.reset()
    store.discard(session_id)
    return {"status": "reset", "sessionId": session_id}
