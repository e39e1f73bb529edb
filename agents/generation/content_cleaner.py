"""
Post-processing of model output into slide records.

Models often clump several bullets into one string ("end.2. Next",
"Question?A. Answer", "Magma: Rock.Lava: Flow."); split_bullets breaks those
apart before the slides are stored.
"""

import re
from typing import Iterable, List, Optional, Sequence

from models.lesson import LessonBlueprint, Slide

SPLIT = '\x00'
FALLBACK_PROMPT_MAX_CHARS = 220

# (pattern, replacement) applied in order; SPLIT marks a bullet boundary
_SPLIT_RULES = [
    # numbered lists
    (re.compile(r'([.?!])\s*(\d+\.)'), r'\1' + SPLIT + r'\2'),
    (re.compile(r'([a-z])(\d+\.)'), r'\1' + SPLIT + r'\2'),
    (re.compile(r'(\s)(\d+\.\s+[A-Z])'), SPLIT + r'\2'),
    # lettered options
    (re.compile(r'([.?!])\s*([A-E]\.)'), r'\1' + SPLIT + r'\2'),
    (re.compile(r'([a-z])([A-E]\.)'), r'\1' + SPLIT + r'\2'),
    (re.compile(r'(\s)([A-E]\.)'), SPLIT + r'\2'),
    # clumped definitions
    (re.compile(r'([.?!])\s*([A-Z][a-zA-Z\s-]{1,30}:)'), r'\1' + SPLIT + r'\2'),
    # bullet markers, including ones stuck to the previous sentence
    (re.compile(r'(\s|^|[:.;])([-•*]\s)'), r'\1' + SPLIT + r'\2'),
]

_LEADING_BULLET = re.compile(r'^[-•*]\s+')


def split_bullets(item: str) -> List[str]:
    formatted = (item or '').replace('\n', SPLIT)
    for pattern, replacement in _SPLIT_RULES:
        formatted = pattern.sub(replacement, formatted)
    parts = []
    for part in formatted.split(SPLIT):
        part = _LEADING_BULLET.sub('', part.strip())
        if part:
            parts.append(part)
    return parts


def clean_slide_content(content: Iterable[str]) -> List[str]:
    cleaned: List[str] = []
    for item in content or []:
        if isinstance(item, str):
            cleaned.extend(split_bullets(item))
    return cleaned


def build_slides(raw_slides: Sequence[dict]) -> List[Slide]:
    """Validate raw slide dicts and clean their content; malformed entries are dropped."""
    slides = []
    for raw in raw_slides or []:
        if not isinstance(raw, dict) or not raw.get('title'):
            continue
        content = raw.get('content') or []
        if isinstance(content, str):
            content = [content]
        slides.append(Slide(**{**raw, 'content': clean_slide_content(content)}))
    return slides


def build_sources_slide(sources: Iterable) -> Optional[Slide]:
    """'Sources' slide from grounding sources (objects with .uri/.title), or None."""
    content = []
    for source in sources or []:
        uri = getattr(source, 'uri', None)
        title = getattr(source, 'title', None)
        if uri and title:
            content.extend([f"**{title}**", uri])
    if not content:
        return None
    return Slide(
        title="Sources",
        content=content,
        speakerNotes="These are the web sources the AI consulted to generate the content for this presentation.",
        imagePrompt="",
        imageStyle="none",
    )


def append_sources_slide(slides: List[Slide], sources: Iterable) -> List[Slide]:
    sources_slide = build_sources_slide(sources)
    if sources_slide is not None:
        slides.append(sources_slide)
    return slides


def fallback_image_prompt(slide: Slide) -> str:
    """Title plus the first three content lines, for slides without a prompt."""
    title = (slide.title or '').strip()
    content = ', '.join(line for line in (slide.content or [])[:3] if line).strip()
    combined = '. '.join(part for part in (title, content) if part).strip()
    return combined[:FALLBACK_PROMPT_MAX_CHARS]


def image_prompt_for(slide: Slide) -> str:
    """Prompt to use for the slide image; empty when the slide wants none."""
    if slide.imageStyle == 'none':
        return ''
    return (slide.imagePrompt or '').strip() or fallback_image_prompt(slide)


def blueprint_intro_slides(blueprint: LessonBlueprint) -> List[Slide]:
    """Title and learning-objectives slides shown before any day is generated."""
    return [
        Slide(
            title=blueprint.mainTitle,
            content=[
                f"Subject: {blueprint.subject}",
                f"Grade Level: {blueprint.gradeLevel}",
                f"Quarter: {blueprint.quarter}",
            ],
            speakerNotes="Welcome the class and briefly introduce the main topic for the week.",
        ),
        Slide(
            title="Learning Objectives",
            content=list(blueprint.studentFacingObjectives),
            speakerNotes=(
                "Read the objectives aloud and explain what students will be able to do by the end of the week. "
                "The full SMART objectives are in your lesson plan for reference."
            ),
        ),
    ]
