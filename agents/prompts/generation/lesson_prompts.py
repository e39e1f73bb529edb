"""
Lesson Generation Prompts

Prompts and response schemas for the blueprint, per-day, single-lesson and
college-lecture flows, plus the style directives used for slide images.
"""

from typing import Any, Dict, List

from models.lesson import DayPlan, LessonBlueprint


def language_name(language: str) -> str:
    return 'Filipino' if (language or '').upper() == 'FIL' else 'English'


# Section outline per pedagogical format
FORMAT_SECTIONS: Dict[str, str] = {
    'K-12': (
        "A. Review (IV-A), B. Motivation (IV-B), C. Content (IV-C), D. Discussion (IV-D), "
        "E. Concept Development (IV-E), F. Practice (IV-F), G. Application (IV-G), "
        "H. Generalization (IV-H), I. Evaluation (IV-I), J. Assignment (IV-J)"
    ),
    'MATATAG': (
        "A. Activating Prior Knowledge, B. Establishing Purpose, C. Unlocking Vocabulary, "
        "D. Developing Understanding, E. Application, F. Generalization, G. Evaluating Learning, H. Homework"
    ),
    '5Es Model': "1. ENGAGE, 2. EXPLORE, 3. EXPLAIN, 4. ELABORATE, 5. EVALUATE",
    '4As Model': "1. MOTIVATION, 2. ACTIVITY, 3. ANALYSIS, 4. ABSTRACTION, 5. APPLICATION, 6. EVALUATE",
}
DEFAULT_SECTIONS = "1. Title, 2. Introduction/Review, 3. Core Concepts, 4. Practice/Activity, 5. Assessment"


def get_format_sections(lesson_format: str) -> str:
    return FORMAT_SECTIONS.get(lesson_format, DEFAULT_SECTIONS)


def get_style_directives(style: str, language: str) -> str:
    """Instructions prepended to an image prompt for the given style."""
    lang = language_name(language)
    no_text = "No text, letters, numbers or words may appear anywhere in the image."
    if style == 'photorealistic':
        return (
            "Create a high-resolution photorealistic image that looks like a real photograph, "
            "with accurate lighting and textures and no fantastical elements. " + no_text
        )
    if style == 'infographic':
        return (
            "Create a clean, modern infographic with a cohesive professional palette and simple icons. "
            f"Render any labels listed in the prompt clearly, in {lang}, spelled exactly as given, "
            "in a clean sans-serif font. Add no other text."
        )
    if style == 'diagram':
        return (
            "Create an accurate scientific or technical diagram with thin, precise lines and a minimal style. "
            f"Render any labels listed in the prompt onto the diagram, in {lang}, spelled exactly as given. "
            "Add no titles or other text."
        )
    if style == 'historical photo':
        return (
            "Create an image that looks like an authentic photograph from the relevant era "
            "(black and white or sepia, period grain and focus), historically accurate and not staged. " + no_text
        )
    return (
        "Create a clear, vibrant educational illustration with clean lines and harmonious colors. " + no_text
    )


def _slide_rules(language: str, allowed_styles: List[str], lesson_format: str = "") -> str:
    lang = language_name(language)
    styles = ', '.join(f'"{s}"' for s in allowed_styles)
    alignment = (
        f"- Follow the section order of the {lesson_format} model, but give slides titles that describe their content "
        "(\"Activity: Classifying Mixtures\", not \"Explore\").\n"
        if lesson_format else ""
    )
    return f"""
RULES:
- 6x6 rule: at most 6 bullet points per slide and 6-8 words per bullet.
- Every slide has `imagePrompt` (always in English, concrete and specific to the slide) and `imageStyle` (one of {styles}).
  Text-only slides such as an agenda use "imagePrompt": "" and "imageStyle": "none".
- For diagram or infographic styles that need labels, list the exact labels in the prompt, written in {lang}.
- Every slide has practical speaker notes for the teacher.
{alignment}- Never put a wall of text on one slide; split into follow-up slides and give each distinct concept its own slide.
- Each bullet is its own string in the `content` array. Use **bold** for key terms.
"""


def _slides_schema(styles: List[str], with_title: bool) -> Dict[str, Any]:
    slide = {
        'type': 'object',
        'properties': {
            'title': {'type': 'string'},
            'content': {'type': 'array', 'items': {'type': 'string'}},
            'speakerNotes': {'type': 'string'},
            'imagePrompt': {'type': 'string'},
            'imageStyle': {'type': 'string', 'enum': styles},
        },
        'required': ['title', 'content', 'speakerNotes', 'imagePrompt', 'imageStyle'],
    }
    schema: Dict[str, Any] = {
        'type': 'object',
        'properties': {'slides': {'type': 'array', 'items': slide}},
        'required': ['slides'],
    }
    if with_title:
        schema['properties']['title'] = {'type': 'string'}
        schema['required'] = ['title', 'slides']
    return schema


K12_STYLES = ['photorealistic', 'infographic', 'illustration', 'diagram', 'historical photo', 'none']
COLLEGE_STYLES = ['photorealistic', 'infographic', 'diagram', 'historical photo', 'none']

BLUEPRINT_SCHEMA: Dict[str, Any] = {
    'type': 'object',
    'properties': {
        'mainTitle': {'type': 'string'},
        'subject': {'type': 'string'},
        'gradeLevel': {'type': 'string'},
        'quarter': {'type': 'string'},
        'learningCompetency': {'type': 'string'},
        'smartObjectives': {'type': 'array', 'items': {'type': 'string'}},
        'studentFacingObjectives': {'type': 'array', 'items': {'type': 'string'}},
        'days': {
            'type': 'array',
            'items': {
                'type': 'object',
                'properties': {
                    'dayNumber': {'type': 'integer'},
                    'title': {'type': 'string'},
                    'focus': {'type': 'string'},
                },
                'required': ['dayNumber', 'title', 'focus'],
            },
        },
    },
    'required': ['mainTitle', 'subject', 'learningCompetency', 'smartObjectives', 'studentFacingObjectives', 'days'],
}

DAY_SLIDES_SCHEMA = _slides_schema(K12_STYLES, with_title=False)
LESSON_SCHEMA = _slides_schema(K12_STYLES, with_title=True)
LECTURE_SCHEMA = _slides_schema(COLLEGE_STYLES, with_title=True)


def get_blueprint_prompt(content: str, lesson_format: str, language: str) -> str:
    return f"""
You are an experienced K-12 teacher and instructional designer. Analyze the material below and
produce a one-week Lesson Blueprint.

OUTPUT LANGUAGE: {language_name(language)}
PEDAGOGICAL FORMAT: {lesson_format}

MATERIAL:
```
{content}
```

1. Identify the subject, grade level, quarter, a creative main title, and the primary learning
   competency (code and description, e.g. "S6MT-Ia-c-1: Describe mixtures").
2. Write 3-5 SMART objectives for the teacher, then 2-3 short student-facing objectives
   ("I can ...").
3. Plan five days, each with a short title and focus, scaffolding from introduction to assessment
   in line with the {lesson_format} model. If the material covers a single day, extrapolate.

Return only the JSON object.
"""


def get_day_slides_prompt(day: DayPlan, blueprint: LessonBlueprint, content: str,
                          lesson_format: str, language: str) -> str:
    daily_goal = (
        "- Start with a \"Today's Goal\" slide; do not repeat the full learning objectives.\n"
        if day.dayNumber > 1 else ""
    )
    return f"""
You are a K-12 instructional designer building the slides for one day of a weekly lesson.
Write titles, content and speaker notes in {language_name(language)}; image prompts stay in English.

BLUEPRINT:
- Main title: {blueprint.mainTitle}
- Subject: {blueprint.subject}
- Grade level: {blueprint.gradeLevel}
- Learning competency: {blueprint.learningCompetency}
- Weekly SMART objectives: {', '.join(blueprint.smartObjectives)}

DAY {day.dayNumber}: {day.title}
Focus: {day.focus}

REFERENCE MATERIAL:
```
{content}
```

Create 10-12 slides for DAY {day.dayNumber} only, covering these sections:
{get_format_sections(lesson_format)}
{_slide_rules(language, K12_STYLES, lesson_format)}{daily_goal}- The last slide closes the day (evaluation or assignment).

Return only the JSON object.
"""


def get_single_lesson_prompt(content: str, lesson_format: str, language: str) -> str:
    return f"""
You are an experienced K-12 teacher creating a complete slide deck for one class period.
Write titles, content and speaker notes in {language_name(language)}; image prompts stay in English.

LESSON PLAN / TOPIC:
```
{content}
```

PEDAGOGICAL FORMAT: {lesson_format}
SECTIONS TO INCLUDE: {get_format_sections(lesson_format)}
{_slide_rules(language, K12_STYLES, lesson_format)}- The first two slides are a title slide and a learning objectives slide.
- The last slide is an assignment or summary slide.

Return only the JSON object.
"""


def get_college_lecture_prompt(topic: str, objectives: str, language: str) -> str:
    return f"""
You are a university lecturer preparing an academically rigorous presentation.
Write titles, content and speaker notes in {language_name(language)}; image prompts stay in English.

TOPIC: {topic}
LEARNING OBJECTIVES:
{objectives}

STRUCTURE: title; agenda/objectives; introduction or hook; key concepts (several slides);
case study or application; discussion questions; summary; next steps / further reading.
{_slide_rules(language, COLLEGE_STYLES)}- Prefer "photorealistic", "diagram" and "infographic" styles.
- Speaker notes add deeper explanation, discussion points and transitions.
- The final slide is "Next Steps / Further Reading"; nothing comes after it.

Return only the JSON object.
"""
