"""
Tests for prompt builders and generation configuration.
"""

import pytest

from agents.generation.config import GenerationConfig, ImageSearchConfig, QuotaConfig
from agents.generation.exceptions import InvalidConfigError
from agents.prompts.generation.lesson_prompts import (
    DEFAULT_SECTIONS,
    LECTURE_SCHEMA,
    LESSON_SCHEMA,
    DAY_SLIDES_SCHEMA,
    get_college_lecture_prompt,
    get_day_slides_prompt,
    get_format_sections,
    get_single_lesson_prompt,
    get_style_directives,
)
from models.lesson import DayPlan, LessonBlueprint


class TestPrompts:

    def test_format_sections(self):
        assert 'ENGAGE' in get_format_sections('5Es Model')
        assert get_format_sections('Unknown') == DEFAULT_SECTIONS

    def test_language_is_stated(self):
        assert 'Filipino' in get_single_lesson_prompt('Mixtures', 'K-12', 'FIL')
        assert 'English' in get_college_lecture_prompt('Entropy', 'Define entropy', 'EN')

    def test_day_prompt_mentions_day_and_goal(self):
        blueprint = LessonBlueprint(mainTitle='Mixtures', subject='Science', learningCompetency='Describe mixtures')
        day_one = get_day_slides_prompt(DayPlan(dayNumber=1, title='Intro'), blueprint, 'notes', 'K-12', 'EN')
        day_two = get_day_slides_prompt(DayPlan(dayNumber=2, title='Types'), blueprint, 'notes', 'K-12', 'EN')
        assert 'DAY 1' in day_one and "Today's Goal" not in day_one
        assert "Today's Goal" in day_two

    def test_label_styles_carry_language(self):
        assert 'Filipino' in get_style_directives('diagram', 'FIL')
        assert 'No text' in get_style_directives('illustration', 'EN')
        assert get_style_directives('unknown', 'EN') == get_style_directives('illustration', 'EN')

    def test_schemas(self):
        assert 'title' in LESSON_SCHEMA['required']
        assert 'title' not in DAY_SLIDES_SCHEMA['required']
        lecture_styles = LECTURE_SCHEMA['properties']['slides']['items']['properties']['imageStyle']['enum']
        assert 'illustration' not in lecture_styles


class TestGenerationConfig:

    def test_defaults_validate(self):
        GenerationConfig().validate()

    def test_negative_limits_are_rejected(self):
        config = GenerationConfig(quota=QuotaConfig(max_generations=-1, max_images=20))
        with pytest.raises(InvalidConfigError):
            config.validate()

    def test_confidence_out_of_range_is_rejected(self):
        config = GenerationConfig(image_search=ImageSearchConfig(min_confidence=1.5))
        with pytest.raises(InvalidConfigError):
            config.validate()

    def test_to_dict(self):
        config = GenerationConfig(quota=QuotaConfig(max_generations=5, max_images=20))
        assert config.to_dict()['limits'] == {'generations': 5, 'images': 20}
