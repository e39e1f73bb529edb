"""
Configuration settings for the agents package.
"""

import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _unique_non_empty(values: List[str]) -> List[str]:
    """Keep order, drop blanks and duplicates."""
    seen = []
    for value in values:
        value = (value or "").strip()
        if value and value not in seen:
            seen.append(value)
    return seen


#==============================================================================
# GENERATION MODELS
#==============================================================================

# Prefer low-cost models first; later entries are fallbacks.
TEXT_MODELS = _unique_non_empty([
    os.getenv("GEMINI_TEXT_MODEL", ""),
    "gemini-2.0-flash-lite",
    "gemini-2.5-flash-lite",
    "gemini-2.5-flash",
    "gemini-2.0-flash",
])

IMAGE_MODELS = _unique_non_empty([
    os.getenv("GEMINI_IMAGE_MODEL", ""),
    "imagen-4.0-fast-generate-001",
    "imagen-3.0-generate-002",
])

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")

# Temperatures per flow
BLUEPRINT_TEMPERATURE = 0.3
LESSON_TEMPERATURE = 0.4
LECTURE_TEMPERATURE = 0.5

#==============================================================================
# DAILY USAGE LIMITS
#==============================================================================

# Low limits keep spend at roughly a dollar a month per teacher.
MAX_DAILY_GENERATIONS = int(os.getenv("MAX_DAILY_GENERATIONS", "5"))
MAX_DAILY_IMAGES = int(os.getenv("MAX_DAILY_IMAGES", "20"))

USAGE_STORAGE_DIR = os.getenv("USAGE_STORAGE_DIR", ".usage_cache")

#==============================================================================
# IMAGE TOGGLES
#==============================================================================

# Disable all slide imagery (prompts are cleared instead)
IMAGES_DISABLED = os.getenv("IMAGES_DISABLED", "false").lower() == "true"

# Try open educational images before spending an AI image generation
OPEN_IMAGES_FIRST = os.getenv("OPEN_IMAGES_FIRST", "true").lower() == "true"

# Hosts that the image proxy is allowed to stream from
TRUSTED_IMAGE_HOST_SUFFIXES = [
    ".wikimedia.org",
    ".si.edu",
    ".metmuseum.org",
    ".metmuseum.net",
    ".nasa.gov",
]

IMAGE_PROXY_PATH = os.getenv("IMAGE_PROXY_PATH", "/image-proxy")

USER_AGENT = "SAYUNA-AI/1.0 (+educational-use)"
