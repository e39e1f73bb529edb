"""
Query text handling shared by image search and ranking.
"""

import re
from typing import List

# English plus common Filipino function words
STOP_WORDS = {
    'the', 'a', 'an', 'for', 'and', 'or', 'to', 'of', 'in', 'on', 'with', 'from', 'by', 'at',
    'about', 'into', 'over', 'under', 'after', 'before', 'during', 'without', 'within', 'through',
    'are', 'was', 'were', 'that', 'this', 'these', 'those', 'its', 'their', 'showing', 'shows',
    'sa', 'ang', 'ng', 'mga', 'para', 'mula', 'ito', 'iyan', 'iyon', 'o', 'na', 'nang',
}

# Prompt filler that never helps a keyword search
VAGUE_TERMS = {
    'image', 'picture', 'photo', 'illustration', 'graphic', 'visual', 'clear', 'simple',
    'detailed', 'showing', 'depicting', 'realistic', 'high', 'quality', 'style', 'labels',
    'following', 'labeled', 'labelled',
}

# Languages whose prompts get an extra qualified variant
LOCALIZED_QUALIFIERS = {
    'FIL': 'educational',
}

MAX_KEYWORDS = 6

_NON_ALNUM = re.compile(r'[^a-z0-9\s-]')
_WHITESPACE = re.compile(r'\s+')


def normalize_text(value: str) -> str:
    value = _NON_ALNUM.sub(' ', (value or '').lower())
    return _WHITESPACE.sub(' ', value).strip()


def tokenize(value: str) -> List[str]:
    """Lowercase tokens longer than two characters, stop words removed."""
    return [
        token for token in normalize_text(value).split(' ')
        if len(token) > 2 and token not in STOP_WORDS
    ]


def query_tokens(value: str) -> List[str]:
    """Tokens for matching: order kept, duplicates dropped."""
    seen: List[str] = []
    for token in tokenize(value):
        if token not in seen:
            seen.append(token)
    return seen


def compact_keywords(prompt: str, max_keywords: int = MAX_KEYWORDS) -> str:
    """Keyword form of a long image prompt."""
    keywords = [token for token in query_tokens(prompt) if token not in VAGUE_TERMS]
    return ' '.join(keywords[:max_keywords])


def build_query_variants(prompt: str, language: str = 'EN', raw_ceiling: int = 200) -> List[str]:
    """2-4 distinct search strings for one image prompt.

    Order: keyword form, keyword form + "educational", raw prompt (truncated),
    localized qualifier variant.
    """
    raw = _WHITESPACE.sub(' ', (prompt or '').strip())[:raw_ceiling].strip()
    compact = compact_keywords(raw)

    variants = []
    if compact:
        variants.append(compact)
        variants.append(f"{compact} educational")
    if raw:
        variants.append(raw)
    qualifier = LOCALIZED_QUALIFIERS.get((language or 'EN').upper())
    if qualifier and raw:
        variants.append(f"{raw} {qualifier}")

    unique: List[str] = []
    for variant in variants:
        if variant and variant.lower() not in {v.lower() for v in unique}:
            unique.append(variant)
    return unique[:4]
