"""
Relevance ranking for open image candidates.

Scores are a weighted sum of heuristic signals clamped to [0, 1]. The
numbers in RankingPolicy are tuned by eye; only their relative order
(coverage > title > boosts, penalties beating boosts) matters.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

from models.images import ImageCandidate, ImageProvider, RankedImageCandidate
from services.image_query import normalize_text, query_tokens, tokenize

SUBJECT_DOMAINS: Dict[str, FrozenSet[str]] = {
    'biology': frozenset({
        'cell', 'cells', 'organism', 'plant', 'plants', 'animal', 'animals', 'photosynthesis',
        'ecosystem', 'dna', 'gene', 'genes', 'bacteria', 'mitosis', 'meiosis', 'anatomy',
        'species', 'evolution', 'biology', 'tissue', 'organ', 'leaf', 'chlorophyll', 'microscope',
    }),
    'chemistry': frozenset({
        'atom', 'atoms', 'molecule', 'molecules', 'chemical', 'reaction', 'mixture', 'solution',
        'compound', 'element', 'elements', 'acid', 'base', 'salt', 'dissolve', 'dissolving',
        'homogeneous', 'heterogeneous', 'periodic', 'chemistry', 'laboratory', 'beaker',
    }),
    'physics': frozenset({
        'force', 'motion', 'energy', 'velocity', 'acceleration', 'gravity', 'friction', 'wave',
        'waves', 'electricity', 'magnet', 'magnetism', 'circuit', 'light', 'sound', 'heat',
        'physics', 'momentum', 'pendulum', 'lens',
    }),
    'geography': frozenset({
        'map', 'continent', 'river', 'mountain', 'volcano', 'earthquake', 'climate', 'ocean',
        'island', 'islands', 'region', 'province', 'geography', 'terrain', 'plate', 'tectonic',
        'typhoon', 'weather',
    }),
    'history': frozenset({
        'history', 'historical', 'ancient', 'war', 'revolution', 'empire', 'colonial', 'dynasty',
        'king', 'president', 'monument', 'treaty', 'independence', 'hero', 'heroes', 'century',
        'artifact', 'archaeology',
    }),
    'math': frozenset({
        'math', 'mathematics', 'geometry', 'triangle', 'circle', 'angle', 'fraction', 'fractions',
        'equation', 'algebra', 'graph', 'number', 'numbers', 'polygon', 'area', 'volume',
        'multiplication', 'division', 'theorem',
    }),
    'space': frozenset({
        'space', 'planet', 'planets', 'star', 'stars', 'galaxy', 'nebula', 'moon', 'sun', 'solar',
        'orbit', 'astronaut', 'astronomy', 'telescope', 'comet', 'asteroid', 'mars', 'jupiter',
        'saturn', 'venus', 'mercury', 'neptune', 'uranus', 'eclipse', 'rocket', 'universe',
    }),
}

EDUCATIONAL_TERMS = frozenset({
    'diagram', 'anatomy', 'structure', 'process', 'cycle', 'experiment', 'specimen', 'model',
    'cross-section', 'microscope', 'laboratory', 'scientific', 'science', 'map', 'chart',
    'illustration', 'museum', 'education', 'educational', 'historical',
})

NOISE_TERMS = frozenset({'logo', 'poster', 'meme', 'template', 'wallpaper', 'icon'})


@dataclass
class RankingPolicy:
    """Weights for each scoring signal"""
    max_query_tokens: int = 6
    coverage_weight: float = 0.55
    title_weight: float = 0.25
    provider_trust: Dict[ImageProvider, float] = field(default_factory=lambda: {
        ImageProvider.OPENVERSE: 0.03,
        ImageProvider.WIKIMEDIA: 0.08,
        ImageProvider.NASA: 0.04,
    })
    in_domain_nasa_trust: float = 0.12
    resolution_weight: float = 0.06
    resolution_cap_pixels: int = 1_000_000
    landscape_band: tuple = (1.15, 2.2)
    landscape_bonus: float = 0.04
    wide_band: tuple = (0.9, 2.6)
    wide_bonus: float = 0.02
    educational_bonus: float = 0.04
    phrase_tokens: int = 3
    phrase_bonus: float = 0.08
    domain_match_bonus: float = 0.06
    domain_miss_penalty: float = 0.12
    space_mismatch_penalty: float = 0.25
    noise_penalty: float = 0.15
    zero_coverage_min_tokens: int = 3


DEFAULT_POLICY = RankingPolicy()


def classify_domain(tokens: Iterable[str]) -> Optional[str]:
    """Subject domain with the most vocabulary hits, or None."""
    token_set = set(tokens)
    best, best_hits = None, 0
    for domain, vocabulary in SUBJECT_DOMAINS.items():
        hits = len(token_set & vocabulary)
        if hits > best_hits:
            best, best_hits = domain, hits
    return best


class ImageRanker:
    """Scores candidates against a tokenized query."""

    def __init__(self, policy: Optional[RankingPolicy] = None):
        self.policy = policy or DEFAULT_POLICY

    def score(self, candidate: ImageCandidate, tokens: Sequence[str], domain: Optional[str] = None) -> float:
        policy = self.policy
        tokens = list(tokens)[:policy.max_query_tokens]
        if not tokens:
            return 0.0

        title = normalize_text(candidate.title)
        combined = ' '.join([title, normalize_text(candidate.description), normalize_text(' '.join(sorted(candidate.tags)))]).strip()
        if not combined:
            return 0.0
        combined_tokens = set(tokenize(combined))

        matches = sum(1 for token in tokens if token in combined_tokens)
        coverage = matches / len(tokens)
        if len(tokens) >= policy.zero_coverage_min_tokens and matches == 0:
            return 0.0

        title_tokens = set(tokenize(title))
        title_coverage = sum(1 for token in tokens if token in title_tokens) / len(tokens)

        score = coverage * policy.coverage_weight + title_coverage * policy.title_weight

        if candidate.source_provider == ImageProvider.NASA and domain == 'space':
            score += policy.in_domain_nasa_trust
        else:
            score += policy.provider_trust.get(candidate.source_provider, 0.0)

        score += self._quality_boost(candidate)

        if combined_tokens & EDUCATIONAL_TERMS:
            score += policy.educational_bonus

        phrase = ' '.join(tokens[:policy.phrase_tokens])
        if len(tokens) >= 2 and phrase and phrase in title:
            score += policy.phrase_bonus

        if domain:
            if combined_tokens & SUBJECT_DOMAINS[domain]:
                score += policy.domain_match_bonus
            else:
                score -= policy.domain_miss_penalty

        if domain == 'space' and not combined_tokens & SUBJECT_DOMAINS['space']:
            score -= policy.space_mismatch_penalty

        noise = combined_tokens & NOISE_TERMS
        if noise and not noise & set(tokens):
            score -= policy.noise_penalty

        return max(0.0, min(1.0, score))

    def _quality_boost(self, candidate: ImageCandidate) -> float:
        policy = self.policy
        if not candidate.width or not candidate.height:
            return 0.0
        pixels = candidate.width * candidate.height
        boost = min(1.0, pixels / policy.resolution_cap_pixels) * policy.resolution_weight
        ratio = candidate.width / candidate.height
        if policy.landscape_band[0] <= ratio <= policy.landscape_band[1]:
            boost += policy.landscape_bonus
        elif policy.wide_band[0] <= ratio <= policy.wide_band[1]:
            boost += policy.wide_bonus
        return boost

    def rank(self, candidates: Sequence[ImageCandidate], tokens: Sequence[str]) -> List[RankedImageCandidate]:
        """Candidates sorted by confidence, highest first; ties keep input order."""
        domain = classify_domain(tokens)
        ranked = [
            RankedImageCandidate.from_candidate(candidate, round(self.score(candidate, tokens, domain), 4))
            for candidate in candidates
        ]
        # sorted() is stable
        return sorted(ranked, key=lambda item: item.confidence, reverse=True)


def rank(candidates: Sequence[ImageCandidate], tokens: Sequence[str],
         policy: Optional[RankingPolicy] = None) -> List[RankedImageCandidate]:
    return ImageRanker(policy).rank(candidates, tokens)


def rank_for_query(candidates: Sequence[ImageCandidate], query: str,
                   policy: Optional[RankingPolicy] = None) -> List[RankedImageCandidate]:
    return rank(candidates, query_tokens(query), policy)
