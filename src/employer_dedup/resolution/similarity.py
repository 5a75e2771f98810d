"""String similarity for employer names.

Two scorers live here:
- similarity(): normalized Levenshtein similarity in [0, 1] on raw strings.
  Used to rank fuzzy candidates and to group duplicates.
- match_score(): composite score for a query against a candidate name, mixing
  edit distance, token overlap and containment on normalized names. Used when
  the store returns rows without a score of its own.
"""

from __future__ import annotations

from employer_dedup.models.enums import MatchConfidence
from employer_dedup.resolution.normalize import normalize_employer_name

# Composite weights: levenshtein, token overlap, containment
W_LEVENSHTEIN = 0.4
W_TOKEN = 0.5
W_CONTAINS = 0.1

# Score given when one normalized name contains the other
CONTAINS_SCORE = 0.9

# Confidence band floors for match_score()
CONFIDENCE_BANDS: tuple[tuple[float, MatchConfidence], ...] = (
    (0.95, MatchConfidence.EXACT),
    (0.85, MatchConfidence.HIGH),
    (0.70, MatchConfidence.MEDIUM),
)


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance: insertion, deletion and substitution each cost 1."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,  # deletion
                    current[j - 1] + 1,  # insertion
                    previous[j - 1] + (ca != cb),  # substitution
                )
            )
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Return 1 - distance / max(len) in [0, 1].

    Two empty strings are identical (1.0).
    """
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


def token_similarity(query: str, target: str) -> float:
    """Token overlap score for names with reordered or extra words.

    Tokens shorter than 3 characters are ignored. Each query/target token pair
    contributes 1 for equality, 0.7 for containment, 0.5 for similarity > 0.8.
    """
    query_tokens = [t for t in query.lower().split() if len(t) > 2]
    target_tokens = [t for t in target.lower().split() if len(t) > 2]
    if not query_tokens or not target_tokens:
        return 0.0

    matches = 0.0
    for q in query_tokens:
        for t in target_tokens:
            if q == t:
                matches += 1.0
            elif q in t or t in q:
                matches += 0.7
            elif similarity(q, t) > 0.8:
                matches += 0.5

    return min(1.0, matches / max(len(query_tokens), len(target_tokens)))


def match_score(query: str, target: str) -> float:
    """Composite 0-1 score of how well target answers query."""
    norm_query = normalize_employer_name(query)
    norm_target = normalize_employer_name(target)

    if norm_query == norm_target:
        return 1.0

    contains = 0.0
    if norm_query and norm_target and (norm_query in norm_target or norm_target in norm_query):
        contains = CONTAINS_SCORE

    weighted = (
        similarity(norm_query, norm_target) * W_LEVENSHTEIN
        + token_similarity(query, target) * W_TOKEN
        + contains * W_CONTAINS
    )
    return max(weighted, contains)


def confidence_level(score: float) -> MatchConfidence:
    """Map a 0-1 composite score to its confidence band."""
    for floor, level in CONFIDENCE_BANDS:
        if score >= floor:
            return level
    return MatchConfidence.LOW
