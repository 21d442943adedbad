"""
Word Comparison Helpers
=======================
Similarity, near-match predicate and substitution cost between two words.

All functions take raw words and compare their normalized forms.
"""

import math

from rapidfuzz.distance import Levenshtein

from storybook.ingestion.segmenter import normalize_word


GAP_PENALTY = 1


def similarity(a: str, b: str) -> float:
    """
    Levenshtein similarity of the normalized forms, 1 - distance / longest.

    Returns:
        1.0 for identical forms (including two empty forms), down to 0.0
    """
    a, b = normalize_word(a), normalize_word(b)
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - Levenshtein.distance(a, b) / longest


def _common_prefix(a: str, b: str) -> int:
    count = 0
    for x, y in zip(a, b):
        if x != y:
            break
        count += 1
    return count


def required_prefix(longest: int) -> int:
    return max(3, math.ceil(0.75 * longest))


def is_near_match(a: str, b: str) -> bool:
    """
    Equality predicate used by the aligner.

    True for an exact normalized match, a single edit when both forms have at
    least three characters, or a shared prefix of max(3, ceil(0.75 * longest)).
    """
    a, b = normalize_word(a), normalize_word(b)
    if a == b:
        return True
    if min(len(a), len(b)) >= 3 and Levenshtein.distance(a, b) <= 1:
        return True
    return _common_prefix(a, b) >= required_prefix(max(len(a), len(b)))


def tier_cost(score: float) -> int:
    if score > 0.7:
        return 1
    if score > 0.4:
        return 2
    return 3


def substitution_cost(a: str, b: str, gap: int = GAP_PENALTY) -> int:
    """Cost of aligning a against b: 0 for near-matches, else a similarity tier floored at the gap."""
    if is_near_match(a, b):
        return 0
    return max(tier_cost(similarity(a, b)), gap)
