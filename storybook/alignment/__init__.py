"""
Alignment Module
================
Needleman-Wunsch word alignment that recovers per-word timestamps.
"""

from .engine import (
    AlignmentConfig,
    AlignmentResult,
    RecognizedToken,
    TimingAlignmentEngine,
    WordTiming,
)
from .text import is_near_match, similarity, substitution_cost

__all__ = [
    "AlignmentConfig",
    "AlignmentResult",
    "RecognizedToken",
    "TimingAlignmentEngine",
    "WordTiming",
    "is_near_match",
    "similarity",
    "substitution_cost",
]
