"""
Needleman-Wunsch Alignment
==========================
Global alignment of display words against recognized tokens.

Pairwise distances come from rapidfuzz's C implementation (process.cdist);
the score matrix is filled one row at a time with numpy.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import numpy as np
from rapidfuzz import process
from rapidfuzz.distance import Levenshtein, Prefix

from storybook.alignment.text import GAP_PENALTY


class EditOp(str, Enum):
    """Edit script operations, from the display side."""
    MATCH = "match"
    SUBSTITUTE = "substitute"
    DELETE = "delete"    # display word with no token
    INSERT = "insert"    # token with no display word


@dataclass
class EditStep:
    op: EditOp
    display_index: Optional[int]
    token_index: Optional[int]


def _costs(rows: Sequence[str], cols: Sequence[str], gap: int) -> tuple[np.ndarray, np.ndarray]:
    """Vectorized substitution_cost over normalized forms. Returns (cost, near)."""
    lev = process.cdist(rows, cols, scorer=Levenshtein.distance).astype(np.int64)
    prefix = process.cdist(rows, cols, scorer=Prefix.similarity).astype(np.int64)

    row_len = np.array([len(word) for word in rows], dtype=np.int64)
    col_len = np.array([len(word) for word in cols], dtype=np.int64)
    longest = np.maximum.outer(row_len, col_len)
    shortest = np.minimum.outer(row_len, col_len)

    required = np.maximum(3, np.ceil(0.75 * longest))
    near = (lev == 0) | ((lev <= 1) & (shortest >= 3)) | (prefix >= required)

    score = 1.0 - lev / np.maximum(longest, 1)
    tier = np.where(score > 0.7, 1, np.where(score > 0.4, 2, 3))
    cost = np.where(near, 0, np.maximum(tier, gap)).astype(np.int64)
    return cost, near


def cost_matrix(
    display: Sequence[str],
    tokens: Sequence[str],
    alternates: Optional[Sequence[Optional[str]]] = None,
    gap: int = GAP_PENALTY
) -> tuple[np.ndarray, np.ndarray]:
    """
    Substitution costs between normalized display words and tokens.

    Args:
        display: Normalized display words
        tokens: Normalized recognized tokens
        alternates: Optional second form per display word (as spoken);
            the cheaper comparison wins
        gap: Gap penalty, also the floor for non-matching substitutions

    Returns:
        (cost, near) matrices of shape (len(display), len(tokens))
    """
    cost, near = _costs(display, tokens, gap)

    if alternates and any(alternates):
        rows = [alt if alt else word for word, alt in zip(display, alternates)]
        alt_cost, alt_near = _costs(rows, tokens, gap)
        cost = np.minimum(cost, alt_cost)
        near = near | alt_near

    return cost, near


def score_matrix(cost: np.ndarray, gap: int = GAP_PENALTY) -> np.ndarray:
    """
    Fill the Needleman-Wunsch distance matrix.

    D[i, j] = min(D[i-1, j-1] + cost, D[i-1, j] + gap, D[i, j-1] + gap).
    The left-neighbour term is resolved per row with a running minimum.
    """
    n, m = cost.shape
    steps = np.arange(m + 1, dtype=np.int64) * gap

    matrix = np.empty((n + 1, m + 1), dtype=np.int64)
    matrix[0] = steps

    for i in range(1, n + 1):
        prev = matrix[i - 1]
        cand = np.empty(m + 1, dtype=np.int64)
        cand[0] = prev[0] + gap
        cand[1:] = np.minimum(prev[:-1] + cost[i - 1], prev[1:] + gap)
        matrix[i] = np.minimum.accumulate(cand - steps) + steps

    return matrix


def backtrack(matrix: np.ndarray, cost: np.ndarray, near: np.ndarray, gap: int = GAP_PENALTY) -> list[EditStep]:
    """
    Recover the edit script, preferring diagonal, then deletion, then insertion.

    Returns:
        Steps in display order
    """
    i, j = cost.shape
    steps: list[EditStep] = []

    while i > 0 or j > 0:
        if i > 0 and j > 0 and matrix[i, j] == matrix[i - 1, j - 1] + cost[i - 1, j - 1]:
            op = EditOp.MATCH if near[i - 1, j - 1] else EditOp.SUBSTITUTE
            steps.append(EditStep(op, i - 1, j - 1))
            i -= 1
            j -= 1
        elif i > 0 and matrix[i, j] == matrix[i - 1, j] + gap:
            steps.append(EditStep(EditOp.DELETE, i - 1, None))
            i -= 1
        else:
            steps.append(EditStep(EditOp.INSERT, None, j - 1))
            j -= 1

    steps.reverse()
    return steps


def align_sequences(
    display: Sequence[str],
    tokens: Sequence[str],
    alternates: Optional[Sequence[Optional[str]]] = None,
    gap: int = GAP_PENALTY
) -> tuple[list[EditStep], int]:
    """
    Align two normalized word sequences.

    Returns:
        (edit script, total alignment cost)
    """
    if not display or not tokens:
        steps = [EditStep(EditOp.DELETE, i, None) for i in range(len(display))]
        steps += [EditStep(EditOp.INSERT, None, j) for j in range(len(tokens))]
        return steps, (len(display) + len(tokens)) * gap

    cost, near = cost_matrix(display, tokens, alternates, gap)
    matrix = score_matrix(cost, gap)
    return backtrack(matrix, cost, near, gap), int(matrix[-1, -1])
