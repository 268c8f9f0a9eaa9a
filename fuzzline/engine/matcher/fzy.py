"""fzy scoring algorithm.

Dynamic programming over two matrices: ``D[i][j]`` is the best score ending
with needle[i] matched exactly at haystack[j], ``M[i][j]`` the best score for
needle[:i+1] within haystack[:j+1].
"""

import math
from typing import List, Optional, Tuple

SCORE_MIN = -math.inf
SCORE_MAX = math.inf

SCORE_GAP_LEADING = -0.005
SCORE_GAP_TRAILING = -0.005
SCORE_GAP_INNER = -0.01
SCORE_MATCH_CONSECUTIVE = 1.0
SCORE_MATCH_SLASH = 0.9
SCORE_MATCH_WORD = 0.8
SCORE_MATCH_CAPITAL = 0.7
SCORE_MATCH_DOT = 0.6

MATCH_MAX_LEN = 1024

# Integer scores are fzy scores scaled by this factor.
SCALE = 1000
INT_SCORE_MAX = 2 ** 31 - 1
INT_SCORE_MIN = -(2 ** 31)


def _lowered(text: str) -> List[str]:
    # Per character so that positions survive multi-char lowercase forms.
    return [ch.lower() for ch in text]


def has_match(needle: str, haystack: str) -> bool:
    """Check that needle is a case-insensitive subsequence of haystack."""
    chars = iter(_lowered(haystack))
    return all(ch in chars for ch in _lowered(needle))


def _char_bonus(last: str, ch: str) -> float:
    if ch.isalnum():
        if last in "/\\":
            return SCORE_MATCH_SLASH
        if last in "-_ ":
            return SCORE_MATCH_WORD
        if last == ".":
            return SCORE_MATCH_DOT
        if ch.isupper() and last.islower():
            return SCORE_MATCH_CAPITAL
    return 0.0


def _precompute_bonus(haystack: str) -> List[float]:
    last = "/"
    bonus = []
    for ch in haystack:
        bonus.append(_char_bonus(last, ch))
        last = ch
    return bonus


def _compute(needle: str, haystack: str) -> Tuple[List[List[float]], List[List[float]]]:
    n, m = len(needle), len(haystack)
    lower_needle = _lowered(needle)
    lower_haystack = _lowered(haystack)
    match_bonus = _precompute_bonus(haystack)

    D = [[SCORE_MIN] * m for _ in range(n)]
    M = [[SCORE_MIN] * m for _ in range(n)]

    for i in range(n):
        prev_score = SCORE_MIN
        gap_score = SCORE_GAP_TRAILING if i == n - 1 else SCORE_GAP_INNER
        for j in range(m):
            if lower_needle[i] == lower_haystack[j]:
                if i == 0:
                    score = j * SCORE_GAP_LEADING + match_bonus[j]
                elif j:
                    score = max(
                        M[i - 1][j - 1] + match_bonus[j],
                        D[i - 1][j - 1] + SCORE_MATCH_CONSECUTIVE,
                    )
                else:
                    score = SCORE_MIN
                D[i][j] = score
                prev_score = max(score, prev_score + gap_score)
            else:
                prev_score = prev_score + gap_score
            M[i][j] = prev_score
    return D, M


def match_and_score_with_positions(
    needle: str, haystack: str
) -> Optional[Tuple[float, List[int]]]:
    """Score needle against haystack.

    Returns ``(score, positions)`` or ``None`` when needle is not a
    subsequence of haystack.
    """
    if not has_match(needle, haystack):
        return None

    n, m = len(needle), len(haystack)
    if n == m:
        return SCORE_MAX, list(range(n))
    if m > MATCH_MAX_LEN or n == 0:
        return SCORE_MIN, []

    D, M = _compute(needle, haystack)

    positions = [0] * n
    match_required = False
    j = m - 1
    for i in range(n - 1, -1, -1):
        while j >= 0:
            if D[i][j] != SCORE_MIN and (match_required or D[i][j] == M[i][j]):
                match_required = bool(
                    i and j and M[i][j] == D[i - 1][j - 1] + SCORE_MATCH_CONSECUTIVE
                )
                positions[i] = j
                j -= 1
                break
            j -= 1

    return M[n - 1][m - 1], positions


def to_int_score(score: float) -> int:
    """Convert an fzy score to the engine's integer scale."""
    if score == SCORE_MAX:
        return INT_SCORE_MAX
    if score == SCORE_MIN:
        return INT_SCORE_MIN
    return int(round(score * SCALE))


def fuzzy_indices(text: str, query: str) -> Optional[Tuple[int, List[int]]]:
    result = match_and_score_with_positions(query, text)
    if result is None:
        return None
    score, positions = result
    return to_int_score(score), positions
