"""skim-style scoring algorithm.

Smart case: matching is case-sensitive only when the pattern holds an
upper-case letter. Every matched character earns a bonus depending on case
and on the character before it; gaps between matches are penalized per
skipped character and the position of the first match is penalized up to a
cap.
"""

from typing import List, Optional, Tuple

BONUS_MATCHED = 4
BONUS_CASE_MATCH = 4
BONUS_UPPER_MATCH = 6
BONUS_ADJACENCY = 10
BONUS_SEPARATOR = 8
BONUS_CAMEL = 8
PENALTY_CASE_UNMATCHED = -1
PENALTY_LEADING = -6
PENALTY_MAX_LEADING = -18
PENALTY_UNMATCHED = -2

SEPARATORS = frozenset(" /\\_-.:,;|")

_NEG_INF = float("-inf")


def _char_eq(a: str, b: str, case_sensitive: bool) -> bool:
    if case_sensitive:
        return a == b
    return a.lower() == b.lower()


def _char_score(choice: str, j: int, pattern_ch: str) -> int:
    ch = choice[j]
    score = BONUS_MATCHED
    if ch == pattern_ch:
        score += BONUS_UPPER_MATCH if ch.isupper() else BONUS_CASE_MATCH
    else:
        score += PENALTY_CASE_UNMATCHED

    prev = choice[j - 1] if j else ""
    if not prev or prev in SEPARATORS:
        score += BONUS_SEPARATOR
    elif prev.islower() and ch.isupper():
        score += BONUS_CAMEL
    return score


def _leading_penalty(j: int) -> int:
    return max(PENALTY_LEADING * j, PENALTY_MAX_LEADING)


def fuzzy_indices(choice: str, pattern: str) -> Optional[Tuple[int, List[int]]]:
    """Score pattern against choice.

    Returns ``(score, indices)`` or ``None`` if the pattern does not match.
    """
    if not pattern:
        return 0, []

    case_sensitive = any(ch.isupper() for ch in pattern)
    n, m = len(pattern), len(choice)

    # Quick reject before running the quadratic pass.
    j = 0
    for p in pattern:
        while j < m and not _char_eq(choice[j], p, case_sensitive):
            j += 1
        if j == m:
            return None
        j += 1

    # best[i][j]: best score of pattern[:i+1] with pattern[i] matched at j.
    best = [[_NEG_INF] * m for _ in range(n)]
    back = [[-1] * m for _ in range(n)]

    for j in range(m):
        if _char_eq(choice[j], pattern[0], case_sensitive):
            best[0][j] = _char_score(choice, j, pattern[0]) + _leading_penalty(j)

    for i in range(1, n):
        prev_row = best[i - 1]
        # Running max of prev_row[k] - PENALTY_UNMATCHED * k over k <= j - 2.
        gap_best = _NEG_INF
        gap_arg = -1
        for j in range(1, m):
            k = j - 2
            if k >= 0 and prev_row[k] != _NEG_INF:
                candidate = prev_row[k] - PENALTY_UNMATCHED * k
                if candidate > gap_best:
                    gap_best, gap_arg = candidate, k
            if not _char_eq(choice[j], pattern[i], case_sensitive):
                continue

            score, arg = _NEG_INF, -1
            if prev_row[j - 1] != _NEG_INF:
                score, arg = prev_row[j - 1] + BONUS_ADJACENCY, j - 1
            if gap_arg >= 0:
                gap_score = gap_best + PENALTY_UNMATCHED * (j - 1)
                if gap_score > score:
                    score, arg = gap_score, gap_arg
            if arg < 0:
                continue
            best[i][j] = score + _char_score(choice, j, pattern[i])
            back[i][j] = arg

    last_row = best[n - 1]
    end = max(range(m), key=lambda j: (last_row[j], -j))
    if last_row[end] == _NEG_INF:
        return None

    indices = [0] * n
    j = end
    for i in range(n - 1, -1, -1):
        indices[i] = j
        j = back[i][j]

    return int(last_row[end]), indices
