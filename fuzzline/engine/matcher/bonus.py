"""Additive score adjustments layered on top of the base algorithm."""

from enum import Enum
from typing import Optional, Sequence


def file_name_start(text: str) -> Optional[int]:
    """Index where the last path component of ``text`` starts."""
    stripped = text.rstrip("/\\")
    if not stripped:
        return None
    return max(stripped.rfind("/"), stripped.rfind("\\")) + 1


def calc_bonus_file_name(text: str, score: int, indices: Sequence[int]) -> int:
    """Reward matches that fall inside the file name part of a path."""
    start = file_name_start(text)
    if start is None:
        return 0
    name_len = len(text.rstrip("/\\")) - start
    if name_len <= 0 or score <= 0:
        return 0
    hits = sum(1 for i in indices if i >= start)
    return score * hits // name_len


class Bonus(Enum):
    """Score bonus rule."""
    NONE = "none"
    FILE_NAME = "filename"

    def bonus_for(self, text: str, score: int, indices: Sequence[int]) -> int:
        if self is Bonus.FILE_NAME:
            return calc_bonus_file_name(text, score, indices)
        return 0
