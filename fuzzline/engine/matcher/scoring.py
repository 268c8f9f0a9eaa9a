"""Matcher contract: score one candidate under a fixed algorithm, bonus set
and match type."""

from enum import Enum
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from . import fzy, skim
from .bonus import Bonus
from .match_type import MatchType

if TYPE_CHECKING:
    from ..models import SourceItem

MatchResult = Tuple[int, List[int]]


class Algo(Enum):
    """Scoring algorithm."""
    FZY = "fzy"
    SKIM = "skim"

    def apply(self, query: str, text: str) -> Optional[MatchResult]:
        if self is Algo.SKIM:
            return skim.fuzzy_indices(text, query)
        return fzy.fuzzy_indices(text, query)


def score(
    query: str,
    text: str,
    algo: Algo = Algo.FZY,
    bonuses: Sequence[Bonus] = (),
    match_type: MatchType = MatchType.FULL,
) -> Optional[MatchResult]:
    """Score ``text`` against ``query``.

    Indices are relative to ``text`` even when the match type only scores a
    part of it. ``None`` means no match.
    """
    if not query:
        return 0, []

    target, offset = match_type.extract(text)
    matched = algo.apply(query, target)
    if matched is None:
        return None

    base, indices = matched
    if offset:
        indices = [i + offset for i in indices]
    total = base + sum(b.bonus_for(text, base, indices) for b in bonuses)
    return total, indices


class Matcher:
    """Per-run scorer; algorithm, bonuses and match type never vary per item."""

    def __init__(
        self,
        query: str,
        algo: Algo = Algo.FZY,
        bonuses: Sequence[Bonus] = (),
        match_type: MatchType = MatchType.FULL,
    ):
        self.query = query
        self.algo = algo
        self.bonuses = tuple(b for b in bonuses if b is not Bonus.NONE)
        self.match_type = match_type

    def match_text(self, text: str) -> Optional[MatchResult]:
        return score(self.query, text, self.algo, self.bonuses, self.match_type)

    def match_item(self, item: "SourceItem") -> Optional[MatchResult]:
        """Score an item, reporting indices against its display string."""
        matched = self.match_text(item.match_text)
        if matched is None:
            return None
        value, indices = matched
        if item.filter_offset:
            indices = [i + item.filter_offset for i in indices]
        return value, indices
