"""Fuzzy matching algorithms, bonuses and match scopes."""

from .bonus import Bonus
from .match_type import MatchType
from .scoring import Algo, Matcher, MatchResult, score

__all__ = ["Algo", "Bonus", "Matcher", "MatchResult", "MatchType", "score"]
