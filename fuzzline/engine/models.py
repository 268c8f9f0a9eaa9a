"""Data models shared by the filtering engine."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .icon import IconPainter
from .matcher import MatchType


@dataclass(frozen=True)
class SourceItem:
    """A candidate line.

    ``display`` is what the caller shows. ``filter_text`` is what the matcher
    sees when it differs from the display, starting at column
    ``filter_offset`` of the display string.
    """
    display: str
    filter_text: Optional[str] = None
    filter_offset: int = 0

    @property
    def match_text(self) -> str:
        return self.display if self.filter_text is None else self.filter_text

    @classmethod
    def from_line(cls, line: str) -> "SourceItem":
        return cls(display=line.rstrip("\r\n"))


@dataclass(frozen=True)
class FilterResult:
    """A matched item with its score and matched display positions."""
    item: SourceItem
    score: int
    indices: Tuple[int, ...]

    @property
    def text(self) -> str:
        return self.item.display


@dataclass(frozen=True)
class FilterContext:
    """Per-run display configuration, built once per invocation."""
    number: Optional[int] = None
    winwidth: Optional[int] = None
    icon_painter: Optional[IconPainter] = None
    match_type: MatchType = MatchType.FULL

    @property
    def enable_icon(self) -> bool:
        return self.icon_painter is not None


@dataclass
class Snapshot:
    """One self-consistent best-known result set."""
    total: int
    lines: List[str]
    indices: List[List[int]]
    truncated_map: Dict[int, str] = field(default_factory=dict)
    tempfile: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "total": self.total,
            "lines": self.lines,
            "indices": self.indices,
        }
        if self.truncated_map:
            payload["truncated_map"] = self.truncated_map
        if self.tempfile:
            payload["tempfile"] = self.tempfile
        return payload
