"""Which part of a candidate line is handed to the scoring algorithm."""

import re
from enum import Enum
from typing import Tuple

from .bonus import file_name_start

# path:lnum:col: prefix of a grep line.
GREP_PREFIX = re.compile(r"^.*?:\d+:\d+:")


def strip_grep_filepath(line: str) -> Tuple[str, int]:
    """Return the content part of a grep line and its offset."""
    found = GREP_PREFIX.match(line)
    if found is None:
        return line, 0
    offset = found.end()
    return line[offset:], offset


def file_name_only(line: str) -> Tuple[str, int]:
    start = file_name_start(line)
    if start is None:
        return line, 0
    return line[start:], start


def tag_name_only(line: str) -> Tuple[str, int]:
    # Tag lines look like `name:lnum [kind] path`.
    return line.split(":", 1)[0], 0


class MatchType(Enum):
    """Match scope policy, fixed for a whole run."""
    FULL = "full"
    FILE_NAME = "filename"
    TAG_NAME = "tagname"
    IGNORE_FILE_PATH = "ignore-filepath"

    def extract(self, text: str) -> Tuple[str, int]:
        """Return ``(text_to_match, offset_into_text)``."""
        if self is MatchType.FILE_NAME:
            return file_name_only(text)
        if self is MatchType.TAG_NAME:
            return tag_name_only(text)
        if self is MatchType.IGNORE_FILE_PATH:
            return strip_grep_filepath(text)
        return text, 0
