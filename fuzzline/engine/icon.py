"""Icon decoration for file and grep lines.

The icon is a single glyph followed by a space, so every decorated line is
shifted by ``ICON_WIDTH`` columns.
"""

from enum import Enum
from pathlib import PurePath
from typing import List, Sequence, Tuple

ICON_WIDTH = 2

DEFAULT_ICON = "\uf15b"

EXTENSION_ICONS = {
    "c": "\ue61e",
    "cpp": "\ue61d",
    "css": "\ue749",
    "go": "\ue626",
    "h": "\uf0fd",
    "html": "\uf13b",
    "java": "\ue204",
    "js": "\ue74e",
    "json": "\ue60b",
    "lua": "\ue620",
    "md": "\uf48a",
    "py": "\ue606",
    "rb": "\ue21e",
    "rs": "\ue7a8",
    "sh": "\uf489",
    "toml": "\ue615",
    "ts": "\ue628",
    "vim": "\ue62b",
    "yaml": "\uf481",
    "yml": "\uf481",
}

FILENAME_ICONS = {
    "Dockerfile": "\uf308",
    "Makefile": "\ue779",
    "LICENSE": "\uf2c2",
    ".gitignore": "\uf1d3",
}

DEFAULT_ICONIZED = f"{DEFAULT_ICON} "


class IconPainter(Enum):
    """How the path of a line is located for icon lookup."""
    FILE = "file"
    GREP = "grep"

    def paint(self, line: str) -> str:
        """Prepend the icon for ``line``."""
        if self is IconPainter.GREP:
            path = line.split(":", 1)[0]
        else:
            path = line
        return f"{icon_for(path)} {line}"

    def paint_with_indices(
        self, line: str, indices: Sequence[int]
    ) -> Tuple[str, List[int]]:
        """Prepend the icon and shift matched indices accordingly."""
        return self.paint(line), [i + ICON_WIDTH for i in indices]


def icon_for(path: str) -> str:
    """Return the glyph for a path, falling back to the default icon."""
    name = PurePath(path.strip()).name
    if name in FILENAME_ICONS:
        return FILENAME_ICONS[name]
    _, dot, ext = name.rpartition(".")
    if dot:
        return EXTENSION_ICONS.get(ext.lower(), DEFAULT_ICON)
    return DEFAULT_ICON
