"""On-disk cache of external command output.

Layout::

    <root>/<signature>/<total>_<timestamp_ns>.out

One directory per signature holding the raw output verbatim, one candidate per
line. The line count lives in the file name, so the signature-to-file mapping
and the count are the only metadata. Stores write to a unique temporary name
first and rename it into place; the newest entry wins.
"""

import hashlib
import json
import os
import shutil
import tempfile
import time
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from loguru import logger

from .errors import IoError

ENTRY_SUFFIX = ".out"


@dataclass(frozen=True)
class CacheEntry:
    """A persisted command output."""
    signature: str
    path: Path
    total: int
    created: datetime


def signature(args: Sequence[str], cwd: Optional[Union[str, Path]] = None) -> str:
    """Deterministic key for an argument vector run in a working directory."""
    directory = str(Path(cwd).expanduser().resolve()) if cwd is not None else ""
    payload = json.dumps({"args": list(args), "cwd": directory}, ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _parse_entry_name(name: str) -> Optional[Tuple[int, int]]:
    if not name.endswith(ENTRY_SUFFIX):
        return None
    stem = name[: -len(ENTRY_SUFFIX)]
    total, sep, stamp = stem.partition("_")
    if not sep or not total.isdigit() or not stamp.isdigit():
        return None
    return int(total), int(stamp)


class OutputCache:
    """Maps command signatures to previously captured output files."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).expanduser()

    def _entries_for(self, sig: str) -> List[Tuple[int, int, Path]]:
        directory = self.root / sig
        try:
            names = os.listdir(directory)
        except OSError:
            return []
        found = []
        for name in names:
            parsed = _parse_entry_name(name)
            if parsed is not None:
                total, stamp = parsed
                found.append((stamp, total, directory / name))
        found.sort()
        return found

    def lookup(self, sig: str) -> Optional[Tuple[Path, int]]:
        """Return ``(path, total)`` of the newest entry for ``sig``."""
        entries = self._entries_for(sig)
        if not entries:
            return None
        _, total, path = entries[-1]
        return path, total

    def store(self, sig: str, lines: Iterable[str]) -> Tuple[Path, int]:
        """Persist ``lines`` for ``sig`` and return ``(path, total)``."""
        directory = self.root / sig
        total = 0
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=".tmp-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                    for line in lines:
                        f.write(line)
                        f.write("\n")
                        total += 1
                own_stamp = time.time_ns()
                final = directory / f"{total}_{own_stamp}{ENTRY_SUFFIX}"
                os.replace(tmp_name, final)
            except BaseException:
                with suppress(OSError):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise IoError(f"Failed to write cache for {sig}: {e}", path=str(directory)) from e

        # Newer entries belong to concurrent stores; leave them alone.
        for stamp, _, stale in self._entries_for(sig):
            if stamp < own_stamp:
                with suppress(OSError):
                    stale.unlink()

        if not final.exists():
            newer = self.lookup(sig)
            if newer is not None:
                logger.debug(f"Entry {final.name} was replaced by {newer[0].name}")
                return newer

        logger.debug(f"Cached {total} lines at {final}")
        return final, total

    def entries(self) -> List[CacheEntry]:
        """List the current entry of every cached signature."""
        if not self.root.is_dir():
            return []
        result = []
        for directory in sorted(self.root.iterdir()):
            if not directory.is_dir():
                continue
            entries = self._entries_for(directory.name)
            if not entries:
                continue
            stamp, total, path = entries[-1]
            result.append(CacheEntry(
                signature=directory.name,
                path=path,
                total=total,
                created=datetime.fromtimestamp(stamp / 1e9),
            ))
        return result

    def purge(self) -> int:
        """Remove every cached entry. Returns the number of signatures removed."""
        if not self.root.is_dir():
            return 0
        removed = 0
        for directory in self.root.iterdir():
            if directory.is_dir():
                shutil.rmtree(directory, ignore_errors=True)
                removed += 1
        logger.info(f"Purged {removed} cache entries from {self.root}")
        return removed

