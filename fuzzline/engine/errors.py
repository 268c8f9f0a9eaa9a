"""Error kinds raised by the filtering engine.

Policy:
- Per-item failures (no match, unparseable line) are recovered locally.
- Source failures abort the run and surface as one structured error.
- Cache failures are logged and skipped; the run still returns results.
"""

from typing import Any, Dict, Optional


class FuzzlineError(Exception):
    """Base class for all engine errors."""

    kind = "error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_payload(self) -> Dict[str, Any]:
        """Structured error record emitted to the caller."""
        payload: Dict[str, Any] = {"error": self.message, "kind": self.kind}
        payload.update(self.context)
        return payload


class ConfigError(FuzzlineError):
    """Missing or inconsistent options."""

    kind = "config"


class IoError(FuzzlineError):
    """Unreadable source or failed cache write."""

    kind = "io"


class SpawnError(FuzzlineError):
    """External process could not be launched."""

    kind = "spawn"


class CommandError(FuzzlineError):
    """External process exited non-zero with diagnostic text."""

    kind = "command"

    def __init__(self, stderr: str, returncode: Optional[int] = None, **context: Any):
        super().__init__(stderr, returncode=returncode, **context)
        self.stderr = stderr
        self.returncode = returncode


class ParseError(FuzzlineError):
    """Malformed structured line; callers drop the line."""

    kind = "parse"
