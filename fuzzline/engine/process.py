"""External command helpers.

Commands either run to completion (``LightCommand``) or are streamed line by
line through a COMMAND source.
"""

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from loguru import logger

from .cache import OutputCache, signature
from .errors import CommandError, IoError, SpawnError
from .icon import IconPainter


def set_current_dir(cmd_dir: Optional[Union[str, Path]]) -> Optional[Path]:
    """Working directory for a command; a file path is replaced by its parent."""
    if cmd_dir is None:
        return None
    cmd_dir = Path(cmd_dir).expanduser()
    if cmd_dir.is_dir():
        return cmd_dir
    return cmd_dir.parent


def _unquote(token: str) -> str:
    if len(token) > 2 and token.startswith('"') and token.endswith('"'):
        return token[1:-1]
    return token


@dataclass(frozen=True)
class CommandSpec:
    """An external command: argument vector or shell line, plus its cwd.

    ``cache_args`` is the argument vector the cache signature is derived from;
    it defaults to ``args``.
    """
    args: Tuple[str, ...]
    cwd: Optional[Path] = None
    shell: bool = False
    cache_args: Optional[Tuple[str, ...]] = None

    @classmethod
    def from_args(
        cls,
        args: Sequence[str],
        cwd: Optional[Union[str, Path]] = None,
        cache_args: Optional[Sequence[str]] = None,
    ) -> "CommandSpec":
        return cls(
            args=tuple(args),
            cwd=set_current_dir(cwd),
            cache_args=tuple(cache_args) if cache_args is not None else None,
        )

    @classmethod
    def from_shell(
        cls,
        cmd: str,
        cwd: Optional[Union[str, Path]] = None,
        cache_args: Optional[Sequence[str]] = None,
    ) -> "CommandSpec":
        return cls(
            args=(cmd,),
            cwd=set_current_dir(cwd),
            shell=True,
            cache_args=tuple(cache_args) if cache_args is not None else tuple(cmd.split()),
        )

    @property
    def program(self) -> str:
        return self.args[0] if self.args else ""

    @property
    def signature(self) -> str:
        return signature(self.cache_args or self.args, self.cwd)

    def popen_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"stdin": subprocess.DEVNULL}
        if self.cwd is not None:
            kwargs["cwd"] = str(self.cwd)
        return kwargs

    def describe(self) -> str:
        return " ".join(self.args)


def prepare_exec_cmd(cmd: str, cmd_dir: Optional[Union[str, Path]] = None) -> CommandSpec:
    """A shell command line; pipes such as ``git ls-files | uniq`` work."""
    return CommandSpec.from_shell(cmd, cmd_dir)


def prepare_grep_cmd(
    grep_cmd: str,
    grep_query: str,
    glob: Optional[str] = None,
    cmd_dir: Optional[Union[str, Path]] = None,
) -> CommandSpec:
    """Argument vector for a grep command forced into JSON output.

    The query is appended separately so it never goes through word splitting.
    """
    args = [_unquote(token) for token in grep_cmd.split()]
    if not args:
        raise SpawnError("Empty grep command")
    args.append("--json")
    args.append(grep_query)
    if glob:
        args.extend(["-g", glob])
    return CommandSpec.from_args(args, cmd_dir)


def run_to_completion(spec: CommandSpec) -> subprocess.CompletedProcess:
    """Run ``spec`` and capture its output."""
    logger.debug(f"Executing: {spec.describe()} (cwd={spec.cwd})")
    try:
        if spec.shell:
            return subprocess.run(spec.args[0], shell=True, capture_output=True, **spec.popen_kwargs())
        return subprocess.run(list(spec.args), capture_output=True, **spec.popen_kwargs())
    except OSError as e:
        raise SpawnError(f"Failed to spawn {spec.program}: {e}", command=spec.describe()) from e


def split_output(stdout: bytes) -> List[str]:
    """Decode stdout and split it into lines, dropping the trailing empty one."""
    text = stdout.decode("utf-8", errors="replace")
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


@dataclass
class ExecInfo:
    """Result of running a command to completion."""
    total: int
    lines: List[str] = field(default_factory=list)
    tempfile: Optional[Path] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"total": self.total, "lines": self.lines}
        if self.tempfile is not None:
            payload["tempfile"] = str(self.tempfile)
        return payload


class LightCommand:
    """Runs a command to completion and shapes its output for display.

    When the output has more lines than ``output_threshold`` (0 disables) it
    is spilled to ``output`` if given, otherwise stored in the cache, and the
    path is reported back as ``tempfile``.
    """

    def __init__(
        self,
        spec: CommandSpec,
        number: Optional[int] = None,
        icon_painter: Optional[IconPainter] = None,
        output_threshold: int = 0,
        cache: Optional[OutputCache] = None,
        output: Optional[Path] = None,
    ):
        self.spec = spec
        self.number = number
        self.icon_painter = icon_painter
        self.output_threshold = output_threshold
        self.cache = cache
        self.output = output

    def execute(self) -> ExecInfo:
        completed = run_to_completion(self.spec)

        if completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="replace")
            if stderr.strip():
                raise CommandError(stderr, completed.returncode, command=self.spec.describe())
            logger.debug(
                f"{self.spec.program} exited with {completed.returncode} and no stderr, no results"
            )
            return ExecInfo(total=0)

        lines = split_output(completed.stdout)
        total = len(lines)

        tempfile = None
        if self.output_threshold and total > self.output_threshold:
            tempfile = self._spill(lines)

        shown = lines[: self.number] if self.number is not None else lines
        if self.icon_painter is not None:
            shown = [self.icon_painter.paint(line) for line in shown]

        return ExecInfo(total=total, lines=shown, tempfile=tempfile)

    def _spill(self, lines: List[str]) -> Optional[Path]:
        if self.output is not None:
            try:
                with open(self.output, "w", encoding="utf-8") as f:
                    for line in lines:
                        f.write(line)
                        f.write("\n")
                return Path(self.output)
            except OSError as e:
                logger.warning(f"Failed to write output file {self.output}: {e}")
                return None

        if self.cache is None:
            return None
        try:
            path, _ = self.cache.store(self.spec.signature, lines)
            return path
        except IoError as e:
            logger.warning(f"Caching skipped: {e}")
            return None
