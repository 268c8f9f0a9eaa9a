"""Grep flows built on ripgrep.

``sync_grep`` runs a user-supplied grep command in JSON mode and renders each
match record; ``dyn_grep`` fuzzy-filters the whole project's lines while rg
is still running; ``forerunner`` warms the cache for a git project ahead of
the first query.
"""

import base64
import dataclasses
from itertools import islice
from pathlib import Path
from typing import List, Optional, Tuple, Union

from loguru import logger
from pydantic import BaseModel, ValidationError

from .cache import OutputCache
from .dynamic import DynamicRunner, Emit
from .errors import IoError, ParseError
from .icon import ICON_WIDTH, IconPainter, icon_for
from .matcher import Algo, Bonus, MatchType
from .models import FilterContext, Snapshot
from .process import CommandSpec, ExecInfo, LightCommand, prepare_grep_cmd, set_current_dir
from .source import Source
from .truncate import truncate_long_matched_lines

RG_ARGS = (
    "rg",
    "--column",
    "--line-number",
    "--no-heading",
    "--color=never",
    "--smart-case",
    "",
)

RG_EXEC_CMD = "rg --column --line-number --no-heading --color=never --smart-case ''"

DEFAULT_WINWIDTH = 80


class Data(BaseModel):
    """Text or base64 bytes, as rg reports paths and line contents."""
    text: Optional[str] = None
    bytes: Optional[str] = None

    def decoded(self) -> str:
        if self.text is not None:
            return self.text
        if self.bytes is not None:
            return base64.b64decode(self.bytes).decode("utf-8", errors="replace")
        return ""


class SubMatch(BaseModel):
    """Byte span of one match within the line."""
    match: Data
    start: int
    end: int


class Match(BaseModel):
    path: Data
    lines: Data
    line_number: Optional[int] = None
    absolute_offset: Optional[int] = None
    submatches: List[SubMatch] = []


class JsonLine(BaseModel):
    """A ``match`` record of ``rg --json``."""
    type: str
    data: Match

    @property
    def path(self) -> str:
        return self.data.path.decoded()

    @property
    def line_number(self) -> int:
        return self.data.line_number or 0

    @property
    def column(self) -> int:
        return self.data.submatches[0].start + 1 if self.data.submatches else 1

    def build_grep_line(self, enable_icon: bool = False) -> Tuple[str, List[int]]:
        """Render ``path:lnum:col:text`` with character indices of the matches."""
        raw = self.data.lines.decoded()
        text = raw.rstrip()
        encoded = raw.encode("utf-8")

        prefix = f"{self.path}:{self.line_number}:{self.column}:"
        offset = len(prefix)
        if enable_icon:
            prefix = f"{icon_for(self.path)} {prefix}"
            offset += ICON_WIDTH

        indices = []
        for sub in self.data.submatches:
            start = _char_index(encoded, sub.start)
            end = _char_index(encoded, sub.end)
            indices.extend(i + offset for i in range(start, min(end, len(text))))

        return prefix + text, indices


def _char_index(encoded: bytes, byte_offset: int) -> int:
    return len(encoded[:byte_offset].decode("utf-8", errors="ignore"))


def parse_json_line(raw: str) -> JsonLine:
    """Parse one ``rg --json`` record; only ``match`` records are accepted."""
    try:
        record = JsonLine.model_validate_json(raw)
    except (ValidationError, ValueError) as e:
        raise ParseError(f"Malformed grep record: {e.__class__.__name__}", line=raw[:200]) from e
    if record.type != "match":
        raise ParseError(f"Unexpected grep record type: {record.type}", line=raw[:200])
    return record


def is_git_repo(directory: Union[str, Path]) -> bool:
    """True if ``directory`` or one of its parents holds a ``.git`` entry."""
    path = Path(directory).expanduser().resolve()
    return any((candidate / ".git").exists() for candidate in (path, *path.parents))


def rg_spec(cmd_dir: Optional[Union[str, Path]] = None) -> CommandSpec:
    """The project-wide rg invocation, run without a shell."""
    return CommandSpec.from_args(RG_ARGS, cmd_dir)


def sync_grep(
    grep_cmd: str,
    grep_query: str,
    glob: Optional[str] = None,
    cmd_dir: Optional[Union[str, Path]] = None,
    number: Optional[int] = None,
    winwidth: Optional[int] = None,
    enable_icon: bool = False,
) -> Snapshot:
    """Run a grep command to completion and render its matches.

    Non-match and malformed records are dropped.
    """
    spec = prepare_grep_cmd(grep_cmd, grep_query, glob, cmd_dir)
    info = LightCommand(spec).execute()

    lines: List[str] = []
    indices: List[List[int]] = []
    dropped = 0
    for raw in info.lines:
        try:
            record = parse_json_line(raw)
        except ParseError:
            dropped += 1
            continue
        line, idxs = record.build_grep_line(enable_icon)
        lines.append(line)
        indices.append(idxs)

    if dropped:
        logger.debug(f"Dropped {dropped} non-match grep records")

    total = len(lines)
    if number is not None:
        lines, indices = lines[:number], indices[:number]

    lines, indices, truncated_map = truncate_long_matched_lines(
        lines,
        indices,
        winwidth or DEFAULT_WINWIDTH,
        ICON_WIDTH if enable_icon else None,
    )
    return Snapshot(total=total, lines=lines, indices=indices, truncated_map=truncated_map)


async def dyn_grep(
    grep_query: str,
    context: FilterContext,
    cmd_dir: Optional[Union[str, Path]] = None,
    input: Optional[Union[str, Path]] = None,
    cache: Optional[OutputCache] = None,
    no_cache: bool = False,
    algo: Algo = Algo.FZY,
    emit: Optional[Emit] = None,
    update_interval: float = 0.2,
    batch_size: int = 256,
) -> Snapshot:
    """Fuzzy-filter the project's lines, matching only the content column.

    Reads ``input`` when given, else a cached rg output for ``cmd_dir``, else
    runs rg and caches its output for the next query.
    """
    context = dataclasses.replace(context, match_type=MatchType.IGNORE_FILE_PATH)
    use_cache = cache is not None and not no_cache

    if input is not None:
        source = Source.from_file(input)
    else:
        cached = None
        if cmd_dir is not None and use_cache:
            cached = cache.lookup(rg_spec(cmd_dir).signature)
        if cached is not None:
            logger.debug(f"Using cached rg output {cached[0]} ({cached[1]} lines)")
            source = Source.from_file(cached[0])
        else:
            spec = CommandSpec.from_shell(RG_EXEC_CMD, cmd_dir, cache_args=RG_ARGS)
            source = Source.from_command(spec, cache_output=cmd_dir is not None and use_cache)

    runner = DynamicRunner(
        grep_query,
        source,
        context,
        algo=algo,
        bonuses=(Bonus.NONE,),
        cache=cache if use_cache else None,
        update_interval=update_interval,
        batch_size=batch_size,
    )
    return await runner.run(emit)


def response_from_cache(
    path: Path,
    total: int,
    number: Optional[int] = None,
    icon_painter: Optional[IconPainter] = None,
) -> ExecInfo:
    """First ``number`` lines of a cached output, reported with its path."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            lines = [line.rstrip("\r\n") for line in islice(f, number)]
    except OSError as e:
        raise IoError(f"Cannot read cached output {path}: {e}", path=str(path)) from e
    if icon_painter is not None:
        lines = [icon_painter.paint(line) for line in lines]
    return ExecInfo(total=total, lines=lines, tempfile=path)


def forerunner(
    cmd_dir: Optional[Union[str, Path]] = None,
    number: Optional[int] = None,
    icon_painter: Optional[IconPainter] = None,
    output_threshold: int = 30000,
    cache: Optional[OutputCache] = None,
    no_cache: bool = False,
) -> Optional[ExecInfo]:
    """Warm the rg cache for a git project.

    Returns ``None`` when the directory is not inside a git repository.
    """
    spec = rg_spec(cmd_dir)

    if cache is not None and not no_cache and cmd_dir is not None:
        cached = cache.lookup(spec.signature)
        if cached is not None:
            logger.debug(f"Forerunner answered from cache: {cached[0]}")
            return response_from_cache(cached[0], cached[1], number, icon_painter)

    directory = set_current_dir(cmd_dir) or Path.cwd()
    if not is_git_repo(directory):
        logger.info(f"Skipping forerunner, {directory} is not a git repository")
        return None

    light_cmd = LightCommand(
        spec,
        number=number,
        icon_painter=icon_painter,
        output_threshold=output_threshold,
        cache=None if no_cache else cache,
    )
    return light_cmd.execute()
