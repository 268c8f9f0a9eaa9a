"""Candidate line sources.

A ``Source`` is one of four kinds behind a single pull contract: iterate it
synchronously for batch ranking or asynchronously for the dynamic runner.
Sources hold no ranking state.
"""

import asyncio
import os
import signal
import subprocess
import tempfile
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Iterable, Iterator, List, Optional, Union

import aiofiles
from loguru import logger

from .errors import CommandError, IoError, SpawnError
from .models import SourceItem
from .process import CommandSpec

# Read buffer of async command pipes; longer lines are read in pieces.
STREAM_LIMIT = 1 << 20

# Bytes pulled per read from a stream source.
CHUNK_SIZE = 1 << 16


class SourceKind(Enum):
    LIST = "list"
    FILE = "file"
    STREAM = "stream"
    COMMAND = "command"


def _to_item(value: Union[str, SourceItem]) -> SourceItem:
    if isinstance(value, SourceItem):
        return value
    return SourceItem.from_line(value)


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")


async def _read_line(stream: asyncio.StreamReader) -> bytes:
    """``readline()`` without the reader's line length limit."""
    chunks = []
    while True:
        try:
            chunks.append(await stream.readuntil(b"\n"))
            break
        except asyncio.IncompleteReadError as e:
            chunks.append(e.partial)
            break
        except asyncio.LimitOverrunError as e:
            chunks.append(await stream.read(e.consumed))
    return b"".join(chunks)


class Source:
    """A finite or unbounded, ordered, lazy sequence of ``SourceItem``.

    Build one with ``from_list``, ``from_file``, ``from_stream`` or
    ``from_command``. Stream and command sources may be consumed only once;
    with ``cache_output`` a command source keeps the raw stdout lines in
    ``captured`` for write-through caching.
    """

    def __init__(
        self,
        kind: SourceKind,
        *,
        items: Optional[List[Union[str, SourceItem]]] = None,
        path: Optional[Path] = None,
        stream: Optional[BinaryIO] = None,
        command: Optional[CommandSpec] = None,
        cache_output: bool = False,
    ):
        self.kind = kind
        self.items = items
        self.path = path
        self.stream = stream
        self.command = command
        self.cache_output = cache_output and kind is SourceKind.COMMAND

        self.captured: List[str] = []
        self.returncode: Optional[int] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._consumed = False

    @classmethod
    def from_list(cls, items: Iterable[Union[str, SourceItem]]) -> "Source":
        return cls(SourceKind.LIST, items=list(items))

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Source":
        return cls(SourceKind.FILE, path=Path(path).expanduser())

    @classmethod
    def from_stream(cls, stream: BinaryIO) -> "Source":
        """Lines of an open binary stream such as stdin, read as they arrive."""
        return cls(SourceKind.STREAM, stream=stream)

    @classmethod
    def from_command(cls, command: CommandSpec, cache_output: bool = False) -> "Source":
        return cls(SourceKind.COMMAND, command=command, cache_output=cache_output)

    def __repr__(self) -> str:
        if self.kind is SourceKind.FILE:
            return f"Source(file={self.path})"
        if self.kind is SourceKind.COMMAND:
            return f"Source(command={self.command.describe()!r}, cwd={self.command.cwd})"
        if self.kind is SourceKind.STREAM:
            return f"Source(stream={getattr(self.stream, 'name', '?')})"
        return f"Source(list, {len(self.items)} items)"

    @property
    def pid(self) -> Optional[int]:
        """Pid of the live subprocess of an async command source."""
        return self._process.pid if self._process is not None else None

    @property
    def signature(self) -> Optional[str]:
        return self.command.signature if self.command is not None else None

    def _claim(self) -> None:
        if self._consumed:
            raise RuntimeError(f"{self!r} has already been consumed")
        self._consumed = True

    # Synchronous pull

    def __iter__(self) -> Iterator[SourceItem]:
        if self.kind is SourceKind.LIST:
            return (_to_item(value) for value in self.items)
        if self.kind is SourceKind.FILE:
            return self._iter_file()
        if self.kind is SourceKind.STREAM:
            return self._iter_stream()
        return self._iter_command()

    def _iter_file(self) -> Iterator[SourceItem]:
        try:
            with open(self.path, "r", encoding="utf-8", errors="replace") as f:
                for line in f:
                    yield SourceItem.from_line(line)
        except OSError as e:
            raise IoError(f"Cannot read {self.path}: {e}", path=str(self.path)) from e

    def _iter_stream(self) -> Iterator[SourceItem]:
        self._claim()
        try:
            for raw in self.stream:
                yield SourceItem.from_line(_decode(raw))
        except OSError as e:
            raise IoError(f"Cannot read {self!r}: {e}") from e

    def _iter_command(self) -> Iterator[SourceItem]:
        self._claim()
        spec = self.command
        with tempfile.TemporaryFile() as err:
            try:
                proc = subprocess.Popen(
                    spec.args[0] if spec.shell else list(spec.args),
                    shell=spec.shell,
                    stdout=subprocess.PIPE,
                    stderr=err,
                    **spec.popen_kwargs(),
                )
            except OSError as e:
                raise SpawnError(f"Failed to spawn {spec.program}: {e}", command=spec.describe()) from e

            produced = 0
            try:
                for raw in proc.stdout:
                    line = _decode(raw)
                    produced += 1
                    if self.cache_output:
                        self.captured.append(line)
                    yield SourceItem.from_line(line)
            except BaseException:
                proc.kill()
                proc.wait()
                raise
            finally:
                proc.stdout.close()

            self.returncode = proc.wait()
            if self.returncode != 0 and produced == 0:
                err.seek(0)
                stderr = err.read().decode("utf-8", errors="replace")
                if stderr.strip():
                    raise CommandError(stderr, self.returncode, command=spec.describe())

    # Asynchronous pull

    def __aiter__(self) -> AsyncIterator[SourceItem]:
        if self.kind is SourceKind.LIST:
            return self._aiter_list()
        if self.kind is SourceKind.FILE:
            return self._aiter_file()
        if self.kind is SourceKind.STREAM:
            return self._aiter_stream()
        return self._aiter_command()

    async def _aiter_list(self) -> AsyncIterator[SourceItem]:
        for value in self.items:
            yield _to_item(value)

    async def _aiter_file(self) -> AsyncIterator[SourceItem]:
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8", errors="replace") as f:
                async for line in f:
                    yield SourceItem.from_line(line)
        except OSError as e:
            raise IoError(f"Cannot read {self.path}: {e}", path=str(self.path)) from e

    async def _aiter_stream(self) -> AsyncIterator[SourceItem]:
        self._claim()
        # read1 returns whatever is available instead of waiting for a full chunk.
        read = getattr(self.stream, "read1", self.stream.read)
        pending = b""
        while True:
            try:
                chunk = await asyncio.to_thread(read, CHUNK_SIZE)
            except OSError as e:
                raise IoError(f"Cannot read {self!r}: {e}") from e
            if not chunk:
                break
            *lines, pending = (pending + chunk).split(b"\n")
            for raw in lines:
                yield SourceItem.from_line(_decode(raw))
        if pending:
            yield SourceItem.from_line(_decode(pending))

    async def _spawn(self) -> asyncio.subprocess.Process:
        spec = self.command
        kwargs = spec.popen_kwargs()
        if os.name == "posix":
            # Own process group so terminate() reaches the whole pipeline.
            kwargs["start_new_session"] = True
        try:
            if spec.shell:
                return await asyncio.create_subprocess_shell(
                    spec.args[0],
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    limit=STREAM_LIMIT,
                    **kwargs,
                )
            return await asyncio.create_subprocess_exec(
                *spec.args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
                **kwargs,
            )
        except OSError as e:
            raise SpawnError(f"Failed to spawn {spec.program}: {e}", command=spec.describe()) from e

    async def _aiter_command(self) -> AsyncIterator[SourceItem]:
        self._claim()
        proc = self._process = await self._spawn()
        logger.debug(f"Spawned {self!r} as pid {proc.pid}")
        stderr_task = asyncio.ensure_future(proc.stderr.read())

        produced = 0
        try:
            while True:
                raw = await _read_line(proc.stdout)
                if not raw:
                    break
                line = _decode(raw)
                produced += 1
                if self.cache_output:
                    self.captured.append(line)
                yield SourceItem.from_line(line)
            self.returncode = await proc.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace")
        except BaseException:
            stderr_task.cancel()
            await self.terminate()
            raise

        if self.returncode != 0 and produced == 0 and stderr.strip():
            raise CommandError(stderr, self.returncode, command=self.command.describe())

    async def terminate(self) -> None:
        """Kill a live subprocess (and its process group) and reap it."""
        proc = self._process
        if proc is None or proc.returncode is not None:
            return
        logger.debug(f"Terminating pid {proc.pid}")
        try:
            if os.name == "posix":
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except (ProcessLookupError, PermissionError):
            pass
        await proc.wait()
