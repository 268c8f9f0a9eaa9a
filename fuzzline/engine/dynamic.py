"""Dynamic (streaming) filtering.

A producer task pulls items from the source into a bounded queue; the
consumer scores them in batches off the event loop and is the only writer of
the top-K structure. Snapshots of the best-known results are emitted at most
once per update interval while the source is still running.
"""

import asyncio
import heapq
import inspect
import time
from contextlib import aclosing
from typing import Any, Callable, List, Optional, Sequence, Tuple

from loguru import logger

from .cache import OutputCache
from .errors import IoError
from .matcher import Algo, Bonus
from .models import FilterContext, FilterResult, SourceItem, Snapshot
from .printer import decorate_results
from .ranker import score_chunk
from .source import Source

Emit = Callable[[Snapshot], Any]

_DONE = object()


class TopK:
    """Best ``capacity`` results seen so far; unbounded when capacity is None.

    Order is descending score, then earlier source position.
    """

    def __init__(self, capacity: Optional[int] = None):
        self.capacity = capacity
        self.total = 0
        self._heap: List[Tuple[int, int, FilterResult]] = []
        self._all: List[Tuple[int, FilterResult]] = []

    def __len__(self) -> int:
        return len(self._all) if self.capacity is None else len(self._heap)

    def push(self, position: int, result: FilterResult) -> bool:
        """Insert a match; returns True when the kept set changed."""
        self.total += 1
        if self.capacity is None:
            self._all.append((position, result))
            return True
        if self.capacity <= 0:
            return False

        entry = (result.score, -position, result)
        if len(self._heap) < self.capacity:
            heapq.heappush(self._heap, entry)
            return True
        if entry[:2] > self._heap[0][:2]:
            heapq.heapreplace(self._heap, entry)
            return True
        return False

    def sorted(self) -> List[FilterResult]:
        if self.capacity is None:
            ordered = sorted(self._all, key=lambda e: (-e[1].score, e[0]))
            return [result for _, result in ordered]
        ordered = sorted(self._heap, key=lambda e: (-e[0], -e[1]))
        return [result for _, _, result in ordered]


class DynamicRunner:
    """Incrementally narrows the result set while the source is running.

    Example:
        runner = DynamicRunner("fb", Source.from_command(spec), FilterContext(number=20))
        final = await runner.run(emit=print_snapshot)
    """

    def __init__(
        self,
        query: str,
        source: Source,
        context: Optional[FilterContext] = None,
        algo: Algo = Algo.FZY,
        bonuses: Sequence[Bonus] = (Bonus.NONE,),
        cache: Optional[OutputCache] = None,
        update_interval: float = 0.2,
        batch_size: int = 256,
    ):
        self.query = query
        self.source = source
        self.context = context or FilterContext()
        self.algo = algo
        self.bonuses = tuple(bonuses)
        self.cache = cache
        self.update_interval = update_interval
        self.batch_size = batch_size

        self.top = TopK(self.context.number)
        self.snapshots_emitted = 0
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Abandon the run; no snapshot is emitted after this call."""
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def run(self, emit: Optional[Emit] = None) -> Snapshot:
        """Consume the source, emitting snapshots; returns the final one.

        Raises ``asyncio.CancelledError`` if cancelled and propagates source
        failures.
        """
        if self._cancelled:
            raise asyncio.CancelledError()
        self._task = asyncio.current_task()
        start = time.perf_counter()
        logger.debug(f"Dynamic run for {self.query!r} over {self.source!r}")

        queue: asyncio.Queue = asyncio.Queue(maxsize=self.batch_size * 4)
        producer = asyncio.create_task(self._produce(queue))
        try:
            await self._consume(queue, emit)
            await producer
        except asyncio.CancelledError:
            self._cancelled = True
            logger.debug(f"Dynamic run for {self.query!r} cancelled")
            raise
        finally:
            if not producer.done():
                producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)
            await self.source.terminate()

        if self._cancelled:
            raise asyncio.CancelledError()

        self._write_through()
        final = self._snapshot()
        await self._emit(emit, final)
        logger.debug(
            f"Dynamic run matched {self.top.total} items "
            f"in {(time.perf_counter() - start) * 1000:.1f}ms"
        )
        return final

    async def _produce(self, queue: asyncio.Queue) -> None:
        try:
            async with aclosing(aiter(self.source)) as items:
                async for item in items:
                    await queue.put(item)
        except asyncio.CancelledError:
            raise
        except BaseException:
            await queue.put(_DONE)
            raise
        await queue.put(_DONE)

    async def _consume(self, queue: asyncio.Queue, emit: Optional[Emit]) -> None:
        loop = asyncio.get_running_loop()
        last_emit = loop.time()
        position = 0
        changed = False
        bounded = self.top.capacity is not None

        while True:
            batch = [await queue.get()]
            while len(batch) < self.batch_size and not queue.empty():
                batch.append(queue.get_nowait())
            done = batch[-1] is _DONE
            if done:
                batch.pop()

            if batch:
                scored = await asyncio.to_thread(self._score_batch, position, batch)
                if self._cancelled:
                    return
                for pos, value, idxs in scored:
                    result = FilterResult(batch[pos - position], value, tuple(idxs))
                    changed = self.top.push(pos, result) or changed
                position += len(batch)

            if done:
                return

            if bounded and changed and loop.time() - last_emit >= self.update_interval:
                await self._emit(emit, self._snapshot())
                last_emit = loop.time()
                changed = False

    def _score_batch(self, position: int, batch: List[SourceItem]):
        return score_chunk(
            self.query, self.algo, self.bonuses, self.context.match_type, position, batch
        )

    def _snapshot(self) -> Snapshot:
        return decorate_results(self.top.sorted(), self.top.total, self.context)

    async def _emit(self, emit: Optional[Emit], snapshot: Snapshot) -> None:
        if emit is None or self._cancelled:
            return
        result = emit(snapshot)
        if inspect.isawaitable(result):
            await result
        self.snapshots_emitted += 1

    def _write_through(self) -> None:
        source = self.source
        if self.cache is None or not source.cache_output or source.returncode != 0:
            return
        try:
            path, total = self.cache.store(source.signature, source.captured)
            logger.info(f"Cached {total} lines of {source!r} at {path}")
        except IoError as e:
            logger.warning(f"Caching skipped: {e}")
