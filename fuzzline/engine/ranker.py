"""Batch ranking: score every item of a finite source and sort best first."""

import time
from concurrent.futures import ProcessPoolExecutor
from typing import List, Sequence, Tuple

from loguru import logger

from .matcher import Algo, Bonus, Matcher, MatchType
from .models import FilterResult, SourceItem
from .source import Source

# (source position, score, indices)
Scored = Tuple[int, int, List[int]]

CHUNKS_PER_WORKER = 4


def score_chunk(
    query: str,
    algo: Algo,
    bonuses: Sequence[Bonus],
    match_type: MatchType,
    start: int,
    items: Sequence[SourceItem],
) -> List[Scored]:
    """Score a contiguous run of items; positions are offset by ``start``."""
    matcher = Matcher(query, algo, bonuses, match_type)
    scored = []
    for offset, item in enumerate(items):
        matched = matcher.match_item(item)
        if matched is not None:
            scored.append((start + offset, matched[0], matched[1]))
    return scored


def _score_parallel(
    query: str,
    algo: Algo,
    bonuses: Sequence[Bonus],
    match_type: MatchType,
    items: List[SourceItem],
    workers: int,
) -> List[Scored]:
    chunk_size = max(1, -(-len(items) // (workers * CHUNKS_PER_WORKER)))
    scored: List[Scored] = []
    with ProcessPoolExecutor(max_workers=workers) as executor:
        futures = [
            executor.submit(
                score_chunk, query, algo, tuple(bonuses), match_type,
                start, items[start:start + chunk_size],
            )
            for start in range(0, len(items), chunk_size)
        ]
        for future in futures:
            scored.extend(future.result())
    return scored


def sort_scored(scored: List[Scored]) -> None:
    """Descending score; ties keep source order."""
    scored.sort(key=lambda entry: (-entry[1], entry[0]))


def sync_run(
    query: str,
    source: Source,
    algo: Algo = Algo.FZY,
    bonuses: Sequence[Bonus] = (),
    match_type: MatchType = MatchType.FULL,
    workers: int = 1,
    parallel_threshold: int = 20000,
) -> List[FilterResult]:
    """Rank every item of ``source`` against ``query``.

    Only source failures propagate; items that do not match are dropped.
    Scoring runs in a process pool when the input is large enough, but the
    final order never depends on worker completion order.
    """
    start = time.perf_counter()
    items = list(source)

    if workers > 1 and len(items) >= parallel_threshold:
        scored = _score_parallel(query, algo, bonuses, match_type, items, workers)
    else:
        scored = score_chunk(query, algo, bonuses, match_type, 0, items)

    sort_scored(scored)
    ranked = [FilterResult(items[pos], value, tuple(idxs)) for pos, value, idxs in scored]

    logger.debug(
        f"Ranked {len(ranked)}/{len(items)} items for {query!r} with {algo.value} "
        f"in {(time.perf_counter() - start) * 1000:.1f}ms"
    )
    return ranked
