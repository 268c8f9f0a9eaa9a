"""Tests for the dynamic runner."""

import asyncio
import os

import psutil
import pytest

from fuzzline.engine.cache import OutputCache
from fuzzline.engine.dynamic import DynamicRunner, TopK
from fuzzline.engine.errors import CommandError
from fuzzline.engine.matcher import Matcher
from fuzzline.engine.models import FilterContext, FilterResult, SourceItem
from fuzzline.engine.process import CommandSpec
from fuzzline.engine.ranker import sync_run
from fuzzline.engine.source import Source


def result(text: str, value: int) -> FilterResult:
    return FilterResult(SourceItem(text), value, ())


def gone(proc: psutil.Process) -> bool:
    try:
        return proc.status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True


def test_topk_keeps_best_and_breaks_ties_by_position():
    top = TopK(2)
    assert top.push(0, result("a", 5))
    assert top.push(1, result("b", 9))
    assert top.push(2, result("c", 7))
    # Equal score, later position: not better than the kept 7.
    assert not top.push(3, result("d", 7))
    assert not top.push(4, result("e", 1))

    assert [r.text for r in top.sorted()] == ["b", "c"]
    assert top.total == 5


def test_topk_unbounded_keeps_everything():
    top = TopK()
    for pos, value in enumerate([3, 9, 3]):
        top.push(pos, result(str(pos), value))
    assert [r.text for r in top.sorted()] == ["1", "0", "2"]
    assert len(top) == 3


@pytest.mark.asyncio
async def test_final_snapshot_matches_batch_ranking():
    """Test that the final snapshot equals the top of a batch run."""
    lines = [f"file_{i}.py" for i in range(300)] + ["fb.py", "foo/bar.py"]
    expected = sync_run("fb", Source.from_list(lines))

    runner = DynamicRunner(
        "fb", Source.from_list(lines), FilterContext(number=5), update_interval=0, batch_size=16
    )
    final = await runner.run()

    assert final.total == len(expected)
    assert final.lines == [r.text for r in expected[:5]]
    assert final.indices == [list(r.indices) for r in expected[:5]]


@pytest.mark.asyncio
async def test_snapshots_only_improve():
    """Test that every emitted top-K dominates the previous one."""
    lines = [f"{'x' * (i % 13)}f{'y' * (i % 7)}b{i}" for i in range(400)]
    matcher = Matcher("fb")
    snapshots = []

    runner = DynamicRunner(
        "fb", Source.from_list(lines), FilterContext(number=4), update_interval=0, batch_size=8
    )
    final = await runner.run(snapshots.append)

    assert len(snapshots) > 2
    assert snapshots[-1] is final
    previous = None
    for snapshot in snapshots:
        scores = [matcher.match_text(line)[0] for line in snapshot.lines]
        assert scores == sorted(scores, reverse=True)
        if previous is not None:
            prev_scores, prev_total = previous
            assert snapshot.total >= prev_total
            for i, value in enumerate(prev_scores):
                assert scores[i] >= value
        previous = (scores, snapshot.total)


@pytest.mark.asyncio
async def test_async_emit_is_awaited():
    seen = []

    async def emit(snapshot):
        await asyncio.sleep(0)
        seen.append(snapshot.total)

    runner = DynamicRunner("a", Source.from_list(["a", "b", "ab"]), FilterContext(number=1))
    await runner.run(emit)

    assert seen[-1] == 2
    assert runner.snapshots_emitted == len(seen)


@pytest.mark.asyncio
async def test_command_failure_propagates():
    spec = CommandSpec.from_shell("echo 'no such option' >&2; exit 2")
    runner = DynamicRunner("x", Source.from_command(spec), FilterContext(number=5))

    with pytest.raises(CommandError) as exc_info:
        await runner.run()
    assert "no such option" in exc_info.value.stderr


@pytest.mark.asyncio
async def test_cancel_terminates_command_and_stops_emitting():
    """Test that cancellation kills the whole process group."""
    spec = CommandSpec.from_shell(
        "sleep 30 & while true; do echo foobar; sleep 0.01; done"
    )
    source = Source.from_command(spec)
    runner = DynamicRunner("fb", source, FilterContext(number=3), update_interval=0, batch_size=1)
    processes = []

    def emit(snapshot):
        parent = psutil.Process(source.pid)
        processes.append(parent)
        processes.extend(parent.children(recursive=True))
        runner.cancel()

    task = asyncio.create_task(runner.run(emit))
    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=10)

    assert runner.cancelled
    assert runner.snapshots_emitted == 1
    assert processes
    # Reaping of orphaned grandchildren depends on the init process.
    for _ in range(50):
        if all(gone(proc) for proc in processes):
            break
        await asyncio.sleep(0.05)
    assert all(gone(proc) for proc in processes)


@pytest.mark.asyncio
async def test_cancel_before_run():
    runner = DynamicRunner("a", Source.from_list(["a"]))
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner.run()


@pytest.mark.asyncio
async def test_command_output_is_written_through(cache, tmp_path):
    """Test that a completed command's output lands in the cache."""
    spec = CommandSpec.from_shell("printf 'alpha\\nbeta\\ngamma\\n'", tmp_path)
    runner = DynamicRunner(
        "a", Source.from_command(spec, cache_output=True), FilterContext(number=2), cache=cache
    )
    await runner.run()

    cached = cache.lookup(spec.signature)
    assert cached is not None
    path, total = cached
    assert total == 3
    assert path.read_text(encoding="utf-8") == "alpha\nbeta\ngamma\n"


@pytest.mark.asyncio
async def test_unbounded_run_emits_only_the_final_snapshot():
    """Test that a run without a result cap equals batch ranking."""
    lines = [f"{'x' * (i % 5)}f{'y' * (i % 3)}b{i}" for i in range(200)] + ["nothing"]
    expected = sync_run("fb", Source.from_list(lines))
    snapshots = []

    runner = DynamicRunner(
        "fb", Source.from_list(lines), FilterContext(), update_interval=0, batch_size=8
    )
    final = await runner.run(snapshots.append)

    assert snapshots == [final]
    assert runner.snapshots_emitted == 1
    assert final.total == len(expected) == 200
    assert final.lines == [r.text for r in expected]
    assert final.indices == [list(r.indices) for r in expected]


@pytest.mark.asyncio
async def test_unwritable_cache_still_returns_results(tmp_path):
    """Test that a failed write-through is skipped and the run completes."""
    blocker = tmp_path / "file"
    blocker.write_text("", encoding="utf-8")
    cache = OutputCache(blocker / "cache")
    spec = CommandSpec.from_shell("printf 'foobar\\nbar\\n'", tmp_path)

    runner = DynamicRunner(
        "fb", Source.from_command(spec, cache_output=True), FilterContext(number=2), cache=cache
    )
    final = await runner.run()

    assert final.total == 1
    assert final.lines == ["foobar"]
    assert cache.lookup(spec.signature) is None


@pytest.mark.asyncio
async def test_line_longer_than_the_pipe_buffer():
    spec = CommandSpec.from_shell("head -c 2200000 /dev/zero | tr '\\0' a; echo; echo foobar")
    runner = DynamicRunner("fb", Source.from_command(spec), FilterContext(number=5))

    final = await runner.run()

    assert final.lines == ["foobar"]
    assert final.total == 1


@pytest.mark.asyncio
async def test_stream_source_emits_before_eof():
    """Test that a stream is filtered while its writer is still open."""
    read_fd, write_fd = os.pipe()
    snapshots = []
    first = asyncio.Event()

    def emit(snapshot):
        snapshots.append(snapshot)
        first.set()

    with os.fdopen(read_fd, "rb") as stream:
        runner = DynamicRunner(
            "fb", Source.from_stream(stream), FilterContext(number=3), update_interval=0, batch_size=4
        )
        task = asyncio.create_task(runner.run(emit))
        try:
            os.write(write_fd, b"foobar\nfb.py\n")
            await asyncio.wait_for(first.wait(), timeout=5)
            assert not task.done()
            assert snapshots[0].total == 2

            os.write(write_fd, b"fooba\nzzz\n")
        finally:
            os.close(write_fd)
        final = await asyncio.wait_for(task, timeout=5)

    assert final.total == 3
    assert set(final.lines) == {"foobar", "fb.py", "fooba"}
    assert snapshots[-1] is final
