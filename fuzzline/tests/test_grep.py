"""Tests for grep flows."""

import base64
import json
import shutil

import pytest

from fuzzline.engine.errors import ParseError
from fuzzline.engine.grep import (
    RG_ARGS,
    dyn_grep,
    forerunner,
    is_git_repo,
    parse_json_line,
    rg_spec,
    sync_grep,
)
from fuzzline.engine.icon import EXTENSION_ICONS, ICON_WIDTH
from fuzzline.engine.models import FilterContext

requires_rg = pytest.mark.skipif(shutil.which("rg") is None, reason="ripgrep not installed")


def match_record(path="src/a.py", text="héllo world\n", lnum=3, spans=((7, 12),)):
    return json.dumps({
        "type": "match",
        "data": {
            "path": {"text": path},
            "lines": {"text": text},
            "line_number": lnum,
            "absolute_offset": 0,
            "submatches": [
                {"match": {"text": "x"}, "start": start, "end": end} for start, end in spans
            ],
        },
    })


def test_build_grep_line_converts_byte_offsets():
    """Test that submatch byte offsets become character indices."""
    line, indices = parse_json_line(match_record()).build_grep_line()

    assert line == "src/a.py:3:8:héllo world"
    assert "".join(line[i] for i in indices) == "world"


def test_build_grep_line_with_icon():
    plain, plain_indices = parse_json_line(match_record()).build_grep_line()
    line, indices = parse_json_line(match_record()).build_grep_line(enable_icon=True)

    assert line == f"{EXTENSION_ICONS['py']} {plain}"
    assert indices == [i + ICON_WIDTH for i in plain_indices]


def test_build_grep_line_decodes_base64_fields():
    record = json.loads(match_record(spans=((0, 6),)))
    record["data"]["path"] = {"bytes": base64.b64encode(b"bin/x.sh").decode()}
    line, indices = parse_json_line(json.dumps(record)).build_grep_line()

    assert line.startswith("bin/x.sh:3:1:")
    assert "".join(line[i] for i in indices) == "héllo"


@pytest.mark.parametrize("raw", [
    '{"type": "begin", "data": {"path": {"text": "a"}}}',
    '{"type": "summary", "data": {}}',
    "not json",
    '{"type": "match"}',
])
def test_non_match_records_raise_parse_error(raw):
    with pytest.raises(ParseError):
        parse_json_line(raw)


def test_is_git_repo(tmp_path):
    project = tmp_path / "project"
    (project / ".git").mkdir(parents=True)
    (project / "src").mkdir()

    assert is_git_repo(project)
    assert is_git_repo(project / "src")


@pytest.mark.asyncio
async def test_dyn_grep_matches_content_only(tmp_path):
    """Test that dynamic grep ignores the path prefix."""
    grep_output = tmp_path / "grep.out"
    grep_output.write_text(
        "hello/x.py:2:1:world\nfoo/bar.py:1:1:hello there\n", encoding="utf-8"
    )

    final = await dyn_grep("hello", FilterContext(number=10), input=grep_output)

    assert final.total == 1
    assert final.lines == ["foo/bar.py:1:1:hello there"]
    assert final.indices == [list(range(15, 20))]


@pytest.mark.asyncio
async def test_dyn_grep_uses_cached_rg_output(tmp_path, cache):
    cache.store(rg_spec(tmp_path).signature, ["a.py:1:1:needle", "b.py:1:1:hay"])

    final = await dyn_grep("ndl", FilterContext(number=5), cmd_dir=tmp_path, cache=cache)

    assert final.lines == ["a.py:1:1:needle"]


def test_forerunner_skips_non_git_directory(tmp_path, cache):
    assert forerunner(cmd_dir=tmp_path, cache=cache) is None


def test_forerunner_answers_from_cache(tmp_path, cache):
    path, _ = cache.store(rg_spec(tmp_path).signature, ["a:1:1:x", "b:1:1:y", "c:1:1:z"])

    info = forerunner(cmd_dir=tmp_path, number=2, cache=cache)

    assert info.total == 3
    assert info.lines == ["a:1:1:x", "b:1:1:y"]
    assert info.tempfile == path


def test_forerunner_ignores_cache_when_disabled(tmp_path, cache):
    cache.store(rg_spec(tmp_path).signature, ["a:1:1:x"])
    assert forerunner(cmd_dir=tmp_path, cache=cache, no_cache=True) is None


@requires_rg
def test_sync_grep(tmp_path):
    (tmp_path / "a.py").write_text("import os\nneedle = 1\n", encoding="utf-8")
    (tmp_path / "b.txt").write_text("no match here\n", encoding="utf-8")

    snapshot = sync_grep("rg --column", "needle", cmd_dir=tmp_path)

    assert snapshot.total == 1
    assert snapshot.lines == ["a.py:2:1:needle = 1"]
    line = snapshot.lines[0]
    assert "".join(line[i] for i in snapshot.indices[0]) == "needle"


@requires_rg
def test_sync_grep_glob_and_truncation(tmp_path):
    (tmp_path / "a.py").write_text("x" * 100 + " needle\n", encoding="utf-8")
    (tmp_path / "b.rs").write_text("needle\n", encoding="utf-8")

    snapshot = sync_grep("rg", "needle", glob="*.py", cmd_dir=tmp_path, winwidth=40)

    assert snapshot.total == 1
    assert len(snapshot.lines[0]) <= 40
    assert snapshot.truncated_map[1].startswith("a.py:1:102:")


@requires_rg
def test_forerunner_runs_rg_in_git_project(tmp_path, cache):
    (tmp_path / ".git").mkdir()
    (tmp_path / "main.py").write_text("one\ntwo\nthree\n", encoding="utf-8")

    info = forerunner(cmd_dir=tmp_path, number=1, output_threshold=2, cache=cache)

    assert info.total == 3
    assert len(info.lines) == 1
    assert info.tempfile is not None
    assert cache.lookup(rg_spec(tmp_path).signature) == (info.tempfile, 3)


@requires_rg
@pytest.mark.asyncio
async def test_dyn_grep_runs_rg_and_caches(tmp_path, cache):
    (tmp_path / "main.py").write_text("def needle():\n    pass\n", encoding="utf-8")

    final = await dyn_grep("needle", FilterContext(number=5), cmd_dir=tmp_path, cache=cache)

    assert final.lines == ["main.py:1:1:def needle():"]
    assert cache.lookup(rg_spec(tmp_path).signature)[1] == 2


def test_rg_args_search_everything():
    assert RG_ARGS[0] == "rg"
    assert RG_ARGS[-1] == ""
