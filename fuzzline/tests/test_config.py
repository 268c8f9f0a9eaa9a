"""Tests for configuration loading."""

from pathlib import Path

import pytest

from fuzzline.engine.config import Config
from fuzzline.engine.errors import ConfigError
from fuzzline.engine.matcher import Algo


def test_defaults():
    config = Config()

    assert config.matcher.algo is Algo.FZY
    assert config.runner.update_interval_ms == 200
    assert config.exec.output_threshold == 100000
    assert config.grep.output_threshold == 30000
    assert config.cache.enabled


def test_load_from_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "matcher:\n  algo: skim\ncache:\n  directory: ~/fuzzcache\nrunner:\n  batch_size: 64\n",
        encoding="utf-8",
    )

    config = Config.load(path)

    assert config.matcher.algo is Algo.SKIM
    assert config.runner.batch_size == 64
    assert config.cache.directory == Path.home() / "fuzzcache"


def test_load_without_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    assert Config.load() == Config()


def test_save_and_load(tmp_path):
    config = Config()
    config.grep.output_threshold = 10
    path = tmp_path / "nested" / "config.yaml"

    config.save(path)

    assert Config.load(path).grep.output_threshold == 10


@pytest.mark.parametrize("content", [
    "runner:\n  batch_size: 0\n",
    "matcher:\n  algo: nope\n",
    "- just\n- a list\n",
    "cache: [unclosed\n",
])
def test_invalid_config_raises(tmp_path, content):
    path = tmp_path / "config.yaml"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError):
        Config.load(path)


def test_missing_explicit_file_raises(tmp_path):
    with pytest.raises(ConfigError):
        Config.load(tmp_path / "missing.yaml")
