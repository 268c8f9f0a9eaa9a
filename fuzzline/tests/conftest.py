"""Shared fixtures."""

from pathlib import Path

import pytest
import yaml

from fuzzline.engine.cache import OutputCache


@pytest.fixture
def cache(tmp_path) -> OutputCache:
    """An empty cache rooted in a temporary directory."""
    return OutputCache(tmp_path / "cache")


@pytest.fixture
def candidates_file(tmp_path) -> Path:
    path = tmp_path / "candidates.txt"
    path.write_text("foobar\nfizzbuzz\nbar\n", encoding="utf-8")
    return path


@pytest.fixture
def config_file(tmp_path) -> Path:
    """Config that keeps the cache inside the test's temporary directory."""
    path = tmp_path / "fuzzline.yaml"
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(
            {
                "cache": {"directory": str(tmp_path / "cache")},
                "runner": {"update_interval_ms": 1, "max_workers": 1},
                "logging": {"level": "ERROR"},
            },
            f,
        )
    return path
