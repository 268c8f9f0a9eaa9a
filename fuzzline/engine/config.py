"""Configuration management for fuzzline."""

import os
from pathlib import Path
from typing import Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError
from .matcher import Algo


def default_cache_dir() -> Path:
    base = os.environ.get("XDG_CACHE_HOME")
    root = Path(base) if base else Path.home() / ".cache"
    return root / "fuzzline"


class CacheConfig(BaseModel):
    directory: Path = Field(default_factory=default_cache_dir)
    enabled: bool = True

    @field_validator("directory")
    @classmethod
    def expand_directory(cls, v: Path) -> Path:
        return Path(v).expanduser()


class MatcherConfig(BaseModel):
    algo: Algo = Algo.FZY


class RunnerConfig(BaseModel):
    update_interval_ms: int = 200
    batch_size: int = 256
    max_workers: int = Field(default_factory=lambda: os.cpu_count() or 1)
    parallel_threshold: int = 20000

    @field_validator("update_interval_ms", "batch_size", "max_workers")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v


class ExecConfig(BaseModel):
    output_threshold: int = 100000


class GrepConfig(BaseModel):
    output_threshold: int = 30000


class LoggingConfig(BaseModel):
    level: str = "WARNING"
    file: Optional[Path] = None


class Config(BaseModel):
    """Main configuration for fuzzline."""

    cache: CacheConfig = Field(default_factory=CacheConfig)
    matcher: MatcherConfig = Field(default_factory=MatcherConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    exec: ExecConfig = Field(default_factory=ExecConfig)
    grep: GrepConfig = Field(default_factory=GrepConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from a YAML file.

        Without an explicit path the default locations are searched; if none
        exists the built-in defaults are used.
        """
        if config_path is None:
            candidates = [
                Path("fuzzline.yaml"),
                Path.home() / ".config" / "fuzzline" / "config.yaml",
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                return cls()

        logger.debug(f"Loading config from: {config_path}")
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config {config_path} must be a mapping")

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid config {config_path}: {e}") from e

    def save(self, config_path: Path) -> None:
        """Save configuration to a YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)
