"""Configuration management for ctxpack."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from ctxpack.exceptions import ConfigError

CTXPACK_DIR = ".ctxpack"
CONFIG_FILE = "config.json"
STATE_DB_FILE = "state.db"

FEATURES = (
    "keyword_match",
    "name_match",
    "dependency_proximity",
    "type_match",
    "recency",
)

DEFAULT_WEIGHTS: dict[str, float] = {
    "keyword_match": 0.4,
    "name_match": 0.2,
    "dependency_proximity": 0.2,
    "type_match": 0.1,
    "recency": 0.1,
}


class IndexerConfig(BaseModel):
    """Indexer configuration."""

    exclude_patterns: list[str] = Field(
        default_factory=lambda: [
            "node_modules",
            "__pycache__",
            ".git",
            ".ctxpack",
            "dist",
            "build",
            ".venv",
            "venv",
            ".env",
            "*.pyc",
            "*.pyo",
            "*.so",
            "*.dylib",
            "*.dll",
            "*.exe",
            "*.min.js",
            "*.min.css",
            "*.map",
            "*.lock",
            "package-lock.json",
            "yarn.lock",
        ]
    )
    max_file_size_kb: int = 500
    workers: int = 8
    timeout_s: float = 30.0
    recent_days: int = 7
    respect_gitignore: bool = True

    @field_validator("workers")
    @classmethod
    def _positive_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError("workers must be >= 1")
        return v


class ScoringConfig(BaseModel):
    """Relevance scorer configuration."""

    workers: int = 4
    max_hops: int = 3
    hop_decay: list[float] = Field(default_factory=lambda: [0.8, 0.4, 0.2])
    affinity_boost: float = 0.1
    recency_half_life_days: float = 7.0


class PackingConfig(BaseModel):
    """Budget packer configuration."""

    budget: int = 8000
    min_relevance: float = 0.15

    @field_validator("budget")
    @classmethod
    def _non_negative_budget(cls, v: int) -> int:
        if v < 0:
            raise ValueError("budget must be >= 0")
        return v


class SessionConfig(BaseModel):
    """Context switcher configuration."""

    carry_over_threshold: float = 0.3
    max_next_steps: int = 5


class LearningConfig(BaseModel):
    """Feedback learner configuration."""

    learning_rate: float = 0.05
    smoothing: float = 0.5
    affinity_threshold: int = 3
    abandoned_factor: float = 0.5
    initial_weights: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_WEIGHTS)
    )

    @field_validator("learning_rate", "smoothing", "abandoned_factor")
    @classmethod
    def _unit_interval(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("value must lie in [0, 1]")
        return v


class ProjectConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    root_path: str = "."
    indexer: IndexerConfig = Field(default_factory=IndexerConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    packing: PackingConfig = Field(default_factory=PackingConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .ctxpack directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / CTXPACK_DIR).is_dir():
            return current
        current = current.parent
    if (current / CTXPACK_DIR).is_dir():
        return current
    return None


def get_ctxpack_dir(root: Path) -> Path:
    """Get the .ctxpack directory for a project root."""
    return root / CTXPACK_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .ctxpack/config.json."""
    config_path = get_ctxpack_dir(root) / CONFIG_FILE
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
            return ProjectConfig(**data)
        except (json.JSONDecodeError, ValidationError) as e:
            raise ConfigError(f"Invalid config at {config_path}: {e}") from e
    return ProjectConfig(name=root.name, root_path=str(root))


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .ctxpack/config.json."""
    cp_dir = get_ctxpack_dir(root)
    cp_dir.mkdir(parents=True, exist_ok=True)
    config_path = cp_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(), indent=2))


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'packing.budget')."""
    parts = key.split(".")
    data = config.model_dump()
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    try:
        return ProjectConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid value for {key}: {e}") from e
