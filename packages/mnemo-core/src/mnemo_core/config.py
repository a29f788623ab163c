from __future__ import annotations

import math
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from mnemo_core.errors import ConfigError
from mnemo_core.logging import get_logger

logger = get_logger("config")


def _load_toml(path: Path) -> dict:
    """Load a TOML file, returning empty dict if missing."""
    if not path.exists():
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into base (1 level deep for TOML sections)."""
    merged = dict(base)
    for key, val in override.items():
        if (
            key in merged
            and isinstance(merged[key], dict)
            and isinstance(val, dict)
        ):
            merged[key] = {**merged[key], **val}
        else:
            merged[key] = val
    return merged


@dataclass(frozen=True, slots=True)
class ScoringConfig:
    text_weight: float = 0.5
    recency_weight: float = 0.3
    intrinsic_weight: float = 0.2
    half_life_days: float = 14.0

    def __post_init__(self) -> None:
        weights = (self.text_weight, self.recency_weight, self.intrinsic_weight)
        if any(w < 0 for w in weights):
            raise ConfigError("scoring weights must be non-negative")
        if not math.isclose(sum(weights), 1.0, abs_tol=1e-6):
            raise ConfigError(
                f"scoring weights must sum to 1.0, got {sum(weights):.4f}"
            )
        if self.half_life_days <= 0:
            raise ConfigError("half_life_days must be positive")


@dataclass(frozen=True, slots=True)
class PatternConfig:
    min_frequency: int = 2
    max_examples: int = 3
    max_corrections: int = 3

    def __post_init__(self) -> None:
        if self.min_frequency < 1:
            raise ConfigError("min_frequency must be >= 1")
        if self.max_examples < 0 or self.max_corrections < 0:
            raise ConfigError("max_examples and max_corrections must be >= 0")


@dataclass(frozen=True, slots=True)
class RetentionConfig:
    max_age_days: int = 90
    min_relevance: float = 0.1
    max_entries: int = 1000
    delete_chunk_size: int = 100

    def __post_init__(self) -> None:
        if self.delete_chunk_size < 1:
            raise ConfigError("delete_chunk_size must be >= 1")


@dataclass(frozen=True, slots=True)
class RecallConfig:
    limit: int = 50
    min_relevance: float = 0.1
    correction_penalty: float = 0.2
    summary_max_chars: int = 200
    max_tags: int = 5


@dataclass(frozen=True, slots=True)
class BackendConfig:
    tier: str = "sqlite"
    sqlite_path: str = ".mnemo/mnemo.db"
    sqlite_wal: bool = True
    redis_url: str = "redis://localhost:6379"
    redis_prefix: str = "mnemo:"


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    level: str = "WARNING"
    json_output: bool = False


@dataclass(frozen=True, slots=True)
class MnemoConfig:
    """Top-level configuration, parsed from mnemo.toml."""
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    patterns: PatternConfig = field(default_factory=PatternConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    recall: RecallConfig = field(default_factory=RecallConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_toml(
        cls, path: Path | str = "mnemo.toml"
    ) -> MnemoConfig:
        path = Path(path)
        raw = _load_toml(path)
        return cls._from_raw(raw)

    @classmethod
    def load(
        cls, project_dir: Path | str | None = None
    ) -> MnemoConfig:
        """Load config with global → project layering.

        Resolution order (later wins):
        1. Built-in defaults
        2. ~/.mnemo/config.toml (global)
        3. .mnemo/config.toml or mnemo.toml (project)
        """
        global_path = Path.home() / ".mnemo" / "config.toml"

        project_dir = (
            Path.cwd() if project_dir is None else Path(project_dir)
        )

        # Project config: .mnemo/config.toml takes priority
        project_path = project_dir / ".mnemo" / "config.toml"
        if not project_path.exists():
            project_path = project_dir / "mnemo.toml"

        global_raw = _load_toml(global_path)
        project_raw = _load_toml(project_path)
        merged = _deep_merge(global_raw, project_raw)

        return cls._from_raw(merged)

    @classmethod
    def _from_raw(cls, raw: dict) -> MnemoConfig:
        """Build MnemoConfig from a raw TOML dict."""

        def _pick(section: str, dc: type) -> dict:
            values = raw.get(section, {})
            if not isinstance(values, dict):
                raise ConfigError(f"[{section}] must be a table")
            fields = dc.__dataclass_fields__
            unknown = sorted(set(values) - set(fields))
            if unknown:
                logger.warning(
                    "Ignoring unknown keys in [%s]: %s", section, ", ".join(unknown)
                )
            return {
                k: v for k, v in values.items() if k in fields
            }

        try:
            return cls(
                scoring=ScoringConfig(**_pick("scoring", ScoringConfig)),
                patterns=PatternConfig(**_pick("patterns", PatternConfig)),
                retention=RetentionConfig(**_pick("retention", RetentionConfig)),
                recall=RecallConfig(**_pick("recall", RecallConfig)),
                backend=BackendConfig(**_pick("backend", BackendConfig)),
                logging=LoggingConfig(**_pick("logging", LoggingConfig)),
            )
        except TypeError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc
