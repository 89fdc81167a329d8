"""
config/settings.py — taskgate Runtime Settings

Merges config.yaml (structure/defaults) with TASKGATE_* environment
variables. Pydantic-powered: all fields are validated and typed.

  - RunnerConfig rejects concurrency limits below 1 at parse time
  - RetryBackoffConfig rejects negative delays
  - LoggingConfig rejects unknown log levels
  - validate_all() performs cross-field validation and raises ConfigError
    with a numbered list of every problem found
  - load_settings() respects TASKGATE_CONFIG as a fallback when no explicit
    config_path argument is given
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from taskgate.exceptions import TaskGateError


class ConfigError(TaskGateError):
    """Raised by validate_all() when one or more config problems are found."""


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class RetryBackoffConfig(BaseModel):
    """Delay between a failed attempt and its re-enqueue. 0 = no delay."""
    base_delay: float = 0.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = False

    @field_validator("base_delay", "max_delay")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("runner.backoff delays must be >= 0")
        return v

    @field_validator("multiplier")
    @classmethod
    def _valid_multiplier(cls, v: float) -> float:
        if v < 1:
            raise ValueError("runner.backoff.multiplier must be >= 1")
        return v


class RunnerConfig(BaseModel):
    concurrency: int = 3
    queue_limits: dict[str, int] = Field(default_factory=dict)
    backoff: RetryBackoffConfig = Field(default_factory=RetryBackoffConfig)

    @field_validator("concurrency")
    @classmethod
    def _positive_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("runner.concurrency must be >= 1")
        return v

    @field_validator("queue_limits")
    @classmethod
    def _positive_queue_limits(cls, v: dict[str, int]) -> dict[str, int]:
        bad = sorted(k for k, limit in v.items() if limit < 1)
        if bad:
            raise ValueError(f"runner.queue_limits must be >= 1 (offending keys: {bad})")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: Optional[str] = None
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = True
    json_format: Optional[bool] = None

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    taskgate runtime settings.

    Priority (highest to lowest):
      1. Environment variables  (TASKGATE_RUNNER__CONCURRENCY=8)
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # init kwargs carry the YAML sections; env must be able to override them
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level

    @property
    def log_dir(self) -> Optional[Path]:
        return Path(self.logging.log_dir) if self.logging.log_dir else None

    def validate_all(self) -> None:
        """
        Cross-field validation. Raises ConfigError listing every problem found.

        Field validators catch type/value errors at parse time; this catches
        what they cannot see on their own.
        """
        errors: list[str] = []

        for key, limit in self.runner.queue_limits.items():
            if not key.strip():
                errors.append(
                    "runner.queue_limits contains an empty queue key. "
                    "Queue keys must be non-empty strings."
                )
            if limit > 10_000:
                errors.append(
                    f"runner.queue_limits['{key}'] = {limit} is not a meaningful "
                    f"limit. Use a value <= 10000."
                )

        backoff = self.runner.backoff
        if backoff.base_delay > backoff.max_delay:
            errors.append(
                f"runner.backoff.base_delay ({backoff.base_delay}) exceeds "
                f"runner.backoff.max_delay ({backoff.max_delay})."
            )

        if self.logging.max_file_size_mb < 1:
            errors.append("logging.max_file_size_mb must be >= 1.")
        if self.logging.backup_count < 0:
            errors.append("logging.backup_count must be >= 0.")

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\ntaskgate configuration invalid — {len(errors)} "
                f"problem(s) found:\n\n{numbered}\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = threading.Lock()

_KNOWN_SECTIONS = {"runner", "logging"}


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level of the config file must be a mapping")
    return data


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument
      2. TASKGATE_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("TASKGATE_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def _build_settings(config_path: str | Path | None) -> Settings:
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}
    return Settings(**init_kwargs)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging the YAML config with environment variables."""
    global _singleton
    instance = _build_settings(config_path)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading it from the default
    config path on first use.

    Thread-safe: guarded by _singleton_lock against double initialisation.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            _singleton = _build_settings(None)
        return _singleton


def reset_settings() -> None:
    """Forget the cached singleton (tests, config reloads)."""
    global _singleton
    with _singleton_lock:
        _singleton = None
