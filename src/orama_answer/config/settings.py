"""
config/settings.py — Runtime Settings

Merges config.yaml (defaults/structure) with environment variables and .env
(endpoint and credentials). Pydantic-powered — all fields are validated and typed.

  - TransportConfig / AnswerConfig / LoggingConfig reject bad values at parse time
  - validate_all() performs cross-field startup validation and raises
    ConfigurationError with a numbered list of every problem found
  - load_settings() respects ORAMA_ANSWER_CONFIG as a fallback when no
    explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from orama_answer.exceptions import ConfigurationError

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_PROVIDERS = {"openai", "fireworks", "together"}


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class TransportConfig(BaseModel):
    timeout_seconds: float = 30.0
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    user_agent: str = "orama-answer/1.0"

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("transport.timeout_seconds must be > 0")
        return v

    @field_validator("max_attempts")
    @classmethod
    def _positive_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("transport.max_attempts must be >= 1")
        return v

    @field_validator("base_delay", "max_delay")
    @classmethod
    def _positive_delay(cls, v: float, info: ValidationInfo) -> float:
        if v <= 0:
            raise ValueError(f"transport.{info.field_name} must be > 0")
        return v


class AnswerConfig(BaseModel):
    llm_provider: Optional[str] = None
    llm_model: Optional[str] = None
    max_prior_messages: int = 40

    @field_validator("llm_provider")
    @classmethod
    def _known_provider(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in _VALID_PROVIDERS:
            raise ValueError(
                f"answer.llm_provider '{v}' is not supported. "
                f"Supported: {sorted(_VALID_PROVIDERS)}"
            )
        return v

    @field_validator("max_prior_messages")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("answer.max_prior_messages must be >= 0")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

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
    Runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # -- Endpoint + credentials from env -------------------------------------
    url: Optional[str] = Field(default=None, alias="ORAMA_URL")
    collection_id: Optional[str] = Field(default=None, alias="ORAMA_COLLECTION_ID")
    read_api_key: Optional[str] = Field(default=None, alias="ORAMA_READ_API_KEY")
    write_api_key: Optional[str] = Field(default=None, alias="ORAMA_WRITE_API_KEY")

    # -- Structured config (from config.yaml) --------------------------------
    transport: TransportConfig = Field(default_factory=TransportConfig)
    answer: AnswerConfig = Field(default_factory=AnswerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("transport", mode="before")
    @classmethod
    def _coerce_transport(cls, v: Any) -> Any:
        return TransportConfig(**v) if isinstance(v, dict) else v

    @field_validator("answer", mode="before")
    @classmethod
    def _coerce_answer(cls, v: Any) -> Any:
        return AnswerConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def has_llm_selection(self) -> bool:
        return bool(self.answer.llm_provider and self.answer.llm_model)

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigurationError listing every problem found.

        Field validators catch type/value errors at parse time; this catches
        cross-field problems they can't see.
        """
        errors: list[str] = []

        if not self.url:
            errors.append("ORAMA_URL is not set.")
        elif not self.url.startswith(("http://", "https://")):
            errors.append(f"ORAMA_URL '{self.url}' must start with http:// or https://.")

        if not self.collection_id:
            errors.append("ORAMA_COLLECTION_ID is not set.")

        if not self.read_api_key:
            errors.append("ORAMA_READ_API_KEY is required to open answer sessions.")

        if bool(self.answer.llm_provider) != bool(self.answer.llm_model):
            errors.append(
                "answer.llm_provider and answer.llm_model must be set together "
                "(or both left empty to use the server default)."
            )

        if self.transport.max_delay < self.transport.base_delay:
            errors.append("transport.max_delay must be >= transport.base_delay.")

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigurationError(
                f"\n\norama-answer startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = threading.Lock()

_KNOWN_SECTIONS = {"transport", "answer", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (--config CLI flag)
      2. ORAMA_ANSWER_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("ORAMA_ANSWER_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """Return the global Settings singleton, loading the default path on first use."""
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is not None:
            return _singleton
    return load_settings()
