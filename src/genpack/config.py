"""Configuration for genpack generation sessions.

Values come from, in increasing priority: field defaults, a ``.env`` file,
``GENPACK_*`` environment variables, and explicit keyword arguments (which is
how ``from_yaml`` applies a ``generation:`` section from a YAML file).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Union

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MARKER_TOKENS = [
    "tsx", "jsx", "ts", "js", "mjs", "cjs",
    "css", "scss", "sass", "less", "html", "htm",
    "json", "md", "yaml", "yml", "toml",
    "py", "rb", "go", "rs", "java", "kt", "swift",
    "c", "cpp", "h", "cs", "php", "sh", "sql", "vue", "svelte",
]


class GenerationSettings(BaseSettings):
    """Limits and tuning knobs for the continuation loop."""

    model_config = SettingsConfigDict(
        env_prefix="GENPACK_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Session bounds
    max_batches: int = Field(default=5, ge=1)
    max_retry_attempts: int = Field(default=3, ge=0)
    retry_backoff_ms: int = Field(default=1000, ge=0)
    inter_batch_delay_ms: int = Field(default=50, ge=0)

    # Request shape
    max_output_tokens: int = Field(default=32768, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    response_format: str = "json"
    targeted_preview_limit: int = Field(default=5, ge=0)
    status_update_every_chunks: int = Field(default=50, ge=1)

    # Validation
    min_content_length: int = Field(default=20, ge=0)
    marker_tokens: List[str] = Field(default_factory=lambda: list(DEFAULT_MARKER_TOKENS))

    # Truncation recovery track
    max_truncation_attempts: int = Field(default=3, ge=0)
    truncation_head_chars: int = Field(default=2000, ge=0)
    truncation_tail_chars: int = Field(default=500, ge=0)
    min_recoverable_chars: int = Field(default=1000, ge=0)

    # Anthropic provider
    anthropic_model: str = "claude-sonnet-4-5"
    anthropic_timeout_seconds: float = Field(default=600.0, gt=0)

    @field_validator("response_format")
    @classmethod
    def _normalize_response_format(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in ("json", "marker"):
            raise ValueError("response_format must be 'json' or 'marker'")
        return v

    @field_validator("marker_tokens")
    @classmethod
    def _normalize_marker_tokens(cls, v: List[str]) -> List[str]:
        return [t.strip().lstrip(".").lower() for t in v if t and t.strip()]

    @property
    def retry_backoff_seconds(self) -> float:
        return self.retry_backoff_ms / 1000.0

    @property
    def inter_batch_delay_seconds(self) -> float:
        return self.inter_batch_delay_ms / 1000.0

    @classmethod
    def from_yaml(cls, config_path: Union[str, Path]) -> "GenerationSettings":
        """Load settings from the ``generation:`` section of a YAML file.

        A missing or unparseable file falls back to defaults (plus env). Values
        that are present but out of range raise ``ConfigurationError``.
        """
        config_path = Path(config_path)
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning(f"[Config] {config_path} not found, using defaults")
            return cls()
        except yaml.YAMLError as e:
            logger.warning(f"[Config] Failed to parse {config_path}: {e}, using defaults")
            return cls()

        section = config.get("generation", {}) if isinstance(config, dict) else {}
        if not isinstance(section, dict):
            logger.warning(f"[Config] 'generation' in {config_path} is not a mapping, using defaults")
            return cls()

        try:
            settings = cls(**section)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid generation settings in {config_path}: {e}") from e

        logger.info(f"[Config] Loaded generation settings from {config_path}")
        return settings
