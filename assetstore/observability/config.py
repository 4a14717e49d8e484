"""Configuration for logging and tracing."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""

    level: str = Field(default="INFO", description="Log level")
    format: Literal["json", "console"] = Field(
        default="json", description="Log format (json or console)"
    )
    enable_tracing: bool = Field(default=True, description="Log operation start/finish events")
    output: Literal["stdout", "stderr", "file"] = Field(
        default="stderr", description="Log output (stdout, stderr or file)"
    )
    file_path: str | None = Field(default=None, description="Log file path")


class ObservabilityConfig(BaseModel):
    """Main observability configuration."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, config_path: Path | str) -> ObservabilityConfig:
        """Load configuration from the ``observability`` section of a YAML file."""
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

        observability_data = config_data.get("observability", {})
        return cls(**observability_data)

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        config = cls()

        config.logging.level = os.getenv("ASSETSTORE_LOG_LEVEL", config.logging.level)
        log_format = os.getenv("ASSETSTORE_LOG_FORMAT")
        if log_format in ("json", "console"):
            config.logging.format = log_format
        config.logging.enable_tracing = (
            os.getenv("ASSETSTORE_LOG_TRACING", "true").lower() == "true"
        )
        if log_file := os.getenv("ASSETSTORE_LOG_FILE"):
            config.logging.output = "file"
            config.logging.file_path = log_file

        return config

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump()


# Global configuration instance
_config: ObservabilityConfig | None = None


def get_config() -> ObservabilityConfig:
    """Get the global observability configuration."""
    global _config
    if _config is None:
        _config = ObservabilityConfig.from_env()
    return _config


def set_config(config: ObservabilityConfig | None) -> None:
    """Set (or with None, reset) the global observability configuration."""
    global _config
    _config = config


def load_config(config_path: Path | str | None = None) -> ObservabilityConfig:
    """Load and set the global configuration."""
    if config_path:
        config = ObservabilityConfig.from_file(config_path)
    else:
        config = ObservabilityConfig.from_env()
    set_config(config)
    return config
