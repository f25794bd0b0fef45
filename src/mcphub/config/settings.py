"""Process-level settings for mcphub.

Settings come from defaults, an optional TOML or YAML file, and ``MCPHUB_*``
environment variables, in that order of precedence (environment wins).
"""

from __future__ import annotations

import logging
import os
import re
import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from mcphub.constants import MCP_CAPABILITY_FETCH_TIMEOUT, MCP_CONNECT_TIMEOUT, MCP_STDERR_ERROR_PATTERN
from mcphub.exceptions import MCPConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "MCPHUB_"

# Environment variable suffix -> settings field
_ENV_FIELDS = {
    "CONFIG_DIR": "config_dir",
    "FETCH_TIMEOUT": "fetch_timeout",
    "CONNECT_TIMEOUT": "connect_timeout",
    "MAX_ACTIVE_USERS": "max_active_users",
    "STDERR_ERROR_PATTERN": "stderr_error_pattern",
    "HOST": "host",
    "PORT": "port",
}


class HubSettings(BaseModel):
    """Settings shared by every connection manager in the process."""

    config_dir: Path = Field(default_factory=lambda: Path("~/.mcphub/users").expanduser())
    fetch_timeout: float = Field(default=MCP_CAPABILITY_FETCH_TIMEOUT, gt=0)
    connect_timeout: float = Field(default=MCP_CONNECT_TIMEOUT, gt=0)
    max_active_users: int = Field(default=8, ge=1)
    stderr_error_pattern: str = MCP_STDERR_ERROR_PATTERN
    host: str = "127.0.0.1"
    port: int = Field(default=8765, ge=1, le=65535)

    @field_validator("config_dir")
    @classmethod
    def expand_config_dir(cls, v: Path) -> Path:
        return v.expanduser()

    @field_validator("stderr_error_pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as exc:
            raise ValueError(f"Invalid stderr error pattern {v!r}: {exc}") from exc
        return v

    @classmethod
    def load(cls, path: str | Path | None = None, environ: dict[str, str] | None = None) -> HubSettings:
        """Load settings from an optional file overlaid with environment variables.

        Args:
            path: Optional ``.toml``, ``.yaml`` or ``.yml`` settings file
            environ: Environment mapping, defaults to ``os.environ``

        Returns:
            Validated settings

        Raises:
            MCPConfigurationError: If the file cannot be read or a value is invalid
        """
        data: dict[str, Any] = {}
        if path is not None:
            data.update(_read_settings_file(Path(path)))
        data.update(_read_env(os.environ if environ is None else environ))
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise MCPConfigurationError(f"Invalid mcphub settings: {exc}") from exc


def _read_env(environ: dict[str, str]) -> dict[str, Any]:
    values = {}
    for suffix, field in _ENV_FIELDS.items():
        value = environ.get(f"{ENV_PREFIX}{suffix}")
        if value is not None and value != "":
            values[field] = value
    return values


def _read_settings_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise MCPConfigurationError(f"Settings file not found: {path}")
    suffix = path.suffix.lower()
    try:
        if suffix == ".toml":
            with open(path, "rb") as f:
                raw = tomllib.load(f)
        elif suffix in {".yaml", ".yml"}:
            with open(path, encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        else:
            raise MCPConfigurationError(f"Unsupported settings file format: {path.suffix}")
    except (OSError, tomllib.TOMLDecodeError, yaml.YAMLError) as exc:
        raise MCPConfigurationError(f"Failed to read settings file {path}: {exc}") from exc

    # Allow the settings to live under an [mcphub] table
    section = raw.get("mcphub", raw) if isinstance(raw, dict) else None
    if not isinstance(section, dict):
        raise MCPConfigurationError(f"Settings file {path} must contain a mapping")
    logger.debug("Loaded settings from %s: %s", path, sorted(section))
    return section
