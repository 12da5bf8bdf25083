# src/koharu/config.py: Pydantic models for configuration.
# This module defines the schema for the optional 'koharu.yaml' file using
# Pydantic models. Every field has a default matching the upstream theme, so a
# fresh fork works without any configuration; the file only exists to point a
# fork at a different template, package manager or backup layout.

from __future__ import annotations

import yaml
from pathlib import Path
from pydantic import BaseModel, Field, ValidationError
from typing import Any, List, Optional

from .util.paths import get_xdg_config_home, expand_path
from .util.errors import ConfigError
from .util.log import get_logger

logger = get_logger(__name__)

PROJECT_CONFIG_NAME = "koharu.yaml"
USER_CONFIG_NAME = "config.yaml"

# --- Pydantic Models for Configuration Schema ---

class UpstreamConfig(BaseModel):
    remote: str = "upstream"
    url: str = "https://github.com/cosZone/astro-koharu.git"
    main_branch: str = "main"
    github_repo: str = "cosZone/astro-koharu"

    @property
    def tracking_ref(self) -> str:
        return f"{self.remote}/{self.main_branch}"

class ManifestConfig(BaseModel):
    file: str = "package.json"
    version_key: str = "version"

class InstallConfig(BaseModel):
    command: List[str] = Field(default_factory=lambda: ["pnpm", "install"])

class BackupConfig(BaseModel):
    directory: str = "backups"
    include: List[str] = Field(
        default_factory=lambda: [
            "src/content/blog/**",
            "config/site.yaml",
            "public/img/**",
            ".env",
        ]
    )
    # Added on top of `include` by `koharu backup --full`.
    full_include: List[str] = Field(
        default_factory=lambda: [
            "public/**",
            "src/assets/**",
        ]
    )
    exclude: List[str] = Field(
        default_factory=lambda: [
            "**/node_modules/**",
            "**/.DS_Store",
        ]
    )
    keep: Optional[int] = None

class LoggingConfig(BaseModel):
    level: str = "WARNING"
    json_format: bool = Field(True, alias="json")

class KoharuConfig(BaseModel):
    version: int = 1
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    manifest: ManifestConfig = Field(default_factory=ManifestConfig)
    install: InstallConfig = Field(default_factory=InstallConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# --- Configuration Loading ---

def _expand_vars_in_obj(obj: Any) -> Any:
    """Recursively expand environment variables in a loaded YAML object."""
    if isinstance(obj, dict):
        return {key: _expand_vars_in_obj(value) for key, value in obj.items()}
    if isinstance(obj, list):
        return [_expand_vars_in_obj(item) for item in obj]
    if isinstance(obj, str):
        # Only home/env references are expanded; URLs and globs stay verbatim.
        if obj.startswith("~") or "${" in obj:
            return str(expand_path(obj))
        return obj
    return obj

def _resolve_config_path(project_root: Optional[Path]) -> Optional[Path]:
    if project_root is not None:
        candidate = Path(project_root) / PROJECT_CONFIG_NAME
        if candidate.is_file():
            return candidate
    candidate = get_xdg_config_home() / USER_CONFIG_NAME
    if candidate.is_file():
        return candidate
    return None

def load_config(project_root: Optional[Path] = None) -> KoharuConfig:
    """
    Loads and validates the configuration.

    The project-level 'koharu.yaml' wins over the user-level XDG config file.
    When neither exists the defaults are returned.
    """
    config_path = _resolve_config_path(project_root)
    if config_path is None:
        logger.debug("No configuration file found, using defaults.")
        return KoharuConfig()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML configuration '{config_path}': {e}")

    if not isinstance(raw_config, dict):
        raise ConfigError(f"Configuration '{config_path}' must be a mapping.")

    expanded_config = _expand_vars_in_obj(raw_config)

    try:
        config = KoharuConfig.model_validate(expanded_config)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}")

    logger.debug(f"Loaded configuration from {config_path}")
    return config
