# Copyright (c) Syntropy Systems
"""Configuration management for chrome-ranger."""
from __future__ import annotations

from pathlib import Path
from typing import Optional, cast

import yaml
from pydantic import Field, ValidationError, field_validator

from chrome_ranger.models.base import RangerBaseModel

CONFIG_FILE = "chrome-ranger.yaml"
STATE_DIR = ".chrome-ranger"

SCAFFOLD = """\
command: npx playwright test
# setup: npm ci
iterations: 5
warmup: 1
workers: 1

chrome:
  versions:
    - "120.0.6099.109"

code:
  repo: .
  refs:
    - main
"""


class ConfigError(Exception):
    """The configuration file is missing or invalid."""


def _string_list(value: object) -> object:
    if isinstance(value, list):
        return [str(item) for item in cast("list[object]", value)]
    return value


class ChromeSection(RangerBaseModel):
    """Browser binaries to test against."""

    versions: list[str] = Field(min_length=1)
    cache_dir: Optional[str] = None

    @field_validator("versions", mode="before")
    @classmethod
    def _coerce_versions(cls, value: object) -> object:
        return _string_list(value)

    @field_validator("cache_dir", mode="before")
    @classmethod
    def _coerce_cache_dir(cls, value: object) -> object:
        return None if value is None else str(value)


class CodeSection(RangerBaseModel):
    """Source repository and refs to test."""

    repo: str = Field(min_length=1)
    refs: list[str] = Field(min_length=1)

    @field_validator("refs", mode="before")
    @classmethod
    def _coerce_refs(cls, value: object) -> object:
        return _string_list(value)


class RangerConfig(RangerBaseModel):
    """Contents of chrome-ranger.yaml."""

    command: str = Field(min_length=1)
    setup: Optional[str] = None
    iterations: int = Field(gt=0, strict=True)
    warmup: int = Field(default=0, ge=0, strict=True)
    workers: int = Field(default=1, gt=0, strict=True)

    # Grace period before SIGKILL after SIGTERM when cancelling (seconds)
    kill_grace_period: float = Field(default=5.0, ge=0)

    chrome: ChromeSection
    code: CodeSection

    def repo_path(self, project_dir: Path) -> Path:
        """Repository path resolved against the project directory."""
        return (project_dir / self.code.repo).resolve()


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "config"
    return f'"{location}": {first["msg"]}'


def parse_config(data: object, source: str = CONFIG_FILE) -> RangerConfig:
    """Validate already-parsed YAML data."""
    if not isinstance(data, dict):
        msg = f"{source} must contain a YAML mapping"
        raise ConfigError(msg)
    try:
        return RangerConfig.model_validate(data)
    except ValidationError as e:
        msg = f"Invalid {source}: {_describe(e)}"
        raise ConfigError(msg) from e


def load_config(path: Path) -> RangerConfig:
    """Load and validate a config file."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        msg = f"Config file not found: {path}. Run 'chrome-ranger init' to create one."
        raise ConfigError(msg) from e

    try:
        data = cast("object", yaml.safe_load(text))
    except yaml.YAMLError as e:
        msg = f"Invalid YAML in {path}: {e}"
        raise ConfigError(msg) from e

    return parse_config(data, source=path.name)


def find_project_dir(start_path: Path | None = None) -> Path | None:
    """Find the nearest directory holding chrome-ranger.yaml by walking up.

    Returns None if no config file is found.
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()

    while current != current.parent:
        if (current / CONFIG_FILE).is_file():
            return current
        current = current.parent

    # Check root
    if (current / CONFIG_FILE).is_file():
        return current

    return None


def require_project_dir() -> Path:
    """Get the project directory or raise an error if not found."""
    project_dir = find_project_dir()
    if project_dir is None:
        msg = f"No {CONFIG_FILE} found. Run 'chrome-ranger init' first."
        raise ConfigError(msg)
    return project_dir


def get_state_dir(project_dir: Path) -> Path:
    """Get the path to the project's state directory."""
    return project_dir / STATE_DIR


def write_scaffold(project_dir: Path, *, force: bool = False) -> Path:
    """Write a starter chrome-ranger.yaml."""
    config_path = project_dir / CONFIG_FILE
    if config_path.exists() and not force:
        msg = f"{CONFIG_FILE} already exists. Use --force to overwrite."
        raise ConfigError(msg)
    _ = config_path.write_text(SCAFFOLD, encoding="utf-8")
    return config_path
