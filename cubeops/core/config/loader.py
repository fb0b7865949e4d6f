"""
Configuration loader — reads cubeops.yml into typed settings.

The file is optional: every setting has a default matching the
operator scripts. When present it is searched upward from the current
directory (or given with ``--config``), parsed with PyYAML and
validated with Pydantic.

Example::

    projects_dir: ~/projects
    images:
      base_image: recurvedata/recurve-cube-base:latest
      remote_image_name: docker.tool.recurvedata.com/recurve-cube
    driver_package:
      branch: main
    databases:
      postgres:
        port: 15433
    budgets:
      doris_port:
        max_attempts: 60
        delay: 5
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cubeops.core.errors import ConfigError
from cubeops.core.models.budget import DEFAULT_BUDGETS, RetryBudget

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "cubeops.yml"


class ImageDefaults(BaseModel):
    """Default names for image build and publish."""

    model_config = ConfigDict(extra="forbid")

    image_name: str = "reorc/cube"
    image_tag: str = "latest"
    remote_image_name: str = "recurvedata/recurve-cube"
    remote_image_tag: str = "base"
    base_image: str = "recurvedata/recurve-cube-base:latest"
    final_image_name: str = "reorc/cube-official"
    final_remote_image_name: str = "docker.tool.recurvedata.com/recurve-cube"
    driver_packages: list[str] = Field(default_factory=lambda: ["doris-cubejs-driver"])


class RepositoryDefaults(BaseModel):
    """Where the product's source checkout lives and how releases are cut."""

    model_config = ConfigDict(extra="forbid")

    name: str = "cube"
    url: str = "https://github.com/cube-js/cube.git"
    base_branch: str = "master"
    release_branch: str = "release"
    source_branch: str = "reorc"
    develop_branch: str = "develop"
    remote: str = "origin"


class DriverPackageDefaults(BaseModel):
    """Where the database driver package is checked out and how it is published."""

    model_config = ConfigDict(extra="forbid")

    name: str = "cubejs-doris-driver"
    branch: str = "main"
    access: str = "public"


class DatabaseOverride(BaseModel):
    """Per-database overrides of the built-in profile."""

    model_config = ConfigDict(extra="forbid")

    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    version: str | None = None
    data_root: str | None = None


class CubeOpsConfig(BaseModel):
    """Root configuration."""

    model_config = ConfigDict(extra="forbid")

    projects_dir: str = "~/projects"
    images: ImageDefaults = Field(default_factory=ImageDefaults)
    repository: RepositoryDefaults = Field(default_factory=RepositoryDefaults)
    driver_package: DriverPackageDefaults = Field(default_factory=DriverPackageDefaults)
    databases: dict[str, DatabaseOverride] = Field(default_factory=dict)
    budgets: dict[str, RetryBudget] = Field(default_factory=dict)
    node_version: str = "20"
    system_packages: list[str] = Field(
        default_factory=lambda: ["build-essential", "python3", "make", "gcc", "g++", "default-jdk"],
    )

    @property
    def projects_path(self) -> Path:
        return Path(self.projects_dir).expanduser()

    def budget(self, name: str) -> RetryBudget:
        """Named retry budget; config entries override built-in defaults."""
        if name in self.budgets:
            return self.budgets[name]
        if name in DEFAULT_BUDGETS:
            return DEFAULT_BUDGETS[name]
        raise KeyError(f"Unknown retry budget: {name}")

    def database(self, kind: str) -> DatabaseOverride:
        return self.databases.get(kind, DatabaseOverride())


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for cubeops.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to cubeops.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_config(path: Path | None = None, *, search: bool = True) -> CubeOpsConfig:
    """Load and validate configuration.

    Args:
        path: Explicit path to cubeops.yml. Must exist when given.
        search: When no path is given, search upward from cwd.

    Returns:
        Validated config (defaults when no file is found).

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    if path is None:
        path = find_config_file() if search else None
        if path is None:
            logger.debug("No %s found, using defaults", CONFIG_FILE)
            return CubeOpsConfig()
    elif not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return CubeOpsConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        config = CubeOpsConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info("Loaded config from %s", path)
    return config
