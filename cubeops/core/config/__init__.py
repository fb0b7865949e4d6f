"""Configuration loading."""

from cubeops.core.config.loader import CONFIG_FILE, ConfigError, CubeOpsConfig, find_config_file, load_config

__all__ = ["CONFIG_FILE", "ConfigError", "CubeOpsConfig", "find_config_file", "load_config"]
