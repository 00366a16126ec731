"""
Configuration management for OTA hot update.

This module implements the AppConfig Pydantic model and configuration
loading. Configuration is loaded from multiple sources with layered
precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/ota-hotupdate/config.yml or --config path)
3. Environment variables (OTA_HOTUPDATE_* prefix, __ for nesting)
4. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_CONFIG_PATH = Path("/etc/ota-hotupdate/config.yml")
DEFAULT_ENV_PREFIX = "OTA_HOTUPDATE_"

# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        log_to_stdout: Whether to log to stdout.
        json_format: Emit JSON records instead of plain text.
        log_file: Optional log file path.
        debug_mode: Force debug level logging.
    """

    level: str = Field(
        default="info",
        description="Log level: debug, info, warn, error",
    )
    log_to_stdout: bool = Field(
        default=True,
        description="Whether to log to stdout",
    )
    json_format: bool = Field(
        default=True,
        description="Emit JSON log records",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional log file path",
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable extra diagnostic logging",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Persistence and Activation Configuration
# =============================================================================


class StorageConfig(BaseModel):
    """Version store configuration.

    Attributes:
        version_file: JSON file holding the current version and metadata.
        backup_file: Backup copy used for recovery of a corrupted file.
    """

    version_file: str = Field(
        default="/var/lib/ota-hotupdate/version.json",
        description="Path to the version state file",
    )
    backup_file: str | None = Field(
        default=None,
        description="Path to the backup state file (defaults to <version_file>.backup)",
    )


class ActivationConfig(BaseModel):
    """Bundle activation configuration.

    Attributes:
        bundles_dir: Directory holding unpacked releases and the
            current/previous symlinks.
        default_format_hint: File suffix identifying the bundle inside an
            unpacked archive.
    """

    bundles_dir: str = Field(
        default="/var/lib/ota-hotupdate/bundles",
        description="Directory for unpacked bundles and activation symlinks",
    )
    default_format_hint: str = Field(
        default=".bundle",
        description="Suffix of the bundle file inside an archive",
    )

    @field_validator("default_format_hint")
    @classmethod
    def validate_format_hint(cls, v: str) -> str:
        """Ensure the format hint is a suffix starting with a dot."""
        if not v:
            raise ValueError("default_format_hint must not be empty")
        return v if v.startswith(".") else f".{v}"


# =============================================================================
# Transport Configuration
# =============================================================================


class ArchiveTransportConfig(BaseModel):
    """HTTP archive download configuration.

    Attributes:
        download_dir: Directory for downloaded archives.
        timeout_seconds: Network timeout per request.
        chunk_size: Streaming chunk size in bytes.
        default_headers: Headers sent with every download.
    """

    download_dir: str = Field(
        default="/var/lib/ota-hotupdate/downloads",
        description="Directory for downloaded archives",
    )
    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Network timeout in seconds",
    )
    chunk_size: int = Field(
        default=64 * 1024,
        ge=1024,
        description="Streaming chunk size in bytes",
    )
    default_headers: dict[str, str] = Field(
        default_factory=dict,
        description="Headers added to every download request",
    )


class GitTransportConfig(BaseModel):
    """Git transport configuration.

    Attributes:
        base_dir: Directory holding git working trees.
        default_folder_name: Working tree folder used when none is given.
        git_executable: Name or path of the git binary.
        timeout_seconds: Timeout for a single git command.
    """

    base_dir: str = Field(
        default="/var/lib/ota-hotupdate/git",
        description="Directory holding git working trees",
    )
    default_folder_name: str = Field(
        default="git_hot_update",
        description="Working tree folder name used when none is given",
    )
    git_executable: str = Field(
        default="git",
        description="git binary name or path",
    )
    timeout_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Timeout for a single git command in seconds",
    )


# =============================================================================
# Restart Configuration
# =============================================================================


class RestartConfig(BaseModel):
    """Application restart configuration.

    Attributes:
        service_name: systemd unit restarted after an update. If unset,
            restarts are logged and skipped.
        delay_ms: Delay between a successful install and the restart.
        timeout_seconds: Timeout for the restart command.
    """

    service_name: str | None = Field(
        default=None,
        description="systemd unit to restart after an update",
    )
    delay_ms: int = Field(
        default=300,
        ge=0,
        description="Delay before restarting, in milliseconds",
    )
    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for the restart command in seconds",
    )


# =============================================================================
# Root Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    Attributes:
        logging: Logging configuration.
        storage: Version store configuration.
        activation: Bundle activation configuration.
        archive: HTTP archive transport configuration.
        git: Git transport configuration.
        restart: Restart configuration.
    """

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )
    storage: StorageConfig = Field(
        default_factory=StorageConfig,
        description="Version store configuration",
    )
    activation: ActivationConfig = Field(
        default_factory=ActivationConfig,
        description="Bundle activation configuration",
    )
    archive: ArchiveTransportConfig = Field(
        default_factory=ArchiveTransportConfig,
        description="HTTP archive transport configuration",
    )
    git: GitTransportConfig = Field(
        default_factory=GitTransportConfig,
        description="Git transport configuration",
    )
    restart: RestartConfig = Field(
        default_factory=RestartConfig,
        description="Restart configuration",
    )


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to the appropriate Python type.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (bool, int, float, list, or string).
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if "," in value:
        return [_parse_env_value(item.strip()) for item in value.split(",")]

    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Nested keys use a double underscore separator, for example
    OTA_HOTUPDATE_RESTART__SERVICE_NAME=myapp.service.

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        current[parts[-1]] = _parse_env_value(value)

    return result


def _parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Parse command-line arguments.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Dictionary with parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description="OTA hot update",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )

    parsed, _ = parser.parse_known_args(args)

    result: dict[str, Any] = {}

    if parsed.config:
        result["_config_path"] = parsed.config

    if parsed.log_level:
        result["logging"] = {"level": parsed.log_level}

    if parsed.debug:
        result.setdefault("logging", {})
        result["logging"]["debug_mode"] = True
        result["logging"]["level"] = "debug"

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_args: list[str] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to YAML configuration file. If None, uses the
            --config argument or the default path when it exists.
        env_prefix: Prefix for environment variables.
        cli_args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If the specified config file doesn't exist.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(cli_args=[])
        >>> config.restart.delay_ms
        300
    """
    config_dict: dict[str, Any] = {}

    cli_config = _parse_cli_args(cli_args)

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path"))
        elif DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    elif isinstance(config_path, str):
        config_path = Path(config_path)
    cli_config.pop("_config_path", None)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))
    config_dict = _deep_merge(config_dict, cli_config)

    return AppConfig(**config_dict)
