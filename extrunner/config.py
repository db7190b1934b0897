"""
extrunner Configuration Management.

Handles loading and validating configuration from various sources:
- Default values
- Configuration file (TOML)
- Environment variables
- Command-line arguments (applied by the CLI on top of the loaded config)
"""

from __future__ import annotations

import json
import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, List

logger = logging.getLogger(__name__)

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "extrunner"
DEFAULT_CONFIG_FILE = "config.toml"


@dataclass
class ValidationError:
    """Validation error for configuration."""
    field: str
    message: str
    severity: str  # "error" or "warning"

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.field}: {self.message}"


@dataclass
class ChromiumConfig:
    """Configuration for Chromium targets.

    The protocol details below changed across Chromium releases, so they
    are kept configurable rather than compared against version numbers.
    """

    binary: Optional[str] = None

    # Protocol method used to install an unpacked extension
    load_unpacked_method: str = "Extensions.loadUnpacked"

    # Error message older builds answer with when the method is missing
    method_not_found_message: str = "'Extensions.loadUnpacked' wasn't found"

    # Page whose privileged API reloads extensions in legacy mode
    extensions_page_url: str = "chrome://extensions/"

    # Legacy reload: attempts and backoff step (seconds, grows per attempt)
    legacy_reload_attempts: int = 3
    legacy_reload_backoff: float = 0.5

    # Log every protocol message
    verbose_protocol: bool = False


@dataclass
class FirefoxConfig:
    """Configuration for Firefox desktop targets."""

    binary: Optional[str] = None

    # Remote debugging connection retries while Firefox starts up
    connect_max_retries: int = 250
    connect_retry_interval: float = 0.12

    # Extra preferences written into the profile
    custom_prefs: dict[str, Any] = field(default_factory=dict)


@dataclass
class WatchConfig:
    """Configuration for the source file watcher."""

    debounce_ms: int = 1000
    ignore_files: list[str] = field(default_factory=list)
    artifacts_dir: Optional[Path] = None


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None


@dataclass
class ExtRunnerConfig:
    """Main configuration container for extrunner."""

    config_dir: Path = DEFAULT_CONFIG_DIR

    chromium: ChromiumConfig = field(default_factory=ChromiumConfig)
    firefox: FirefoxConfig = field(default_factory=FirefoxConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(
    config_path: Optional[Path] = None,
    env_prefix: str = "EXTRUNNER_"
) -> ExtRunnerConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file
    3. Default values

    Args:
        config_path: Path to config file (default: ~/.config/extrunner/config.toml)
        env_prefix: Prefix for environment variables

    Returns:
        Loaded configuration
    """
    config = ExtRunnerConfig()

    if config_path is None:
        env_config_dir = os.environ.get(f"{env_prefix}CONFIG_DIR")
        if env_config_dir:
            config_path = Path(env_config_dir) / DEFAULT_CONFIG_FILE
        else:
            config_path = DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE

    if config_path.exists():
        config = _load_from_file(config_path, config)

    config = _load_from_env(config, env_prefix)

    return config


def _update_section(section: Any, values: dict[str, Any]) -> None:
    for key, value in values.items():
        if not hasattr(section, key):
            logger.warning(f"Ignoring unknown configuration key: {key}")
            continue
        if isinstance(getattr(section, key), Path) or key in ("artifacts_dir", "file"):
            value = Path(value) if value else None
        setattr(section, key, value)


def _load_from_file(path: Path, config: ExtRunnerConfig) -> ExtRunnerConfig:
    """Load configuration from a TOML file."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)

        for section_name in ("chromium", "firefox", "watch", "logging"):
            if section_name in data:
                _update_section(getattr(config, section_name), data[section_name])

        if "config_dir" in data:
            config.config_dir = Path(data["config_dir"])

    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")

    return config


def _env_flag(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _load_from_env(config: ExtRunnerConfig, prefix: str) -> ExtRunnerConfig:
    """Load configuration from environment variables."""

    # Chromium settings
    if env_val := os.environ.get(f"{prefix}CHROMIUM_BINARY"):
        config.chromium.binary = env_val
    if env_val := os.environ.get(f"{prefix}CHROMIUM_METHOD_NOT_FOUND_MESSAGE"):
        config.chromium.method_not_found_message = env_val
    if env_val := os.environ.get(f"{prefix}CHROMIUM_LEGACY_RELOAD_BACKOFF"):
        config.chromium.legacy_reload_backoff = float(env_val)
    if env_val := os.environ.get(f"{prefix}CHROMIUM_VERBOSE_PROTOCOL"):
        config.chromium.verbose_protocol = _env_flag(env_val)

    # Firefox settings
    if env_val := os.environ.get(f"{prefix}FIREFOX_BINARY"):
        config.firefox.binary = env_val
    if env_val := os.environ.get(f"{prefix}FIREFOX_CONNECT_MAX_RETRIES"):
        config.firefox.connect_max_retries = int(env_val)

    # Watch settings
    if env_val := os.environ.get(f"{prefix}WATCH_DEBOUNCE_MS"):
        config.watch.debounce_ms = int(env_val)
    if env_val := os.environ.get(f"{prefix}ARTIFACTS_DIR"):
        config.watch.artifacts_dir = Path(env_val)

    # Logging settings
    if env_val := os.environ.get(f"{prefix}LOG_LEVEL"):
        config.logging.level = env_val.upper()

    if env_val := os.environ.get(f"{prefix}CONFIG_DIR"):
        config.config_dir = Path(env_val)

    return config


def validate_config(config: ExtRunnerConfig) -> List[ValidationError]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate

    Returns:
        List of validation errors (empty if valid)
    """
    errors: List[ValidationError] = []

    if config.chromium.legacy_reload_attempts < 1:
        errors.append(ValidationError(
            field="chromium.legacy_reload_attempts",
            message="At least one legacy reload attempt is required.",
            severity="error"
        ))

    if config.chromium.legacy_reload_backoff < 0:
        errors.append(ValidationError(
            field="chromium.legacy_reload_backoff",
            message="Backoff can't be negative.",
            severity="error"
        ))

    if config.chromium.binary and not Path(config.chromium.binary).exists():
        errors.append(ValidationError(
            field="chromium.binary",
            message=f"Chromium binary does not exist: {config.chromium.binary}",
            severity="warning"
        ))

    if config.firefox.binary and not Path(config.firefox.binary).exists():
        errors.append(ValidationError(
            field="firefox.binary",
            message=f"Firefox binary does not exist: {config.firefox.binary}",
            severity="warning"
        ))

    if config.watch.debounce_ms < 0:
        errors.append(ValidationError(
            field="watch.debounce_ms",
            message="Debounce can't be negative.",
            severity="error"
        ))

    if config.logging.level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        errors.append(ValidationError(
            field="logging.level",
            message=f"Unknown log level: {config.logging.level}",
            severity="error"
        ))

    return errors


def export_config_json(config: ExtRunnerConfig) -> str:
    """
    Export configuration as JSON string.

    Args:
        config: Configuration to export

    Returns:
        JSON string representation of config
    """
    def convert(value: Any) -> Any:
        if isinstance(value, Path):
            return str(value)
        return value

    result = {
        "config_dir": str(config.config_dir),
        "chromium": {k: convert(v) for k, v in vars(config.chromium).items()},
        "firefox": {k: convert(v) for k, v in vars(config.firefox).items()},
        "watch": {k: convert(v) for k, v in vars(config.watch).items()},
        "logging": {k: convert(v) for k, v in vars(config.logging).items()},
    }
    return json.dumps(result, indent=2)


# Global configuration instance (lazy-loaded)
_global_config: Optional[ExtRunnerConfig] = None


def get_config() -> ExtRunnerConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: ExtRunnerConfig) -> None:
    """Set the global configuration instance."""
    global _global_config
    _global_config = config


def clear_config_cache() -> None:
    """Clear the global configuration cache."""
    global _global_config
    _global_config = None
