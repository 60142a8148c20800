"""
Configuration system for ff-logpipe.

Supports environment variables, config files, and programmatic configuration.
"""

import json
import os
from pathlib import Path
from typing import Any

import structlog

from .logger import Logger

_DEFAULTS: dict[str, Any] = {
    "level": "info",
    "format": "text",
    "async_mode": False,
    "colors": True,
    "timestamp": False,
}

# Global configuration
_GLOBAL_CONFIG: dict[str, Any] = dict(_DEFAULTS)

_TRUE_VALUES = ("true", "1", "yes")


def configure_logging(
    level: str | None = None,
    format: str | None = None,
    async_mode: bool | None = None,
    colors: bool | None = None,
    timestamp: bool | None = None,
    config_file: str | Path | None = None,
    use_env: bool = True,
) -> None:
    """
    Configure global logging settings.

    Args:
        level: Minimum log level (boring, debug, info, warn, error, silent)
        format: Output format (text, json)
        async_mode: Whether loggers deliver through the scheduler
        colors: Whether to use colors in text output
        timestamp: Whether to include timestamps
        config_file: Path to JSON config file
        use_env: Whether to read from environment variables
    """
    global _GLOBAL_CONFIG

    # Load from config file if provided
    if config_file:
        config_path = Path(config_file)
        if config_path.exists():
            with open(config_path) as f:
                _GLOBAL_CONFIG.update(json.load(f))

    # Load from environment variables if enabled
    if use_env:
        _GLOBAL_CONFIG.update(_load_env_config())

    # Apply explicit arguments (highest priority)
    if level is not None:
        _GLOBAL_CONFIG["level"] = level.lower()
    if format is not None:
        _GLOBAL_CONFIG["format"] = format.lower()
    if async_mode is not None:
        _GLOBAL_CONFIG["async_mode"] = async_mode
    if colors is not None:
        _GLOBAL_CONFIG["colors"] = colors
    if timestamp is not None:
        _GLOBAL_CONFIG["timestamp"] = timestamp

    _configure_structlog()


def _load_env_config() -> dict[str, Any]:
    """Load configuration from environment variables."""
    config = {}

    if level := os.getenv("FF_LOG_LEVEL"):
        config["level"] = level.lower()

    if format := os.getenv("FF_LOG_FORMAT"):
        config["format"] = format.lower()

    if async_mode := os.getenv("FF_LOG_ASYNC"):
        config["async_mode"] = async_mode.lower() in _TRUE_VALUES

    if colors := os.getenv("FF_LOG_COLORS"):
        config["colors"] = colors.lower() in _TRUE_VALUES

    if timestamp := os.getenv("FF_LOG_TIMESTAMP"):
        config["timestamp"] = timestamp.lower() in _TRUE_VALUES

    return config


def _configure_structlog() -> None:
    """Configure structlog for the package's own diagnostics."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if _GLOBAL_CONFIG.get("format") == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=_GLOBAL_CONFIG.get("colors", True)))

    structlog.configure(processors=processors)


def get_logger(prefix: str = "", **overrides: Any) -> Logger:
    """
    Get a logger built from the global configuration.

    Args:
        prefix: Prefix attached to every record
        **overrides: Logger constructor arguments that win over the global settings

    Example:
        # Uses global config
        logger = get_logger("api")

        # Override output format
        logger = get_logger("api", json=True, level="debug")
    """
    options: dict[str, Any] = {
        "level": _GLOBAL_CONFIG.get("level", "info"),
        "json": _GLOBAL_CONFIG.get("format") == "json",
        "async_mode": _GLOBAL_CONFIG.get("async_mode", False),
        "colorize": _GLOBAL_CONFIG.get("colors", True),
        "timestamp": _GLOBAL_CONFIG.get("timestamp", False),
    }
    options.update(overrides)
    return Logger(prefix=prefix, **options)


def get_config() -> dict[str, Any]:
    """Get current global configuration."""
    return _GLOBAL_CONFIG.copy()


def reset_config() -> None:
    """Reset configuration to defaults."""
    global _GLOBAL_CONFIG
    _GLOBAL_CONFIG = dict(_DEFAULTS)
    _configure_structlog()
