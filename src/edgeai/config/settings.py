"""Utility functions for reading and writing configuration files."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import yaml

from edgeai.config.configuration import register_setting

# Constants
SETTINGS_FILE = "settings.yaml"
MISSING_MESSAGE = "Missing required environment variable: {}"
NOT_GIVEN = object()

# Built-in settings are registered here so that other packages can extend the
# configuration system via :func:`register_setting`.

register_setting(
    package_name="edgeai",
    env_var="LOG_LEVEL",
    group="Logging",
    description="Log level for all edgeai loggers (DEBUG, INFO, WARNING, ERROR)",
    enum=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
)
register_setting(
    package_name="edgeai",
    env_var="SCHEDULER_RESOURCES",
    group="Scheduler",
    description=(
        "Comma separated list of exclusive resource kinds the lock scheduler manages. "
        "Each kind gets its own FIFO lock. Defaults to 'gpu,cpu'."
    ),
)
register_setting(
    package_name="edgeai",
    env_var="EXTENSION_RECONNECT_DELAY",
    group="Extension",
    description=(
        "Seconds to wait before probing the browser extension again after it "
        "reported that it was reloaded"
    ),
)
register_setting(
    package_name="edgeai",
    env_var="EXTENSION_PING_TIMEOUT",
    group="Extension",
    description="Deadline in seconds for a liveness probe sent to the extension",
)
register_setting(
    package_name="edgeai",
    env_var="EXTENSION_SEARCH_ONLY_TIMEOUT",
    group="Extension",
    description="Deadline in seconds for a search request without content extraction",
)
register_setting(
    package_name="edgeai",
    env_var="EXTENSION_SEARCH_TIMEOUT",
    group="Extension",
    description="Deadline in seconds for a search request including content extraction",
)
register_setting(
    package_name="edgeai",
    env_var="EXTENSION_EXTRACT_TIMEOUT",
    group="Extension",
    description="Deadline in seconds for extracting the content of a list of URLs",
)
register_setting(
    package_name="edgeai",
    env_var="EXTENSION_RELAY_URL",
    group="Extension",
    description=(
        "WebSocket URL of the local relay that forwards messages to and from the "
        "browser extension (e.g. ws://127.0.0.1:7777)"
    ),
)


def get_system_file_path(filename: str) -> Path:
    """Return the path to the configuration file for the current OS."""
    import platform

    os_name = platform.system()
    if os_name in {"Linux", "Darwin"}:
        return Path.home() / ".config" / "edgeai" / filename
    elif os_name == "Windows":
        appdata = os.getenv("APPDATA")
        if appdata is not None:
            return Path(appdata) / "edgeai" / filename
        return Path("data") / filename
    return Path("data") / filename


# ---------------------------------------------------------------------------
# Settings helpers
# ---------------------------------------------------------------------------


def load_settings(settings_file: Path | None = None) -> Dict[str, Any]:
    """Load settings from the YAML settings file."""
    settings_file = settings_file or get_system_file_path(SETTINGS_FILE)

    settings: Dict[str, Any] = {}
    if settings_file.exists():
        with open(settings_file, "r") as f:
            settings = yaml.safe_load(f) or {}

    return settings


def save_settings(settings: Dict[str, Any], settings_file: Path | None = None) -> None:
    """Save settings to the YAML settings file."""
    settings_file = settings_file or get_system_file_path(SETTINGS_FILE)

    os.makedirs(os.path.dirname(settings_file), exist_ok=True)

    with open(settings_file, "w") as f:
        yaml.dump(settings, f)


def get_value(
    key: str,
    settings: Dict[str, Any],
    default_env: Dict[str, Any],
    default: Any = NOT_GIVEN,
) -> Any:
    """Retrieve a configuration value from settings, or environment."""
    value = settings.get(key)
    if value is None or str(value) == "":
        value = os.environ.get(key)

    if value is None:
        value = default_env.get(key, default)

    if value is not NOT_GIVEN:
        return value
    raise Exception(MISSING_MESSAGE.format(key))
