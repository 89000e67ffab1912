import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from edgeai.config.settings import get_value, load_settings

DEFAULT_ENV = {
    "ENV": "development",
    "LOG_LEVEL": None,
    "DEBUG": None,
    "SCHEDULER_RESOURCES": "gpu,cpu",
    "EXTENSION_RECONNECT_DELAY": "1.0",
    "EXTENSION_PING_TIMEOUT": "5",
    "EXTENSION_SEARCH_ONLY_TIMEOUT": "30",
    "EXTENSION_SEARCH_TIMEOUT": "60",
    "EXTENSION_EXTRACT_TIMEOUT": "60",
    "EXTENSION_RELAY_URL": "ws://127.0.0.1:7777",
}

# Outbound message type -> setting holding its deadline
CALL_TIMEOUT_SETTINGS = {
    "PING": "EXTENSION_PING_TIMEOUT",
    "SEARCH_ONLY_REQUEST": "EXTENSION_SEARCH_ONLY_TIMEOUT",
    "SEARCH_REQUEST": "EXTENSION_SEARCH_TIMEOUT",
    "EXTRACT_URLS_REQUEST": "EXTENSION_EXTRACT_TIMEOUT",
}

"""
Environment Configuration Management Module

Centralized access to edgeai configuration through the Environment class.
Values are resolved from, in order:

- The settings file (settings.yaml)
- Environment variables (optionally populated from .env files)
- Default values in DEFAULT_ENV
"""


def load_dotenv_files():
    """Load environment variables from .env files based on current environment."""
    from dotenv import load_dotenv

    project_root = Path.cwd()
    env_name = os.environ.get("ENV", "development")

    # Later files override earlier ones only for keys not already set
    env_files = [
        project_root / ".env",
        project_root / f".env.{env_name}",
        project_root / f".env.{env_name}.local",
    ]

    for env_file in env_files:
        if env_file.exists():
            load_dotenv(env_file, override=False)


class Environment(object):
    """
    Manages configuration values and their type conversions.

    Settings are loaded lazily on first access. Tests can set
    ``Environment.settings = {}`` to ignore the user's settings file.
    """

    settings: Optional[Dict[str, Any]] = None

    @classmethod
    def load_settings(cls):
        load_dotenv_files()
        cls.settings = load_settings()

    @classmethod
    def get_settings(cls) -> Dict[str, Any]:
        if cls.settings is None:
            cls.load_settings()
        assert cls.settings is not None
        return cls.settings

    @classmethod
    def get(cls, key: str, default: Any = None):
        return get_value(key, cls.get_settings(), DEFAULT_ENV, default)

    @classmethod
    def get_env(cls):
        """
        The environment is either "development" or "production".
        """
        return cls.get("ENV")

    @classmethod
    def is_production(cls):
        return cls.get_env() == "production"

    @classmethod
    def is_test(cls):
        return os.environ.get("PYTEST_CURRENT_TEST") is not None

    @classmethod
    def get_log_level(cls) -> str:
        """Return desired log level string.

        Priority:
        1) Explicit LOG_LEVEL from env
        2) If DEBUG env is truthy, return "DEBUG"
        3) EDGEAI_LOG_LEVEL env (default "INFO")
        """
        level = os.getenv("LOG_LEVEL")
        if level:
            return str(level).upper()
        debug_env = os.getenv("DEBUG")
        if debug_env and debug_env.lower() not in ("0", "false", "no", "off", ""):
            return "DEBUG"
        return os.getenv("EDGEAI_LOG_LEVEL", "INFO").upper()

    @classmethod
    def _get_float(cls, key: str) -> float:
        value = cls.get(key)
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValueError(f"Setting {key} must be a number, got {value!r}") from None

    @classmethod
    def get_reconnect_delay(cls) -> float:
        """
        Seconds between a detected extension reload and the next liveness probe.
        """
        return cls._get_float("EXTENSION_RECONNECT_DELAY")

    @classmethod
    def get_call_timeout(cls, message_type: str) -> float:
        """
        Deadline in seconds for a request of the given outbound message type.

        Unknown message types fall back to the search deadline.
        """
        key = CALL_TIMEOUT_SETTINGS.get(message_type, "EXTENSION_SEARCH_TIMEOUT")
        return cls._get_float(key)

    @classmethod
    def get_resource_kinds(cls) -> List[str]:
        """
        The exclusive resource kinds the lock scheduler is created with.
        """
        raw = cls.get("SCHEDULER_RESOURCES") or ""
        if isinstance(raw, (list, tuple)):
            kinds = [str(k) for k in raw]
        else:
            kinds = str(raw).split(",")
        return [k.strip().lower() for k in kinds if k.strip()]

    @classmethod
    def get_relay_url(cls) -> str:
        return cls.get("EXTENSION_RELAY_URL")
