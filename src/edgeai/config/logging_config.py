import logging
import os
import sys
from typing import ClassVar, Optional

_DEFAULT_FORMAT = os.getenv(
    "EDGEAI_LOG_FORMAT",
    "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
_DEFAULT_DATEFMT = os.getenv("EDGEAI_LOG_DATEFMT", "%Y-%m-%d %H:%M:%S")
_configured: tuple[str | int, str, str] | None = None


def _supports_color() -> bool:
    try:
        return sys.stdout.isatty() and os.getenv("NO_COLOR") is None
    except Exception:
        return False


class _LevelColorFormatter(logging.Formatter):
    COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\x1b[37m",  # light gray
        "INFO": "\x1b[32m",  # green
        "WARNING": "\x1b[33m",  # yellow
        "ERROR": "\x1b[31m",  # red
        "CRITICAL": "\x1b[41m",  # red background
    }

    RESET: ClassVar[str] = "\x1b[0m"

    def __init__(self, fmt: str, datefmt: str, use_color: bool) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if self.use_color:
            levelname = record.levelname
            color = self.COLORS.get(levelname, "")
            record.levelname_color = f"{color}{levelname}{self.RESET}" if color else levelname
        else:
            record.levelname_color = record.levelname
        return super().format(record)


def configure_logging(
    level: Optional[str | int] = None,
    fmt: Optional[str] = None,
    datefmt: Optional[str] = None,
    propagate_root: bool = False,
) -> str | int:
    """Configure root logging once with a consistent format.

    Environment overrides:
    - `EDGEAI_LOG_LEVEL`
    - `EDGEAI_LOG_FORMAT`
    - `EDGEAI_LOG_DATEFMT`
    """
    from edgeai.config.environment import Environment

    global _configured

    if isinstance(level, str):
        level = level.upper()

    if level is None:
        level = Environment.get_log_level()

    # Prefer a colorful format when no explicit format is requested and the terminal supports it
    use_color = _supports_color()
    if fmt is None:
        if os.getenv("EDGEAI_LOG_FORMAT") is None and use_color:
            fmt = "\x1b[90m%(asctime)s\x1b[0m | %(levelname_color)s | \x1b[36m%(name)s\x1b[0m | %(message)s"
        else:
            fmt = _DEFAULT_FORMAT
    datefmt = datefmt if datefmt is not None else _DEFAULT_DATEFMT

    if _configured == (level, fmt, datefmt):
        return level
    _configured = (level, fmt, datefmt)

    root = logging.getLogger()
    if root.handlers:
        # Align level/formatter for existing stream handlers (e.g. pytest's)
        root.setLevel(level)
        for h in root.handlers:
            if isinstance(h, logging.StreamHandler):
                h.setLevel(level)
                h.setFormatter(_LevelColorFormatter(fmt=fmt, datefmt=datefmt, use_color=use_color))
        root.propagate = propagate_root
        return level

    logging.basicConfig(level=level, format=fmt, datefmt=datefmt)
    for h in logging.getLogger().handlers:
        if isinstance(h, logging.StreamHandler):
            h.setFormatter(_LevelColorFormatter(fmt=fmt, datefmt=datefmt, use_color=use_color))
    logging.getLogger().propagate = propagate_root
    logging.getLogger("websockets").setLevel(logging.INFO)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    return level


def get_logger(name: str) -> logging.Logger:
    """Return a module-scoped logger."""
    level = configure_logging()
    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger
