"""Loguru sink configuration.

Records go to stderr in a human-readable layout unless they are bound with
``json_output=True``, in which case they are serialized as JSON instead.
Bound ``extra`` values whose key looks like a credential are masked before
any sink sees them.
"""

import sys
from pathlib import Path
from typing import Any

from loguru import logger

_LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} | {message}"
_SENSITIVE_MARKERS = ("password", "secret", "token", "authorization")
_MASK = "***"


def _redact(record: Any) -> None:
    extra = record["extra"]
    for key in extra:
        if any(marker in key.lower() for marker in _SENSITIVE_MARKERS):
            extra[key] = _MASK


def _is_json(record: Any) -> bool:
    return bool(record["extra"].get("json_output", False))


def setup_logging(log_level: str = "INFO", log_dir: str | None = None) -> None:
    """Replace all Loguru sinks with the application's.

    Args:
        log_level: Minimum level, case-insensitive.
        log_dir: When given, also write ``clinic-security.log`` there,
            rotated daily and kept for a week.
    """
    level = log_level.upper()
    handlers: list[dict[str, Any]] = [
        {"sink": sys.stderr, "level": level, "format": _LOG_FORMAT, "filter": lambda r: not _is_json(r)},
        {"sink": sys.stderr, "level": level, "serialize": True, "filter": _is_json},
    ]

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        handlers.append(
            {
                "sink": path / "clinic-security.log",
                "level": level,
                "format": _LOG_FORMAT,
                "rotation": "24h",
                "retention": "7 days",
            }
        )

    logger.configure(handlers=handlers, patcher=_redact)
