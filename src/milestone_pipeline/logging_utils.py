"""Configure loguru sinks and emit step-tagged pipeline log records."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .constants import RUN_LOG_FILE

_EXTRA_DEFAULTS = {"label": "-", "stage": "-", "attempt": ""}

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>[{extra[label]}]</cyan> <magenta>[{extra[stage]}]</magenta> "
    "{message}"
)

# time | label | stage | attempt | message
_FILE_FORMAT = "{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {extra[label]} | {extra[stage]} | {extra[attempt]} | {message}"


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None) -> Optional[Path]:
    """Configure loguru with a stderr sink and an optional `run.log` file sink.

    Args:
        level: Minimum level for the console sink.
        log_dir: When given, also append every record to `<log_dir>/run.log`.

    Returns:
        The log file path, or None when no file sink was added.
    """
    logger.remove()
    logger.configure(extra=dict(_EXTRA_DEFAULTS))
    logger.add(sys.stderr, level=level.upper(), format=_CONSOLE_FORMAT)
    if log_dir is None:
        return None
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / RUN_LOG_FILE
    logger.add(log_path, level="DEBUG", format=_FILE_FORMAT, encoding="utf-8")
    return log_path


def log_step(
    label: str,
    stage: str,
    message: str,
    *,
    current: Optional[int] = None,
    total: Optional[int] = None,
    level: str = "INFO",
) -> None:
    """Log a message tagged with the unit of work and pipeline stage."""
    attempt = f"attempt:{current}/total:{total}" if current is not None and total is not None else ""
    logger.bind(label=label or "-", stage=stage, attempt=attempt).log(level, message)


def pretty(obj: Any, *, indent: int = 2) -> str:
    """Serialize an object as JSON for readable logs.

    Returns:
        A JSON string when possible; otherwise `str(obj)`.
    """
    try:
        return json.dumps(obj, indent=indent, default=str)
    except (TypeError, ValueError):
        return str(obj)


logger.configure(extra=dict(_EXTRA_DEFAULTS))
