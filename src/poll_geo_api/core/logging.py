"""Loguru configuration for the API, the rollup scheduler and the CLI.

Every record carries a ``poll`` field. Code working on one poll logs
through :func:`poll_logger` so that interleaved rollups and writes stay
readable; everything else shows ``-``.
"""

import sys
from pathlib import Path

from loguru import logger

_LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | poll={extra[poll]} | {name}:{function}:{line} | {message}"
_LOG_FILE = "poll-geo-api.log"


def poll_logger(poll_id: str):  # noqa: ANN201
    """Logger bound to one poll."""
    return logger.bind(poll=poll_id)


def setup_logging(log_level: str = "INFO", log_dir: str | None = None) -> None:
    """Replace Loguru's default sink with the service sinks.

    Records bound with ``json_output=True`` are additionally emitted as JSON
    lines for log shippers.

    Args:
        log_level: Minimum level, case-insensitive.
        log_dir: When set, also write to ``poll-geo-api.log`` in this
            directory, rotated daily and kept for a week.
    """
    level = log_level.upper()
    logger.remove()
    logger.configure(extra={"poll": "-"})
    logger.add(sys.stderr, level=level, format=_LOG_FORMAT)
    logger.add(
        sys.stderr,
        level=level,
        serialize=True,
        filter=lambda record: record["extra"].get("json_output", False),
    )

    if not log_dir:
        return
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    logger.add(log_path / _LOG_FILE, level=level, format=_LOG_FORMAT, rotation="24h", retention="7 days")
