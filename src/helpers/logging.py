"""Logger module."""

import json
import logging
import sys

import colorlog

from src.helpers.config import get_log_color, get_log_level

loggers: dict[str, logging.Logger] = {}

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def render_context(record: logging.LogRecord) -> str:
    """Render the optional ``context`` extra of a record as a JSON suffix.

    Args:
        record: Log record, possibly carrying ``extra={"context": {...}}``.

    Returns:
        ``" {...}"`` when a non-empty context is attached, else ``""``.
    """
    context = getattr(record, "context", None)
    if not context:
        return ""
    return " " + json.dumps(context, default=str, sort_keys=True)


class StructuredFormatter(logging.Formatter):
    """Plain formatter that appends the record context as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        return super().format(record) + render_context(record)


class ColoredStructuredFormatter(colorlog.ColoredFormatter):
    """Colored formatter that appends the record context as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        return super().format(record) + render_context(record)


def get_logger(
    name: str,
    log_handler: str = "stdout",
    log_level: str | None = None,
    log_color: bool | None = None,
) -> logging.Logger:
    """Get logger.

    Args:
        name: The name of the logger.
        log_handler: The log handler type ('stdout').
        log_level: The logging level; defaults to LOG_LEVEL from the environment.
        log_color: Whether to use colored output; defaults to LOG_COLOR.

    Returns:
        logging.Logger: Configured logger instance.

    Raises:
        ValueError: If invalid handler or log level is provided.

    Example:
        ```python
        logger = get_logger(__name__)
        logger.info("Block inserted", extra={"context": {"block_number": 1}})
        # 2025-01-01 00:00:00,000 - app - INFO - Block inserted {"block_number": 1}
        ```
    """
    if name in loggers:
        return loggers[name]

    level_name = (log_level or get_log_level()).upper()
    use_color = get_log_color() if log_color is None else log_color

    if level_name not in LOG_LEVELS:
        err_msg = f"Invalid log level: {level_name}"
        raise ValueError(err_msg)

    if log_handler != "stdout":
        err_msg = f"Invalid handler: {log_handler}"
        raise ValueError(err_msg)

    logger = colorlog.getLogger(name) if use_color else logging.getLogger(name)
    handler = (
        colorlog.StreamHandler(sys.stdout)
        if use_color
        else logging.StreamHandler(sys.stdout)
    )

    level = LOG_LEVELS[level_name]
    logger.setLevel(level)
    handler.setLevel(level)

    if use_color:
        formatter: logging.Formatter = ColoredStructuredFormatter(
            "%(log_color)s" + LOG_FORMAT,
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    else:
        formatter = StructuredFormatter(LOG_FORMAT)

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    loggers[name] = logger
    return logger


__all__ = [
    "ColoredStructuredFormatter",
    "StructuredFormatter",
    "get_logger",
]
