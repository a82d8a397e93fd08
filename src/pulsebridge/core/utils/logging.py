"""
Logging setup for pulsebridge on top of loguru.

Library code just does ``from loguru import logger``; applications call
:func:`setup_logging` once at startup.  Plugin code can use
:func:`plugin_logger` so its records carry the plugin id, which the file
sink (and JSON output) pick up from ``extra``.
"""

import sys

from loguru import logger

CONSOLE_FORMAT = "<level>[{level.name}]</level> {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {extra[plugin]} | {name}:{function} | {message}"


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    serialize: bool = False,
    rotation: str = "10 MB",
    retention: str = "30 days",
) -> None:
    """
    Configure console and optional file output.

    Args:
        level: Minimum log level, any case (debug, INFO, ...).
        log_file: Path to log file. If None, only logs to stderr.
        serialize: Write the file sink as JSON lines instead of text.
        rotation: Log file rotation size.
        retention: How long to keep rotated logs.
    """
    level = level.upper()
    logger.remove()
    logger.configure(extra={"plugin": "-"})
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)

    if log_file:
        logger.add(
            log_file,
            level=level,
            format=FILE_FORMAT,
            serialize=serialize,
            rotation=rotation,
            retention=retention,
        )


def plugin_logger(plugin_id: str):
    """A logger whose records are tagged with *plugin_id*."""
    return logger.bind(plugin=plugin_id)
