import logging
import os
import re
import sys
from typing import Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


class LogSanitizer(logging.Filter):
    """Strip control characters from log arguments.

    Session ids, file names and share ids arrive from clients; without this a
    crafted value could inject fake lines into the log.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._clean(v) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._clean(arg) for arg in record.args)
        return True

    @staticmethod
    def _clean(value):
        if isinstance(value, str):
            return _CONTROL_CHARS.sub("?", value)
        return value


def setup_logging(component_name: str, log_level: Optional[str] = None) -> logging.Logger:
    """
    Set up logging for the process and return the component's logger.

    The handler is installed on the root logger so the module-level loggers
    (`logging.getLogger(__name__)`) of every component share it.

    Args:
        component_name: Name of the component (e.g. 'web', 'sweeper')
        log_level: DEBUG, INFO, WARNING or ERROR. Defaults to LOG_LEVEL env var or INFO

    Returns:
        Configured logger instance
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    logger = logging.getLogger(component_name)

    if any(getattr(h, "_sendfile_handler", False) for h in root.handlers):
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler._sendfile_handler = True
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    handler.addFilter(LogSanitizer())

    root.addHandler(handler)

    return logger
