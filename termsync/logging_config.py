import logging
import os
import sys
from logging import Handler
from typing import Iterable, Union

from tqdm import tqdm

LOGGER_NAME = "termsync"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# httpx logs one INFO line per request.
HTTP_LOGGERS = ("httpx", "httpcore")


class TqdmLoggingHandler(Handler):
    """Console handler that routes records through tqdm.write, above the phase bars."""

    def emit(self, record):
        try:
            tqdm.write(self.format(record), file=sys.stderr)
            self.flush()
        except (KeyboardInterrupt, SystemExit):
            raise
        except Exception:
            self.handleError(record)


def parse_log_level(value: Union[str, int, None], default: int = logging.INFO) -> int:
    """Accept a level name ('debug', 'WARNING') or number; anything else yields ``default``."""
    if isinstance(value, int):
        return value
    if not value:
        return default
    value = str(value).strip()
    if value.isdigit():
        return int(value)
    level = logging.getLevelName(value.upper())
    return level if isinstance(level, int) else default


def quiet_http_loggers(level: int = logging.WARNING, names: Iterable[str] = HTTP_LOGGERS) -> None:
    for name in names:
        logging.getLogger(name).setLevel(level)


def setup_logger(log_level_str: str, log_file_path: str, log_to_console: bool,
                 http_log_level: str = "WARNING") -> logging.Logger:
    """
    Configure the ``termsync`` logger once per run.

    Every module logs to ``termsync.<module>``; those records propagate here
    and nowhere else, so a host application's root logger is left alone.

    Args:
        log_level_str: Level name or number for termsync's own records.
        log_file_path: Log file; its directory is created. Empty disables file logging.
        log_to_console: Also write to stderr through tqdm.
        http_log_level: Level for the httpx/httpcore loggers.

    Returns:
        The configured logger instance.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(parse_log_level(log_level_str))

    # Re-running setup (tests, repeated CLI calls) must not stack handlers.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)

    if log_file_path:
        log_dir = os.path.dirname(log_file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, encoding='utf-8')
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if log_to_console:
        console_handler = TqdmLoggingHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    quiet_http_loggers(parse_log_level(http_log_level, logging.WARNING))
    return logger
