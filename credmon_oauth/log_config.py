"""
Log sink setup. The daemon logs to a size-rotated file configured through the
batch scheduler's settings, or to stderr when asked to; the file sink is rebuilt on reload.
"""
import logging
import logging.handlers
import sys
from typing import Any

from credmon_oauth.config import Config, coerce_to_int
from credmon_oauth.errors import ConfigError

logger = logging.getLogger(__name__)

LOG_PATH_KEY = "CREDMON_OAUTH_LOG"
LOG_SIZE_KEY = "MAX_CREDMON_OAUTH_LOG"
LOG_ROTATIONS_KEY = "MAX_NUM_CREDMON_OAUTH_LOG"
LOG_LEVEL_KEY = "CREDMON_OAUTH_DEBUG"

LOG_DEFAULT_LEVEL = logging.WARNING
LOG_DEFAULT_SIZE = 1_000_000_000
LOG_DEFAULT_ROTATIONS = 5
LOG_DEFAULT_PATH = "/var/log/condor/CredMonOAuthLog"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)-24s - %(message)s"

_SIZE_SUFFIXES = {"Kb": 1_000, "Mb": 1_000_000, "Gb": 1_000_000_000}

# Handler installed on the root logger by configure_logging
_handler: logging.Handler | None = None


def get_size(config: Config, key: str) -> int:
    """Byte count from an int or a string like '100', '10Kb', '10Mb', '1Gb'."""
    value: Any = config.get(key)
    if value is None:
        return LOG_DEFAULT_SIZE
    if isinstance(value, str):
        value = value.strip()
        for suffix, multiplier in _SIZE_SUFFIXES.items():
            if value.endswith(suffix):
                number = value[: -len(suffix)].strip()
                if number.isdigit():
                    return int(number) * multiplier
                logger.warning("Bad size %r for %s, using default", value, key)
                return LOG_DEFAULT_SIZE
    try:
        return coerce_to_int(value, key)
    except ConfigError:
        logger.warning("Bad size %r for %s, using default", value, key)
        return LOG_DEFAULT_SIZE


def get_log_level(config: Config) -> int:
    value = config.get(LOG_LEVEL_KEY)
    if value == "D_ALWAYS":
        return logging.WARNING
    if value == "D_FULLDEBUG":
        return logging.INFO
    if value in ("D_ALL", "D_ANY"):
        return logging.DEBUG
    return LOG_DEFAULT_LEVEL


def _rotations(config: Config) -> int:
    value = config.get(LOG_ROTATIONS_KEY)
    if value is None:
        return LOG_DEFAULT_ROTATIONS
    try:
        return max(0, coerce_to_int(value, LOG_ROTATIONS_KEY))
    except ConfigError:
        return LOG_DEFAULT_ROTATIONS


def file_handler(config: Config) -> logging.handlers.RotatingFileHandler:
    """Rotating file handler built from CREDMON_OAUTH_LOG / MAX_CREDMON_OAUTH_LOG / MAX_NUM_CREDMON_OAUTH_LOG."""
    path = config.get(LOG_PATH_KEY) or LOG_DEFAULT_PATH
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=get_size(config, LOG_SIZE_KEY),
        backupCount=_rotations(config),
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def stderr_handler() -> logging.StreamHandler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def _install(handler: logging.Handler, level: int) -> logging.Handler:
    global _handler
    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)
        _handler.close()
    root.addHandler(handler)
    root.setLevel(level)
    _handler = handler
    return handler


def configure_logging(config: Config, output: str | None = None) -> logging.Handler:
    """Log to stderr when output == 'stderr', else to the configured rotating file."""
    level = get_log_level(config)
    if output == "stderr":
        return _install(stderr_handler(), level)
    return _install(file_handler(config), level)


def update_file_logging(config: Config) -> None:
    """Rebuild the file sink from a fresh configuration; a stderr sink only picks up the new level."""
    if not isinstance(_handler, logging.handlers.RotatingFileHandler):
        if _handler is not None:
            logging.getLogger().setLevel(get_log_level(config))
        return
    _install(file_handler(config), get_log_level(config))
