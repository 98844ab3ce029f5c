"""
Logging Helpers

One console logger per module. The level comes from ProfilerSettings.log_level
(see config.py) and can be overridden with the PROFILER_LOG_LEVEL environment
variable.
"""

import logging
import os

LOGGER_CONTENT_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
LOGGER_TIME_FORMAT = '%Y-%m-%d %H:%M:%S'
LOG_LEVEL_ENV_VAR = 'PROFILER_LOG_LEVEL'

_DEFAULT_LOGGERS: dict[str, logging.Logger] = {}
_log_level = os.environ.get(LOG_LEVEL_ENV_VAR, 'WARNING').upper()

formatter = logging.Formatter(LOGGER_CONTENT_FORMAT, LOGGER_TIME_FORMAT)


def get_logger(module: str = 'profiler') -> logging.Logger:
    """
    Get (or create) the logger for a module.

    The first call for a module attaches a StreamHandler with the shared
    formatter. Records still propagate so callers embedding the library can
    route them through their own handlers.
    """
    logger = _DEFAULT_LOGGERS.get(module)
    if logger is None:
        logger = logging.getLogger(module)
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(_log_level)
        _DEFAULT_LOGGERS[module] = logger
    return logger


def set_log_level(level: str) -> None:
    """Apply a level to every logger handed out so far and to future ones."""
    global _log_level
    env_level = os.environ.get(LOG_LEVEL_ENV_VAR)
    _log_level = (env_level or level).upper()
    for logger in _DEFAULT_LOGGERS.values():
        logger.setLevel(_log_level)
