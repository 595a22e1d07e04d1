"""Logging setup shared by the engine, the analyzers and the CLI."""

import functools
import logging
import logging.config
import os
import time
from typing import Any, Dict, Optional

ROOT_LOGGER = 'workspace_lineage'
DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class LineageLogger:
    """Configures the ``workspace_lineage`` logger tree once and hands out child loggers."""

    _loggers: Dict[str, logging.Logger] = {}
    _configured = False

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        if name not in cls._loggers:
            if not cls._configured:
                cls.setup_logging()
            cls._loggers[name] = logging.getLogger(f"{ROOT_LOGGER}.{name}")
        return cls._loggers[name]

    @classmethod
    def setup_logging(
        cls,
        level: Optional[str] = None,
        format_string: Optional[str] = None,
        log_file: Optional[str] = None,
        enable_console: bool = True,
    ):
        """
        Configure the lineage logger tree.

        Unset arguments fall back to the ``WORKSPACE_LINEAGE_LOG_LEVEL``,
        ``WORKSPACE_LINEAGE_LOG_FORMAT`` and ``WORKSPACE_LINEAGE_LOG_FILE``
        environment variables.

        Args:
            level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            format_string: Format used by every handler
            log_file: Optional path of a rotating log file
            enable_console: Whether to attach a stderr handler
        """
        log_level = (level or os.getenv('WORKSPACE_LINEAGE_LOG_LEVEL', 'WARNING')).upper()
        format_string = format_string or os.getenv('WORKSPACE_LINEAGE_LOG_FORMAT', DEFAULT_FORMAT)
        log_file = log_file or os.getenv('WORKSPACE_LINEAGE_LOG_FILE')

        handlers: Dict[str, Dict[str, Any]] = {}
        # stdout is reserved for query output
        if enable_console:
            handlers['stderr'] = {
                'class': 'logging.StreamHandler',
                'formatter': 'lineage',
                'stream': 'ext://sys.stderr',
            }
        if log_file:
            handlers['file'] = {
                'class': 'logging.handlers.RotatingFileHandler',
                'formatter': 'lineage',
                'filename': log_file,
                'maxBytes': 5 * 1024 * 1024,
                'backupCount': 3,
                'encoding': 'utf8',
            }

        logging.config.dictConfig({
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {'lineage': {'format': format_string, 'datefmt': '%Y-%m-%d %H:%M:%S'}},
            'handlers': handlers,
            'loggers': {
                ROOT_LOGGER: {'level': log_level, 'handlers': list(handlers), 'propagate': True},
            },
        })
        cls._configured = True
        logging.getLogger(f"{ROOT_LOGGER}.logging").debug(
            f"Lineage logging at {log_level} (handlers: {', '.join(handlers) or 'none'})"
        )


def get_logger(name: str) -> logging.Logger:
    """Child logger of ``workspace_lineage`` named ``name``."""
    return LineageLogger.get_logger(name)


def log_performance(logger: logging.Logger, level: int = logging.INFO):
    """Decorator that logs how long the wrapped call took, and failures with their duration."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(f"{func.__qualname__} failed after {time.perf_counter() - started:.3f}s: {e}")
                raise
            logger.log(level, f"{func.__qualname__} took {time.perf_counter() - started:.3f}s")
            return result
        return wrapper
    return decorator
