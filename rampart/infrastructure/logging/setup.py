"""
Logging setup and configuration utilities.

Modules log through the standard library (``logging.getLogger(__name__)``);
records are routed into loguru, which owns the console and rotating file
sinks.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger as loguru_logger

from ...core.interfaces.lifecycle import IComponent
from ..config.settings import LoggingSettings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"
LOG_FILE_NAME = "rampart.log"


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: Any = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside the logging module so loguru reports the right location
        frame = logging.currentframe()
        depth = 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        loguru_logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(settings: LoggingSettings) -> None:
    """
    Configure loguru sinks and route standard logging into them.

    Args:
        settings: Logging settings
    """
    loguru_logger.remove()

    if settings.console_enabled:
        loguru_logger.add(
            sys.stderr,
            format=CONSOLE_FORMAT,
            level=settings.level.upper(),
            colorize=True,
            backtrace=True,
            diagnose=False
        )

    if settings.file_enabled:
        log_dir = Path(settings.log_directory)
        log_dir.mkdir(parents=True, exist_ok=True)
        loguru_logger.add(
            log_dir / LOG_FILE_NAME,
            format=FILE_FORMAT,
            level=settings.level.upper(),
            rotation=settings.max_file_size,
            retention=settings.backup_count,
            compression="zip",
            backtrace=True,
            diagnose=False
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


class LoggingManager(IComponent):
    """
    Logging manager for runtime logging configuration.
    """

    def __init__(self, settings: Optional[LoggingSettings] = None) -> None:
        self._settings = settings or LoggingSettings()
        self._started = False
        self._logger = logging.getLogger(__name__)

    @property
    def name(self) -> str:
        """Get component name."""
        return "LoggingManager"

    @property
    def settings(self) -> LoggingSettings:
        return self._settings

    async def start(self) -> None:
        """Install the configured sinks."""
        if self._started:
            return

        setup_logging(self._settings)
        self._started = True

        self._logger.info("Logging manager started")
        self._logger.info(f"Log level: {self._settings.level}")

    async def stop(self) -> None:
        """Flush pending log messages."""
        if not self._started:
            return

        self._logger.info("Logging manager stopped")
        await loguru_logger.complete()
        self._started = False

    async def configure(self, settings: LoggingSettings) -> None:
        """Replace the logging settings, reinstalling sinks when running."""
        self._settings = settings
        if self._started:
            setup_logging(self._settings)
            self._logger.info("Logging configuration updated")

    def set_level(self, level: str) -> None:
        """Change the log level at runtime, e.g. from ``features.monitoring.log_level``."""
        if level.upper() == self._settings.level.upper():
            return
        self._settings = LoggingSettings(
            level=level.upper(),
            log_directory=self._settings.log_directory,
            max_file_size=self._settings.max_file_size,
            backup_count=self._settings.backup_count,
            console_enabled=self._settings.console_enabled,
            file_enabled=self._settings.file_enabled,
        )
        if self._started:
            setup_logging(self._settings)
            self._logger.info(f"Log level changed to {self._settings.level}")

    async def check_health(self) -> Dict[str, Any]:
        """Check logging manager health."""
        log_dir = Path(self._settings.log_directory)

        return {
            'healthy': True,
            'status': 'running' if self._started else 'stopped',
            'details': {
                'log_level': self._settings.level,
                'log_directory': str(log_dir),
                'log_directory_exists': log_dir.exists(),
                'console_enabled': self._settings.console_enabled,
                'file_enabled': self._settings.file_enabled,
                'max_file_size': self._settings.max_file_size,
                'backup_count': self._settings.backup_count
            }
        }
