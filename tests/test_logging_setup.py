"""
Tests for logging setup.
"""

import logging

import pytest
from pathlib import Path
from typing import Iterator

from loguru import logger as loguru_logger

from rampart.infrastructure.config.settings import LoggingSettings
from rampart.infrastructure.logging.setup import LOG_FILE_NAME, LoggingManager, setup_logging


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    yield
    loguru_logger.remove()
    logging.getLogger().handlers.clear()


def file_settings(tmp_path: Path, level: str = "INFO") -> LoggingSettings:
    return LoggingSettings(level=level, log_directory=str(tmp_path / "logs"),
                           console_enabled=False, file_enabled=True)


class TestSetupLogging:
    """Test cases for the loguru sinks."""

    def test_standard_logging_reaches_file_sink(self, tmp_path: Path) -> None:
        setup_logging(file_settings(tmp_path))

        logging.getLogger("rampart.tests").info("routed through loguru")
        logging.getLogger("rampart.tests").debug("below the level")

        content = (tmp_path / "logs" / LOG_FILE_NAME).read_text()
        assert "routed through loguru" in content
        assert "below the level" not in content
        assert "| INFO     |" in content

    def test_no_file_sink_when_disabled(self, tmp_path: Path) -> None:
        settings = LoggingSettings(log_directory=str(tmp_path / "logs"),
                                   console_enabled=False, file_enabled=False)

        setup_logging(settings)
        logging.getLogger("rampart.tests").warning("nowhere")

        assert not (tmp_path / "logs").exists()


class TestLoggingManager:
    """Test cases for the logging manager."""

    @pytest.mark.asyncio
    async def test_lifecycle(self, tmp_path: Path) -> None:
        manager = LoggingManager(file_settings(tmp_path))

        await manager.start()
        health = await manager.check_health()
        await manager.stop()

        assert health['status'] == 'running'
        assert health['details']['log_directory_exists']
        assert (await manager.check_health())['status'] == 'stopped'

    @pytest.mark.asyncio
    async def test_set_level_reinstalls_sinks(self, tmp_path: Path) -> None:
        manager = LoggingManager(file_settings(tmp_path))
        await manager.start()

        manager.set_level("debug")
        logging.getLogger("rampart.tests").debug("now visible")
        await manager.stop()

        assert manager.settings.level == "DEBUG"
        assert "now visible" in (tmp_path / "logs" / LOG_FILE_NAME).read_text()

    @pytest.mark.asyncio
    async def test_configure_before_start(self, tmp_path: Path) -> None:
        manager = LoggingManager()

        await manager.configure(file_settings(tmp_path, level="WARNING"))

        assert manager.settings.level == "WARNING"
        assert not (tmp_path / "logs").exists()
