"""
Configuration file watcher.

Watchdog delivers file system events on its own thread; the handler hands
them to the event loop with ``call_soon_threadsafe`` and debounces them, so
a burst of writes (including atomic replace) results in a single reload.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class IConfigWatcher(ABC):
    """Interface for configuration file watchers."""

    @abstractmethod
    async def start(self) -> None:
        """Start watching for configuration changes."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop watching for configuration changes."""
        pass

    @abstractmethod
    def is_running(self) -> bool:
        """Check if the watcher is currently running."""
        pass


async def _invoke(callback: Callable[[], Any]) -> None:
    result = callback()
    if asyncio.iscoroutine(result):
        await result


class ConfigFileHandler(FileSystemEventHandler):
    """
    Handles file system events for the configuration file.

    Every matching event restarts the debounce timer; the reload callback
    runs once the file has been quiet for ``debounce_delay`` seconds.
    """

    def __init__(
        self,
        config_path: Path,
        reload_callback: Callable[[], Any],
        loop: asyncio.AbstractEventLoop,
        debounce_delay: float = 1.0
    ):
        """
        Initialize the file handler.

        Args:
            config_path: Path to the configuration file to watch
            reload_callback: Callback to run when the file changes
            loop: Event loop the callback runs on
            debounce_delay: Quiet period in seconds before reloading
        """
        super().__init__()
        self.config_path = config_path
        self.reload_callback = reload_callback
        self.loop = loop
        self.debounce_delay = debounce_delay
        self._pending_task: Optional[asyncio.Task[None]] = None

    def _matches(self, path: Any) -> bool:
        try:
            return Path(str(path)).resolve() == self.config_path
        except OSError:
            return False

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._matches(event.src_path):
            self._notify()

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._matches(event.src_path):
            self._notify()

    def on_moved(self, event: FileSystemEvent) -> None:
        # Atomic replace shows up as a move onto the config path
        if not event.is_directory and self._matches(getattr(event, 'dest_path', '')):
            self._notify()

    def _notify(self) -> None:
        logger.debug(f"Configuration file change detected: {self.config_path}")
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.schedule_reload)

    def schedule_reload(self) -> None:
        """Restart the debounce timer. Must run on the event loop."""
        if self._pending_task and not self._pending_task.done():
            self._pending_task.cancel()
        self._pending_task = self.loop.create_task(self._debounced_reload())

    async def _debounced_reload(self) -> None:
        try:
            await asyncio.sleep(self.debounce_delay)
            logger.info(f"Configuration file changed: {self.config_path}")
            await _invoke(self.reload_callback)
        except asyncio.CancelledError:
            logger.debug("Configuration reload superseded by a newer change")
        except Exception as e:
            logger.error(f"Error reloading configuration: {e}")

    async def cancel_pending(self) -> None:
        if self._pending_task and not self._pending_task.done():
            self._pending_task.cancel()
            try:
                await self._pending_task
            except asyncio.CancelledError:
                pass
        self._pending_task = None


class ConfigWatcher(IConfigWatcher):
    """
    Configuration file watcher using watchdog.
    """

    def __init__(
        self,
        config_path: Path,
        reload_callback: Callable[[], Any],
        debounce_delay: float = 1.0
    ):
        self.config_path = Path(config_path).resolve()
        self.reload_callback = reload_callback
        self.debounce_delay = debounce_delay

        self._observer: Optional[Any] = None
        self._handler: Optional[ConfigFileHandler] = None
        self._running = False

    async def start(self) -> None:
        """Start watching the configuration file's directory."""
        if self._running:
            logger.warning("Configuration watcher is already running")
            return

        try:
            self._handler = ConfigFileHandler(
                config_path=self.config_path,
                reload_callback=self.reload_callback,
                loop=asyncio.get_running_loop(),
                debounce_delay=self.debounce_delay
            )

            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            self._observer = Observer()
            self._observer.schedule(self._handler, str(self.config_path.parent), recursive=False)
            self._observer.start()
            self._running = True

            logger.info(f"Started watching configuration file: {self.config_path}")

        except Exception as e:
            logger.error(f"Failed to start configuration watcher: {e}")
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the observer and cancel any pending reload."""
        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join, 5.0)
            self._observer = None

        if self._handler is not None:
            await self._handler.cancel_pending()
            self._handler = None

        if self._running:
            self._running = False
            logger.info("Stopped configuration file watcher")

    def is_running(self) -> bool:
        return self._running and self._observer is not None and self._observer.is_alive()


class PollingConfigWatcher(IConfigWatcher):
    """
    Configuration watcher that polls the file's modification time.

    Useful on file systems that do not deliver change notifications.
    """

    def __init__(
        self,
        config_path: Path,
        reload_callback: Callable[[], Any],
        poll_interval: float = 1.0
    ):
        self.config_path = Path(config_path).resolve()
        self.reload_callback = reload_callback
        self.poll_interval = poll_interval

        self._running = False
        self._task: Optional[asyncio.Task[None]] = None
        self._last_mtime: Optional[float] = None

    async def start(self) -> None:
        """Start polling for configuration file changes."""
        if self._running:
            logger.warning("Polling configuration watcher is already running")
            return

        self._last_mtime = self._mtime()
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"Started polling configuration file: {self.config_path}")

    async def stop(self) -> None:
        """Stop polling for configuration file changes."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Stopped polling configuration file watcher")

    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    def _mtime(self) -> Optional[float]:
        try:
            return self.config_path.stat().st_mtime
        except OSError:
            return None

    async def _poll_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.poll_interval)
            current = self._mtime()
            if current is None or current == self._last_mtime:
                continue
            self._last_mtime = current
            logger.info(f"Configuration file changed: {self.config_path}")
            try:
                await _invoke(self.reload_callback)
            except Exception as e:
                logger.error(f"Error reloading configuration: {e}")


def create_config_watcher(
    config_path: Path,
    reload_callback: Callable[[], Any],
    use_polling: bool = False,
    **kwargs: Any
) -> IConfigWatcher:
    """
    Create a configuration file watcher.

    Args:
        config_path: Path to the configuration file to watch
        reload_callback: Callback to run when the file changes
        use_polling: Poll modification times instead of using file system events
        **kwargs: ``debounce_delay`` or ``poll_interval``

    Returns:
        Configuration watcher instance
    """
    if use_polling:
        return PollingConfigWatcher(
            config_path=config_path,
            reload_callback=reload_callback,
            poll_interval=kwargs.get('poll_interval', 1.0)
        )
    return ConfigWatcher(
        config_path=config_path,
        reload_callback=reload_callback,
        debounce_delay=kwargs.get('debounce_delay', 1.0)
    )
