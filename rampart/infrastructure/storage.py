"""
Durable record helpers.

Every record is written atomically: the content is staged to a temporary
file in the target directory and moved into place with ``os.replace``, so a
crash mid-write leaves the previous record intact.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

import yaml

from ..core.exceptions import PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar('T')


def atomic_write_text(path: Path, content: str) -> None:
    """
    Atomically replace ``path`` with ``content``.

    Raises:
        PersistenceError: If the file cannot be written
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
    except OSError as e:
        raise PersistenceError(f"Failed to write {path}: {e}", str(path)) from e


def dump_data(data: Any, fmt: str = "json") -> str:
    """Serialize ``data`` as JSON or YAML text."""
    fmt = fmt.lower()
    if fmt == "json":
        return json.dumps(data, indent=2, ensure_ascii=False, default=str)
    if fmt in ("yaml", "yml"):
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)
    raise ValueError(f"Unsupported format: {fmt}")


def parse_data(text: str, fmt: str = "json") -> Any:
    """
    Parse JSON or YAML text.

    Raises:
        ValueError: If the text is not valid in the given format
    """
    fmt = fmt.lower()
    if fmt == "json":
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON: {e}") from e
    if fmt in ("yaml", "yml"):
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML: {e}") from e
    raise ValueError(f"Unsupported format: {fmt}")


def format_for_path(path: Path) -> str:
    return "yaml" if Path(path).suffix.lower() in ('.yaml', '.yml') else "json"


def atomic_write_data(path: Path, data: Any, fmt: Optional[str] = None) -> None:
    """Serialize ``data`` by the file suffix and write it atomically."""
    atomic_write_text(path, dump_data(data, fmt or format_for_path(path)))


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    attempts: int = 3,
    delay: float = 0.2,
    backoff_factor: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (PersistenceError, OSError),
    description: str = "operation"
) -> T:
    """
    Run ``operation`` with bounded retries and exponential backoff.

    Args:
        operation: Zero-argument coroutine factory
        attempts: Maximum number of attempts
        delay: Initial delay between attempts in seconds
        backoff_factor: Factor applied to the delay after each failure
        exceptions: Exception types that trigger a retry
        description: Name used in log messages

    Returns:
        Result of the first successful attempt

    Raises:
        The last exception once all attempts have failed
    """
    current_delay = delay
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except exceptions as e:
            if attempt >= attempts:
                logger.error(f"All {attempts} attempts failed for {description}: {e}")
                raise
            logger.warning(f"Attempt {attempt}/{attempts} for {description} failed: {e}")
            await asyncio.sleep(current_delay)
            current_delay *= backoff_factor
    raise ValueError(f"attempts must be at least 1, got {attempts}")
