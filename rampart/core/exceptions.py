"""
Error taxonomy for the configuration service.

Every error carries an ErrorCode so callers and the CLI can tell failure
classes apart without string matching.
"""

from enum import Enum
from typing import Any, List, Optional


class ErrorCode(Enum):
    """Error codes for configuration service failures."""
    UNKNOWN_ERROR = 20000
    VALIDATION_ERROR = 20001
    PARSE_ERROR = 20002
    INTEGRITY_ERROR = 20003
    PERSISTENCE_ERROR = 20004
    NOT_FOUND = 20005
    NOT_INITIALIZED = 20006
    INVALID_PATH = 20007
    STARTUP_VALIDATION_FAILED = 20008


class RampartError(Exception):
    """Base class for all configuration service errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Any] = None
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class ValidationError(RampartError):
    """A candidate configuration was rejected on structural or semantic grounds."""

    def __init__(self, message: str, errors: Optional[List[str]] = None,
                 code: ErrorCode = ErrorCode.VALIDATION_ERROR):
        self.errors = list(errors or [])
        super().__init__(code, message, {'errors': self.errors})


class ConfigParseError(ValidationError):
    """Persisted configuration could not be parsed."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message, [message], code=ErrorCode.PARSE_ERROR)


class IntegrityError(RampartError):
    """An archived version failed hash verification."""

    def __init__(self, message: str, version_id: Optional[str] = None):
        self.version_id = version_id
        super().__init__(ErrorCode.INTEGRITY_ERROR, message, {'version_id': version_id})


class PersistenceError(RampartError):
    """A durable write or read failed."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(ErrorCode.PERSISTENCE_ERROR, message, {'path': path})


class NotFoundError(RampartError):
    """A requested version or record does not exist."""

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(ErrorCode.NOT_FOUND, message, {'key': key})


class NotInitializedError(RampartError):
    """An accessor was called before initialize() completed."""

    def __init__(self, message: str = "Configuration manager is not initialized"):
        super().__init__(ErrorCode.NOT_INITIALIZED, message)


class ConfigPathError(RampartError):
    """A typed path does not resolve against the configuration schema."""

    def __init__(self, path: Any):
        self.path = tuple(path)
        super().__init__(ErrorCode.INVALID_PATH,
                         f"Unknown configuration path: {'.'.join(map(str, self.path))}",
                         {'path': list(self.path)})


class StartupValidationError(RampartError):
    """Critical health checks failed during a production startup."""

    def __init__(self, failed_checks: List[str]):
        self.failed_checks = list(failed_checks)
        super().__init__(
            ErrorCode.STARTUP_VALIDATION_FAILED,
            f"Critical health checks failed: {', '.join(self.failed_checks)}",
            {'failed_checks': self.failed_checks}
        )
