"""
Deployment exceptions.

Every failure raised by the engine derives from SwapDeployError so callers can
separate engine failures from programming errors. Each error carries enough
structure (which unit, which device operation, which kind) for a caller to
choose between falling back to a full reinstall and surfacing the error.
"""

from typing import Optional


class SwapDeployError(Exception):
    """
    Base class for all engine failures.

    Attributes:
        message: Human readable description
        suggestion: Optional actionable hint shown after the message
    """

    def __init__(self, message: str, suggestion: Optional[str] = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.message}\nSuggestion: {self.suggestion}"
        return self.message


class ArchiveError(SwapDeployError):
    """
    Raised when a package archive cannot be indexed.

    Always fatal to the current deployment attempt, never retried.

    Kinds:
        TOO_SHORT, NO_EOCD, BAD_CENTRAL_DIRECTORY, UNSUPPORTED,
        DUPLICATE_ENTRY, UNREADABLE
    """

    TOO_SHORT = "TOO_SHORT"
    NO_EOCD = "NO_EOCD"
    BAD_CENTRAL_DIRECTORY = "BAD_CENTRAL_DIRECTORY"
    UNSUPPORTED = "UNSUPPORTED"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    UNREADABLE = "UNREADABLE"

    def __init__(self, kind: str, message: str, path: Optional[str] = None):
        self.kind = kind
        self.path = path
        if path:
            message = f"{message} ({path})"
        super().__init__(message)


class CacheError(SwapDeployError):
    """
    Raised by cache backends when storage is unavailable or corrupt.

    Never escapes ContentCache: it degrades to a cache miss.
    """
    pass


class DeviceError(SwapDeployError):
    """
    Transport-level failure talking to a device.

    Examples:
        - device disconnected or offline
        - command timed out
        - adb client missing

    Distinct from an application-level InstallStatus failure.
    """

    def __init__(
        self,
        operation: str,
        message: str,
        serial: Optional[str] = None,
        suggestion: Optional[str] = None
    ):
        self.operation = operation
        self.serial = serial
        target = f" on {serial}" if serial else ""
        super().__init__(f"{operation} failed{target}: {message}", suggestion)


class RedefineError(SwapDeployError):
    """
    Raised when a live redefinition cannot be applied.

    Fatal to the live-swap path. Raised before anything is submitted to the
    target process, or when the target rejected the whole batch, so the
    process is always left as it was.
    """

    ATTACH_TIMEOUT = "ATTACH_TIMEOUT"
    ATTACH_FAILED = "ATTACH_FAILED"
    STALE_BREADCRUMB = "STALE_BREADCRUMB"
    UNRESOLVED_UNIT = "UNRESOLVED_UNIT"
    MISSING_PAYLOAD = "MISSING_PAYLOAD"
    REJECTED = "REJECTED"
    AGENT_UNREADABLE = "AGENT_UNREADABLE"

    def __init__(self, kind: str, message: str, unit: Optional[str] = None):
        self.kind = kind
        self.unit = unit
        super().__init__(
            message,
            "Fall back to a full reinstall with --fallback-install"
        )


class TaskCancelledError(SwapDeployError):
    """Raised when retrieving the result of a task that was never started."""
    pass


class ConfigError(SwapDeployError):
    """Raised for malformed configuration files."""
    pass
