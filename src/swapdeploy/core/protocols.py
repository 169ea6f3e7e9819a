"""Protocol definitions for dependency injection.

This module defines Protocol-based abstractions for the external dependencies
the engine touches directly (console, filesystem, subprocesses, clock, tools,
YAML). Protocols use structural typing, so any class implementing these
methods satisfies the Protocol without explicit inheritance.

Benefits:
- Easy to mock in tests (Mock(spec=Protocol))
- No inheritance required
- Clear interface contracts
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Dict, Any, Optional, List, Union, Iterator


class Logger(Protocol):
    """Abstraction for user-facing log output.

    Used by the orchestrator and commands instead of print().
    """

    def info(self, message: str) -> None:
        """Log informational message."""
        ...

    def warning(self, message: str) -> None:
        """Log warning message."""
        ...

    def error(self, message: str) -> None:
        """Log error message."""
        ...

    def debug(self, message: str) -> None:
        """Log debug message."""
        ...


class FileSystemService(Protocol):
    """Abstraction for filesystem operations.

    Archives are read as bytes before being pushed; history snapshots are
    copied and removed through this service.
    """

    def exists(self, path: Union[str, Path]) -> bool:
        """Check if path exists."""
        ...

    def is_dir(self, path: Union[str, Path]) -> bool:
        """Check if path is a directory."""
        ...

    def read_bytes(self, path: Union[str, Path]) -> bytes:
        """Read entire file as bytes."""
        ...

    def copy_file(self, source: Union[str, Path], destination: Union[str, Path]) -> None:
        """Copy a file, replacing destination."""
        ...

    def mkdir(self, path: Union[str, Path], parents: bool = True, exist_ok: bool = True) -> None:
        """Create directory (with parents if specified)."""
        ...

    def rmtree(self, path: Union[str, Path]) -> None:
        """Recursively remove directory tree."""
        ...

    def iterdir(self, path: Union[str, Path]) -> Iterator[Path]:
        """Iterate over directory contents."""
        ...


@dataclass
class ProcessResult:
    """Completed process: exit code and raw output streams."""
    returncode: int
    stdout: bytes
    stderr: bytes


class ProcessRunner(Protocol):
    """Abstraction for running a command to completion.

    Wraps subprocess.run to enable testing without spawning real processes.
    Raises subprocess.TimeoutExpired on timeout and OSError when the
    executable cannot be started.
    """

    def run(
        self,
        cmd: List[str],
        input: Optional[bytes] = None,
        timeout: Optional[float] = None
    ) -> ProcessResult:
        """Execute command, feed input to stdin, and capture output."""
        ...


class TimeProvider(Protocol):
    """Abstraction for time operations.

    Enables deterministic testing of deployment timings.
    """

    def current_time(self) -> float:
        """Get current time in seconds since epoch."""
        ...


class ToolLocator(Protocol):
    """Abstraction for external tool discovery.

    Wraps shutil.which() so device channels can be tested without adb installed.
    """

    def find_tool(self, tool_name: str) -> Optional[str]:
        """Find tool in PATH and return absolute path, or None if not found."""
        ...

    def has_tool(self, tool_name: str) -> bool:
        """Check if tool exists in PATH."""
        ...


class ConfigLoader(Protocol):
    """Abstraction for configuration file loading.

    Wraps YAML loading to enable testing with mock configurations
    without requiring actual config files.
    """

    def load_yaml(self, path: str) -> Dict[str, Any]:
        """Load YAML file and return parsed dictionary."""
        ...
