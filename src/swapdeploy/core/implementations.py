"""Production implementations of dependency injection protocols.

This module provides real implementations that wrap actual external dependencies
(filesystem, subprocess, time, etc.). These are used in production code.

For testing, use mocks or test doubles instead of these implementations.
"""

import shutil
import subprocess
import sys
import time
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List, Union, Iterator, TextIO

from swapdeploy.core.protocols import ProcessResult


class ConsoleLogger:
    """Production logger that prints to console (stdout/stderr).

    Args:
        verbose: Also print debug messages
        stream: Where info/warning/debug go (default: stdout). Commands that
            print machine-readable output pass sys.stderr.
    """

    def __init__(self, verbose: bool = False, stream: Optional[TextIO] = None):
        self.verbose = verbose
        self.stream = stream

    def _out(self) -> TextIO:
        return self.stream or sys.stdout

    def info(self, message: str) -> None:
        """Print info message."""
        print(message, file=self._out())

    def warning(self, message: str) -> None:
        """Print warning message."""
        print(f"Warning: {message}", file=self._out())

    def error(self, message: str) -> None:
        """Print error message to stderr."""
        print(f"Error: {message}", file=sys.stderr)

    def debug(self, message: str) -> None:
        """Print debug message (verbose mode only)."""
        if self.verbose:
            print(f"Debug: {message}", file=self._out())


class RealFileSystemService:
    """Production filesystem service using real pathlib and shutil operations."""

    def exists(self, path: Union[str, Path]) -> bool:
        """Check if path exists."""
        return Path(path).exists()

    def is_dir(self, path: Union[str, Path]) -> bool:
        """Check if path is a directory."""
        return Path(path).is_dir()

    def read_bytes(self, path: Union[str, Path]) -> bytes:
        """Read entire file as bytes."""
        return Path(path).read_bytes()

    def copy_file(self, source: Union[str, Path], destination: Union[str, Path]) -> None:
        """Copy a file, replacing destination."""
        shutil.copyfile(source, destination)

    def mkdir(self, path: Union[str, Path], parents: bool = True, exist_ok: bool = True) -> None:
        """Create directory."""
        Path(path).mkdir(parents=parents, exist_ok=exist_ok)

    def rmtree(self, path: Union[str, Path]) -> None:
        """Recursively remove directory tree."""
        shutil.rmtree(path)

    def iterdir(self, path: Union[str, Path]) -> Iterator[Path]:
        """Iterate over directory contents."""
        return Path(path).iterdir()


class SubprocessRunner:
    """Production process runner using real subprocess.run."""

    def run(
        self,
        cmd: List[str],
        input: Optional[bytes] = None,
        timeout: Optional[float] = None
    ) -> ProcessResult:
        """Execute command and return its exit code and output."""
        completed = subprocess.run(
            cmd,
            input=input,
            capture_output=True,
            timeout=timeout,
            check=False
        )
        return ProcessResult(
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr
        )


class SystemTimeProvider:
    """Production time provider using real time module."""

    def current_time(self) -> float:
        """Get current time in seconds since epoch."""
        return time.time()


class SystemToolLocator:
    """Production tool locator using real shutil.which."""

    def find_tool(self, tool_name: str) -> Optional[str]:
        """Find tool in PATH."""
        return shutil.which(tool_name)

    def has_tool(self, tool_name: str) -> bool:
        """Check if tool exists in PATH."""
        return self.find_tool(tool_name) is not None


class YamlConfigLoader:
    """Production config loader using real YAML parser."""

    def load_yaml(self, path: str) -> Dict[str, Any]:
        """Load YAML file and return parsed dictionary (empty file -> {})."""
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}
