"""Core dependency injection infrastructure for swapdeploy.

This module provides Protocol-based abstractions that enable dependency injection
and testability throughout the codebase. All external dependencies (filesystem,
subprocess, time, etc.) are abstracted via Protocols with production implementations.

Design:
- Protocol-based abstractions (typing.Protocol) for structural typing
- Production implementations for real-world use
- Easy mocking for unit tests
"""

from swapdeploy.core.protocols import (
    Logger,
    FileSystemService,
    ProcessRunner,
    ProcessResult,
    TimeProvider,
    ToolLocator,
    ConfigLoader,
)

from swapdeploy.core.implementations import (
    ConsoleLogger,
    RealFileSystemService,
    SubprocessRunner,
    SystemTimeProvider,
    SystemToolLocator,
    YamlConfigLoader,
)

__all__ = [
    # Protocols
    "Logger",
    "FileSystemService",
    "ProcessRunner",
    "ProcessResult",
    "TimeProvider",
    "ToolLocator",
    "ConfigLoader",
    # Implementations
    "ConsoleLogger",
    "RealFileSystemService",
    "SubprocessRunner",
    "SystemTimeProvider",
    "SystemToolLocator",
    "YamlConfigLoader",
]
