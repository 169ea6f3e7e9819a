"""
DeviceChannel Protocol - Abstract interface for talking to one remote device.

The engine never opens a transport itself; every byte that reaches a device
goes through a DeviceChannel. Implementations own timeouts and must not
retry: a retry policy belongs to the caller.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, runtime_checkable

from .install_status import InstallStatus


@dataclass
class InstallResult:
    """
    Result of a package manager install.

    Attributes:
        status: Classified package manager outcome
        reason: Failure message reported by the package manager (None on success)
        output: Raw package manager output, for diagnostics
    """
    status: InstallStatus
    reason: Optional[str] = None
    output: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status.succeeded


@runtime_checkable
class DeviceChannel(Protocol):
    """
    Interface for device operations.

    @runtime_checkable decorator enables isinstance() checks:
        channel = AdbDeviceChannel(...)
        assert isinstance(channel, DeviceChannel)

    Implementations:
        - AdbDeviceChannel: adb client over its line-protocol daemon

    Every method may raise DeviceError for transport failures (device gone,
    timeout, client missing). Application-level install failures are
    reported through InstallResult.status instead.
    """

    serial: Optional[str]

    def push(self, data: bytes, remote_path: str) -> None:
        """
        Write data to remote_path, creating parent directories.

        Raises:
            DeviceError: If the transfer fails
        """
        ...

    def shell(self, command: str, stdin: Optional[bytes] = None) -> bytes:
        """
        Run a shell command on the device and return its stdout.

        Raises:
            DeviceError: If the command cannot run or exits non-zero
        """
        ...

    def install(self, remote_paths: Sequence[str], options: Sequence[str] = ()) -> InstallResult:
        """
        Install one package made of remote_paths (base archive first).

        Returns:
            InstallResult; status OK on success, DEVICE_NOT_FOUND or
            DEVICE_NOT_RESPONDING when the device is gone

        Raises:
            DeviceError: If the transport client cannot be run
        """
        ...

    def uninstall(self, package_id: str) -> bool:
        """Remove package_id from the device. Returns True if it was removed."""
        ...
