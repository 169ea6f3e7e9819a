"""
DeviceChannelFactory - Parse device strings and build device channels.

Format-based routing:
    (empty)               → AdbDeviceChannel, the single attached device
    emulator-5554         → AdbDeviceChannel(serial="emulator-5554")
    adb:R58M123ABC        → AdbDeviceChannel(serial="R58M123ABC")
    tcp://10.0.0.7:5555   → AdbDeviceChannel(serial="10.0.0.7:5555")
"""

from typing import Optional

from swapdeploy.core.protocols import ProcessRunner, ToolLocator
from swapdeploy.exceptions import DeviceError
from .adb_channel import AdbDeviceChannel, DEFAULT_TIMEOUT_S


class DeviceChannelFactory:
    """Factory for parsing device strings into channels."""

    @staticmethod
    def from_device_string(
        device: Optional[str],
        runner: ProcessRunner,
        tool_locator: ToolLocator,
        adb_path: str = "adb",
        timeout: float = DEFAULT_TIMEOUT_S
    ) -> AdbDeviceChannel:
        """
        Parse device string and return a channel for it.

        Args:
            device: Device string (None or "" for the only attached device)
            runner: Process runner handed to the channel
            tool_locator: Used to check that the adb client exists
            adb_path: adb executable name or path
            timeout: Per-command timeout in seconds

        Raises:
            ValueError: If format not recognized
            DeviceError: If the adb client cannot be found

        Example:
            channel = DeviceChannelFactory.from_device_string(
                "emulator-5554", SubprocessRunner(), SystemToolLocator()
            )
            channel.shell("getprop ro.build.version.sdk")
        """
        if '/' not in adb_path and not tool_locator.has_tool(adb_path):
            raise DeviceError(
                "connect",
                f"'{adb_path}' not found in PATH",
                suggestion="Install the Android platform tools or set device.adb_path in swapdeploy.yaml"
            )

        serial = DeviceChannelFactory.parse_serial(device)
        return AdbDeviceChannel(runner, serial=serial, adb_path=adb_path, timeout=timeout)

    @staticmethod
    def parse_serial(device: Optional[str]) -> Optional[str]:
        """Return the adb serial named by device (None for the default device)."""
        if not device:
            return None

        if device.startswith('adb:'):
            serial = device[len('adb:'):]
        elif device.startswith('tcp://'):
            serial = device[len('tcp://'):]
            if ':' not in serial:
                serial = f"{serial}:5555"  # adbd default TCP port
        elif '://' in device:
            raise ValueError(
                f"Unknown device format: {device}\n"
                f"Expected: serial | adb:serial | tcp://host:port"
            )
        else:
            serial = device

        if not serial or any(c.isspace() for c in serial):
            raise ValueError(f"Malformed device serial: {device!r}")
        return serial
