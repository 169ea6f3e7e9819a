"""
AdbDeviceChannel - DeviceChannel backed by the adb command line client.

Targets: any device visible to the local adb server (USB or TCP)
Transport: `adb -s <serial> shell|exec-in <command>` through a ProcessRunner
"""

import logging
import shlex
import subprocess
from typing import Optional, Sequence

from swapdeploy.core.protocols import ProcessRunner, ProcessResult
from swapdeploy.exceptions import DeviceError
from .base import InstallResult
from .install_status import InstallStatus, parse_install_output

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 120.0


class AdbDeviceChannel:
    """
    Talks to one device through the adb client.

    No retries: every transport failure surfaces as DeviceError and the
    caller decides what to do with it.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        serial: Optional[str] = None,
        adb_path: str = "adb",
        timeout: float = DEFAULT_TIMEOUT_S
    ):
        """
        Initialize adb channel.

        Args:
            runner: Process runner used to invoke the adb client
            serial: Device serial (None lets adb pick the only attached device)
            adb_path: adb executable
            timeout: Seconds allowed for each adb invocation
        """
        self.runner = runner
        self.serial = serial
        self.adb_path = adb_path
        self.timeout = timeout

    def _adb_cmd(self, *args: str) -> list[str]:
        """Build adb command targeting this channel's device."""
        cmd = [self.adb_path]
        if self.serial:
            cmd += ["-s", self.serial]
        return cmd + list(args)

    def _run_adb(self, operation: str, *args: str, stdin: Optional[bytes] = None) -> ProcessResult:
        """
        Run adb and translate process-level failures to DeviceError.

        Raises:
            subprocess.TimeoutExpired: Left to the caller, which knows what a
                timeout means for its operation
            DeviceError: If the adb client cannot be started
        """
        cmd = self._adb_cmd(*args)
        logger.debug(f"Running {' '.join(cmd)}")
        try:
            return self.runner.run(cmd, input=stdin, timeout=self.timeout)
        except OSError as e:
            raise DeviceError(
                operation,
                f"cannot run {self.adb_path}: {e}",
                self.serial,
                "Install the Android platform tools or set device.adb_path in swapdeploy.yaml"
            ) from e

    def _check(self, operation: str, result: ProcessResult) -> bytes:
        if result.returncode != 0:
            detail = _text(result.stderr).strip() or _text(result.stdout).strip()
            raise DeviceError(
                operation,
                detail or f"adb exited with status {result.returncode}",
                self.serial,
                "Check the device with: adb devices"
            )
        return result.stdout

    def shell(self, command: str, stdin: Optional[bytes] = None) -> bytes:
        """
        Run command on the device.

        With stdin, the command runs through `exec-in`, which forwards raw
        bytes without a pty.
        """
        mode = "shell" if stdin is None else "exec-in"
        try:
            result = self._run_adb("shell", mode, command, stdin=stdin)
        except subprocess.TimeoutExpired as e:
            raise DeviceError("shell", f"'{command}' timed out after {self.timeout}s", self.serial) from e
        return self._check("shell", result)

    def push(self, data: bytes, remote_path: str) -> None:
        """Stream data into remote_path (parent directories are created)."""
        parent = remote_path.rsplit('/', 1)[0] or '/'
        self.shell(f"mkdir -p {shlex.quote(parent)}")
        try:
            result = self._run_adb(
                "push", "exec-in", f"cat > {shlex.quote(remote_path)}", stdin=data
            )
        except subprocess.TimeoutExpired as e:
            raise DeviceError("push", f"{remote_path} timed out after {self.timeout}s", self.serial) from e
        self._check("push", result)
        logger.debug(f"Pushed {len(data)} bytes to {remote_path}")

    def install(self, remote_paths: Sequence[str], options: Sequence[str] = ()) -> InstallResult:
        """
        Install remote_paths as one package.

        A timeout means the shell stopped answering and is reported as
        SHELL_UNRESPONSIVE rather than raised.
        """
        command = ' '.join(
            ["pm", "install"] + [shlex.quote(o) for o in options] + [shlex.quote(p) for p in remote_paths]
        )
        try:
            result = self._run_adb("install", "shell", command)
        except subprocess.TimeoutExpired:
            logger.warning(f"Install timed out after {self.timeout}s")
            return InstallResult(
                InstallStatus.SHELL_UNRESPONSIVE,
                f"pm install did not answer within {self.timeout}s"
            )

        output = _text(result.stdout) + _text(result.stderr)
        status, reason = parse_install_output(output)
        logger.debug(f"Install finished with {status.value}")
        return InstallResult(status, reason, output)

    def uninstall(self, package_id: str) -> bool:
        try:
            result = self._run_adb("uninstall", "shell", f"pm uninstall {shlex.quote(package_id)}")
        except subprocess.TimeoutExpired as e:
            raise DeviceError("uninstall", f"timed out after {self.timeout}s", self.serial) from e

        output = _text(result.stdout) + _text(result.stderr)
        status, _ = parse_install_output(output)
        if status in (InstallStatus.DEVICE_NOT_FOUND, InstallStatus.DEVICE_NOT_RESPONDING):
            raise DeviceError("uninstall", output.strip(), self.serial, "Check the device with: adb devices")
        return status == InstallStatus.OK


def _text(data: Optional[bytes]) -> str:
    if not data:
        return ""
    return data.decode('utf-8', errors='replace')
