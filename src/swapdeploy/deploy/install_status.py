"""
InstallStatus - closed taxonomy of package-manager outcomes.

Member names reproduce the package manager's failure codes verbatim because
downstream tooling branches on them. parse_install_output() turns raw
`pm install` output into a member, never falling back to UNKNOWN_ERROR for a
code it knows.
"""

import re
from enum import Enum
from typing import Optional


class InstallStatus(Enum):
    OK = "OK"

    # Every INSTALL_FAILED / INSTALL_PARSE_FAILED code of the package manager
    INSTALL_FAILED_ABORTED = "INSTALL_FAILED_ABORTED"
    INSTALL_FAILED_ALREADY_EXISTS = "INSTALL_FAILED_ALREADY_EXISTS"
    INSTALL_FAILED_BAD_DEX_METADATA = "INSTALL_FAILED_BAD_DEX_METADATA"
    INSTALL_FAILED_BAD_SIGNATURE = "INSTALL_FAILED_BAD_SIGNATURE"
    INSTALL_FAILED_CONFLICTING_PROVIDER = "INSTALL_FAILED_CONFLICTING_PROVIDER"
    INSTALL_FAILED_CONTAINER_ERROR = "INSTALL_FAILED_CONTAINER_ERROR"
    INSTALL_FAILED_CPU_ABI_INCOMPATIBLE = "INSTALL_FAILED_CPU_ABI_INCOMPATIBLE"
    INSTALL_FAILED_DEXOPT = "INSTALL_FAILED_DEXOPT"
    INSTALL_FAILED_DUPLICATE_PACKAGE = "INSTALL_FAILED_DUPLICATE_PACKAGE"
    INSTALL_FAILED_DUPLICATE_PERMISSION = "INSTALL_FAILED_DUPLICATE_PERMISSION"
    INSTALL_FAILED_INSTANT_APP_INVALID = "INSTALL_FAILED_INSTANT_APP_INVALID"
    INSTALL_FAILED_INSUFFICIENT_STORAGE = "INSTALL_FAILED_INSUFFICIENT_STORAGE"
    INSTALL_FAILED_INTERNAL_ERROR = "INSTALL_FAILED_INTERNAL_ERROR"
    INSTALL_FAILED_INVALID_APK = "INSTALL_FAILED_INVALID_APK"
    INSTALL_FAILED_INVALID_INSTALL_LOCATION = "INSTALL_FAILED_INVALID_INSTALL_LOCATION"
    INSTALL_FAILED_INVALID_URI = "INSTALL_FAILED_INVALID_URI"
    INSTALL_FAILED_MEDIA_UNAVAILABLE = "INSTALL_FAILED_MEDIA_UNAVAILABLE"
    INSTALL_FAILED_MISSING_FEATURE = "INSTALL_FAILED_MISSING_FEATURE"
    INSTALL_FAILED_MISSING_SHARED_LIBRARY = "INSTALL_FAILED_MISSING_SHARED_LIBRARY"
    INSTALL_FAILED_MISSING_SPLIT = "INSTALL_FAILED_MISSING_SPLIT"
    INSTALL_FAILED_MULTIPACKAGE_INCONSISTENCY = "INSTALL_FAILED_MULTIPACKAGE_INCONSISTENCY"
    INSTALL_FAILED_NEWER_SDK = "INSTALL_FAILED_NEWER_SDK"
    INSTALL_FAILED_NO_MATCHING_ABIS = "INSTALL_FAILED_NO_MATCHING_ABIS"
    INSTALL_FAILED_NO_SHARED_USER = "INSTALL_FAILED_NO_SHARED_USER"
    INSTALL_FAILED_OLDER_SDK = "INSTALL_FAILED_OLDER_SDK"
    INSTALL_FAILED_OTHER_STAGED_SESSION_IN_PROGRESS = "INSTALL_FAILED_OTHER_STAGED_SESSION_IN_PROGRESS"
    INSTALL_FAILED_PACKAGE_CHANGED = "INSTALL_FAILED_PACKAGE_CHANGED"
    INSTALL_FAILED_PERMISSION_MODEL_DOWNGRADE = "INSTALL_FAILED_PERMISSION_MODEL_DOWNGRADE"
    INSTALL_FAILED_REPLACE_COULDNT_DELETE = "INSTALL_FAILED_REPLACE_COULDNT_DELETE"
    INSTALL_FAILED_SANDBOX_VERSION_DOWNGRADE = "INSTALL_FAILED_SANDBOX_VERSION_DOWNGRADE"
    INSTALL_FAILED_SHARED_USER_INCOMPATIBLE = "INSTALL_FAILED_SHARED_USER_INCOMPATIBLE"
    INSTALL_FAILED_TEST_ONLY = "INSTALL_FAILED_TEST_ONLY"
    INSTALL_FAILED_UID_CHANGED = "INSTALL_FAILED_UID_CHANGED"
    INSTALL_FAILED_UPDATE_INCOMPATIBLE = "INSTALL_FAILED_UPDATE_INCOMPATIBLE"
    INSTALL_FAILED_USER_RESTRICTED = "INSTALL_FAILED_USER_RESTRICTED"
    INSTALL_FAILED_VERIFICATION_FAILURE = "INSTALL_FAILED_VERIFICATION_FAILURE"
    INSTALL_FAILED_VERIFICATION_TIMEOUT = "INSTALL_FAILED_VERIFICATION_TIMEOUT"
    INSTALL_FAILED_VERSION_DOWNGRADE = "INSTALL_FAILED_VERSION_DOWNGRADE"
    INSTALL_FAILED_WRONG_INSTALLED_VERSION = "INSTALL_FAILED_WRONG_INSTALLED_VERSION"
    INSTALL_PARSE_FAILED_BAD_MANIFEST = "INSTALL_PARSE_FAILED_BAD_MANIFEST"
    INSTALL_PARSE_FAILED_BAD_PACKAGE_NAME = "INSTALL_PARSE_FAILED_BAD_PACKAGE_NAME"
    INSTALL_PARSE_FAILED_BAD_SHARED_USER_ID = "INSTALL_PARSE_FAILED_BAD_SHARED_USER_ID"
    INSTALL_PARSE_FAILED_CERTIFICATE_ENCODING = "INSTALL_PARSE_FAILED_CERTIFICATE_ENCODING"
    INSTALL_PARSE_FAILED_INCONSISTENT_CERTIFICATES = "INSTALL_PARSE_FAILED_INCONSISTENT_CERTIFICATES"
    INSTALL_PARSE_FAILED_MANIFEST_EMPTY = "INSTALL_PARSE_FAILED_MANIFEST_EMPTY"
    INSTALL_PARSE_FAILED_MANIFEST_MALFORMED = "INSTALL_PARSE_FAILED_MANIFEST_MALFORMED"
    INSTALL_PARSE_FAILED_NO_CERTIFICATES = "INSTALL_PARSE_FAILED_NO_CERTIFICATES"
    INSTALL_PARSE_FAILED_NOT_APK = "INSTALL_PARSE_FAILED_NOT_APK"
    INSTALL_PARSE_FAILED_UNEXPECTED_EXCEPTION = "INSTALL_PARSE_FAILED_UNEXPECTED_EXCEPTION"

    DEVICE_NOT_RESPONDING = "DEVICE_NOT_RESPONDING"
    INCONSISTENT_CERTIFICATES = "INCONSISTENT_CERTIFICATES"
    NO_CERTIFICATE = "NO_CERTIFICATE"
    DEVICE_NOT_FOUND = "DEVICE_NOT_FOUND"
    SHELL_UNRESPONSIVE = "SHELL_UNRESPONSIVE"
    MULTI_APKS_NO_SUPPORTED_BELOW21 = "MULTI_APKS_NO_SUPPORTED_BELOW21"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    SKIPPED_INSTALL = "SKIPPED_INSTALL"  # no changes

    @property
    def succeeded(self) -> bool:
        return self in (InstallStatus.OK, InstallStatus.SKIPPED_INSTALL)

    @classmethod
    def from_code(cls, code: str) -> 'InstallStatus':
        """Map a raw failure code to a member; unknown codes -> UNKNOWN_ERROR."""
        try:
            return cls(code.strip())
        except ValueError:
            return cls.UNKNOWN_ERROR


# Statuses for which uninstalling the installed package and installing again
# can succeed. Whether to do so is the caller's decision (it wipes app data).
UNINSTALL_RECOVERABLE = frozenset({
    InstallStatus.INSTALL_FAILED_VERSION_DOWNGRADE,
    InstallStatus.INSTALL_FAILED_UPDATE_INCOMPATIBLE,
    InstallStatus.INSTALL_PARSE_FAILED_INCONSISTENT_CERTIFICATES,
    InstallStatus.INCONSISTENT_CERTIFICATES,
    InstallStatus.INSTALL_FAILED_PERMISSION_MODEL_DOWNGRADE,
    InstallStatus.INSTALL_FAILED_SANDBOX_VERSION_DOWNGRADE,
})

_FAILURE = re.compile(r'Failure \[([A-Z0-9_]+)(?::\s*([^\]]*))?\]')
_DEVICE_NOT_FOUND = re.compile(r"device '.*' not found|no devices/emulators found|device not found")
_DEVICE_NOT_RESPONDING = re.compile(r"device offline|device unauthorized|device still authorizing")


def requires_uninstall(status: InstallStatus) -> bool:
    return status in UNINSTALL_RECOVERABLE


def parse_install_output(output: str) -> tuple[InstallStatus, Optional[str]]:
    """
    Classify package manager output.

    Args:
        output: Combined stdout/stderr of `pm install`

    Returns:
        (status, reason) where reason is the failure message, if any

    Examples:
        "Success"                                    -> (OK, None)
        "Failure [INSTALL_FAILED_VERSION_DOWNGRADE]" -> (INSTALL_FAILED_VERSION_DOWNGRADE, ...)
        "error: device offline"                      -> (DEVICE_NOT_RESPONDING, ...)
    """
    match = _FAILURE.search(output)
    if match:
        code, message = match.group(1), match.group(2)
        return InstallStatus.from_code(code), (message.strip() if message else code)

    if _DEVICE_NOT_FOUND.search(output):
        return InstallStatus.DEVICE_NOT_FOUND, output.strip()
    if _DEVICE_NOT_RESPONDING.search(output):
        return InstallStatus.DEVICE_NOT_RESPONDING, output.strip()

    if re.search(r'^\s*Success\s*$', output, re.MULTILINE):
        return InstallStatus.OK, None

    return InstallStatus.UNKNOWN_ERROR, output.strip() or "No output from package manager"
