"""Unit tests for package manager output classification."""

import pytest

from swapdeploy.deploy import InstallStatus, parse_install_output, requires_uninstall


class TestParseInstallOutput:
    """Test mapping raw `pm install` output to InstallStatus."""

    def test_success(self):
        assert parse_install_output("Success\n") == (InstallStatus.OK, None)

    def test_version_downgrade(self):
        status, reason = parse_install_output("Failure [INSTALL_FAILED_VERSION_DOWNGRADE]\n")

        assert status == InstallStatus.INSTALL_FAILED_VERSION_DOWNGRADE
        assert reason == "INSTALL_FAILED_VERSION_DOWNGRADE"

    def test_failure_message_becomes_reason(self):
        output = ("adb: failed to install app.apk: Failure [INSTALL_FAILED_UPDATE_INCOMPATIBLE: "
                  "Package com.example.app signatures do not match previously installed version]")

        status, reason = parse_install_output(output)

        assert status == InstallStatus.INSTALL_FAILED_UPDATE_INCOMPATIBLE
        assert reason.startswith("Package com.example.app signatures")

    @pytest.mark.parametrize("code", [
        "INSTALL_FAILED_INSUFFICIENT_STORAGE",
        "INSTALL_PARSE_FAILED_NO_CERTIFICATES",
        "INSTALL_PARSE_FAILED_INCONSISTENT_CERTIFICATES",
        "INSTALL_FAILED_OLDER_SDK",
        "INSTALL_FAILED_NO_MATCHING_ABIS",
    ])
    def test_known_codes_map_verbatim(self, code):
        status, _ = parse_install_output(f"Failure [{code}]")

        assert status.name == code

    def test_unknown_code(self):
        status, reason = parse_install_output("Failure [INSTALL_FAILED_SOMETHING_NEW: eh]")

        assert status == InstallStatus.UNKNOWN_ERROR
        assert reason == "eh"

    def test_device_not_found(self):
        status, _ = parse_install_output("error: device 'emulator-5556' not found")

        assert status == InstallStatus.DEVICE_NOT_FOUND

    @pytest.mark.parametrize("message", ["error: device offline", "error: device unauthorized."])
    def test_device_not_responding(self, message):
        status, _ = parse_install_output(message)

        assert status == InstallStatus.DEVICE_NOT_RESPONDING

    def test_unrecognised_output(self):
        status, reason = parse_install_output("Segmentation fault")

        assert status == InstallStatus.UNKNOWN_ERROR
        assert reason == "Segmentation fault"

    def test_empty_output(self):
        status, _ = parse_install_output("")

        assert status == InstallStatus.UNKNOWN_ERROR


class TestInstallStatus:
    """Test taxonomy helpers."""

    def test_member_names_equal_values(self):
        for status in InstallStatus:
            assert status.name == status.value

    def test_succeeded(self):
        assert InstallStatus.OK.succeeded
        assert InstallStatus.SKIPPED_INSTALL.succeeded
        assert not InstallStatus.INSTALL_FAILED_VERSION_DOWNGRADE.succeeded

    def test_requires_uninstall(self):
        assert requires_uninstall(InstallStatus.INSTALL_FAILED_VERSION_DOWNGRADE)
        assert requires_uninstall(InstallStatus.INSTALL_FAILED_UPDATE_INCOMPATIBLE)
        assert requires_uninstall(InstallStatus.INSTALL_PARSE_FAILED_INCONSISTENT_CERTIFICATES)
        assert not requires_uninstall(InstallStatus.INSTALL_FAILED_INSUFFICIENT_STORAGE)
        assert not requires_uninstall(InstallStatus.OK)
