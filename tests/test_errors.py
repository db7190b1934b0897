"""Tests for the exception hierarchy."""

from extrunner.cli.exit_codes import ExitCode
from extrunner.errors import (
    BrowserNotFoundError,
    CapabilityError,
    ConnectionClosedError,
    ExtRunnerError,
    InvalidManifest,
    MultipleExtensionsReloadError,
    ProtocolError,
    RDPError,
    RemoteTempInstallNotSupported,
    UsageError,
)


class TestExtRunnerError:
    """Test base ExtRunnerError class."""

    def test_basic_error(self) -> None:
        """Test basic error creation."""
        error = ExtRunnerError("Test error")
        assert error.message == "Test error"
        assert error.exit_code == ExitCode.GENERAL_ERROR
        assert error.details == {}

    def test_error_with_exit_code(self) -> None:
        """Test error with custom exit code."""
        error = ExtRunnerError("Test error", exit_code=ExitCode.CONFIGURATION_ERROR)
        assert error.exit_code == ExitCode.CONFIGURATION_ERROR

    def test_error_str_with_details(self) -> None:
        """Test string representation with details."""
        error = ExtRunnerError("Test error", details={"key": "value"})
        assert "Test error" in str(error)
        assert "key=value" in str(error)


class TestErrorExitCodes:
    """Test the default exit code of each error."""

    def test_usage_error(self) -> None:
        """Test UsageError maps to INVALID_ARGUMENT."""
        assert UsageError("x").exit_code == ExitCode.INVALID_ARGUMENT

    def test_invalid_manifest(self) -> None:
        """Test InvalidManifest maps to INVALID_MANIFEST."""
        assert InvalidManifest("x").exit_code == ExitCode.INVALID_MANIFEST

    def test_capability_errors(self) -> None:
        """Test capability and browser errors map to BROWSER_ERROR."""
        assert CapabilityError("x").exit_code == ExitCode.BROWSER_ERROR
        assert RemoteTempInstallNotSupported("x").exit_code == ExitCode.BROWSER_ERROR
        assert BrowserNotFoundError("x").exit_code == ExitCode.BROWSER_ERROR

    def test_protocol_errors(self) -> None:
        """Test protocol errors map to PROTOCOL_ERROR."""
        assert ProtocolError("x").exit_code == ExitCode.PROTOCOL_ERROR
        assert isinstance(ConnectionClosedError(), ProtocolError)
        assert isinstance(RDPError("x"), ProtocolError)


class TestProtocolErrors:
    """Test protocol error attributes."""

    def test_protocol_error(self) -> None:
        """Test method and code are kept."""
        error = ProtocolError("not found", method="Extensions.loadUnpacked", code=-32601)
        assert error.method == "Extensions.loadUnpacked"
        assert error.code == -32601

    def test_connection_closed_default_message(self) -> None:
        """Test the default message."""
        assert ConnectionClosedError().message == "connection closed"


class TestMultipleExtensionsReloadError:
    """Test the aggregated reload error."""

    def test_message_lists_every_error(self) -> None:
        """Test one line per failing source dir."""
        error = MultipleExtensionsReloadError({
            "/ext/a": ExtRunnerError("broken a"),
            "/ext/b": ValueError("broken b"),
        })
        assert error.message.splitlines() == [
            "Reload errors:",
            "Error on extension loaded from /ext/a: broken a",
            "Error on extension loaded from /ext/b: broken b",
        ]
        assert set(error.errors_by_source_dir) == {"/ext/a", "/ext/b"}
