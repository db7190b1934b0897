"""Exceptions raised by the extension runners.

Every error the runner subsystem raises derives from ExtRunnerError so the
CLI layer can map it to an exit code and a readable message.
"""

from __future__ import annotations

from typing import Any, Mapping

from extrunner.cli.exit_codes import ExitCode


class ExtRunnerError(Exception):
    """Base exception for extrunner.

    Attributes:
        message: Error message
        exit_code: Exit code to use when the CLI exits on this error
        details: Optional dictionary of additional error details
    """

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class UsageError(ExtRunnerError):
    """Inconsistent caller configuration.

    Reported immediately and never retried, e.g. asking to keep the
    changes of a Chromium profile that is not inside a user-data-dir.
    """

    exit_code = ExitCode.INVALID_ARGUMENT


class InvalidManifest(ExtRunnerError):
    """The manifest.json of an extension is missing or invalid."""

    exit_code = ExitCode.INVALID_MANIFEST


class ProtocolError(ExtRunnerError):
    """A call against a browser remote protocol failed."""

    exit_code = ExitCode.PROTOCOL_ERROR

    def __init__(
        self,
        message: str,
        method: str | None = None,
        code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.code = code


class ConnectionClosedError(ProtocolError):
    """The protocol channel is closed, pending and new calls fail with it."""

    def __init__(self, message: str = "connection closed", method: str | None = None) -> None:
        super().__init__(message, method=method)


class RDPError(ProtocolError):
    """An error reply received over the Firefox remote debugging protocol."""

    def __init__(self, message: str, error: str | None = None, actor: str | None = None) -> None:
        super().__init__(message)
        self.error = error
        self.actor = actor


class CapabilityError(ExtRunnerError):
    """The target browser lacks a protocol method the runner needs."""

    exit_code = ExitCode.BROWSER_ERROR


class RemoteTempInstallNotSupported(CapabilityError):
    """The remote Firefox can't install temporary add-ons."""


class BrowserNotFoundError(ExtRunnerError):
    """No browser binary could be found to launch."""

    exit_code = ExitCode.BROWSER_ERROR


class RunnerStateError(ExtRunnerError):
    """A runner operation was called in a lifecycle state that forbids it."""

    exit_code = ExitCode.GENERAL_ERROR


class MultipleExtensionsReloadError(ExtRunnerError):
    """Several extensions failed to reload within the same batch.

    The individual errors are kept by extension source directory.
    """

    def __init__(self, errors_by_source_dir: Mapping[str, BaseException]) -> None:
        self.errors_by_source_dir = dict(errors_by_source_dir)
        lines = ["Reload errors:"]
        for source_dir, error in self.errors_by_source_dir.items():
            lines.append(f"Error on extension loaded from {source_dir}: {error}")
        super().__init__("\n".join(lines))
