"""Types shared by every extension runner.

An extension runner owns one browser instance (or, for the multi-target
runner, a set of other runners) and exposes the same small contract to the
reload orchestrator: run, reload all, reload one, register cleanup, exit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import (
    Any,
    Awaitable,
    Callable,
    Optional,
    Protocol,
    Sequence,
    Union,
    runtime_checkable,
)

from extrunner.notifier import show_desktop_notification

logger = logging.getLogger(__name__)

CleanupCallback = Callable[[], Any]
DesktopNotifications = Callable[..., Awaitable[None]]


@dataclass(frozen=True)
class Extension:
    """An unpacked extension handed to a runner."""

    source_dir: str
    manifest_data: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ExtensionRunnerReloadResult:
    """Outcome of a reload request on one runner."""

    runner_name: str
    source_dir: Optional[str] = None
    reload_error: Optional[BaseException] = None


@dataclass
class ExtensionRunnerParams:
    """Parameters common to every browser runner."""

    extensions: list[Extension]
    profile_path: Optional[str] = None
    keep_profile_changes: bool = False
    start_url: Optional[Union[str, Sequence[str]]] = None
    args: list[str] = field(default_factory=list)
    desktop_notifications: DesktopNotifications = show_desktop_notification

    @property
    def start_urls(self) -> list[str]:
        """Start URLs as a list, whether one or several were given."""
        if not self.start_url:
            return []
        if isinstance(self.start_url, str):
            return [self.start_url]
        return list(self.start_url)


@runtime_checkable
class ExtensionRunner(Protocol):
    """Contract implemented by every extension runner."""

    def get_name(self) -> str: ...

    async def run(self) -> None: ...

    async def reload_all_extensions(self) -> list[ExtensionRunnerReloadResult]: ...

    async def reload_extension_by_source_dir(
        self, extension_source_dir: str
    ) -> list[ExtensionRunnerReloadResult]: ...

    def register_cleanup(self, fn: CleanupCallback) -> None: ...

    async def exit(self) -> None: ...


class ProfileStrategy(Enum):
    """How a runner obtains the browser profile it launches with."""

    REUSE = "reuse"
    COPY = "copy"
    CREATE = "create"


def select_profile_strategy(
    profile_path: Optional[Union[str, Path]],
    keep_profile_changes: bool,
) -> ProfileStrategy:
    """Pick the profile strategy for a given profile path and keep flag.

    A given profile is used in place when its changes have to be kept and
    cloned into a private copy otherwise. Without a profile a fresh one is
    created; there is nothing to keep in that case.
    """
    if profile_path:
        return ProfileStrategy.REUSE if keep_profile_changes else ProfileStrategy.COPY
    return ProfileStrategy.CREATE


class CleanupCallbacks:
    """Cleanup callbacks run exactly once when the browser goes away.

    A callback added after the browser is already gone runs right away.
    """

    def __init__(self, runner_name: str) -> None:
        self._runner_name = runner_name
        self._callbacks: list[CleanupCallback] = []
        self._done = False

    def add(self, fn: CleanupCallback) -> None:
        if fn in self._callbacks:
            return
        self._callbacks.append(fn)
        if self._done:
            self._invoke(fn)

    @property
    def done(self) -> bool:
        return self._done

    def run_all(self) -> None:
        """Invoke every callback, a failing one does not stop the others."""
        if self._done:
            return
        self._done = True

        for fn in self._callbacks:
            self._invoke(fn)

    def _invoke(self, fn: CleanupCallback) -> None:
        try:
            fn()
        except Exception as e:
            logger.error(f"{self._runner_name}: cleanup callback failed: {e}")
