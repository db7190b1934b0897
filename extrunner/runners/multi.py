"""
Runner that drives several extension runners as one.

Also holds the target factory that maps ``--target`` values to runners.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from extrunner.errors import UsageError
from extrunner.notifier import show_desktop_notification
from extrunner.runners.base import (
    CleanupCallback,
    DesktopNotifications,
    ExtensionRunner,
    ExtensionRunnerReloadResult,
)
from extrunner.runners.chromium import ChromiumExtensionRunner, ChromiumRunnerParams
from extrunner.runners.firefox_desktop import (
    FirefoxDesktopExtensionRunner,
    FirefoxDesktopRunnerParams,
)

logger = logging.getLogger(__name__)

TARGET_FIREFOX_DESKTOP = "firefox-desktop"
TARGET_CHROMIUM = "chromium"
DEFAULT_TARGET = TARGET_FIREFOX_DESKTOP


@dataclass
class MultipleTargetsRunnerParams:
    """Parameters of the multi-target runner."""

    runners: list[ExtensionRunner]
    desktop_notifications: DesktopNotifications = show_desktop_notification


def _first_error(results: Sequence[Any]) -> Optional[BaseException]:
    for result in results:
        if isinstance(result, BaseException):
            return result
    return None


class MultipleTargetsExtensionRunner:
    """
    Runs the same operation on every child runner concurrently.

    Child failures during reload become that child's reload_error; results
    always come back in child order.
    """

    def __init__(self, params: MultipleTargetsRunnerParams):
        self.extension_runners = list(params.runners)
        self.desktop_notifications = params.desktop_notifications

    def get_name(self) -> str:
        return "Multiple targets"

    async def run(self) -> None:
        """Start every runner; fails with the first failure once all settled."""
        results = await asyncio.gather(
            *(runner.run() for runner in self.extension_runners),
            return_exceptions=True,
        )
        for runner, result in zip(self.extension_runners, results):
            if isinstance(result, BaseException):
                logger.error(f"{runner.get_name()}: failed to start: {result}")

        error = _first_error(results)
        if error is not None:
            raise error

    async def reload_all_extensions(self) -> list[ExtensionRunnerReloadResult]:
        """Reload all extensions on every runner."""
        logger.debug("Reloading all reloadable add-ons")
        return await self._collect(
            [runner.reload_all_extensions() for runner in self.extension_runners]
        )

    async def reload_extension_by_source_dir(
        self, extension_source_dir: str
    ) -> list[ExtensionRunnerReloadResult]:
        """Reload the extension of a source dir on every runner."""
        logger.debug(f"Reloading add-on at {extension_source_dir}")
        return await self._collect(
            [
                runner.reload_extension_by_source_dir(extension_source_dir)
                for runner in self.extension_runners
            ],
            source_dir=extension_source_dir,
        )

    def register_cleanup(self, fn: CleanupCallback) -> None:
        """Call fn once every runner has signalled its own cleanup."""
        remaining = len(self.extension_runners)
        if remaining == 0:
            fn()
            return

        def on_runner_cleanup() -> None:
            nonlocal remaining
            remaining -= 1
            if remaining == 0:
                fn()

        for runner in self.extension_runners:
            runner.register_cleanup(on_runner_cleanup)

    async def exit(self) -> None:
        """Exit every runner; fails with the first failure once all settled."""
        results = await asyncio.gather(
            *(runner.exit() for runner in self.extension_runners),
            return_exceptions=True,
        )
        for runner, result in zip(self.extension_runners, results):
            if isinstance(result, BaseException):
                logger.error(f"{runner.get_name()}: failed to exit: {result}")

        error = _first_error(results)
        if error is not None:
            raise error

    # Private methods

    async def _collect(
        self,
        calls: list[Any],
        source_dir: Optional[str] = None,
    ) -> list[ExtensionRunnerReloadResult]:
        outcomes = await asyncio.gather(*calls, return_exceptions=True)

        results: list[ExtensionRunnerReloadResult] = []
        for runner, outcome in zip(self.extension_runners, outcomes):
            if isinstance(outcome, BaseException):
                results.append(ExtensionRunnerReloadResult(
                    runner_name=runner.get_name(),
                    source_dir=source_dir,
                    reload_error=outcome,
                ))
            else:
                results.extend(outcome)

        await self._handle_reload_results(results)
        return results

    async def _handle_reload_results(self, results: list[ExtensionRunnerReloadResult]) -> None:
        for result in results:
            if result.reload_error is None:
                continue

            if result.source_dir:
                message = (
                    f"Error occurred while reloading \"{result.source_dir}\" "
                    f"on \"{result.runner_name}\" - {result.reload_error}"
                )
            else:
                message = (
                    f"Error occurred while reloading all extensions on "
                    f"\"{result.runner_name}\" - {result.reload_error}"
                )

            logger.error(f"\n{message}")
            await self.desktop_notifications(
                title="extrunner: error occurred on extension reload",
                message=message,
            )


def create_extension_runner(target: str, **params: Any) -> ExtensionRunner:
    """
    Create the runner of one target.

    Args:
        target: ``firefox-desktop`` or ``chromium``
        **params: Keyword arguments of the target's params dataclass

    Raises:
        UsageError: If the target is unknown
    """
    if target == TARGET_FIREFOX_DESKTOP:
        return FirefoxDesktopExtensionRunner(FirefoxDesktopRunnerParams(**params))
    if target == TARGET_CHROMIUM:
        return ChromiumExtensionRunner(ChromiumRunnerParams(**params))
    raise UsageError(f"Unknown target: \"{target}\"")


def create_multi_runner(
    targets: Optional[Sequence[str]],
    common_params: dict[str, Any],
    target_params: Optional[dict[str, dict[str, Any]]] = None,
) -> MultipleTargetsExtensionRunner:
    """
    Create the runners of every requested target, wrapped into one.

    Unknown targets are logged and skipped. Without targets Firefox desktop
    is used.

    Raises:
        UsageError: If none of the targets is known
    """
    target_params = target_params or {}
    runners: list[ExtensionRunner] = []

    for target in targets or [DEFAULT_TARGET]:
        try:
            runners.append(create_extension_runner(
                target, **common_params, **target_params.get(target, {})
            ))
        except UsageError as e:
            logger.warning(f"{e}, skipping it")

    if not runners:
        raise UsageError(
            f"No valid target selected, use one of: {TARGET_FIREFOX_DESKTOP}, {TARGET_CHROMIUM}"
        )

    return MultipleTargetsExtensionRunner(MultipleTargetsRunnerParams(
        runners=runners,
        desktop_notifications=common_params.get("desktop_notifications", show_desktop_notification),
    ))
