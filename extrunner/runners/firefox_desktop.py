"""
Extension runner for Firefox desktop.

Extensions are installed as temporary add-ons over the remote debugging
protocol and reloaded by add-on id. With pre-install they are written into
the profile as proxy files instead, and can't be reloaded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from extrunner import firefox as default_firefox_app
from extrunner.config import FirefoxConfig
from extrunner.errors import (
    CapabilityError,
    ExtRunnerError,
    MultipleExtensionsReloadError,
    RemoteTempInstallNotSupported,
    RunnerStateError,
)
from extrunner.firefox.app import FirefoxInfo
from extrunner.firefox.preferences import FirefoxPreferences
from extrunner.firefox.profile import FirefoxProfile
from extrunner.firefox.remote import RemoteFirefox, connect_with_max_retries
from extrunner.runners.base import (
    CleanupCallback,
    CleanupCallbacks,
    ExtensionRunnerParams,
    ExtensionRunnerReloadResult,
    ProfileStrategy,
    select_profile_strategy,
)

logger = logging.getLogger(__name__)

FirefoxClientFn = Callable[..., Awaitable[RemoteFirefox]]


@dataclass
class FirefoxDesktopRunnerParams(ExtensionRunnerParams):
    """Parameters of the Firefox desktop runner."""

    custom_prefs: FirefoxPreferences = field(default_factory=dict)
    browser_console: bool = False
    firefox_binary: Optional[str] = None
    pre_install: bool = False
    firefox: FirefoxConfig = field(default_factory=FirefoxConfig)

    # Injected dependencies
    firefox_app: Any = default_firefox_app
    firefox_client: FirefoxClientFn = connect_with_max_retries


class FirefoxDesktopExtensionRunner:
    """Runs extensions in one Firefox desktop instance."""

    def __init__(self, params: FirefoxDesktopRunnerParams):
        self.params = params
        self.reloadable_extensions: dict[str, str] = {}
        self.profile: Optional[FirefoxProfile] = None
        self.running_info: Optional[FirefoxInfo] = None
        self.remote_firefox: Optional[RemoteFirefox] = None
        self._cleanup = CleanupCallbacks(self.get_name())
        self._exit_watch_task: Optional[asyncio.Task] = None

    def get_name(self) -> str:
        return "Firefox Desktop"

    async def run(self) -> None:
        """Prepare the profile, start Firefox and install the extensions."""
        await self._setup_profile_dir()
        await self._start_firefox_instance()

    async def reload_all_extensions(self) -> list[ExtensionRunnerReloadResult]:
        """Reload every tracked extension.

        Failures are collected into one MultipleExtensionsReloadError
        instead of stopping at the first one.
        """
        runner_name = self.get_name()
        reload_errors: dict[str, BaseException] = {}

        for extension in self.params.extensions:
            [result] = await self.reload_extension_by_source_dir(extension.source_dir)
            if result.reload_error is not None:
                reload_errors[extension.source_dir] = result.reload_error

        if reload_errors:
            return [ExtensionRunnerReloadResult(
                runner_name=runner_name,
                reload_error=MultipleExtensionsReloadError(reload_errors),
            )]
        return [ExtensionRunnerReloadResult(runner_name=runner_name)]

    async def reload_extension_by_source_dir(
        self, extension_source_dir: str
    ) -> list[ExtensionRunnerReloadResult]:
        """Reload the extension installed from a source dir.

        An untracked source dir is reported in the result, not raised.
        """
        runner_name = self.get_name()
        addon_id = self.reloadable_extensions.get(extension_source_dir)

        if not addon_id or self.remote_firefox is None:
            return [ExtensionRunnerReloadResult(
                runner_name=runner_name,
                source_dir=extension_source_dir,
                reload_error=ExtRunnerError(
                    f"Extension not reloadable: no add-on installed from {extension_source_dir}"
                ),
            )]

        try:
            await self.remote_firefox.reload_addon(addon_id)
        except Exception as e:
            return [ExtensionRunnerReloadResult(
                runner_name=runner_name,
                source_dir=extension_source_dir,
                reload_error=e,
            )]

        return [ExtensionRunnerReloadResult(runner_name=runner_name, source_dir=extension_source_dir)]

    def register_cleanup(self, fn: CleanupCallback) -> None:
        """Register a callback run once Firefox has exited."""
        self._cleanup.add(fn)

    async def exit(self) -> None:
        """Disconnect the remote session and close Firefox."""
        if self.running_info is None:
            raise RunnerStateError("No firefox instance is currently running")

        if self.remote_firefox is not None:
            self.remote_firefox.disconnect()

        await self.running_info.kill()
        if self._exit_watch_task is not None:
            await self._exit_watch_task

    # Private methods

    async def _setup_profile_dir(self) -> None:
        params = self.params
        firefox_app = params.firefox_app
        strategy = select_profile_strategy(params.profile_path, params.keep_profile_changes)

        if strategy is ProfileStrategy.REUSE:
            logger.debug(f"Using Firefox profile from {params.profile_path}")
            self.profile = await firefox_app.use_profile(
                params.profile_path, custom_prefs=params.custom_prefs
            )
        elif strategy is ProfileStrategy.COPY:
            logger.debug(f"Copying Firefox profile from {params.profile_path}")
            self.profile = await firefox_app.copy_profile(
                params.profile_path, custom_prefs=params.custom_prefs
            )
        else:
            logger.debug("Creating new Firefox profile")
            self.profile = await firefox_app.create_profile(custom_prefs=params.custom_prefs)

        if params.pre_install:
            for extension in params.extensions:
                await firefox_app.install_extension(
                    profile=self.profile,
                    extension_path=extension.source_dir,
                    manifest_data=extension.manifest_data,
                    as_proxy=True,
                )

    def _binary_args(self) -> list[str]:
        binary_args: list[str] = []
        if self.params.browser_console:
            binary_args.append("-jsconsole")
        for url in self.params.start_urls:
            binary_args.extend(["--url", url])
        binary_args.extend(self.params.args)
        return binary_args

    async def _start_firefox_instance(self) -> None:
        params = self.params

        self.running_info = await params.firefox_app.run(
            self.profile,
            firefox_binary=params.firefox_binary,
            binary_args=self._binary_args(),
        )
        self._exit_watch_task = asyncio.create_task(self._watch_exit(self.running_info))

        if params.pre_install:
            return

        self.remote_firefox = await params.firefox_client(
            port=self.running_info.debugger_port,
            max_retries=params.firefox.connect_max_retries,
            retry_interval=params.firefox.connect_retry_interval,
        )

        for extension in params.extensions:
            try:
                install_result = await self.remote_firefox.install_temporary_addon(extension.source_dir)
            except RemoteTempInstallNotSupported as e:
                logger.debug(f"Caught: {e}")
                raise CapabilityError(
                    "Temporary add-on installation is not supported in this version "
                    "of Firefox. Use --pre-install to install the extension into the "
                    "profile instead"
                ) from e

            addon_id = (install_result or {}).get("addon", {}).get("id")
            if not addon_id:
                raise ExtRunnerError(
                    "Unexpected missing addon id in the installTemporaryAddon result "
                    f"for {extension.source_dir}"
                )

            self.reloadable_extensions[extension.source_dir] = addon_id

    async def _watch_exit(self, info: FirefoxInfo) -> None:
        """Run the cleanup callbacks once the Firefox process terminates."""
        await info.process.wait()
        logger.debug("Firefox closed")

        if self.remote_firefox is not None:
            self.remote_firefox.disconnect()
        if self.profile is not None:
            await asyncio.to_thread(self.profile.remove)
        self._cleanup.run_all()
