"""
Extension runner for Chromium-based browsers.

Extensions are installed over the DevTools pipe transport with
``Extensions.loadUnpacked``. Browsers that predate that method are
relaunched once with ``--load-extension`` and reloaded through the
privileged API of the extensions page instead.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Optional

from extrunner.chromium.launcher import ChromiumInstance, launch_chromium
from extrunner.chromium.profile import PreparedProfile, prepare_profile
from extrunner.config import ChromiumConfig
from extrunner.errors import CapabilityError, ProtocolError, RunnerStateError
from extrunner.runners.base import (
    CleanupCallback,
    CleanupCallbacks,
    ExtensionRunnerParams,
    ExtensionRunnerReloadResult,
)

logger = logging.getLogger(__name__)

ChromiumLaunchFn = Callable[..., Awaitable[ChromiumInstance]]

SPECIAL_URL_PREFIXES = ("chrome://", "chrome-extension://")

LEGACY_NOT_READY = "not ready"

# Evaluated on the extensions page; returns the number of reloaded
# extensions, or "not ready" while the page API is still initializing.
LEGACY_RELOAD_SCRIPT = """(async () => {
  if (!globalThis.chrome || !chrome.developerPrivate) {
    return "not ready";
  }
  const infos = await chrome.developerPrivate.getExtensionsInfo();
  const unpacked = infos.filter((info) => info.location === "UNPACKED");
  for (const info of unpacked) {
    await chrome.developerPrivate.reload(info.id, {failQuietly: true});
  }
  return unpacked.length;
})()"""


class ChromiumRunnerState(Enum):
    """Lifecycle of a Chromium runner."""

    NOT_STARTED = auto()
    NEGOTIATING_PROTOCOL = auto()
    RUNNING = auto()
    FALLBACK_RESTARTING = auto()
    EXITED = auto()


@dataclass
class ChromiumRunnerParams(ExtensionRunnerParams):
    """Parameters of the Chromium runner."""

    chromium_binary: Optional[str] = None
    chromium: ChromiumConfig = field(default_factory=ChromiumConfig)

    # Injected dependencies
    chromium_launch: ChromiumLaunchFn = launch_chromium


class ChromiumExtensionRunner:
    """Runs extensions in one Chromium instance.

    Example:
        runner = ChromiumExtensionRunner(ChromiumRunnerParams(extensions=[ext]))
        await runner.run()
        await runner.reload_all_extensions()
        await runner.exit()
    """

    def __init__(self, params: ChromiumRunnerParams):
        self.params = params
        self._state = ChromiumRunnerState.NOT_STARTED
        self._instance: Optional[ChromiumInstance] = None
        self._profile: Optional[PreparedProfile] = None
        self._legacy_mode = False
        self._exiting = False
        self._restarting = False
        self._setup_task: Optional[asyncio.Task] = None
        self._exit_watch_task: Optional[asyncio.Task] = None
        self._cleanup = CleanupCallbacks(self.get_name())
        self.reloadable_extensions: dict[str, str] = {}

    @property
    def state(self) -> ChromiumRunnerState:
        """Get the current runner state."""
        return self._state

    @property
    def legacy_mode(self) -> bool:
        """Whether extensions were preloaded with --load-extension."""
        return self._legacy_mode

    def get_name(self) -> str:
        return "Chromium"

    async def run(self) -> None:
        """Launch Chromium and install every extension."""
        if self._state is not ChromiumRunnerState.NOT_STARTED:
            raise RunnerStateError(f"Cannot run Chromium runner in state: {self._state.name}")

        self._state = ChromiumRunnerState.NEGOTIATING_PROTOCOL
        self._setup_task = asyncio.create_task(self._setup_instance())
        await self._setup_task

    async def reload_all_extensions(self) -> list[ExtensionRunnerReloadResult]:
        """Reload every extension.

        Per-extension failures are logged and don't fail the batch. A failed
        reload through the extensions page is returned as the reload error,
        and a browser that no longer knows the install method raises
        CapabilityError; the protocol is never negotiated again.
        """
        runner_name = self.get_name()
        connection = self._require_running().connection

        if self._legacy_mode:
            try:
                await self._legacy_reload(connection)
            except ProtocolError as e:
                logger.error(f"{runner_name}: failed to reload extensions: {e}")
                return [ExtensionRunnerReloadResult(runner_name=runner_name, reload_error=e)]
        else:
            for extension in self.params.extensions:
                try:
                    await self._load_unpacked(connection, extension.source_dir)
                except ProtocolError as e:
                    if self._is_method_not_found(e):
                        raise CapabilityError(
                            f"{self.params.chromium.load_unpacked_method} is no longer "
                            f"supported by this browser: {e.message}"
                        ) from e
                    logger.error(f"{runner_name}: failed to reload {extension.source_dir}: {e}")

        logger.info(f"{runner_name}: extensions reloaded")
        return [ExtensionRunnerReloadResult(runner_name=runner_name)]

    async def reload_extension_by_source_dir(
        self, extension_source_dir: str
    ) -> list[ExtensionRunnerReloadResult]:
        """Reload the extension loaded from a source dir.

        There is no per-extension reload over this transport, so every
        extension gets reloaded.
        """
        return await self.reload_all_extensions()

    def register_cleanup(self, fn: CleanupCallback) -> None:
        """Register a callback run once the Chromium instance is gone."""
        self._cleanup.add(fn)

    async def exit(self) -> None:
        """Close the Chromium instance and run the cleanup callbacks."""
        if self._state is ChromiumRunnerState.NOT_STARTED:
            raise RunnerStateError("Chromium runner exit() called before run()")

        self._exiting = True

        if self._setup_task and not self._setup_task.done():
            try:
                await self._setup_task
            except Exception as e:
                logger.debug(f"Ignored setup error on Chromium runner shutdown: {e}")

        instance, self._instance = self._instance, None
        if instance:
            await instance.kill()
            await instance.connection.wait_disconnected()

        self._state = ChromiumRunnerState.EXITED
        if self._profile:
            self._profile.remove()
        self._cleanup.run_all()

    # Private methods

    def _require_running(self) -> ChromiumInstance:
        if self._state is not ChromiumRunnerState.RUNNING or self._instance is None:
            raise RunnerStateError(f"Chromium is not running (state: {self._state.name})")
        return self._instance

    def _split_start_urls(self) -> tuple[Optional[str], list[str], list[str]]:
        """Return the starting url, extra url args and special urls.

        chrome:// and chrome-extension:// urls can't be opened from the
        command line, they are opened over the protocol once running.
        """
        urls = self.params.start_urls
        special = [url for url in urls if url.lower().startswith(SPECIAL_URL_PREFIXES)]
        regular = [url for url in urls if not url.lower().startswith(SPECIAL_URL_PREFIXES)]
        starting_url = regular.pop(0) if regular else None
        return starting_url, regular, special

    def _build_flags(self, extra_urls: list[str]) -> list[str]:
        flags = list(extra_urls)
        if self._legacy_mode:
            dirs = ",".join(ext.source_dir for ext in self.params.extensions)
            flags.append(f"--load-extension={dirs}")
        if self._profile and self._profile.profile_dir_name:
            flags.append(f"--profile-directory={self._profile.profile_dir_name}")
        flags.extend(self.params.args)
        return flags

    async def _launch(self) -> ChromiumInstance:
        assert self._profile is not None
        starting_url, extra_urls, _ = self._split_start_urls()

        if self.params.chromium_binary:
            logger.debug(f"(chromium_binary: {self.params.chromium_binary})")

        instance = await self.params.chromium_launch(
            chrome_flags=self._build_flags(extra_urls),
            user_data_dir=self._profile.user_data_dir,
            chrome_path=self.params.chromium_binary,
            starting_url=starting_url,
            verbose=self.params.chromium.verbose_protocol,
        )
        self._instance = instance
        self._exit_watch_task = asyncio.create_task(self._watch_exit(instance))
        return instance

    async def _setup_instance(self) -> None:
        self._profile = await prepare_profile(
            self.params.profile_path,
            self.params.keep_profile_changes,
        )

        logger.debug("Starting Chromium instance...")
        instance = await self._launch()

        if not await self._install_extensions(instance):
            await self._restart_in_legacy_mode(instance)

        self._state = ChromiumRunnerState.RUNNING
        await self._open_special_urls()

    async def _install_extensions(self, instance: ChromiumInstance) -> bool:
        """Install every extension over the protocol.

        Returns False when the browser lacks the install method.
        """
        for extension in self.params.extensions:
            try:
                await self._load_unpacked(instance.connection, extension.source_dir)
            except ProtocolError as e:
                if self._is_method_not_found(e):
                    return False
                logger.error(f"{self.get_name()}: failed to install {extension.source_dir}: {e}")
        return True

    def _is_method_not_found(self, error: ProtocolError) -> bool:
        return error.message == self.params.chromium.method_not_found_message

    async def _load_unpacked(self, connection: Any, source_dir: str) -> None:
        result = await connection.send(
            self.params.chromium.load_unpacked_method,
            {"path": source_dir},
        )
        extension_id = (result or {}).get("id")
        if extension_id:
            self.reloadable_extensions[source_dir] = extension_id
        logger.debug(f"Loaded {source_dir} as {extension_id}")

    async def _restart_in_legacy_mode(self, instance: ChromiumInstance) -> None:
        logger.info(
            "This browser can't load extensions over the protocol, "
            "restarting it with --load-extension"
        )
        self._state = ChromiumRunnerState.FALLBACK_RESTARTING
        self._restarting = True
        try:
            await instance.kill()
            await instance.connection.wait_disconnected()
        finally:
            self._restarting = False

        self._legacy_mode = True
        self._instance = None
        await self._launch()

    async def _open_special_urls(self) -> None:
        _, _, special_urls = self._split_start_urls()
        if not special_urls or self._instance is None:
            return
        for url in special_urls:
            try:
                await self._instance.connection.send("Target.createTarget", {"url": url})
            except ProtocolError as e:
                logger.warning(f"Could not open {url}: {e}")

    async def _legacy_reload(self, connection: Any) -> None:
        """Reload unpacked extensions from the extensions page."""
        config = self.params.chromium

        targets = await connection.send("Target.getTargets")
        page_target = next(
            (
                target for target in targets.get("targetInfos", [])
                if target.get("type") == "page"
                and target.get("url", "").startswith(config.extensions_page_url.rstrip("/"))
            ),
            None,
        )

        created_target_id: Optional[str] = None
        if page_target:
            target_id = page_target["targetId"]
        else:
            created = await connection.send("Target.createTarget", {"url": config.extensions_page_url})
            target_id = created_target_id = created["targetId"]

        try:
            attached = await connection.send(
                "Target.attachToTarget",
                {"targetId": target_id, "flatten": True},
            )
            session_id = attached["sessionId"]

            attempt = 0
            while attempt < config.legacy_reload_attempts:
                attempt += 1
                evaluated = await connection.send(
                    "Runtime.evaluate",
                    {
                        "expression": LEGACY_RELOAD_SCRIPT,
                        "awaitPromise": True,
                        "returnByValue": True,
                    },
                    session_id=session_id,
                )
                exception_details = evaluated.get("exceptionDetails")
                if exception_details:
                    reason = (
                        (exception_details.get("exception") or {}).get("description")
                        or exception_details.get("text", "unknown error")
                    )
                    raise ProtocolError(
                        f"Extensions page reload script failed: {reason}",
                        method="Runtime.evaluate",
                    )
                value = evaluated.get("result", {}).get("value")
                if value != LEGACY_NOT_READY:
                    logger.debug(f"Reloaded {value} unpacked extension(s) (attempt {attempt})")
                    return

                if attempt < config.legacy_reload_attempts:
                    delay = config.legacy_reload_backoff * attempt
                    logger.debug(f"Extensions page not ready, retrying in {delay}s")
                    await asyncio.sleep(delay)

            logger.warning(
                f"Extensions page still not ready after {attempt} attempts, "
                "extensions were not reloaded"
            )
        finally:
            if created_target_id:
                await connection.send("Target.closeTarget", {"targetId": created_target_id})

    async def _watch_exit(self, instance: ChromiumInstance) -> None:
        """Exit the runner when the browser goes away on its own."""
        await instance.process.wait()
        await instance.connection.wait_disconnected()

        if self._exiting or self._restarting:
            return
        if self._instance is not instance:
            return

        logger.info("Exiting on Chromium instance disconnected.")
        self._instance = None
        try:
            await self.exit()
        except Exception as e:
            logger.error(f"Chromium runner exit failed: {e}")
