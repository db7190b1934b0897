"""Remote-debugging session with a running Firefox."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from extrunner.errors import ExtRunnerError, RDPError, RemoteTempInstallNotSupported
from extrunner.firefox.rdp_client import FirefoxRDPClient, connect_to_firefox

logger = logging.getLogger(__name__)

ConnectToFirefoxFn = Callable[[int], Awaitable[FirefoxRDPClient]]


class RemoteFirefox:
    """
    Add-on management over an RDP connection.

    Example:
        remote = await connect(port)
        result = await remote.install_temporary_addon("/path/to/extension")
        await remote.reload_addon(result["addon"]["id"])
    """

    def __init__(self, client: FirefoxRDPClient):
        self.client = client
        self.checked_for_addon_reloading = False

    def disconnect(self) -> None:
        self.client.disconnect()

    async def addon_request(self, addon: dict[str, Any], request_type: str) -> dict[str, Any]:
        """Send a request to the actor of an installed add-on."""
        try:
            return await self.client.request({"to": addon["actor"], "type": request_type})
        except RDPError as e:
            raise ExtRunnerError(f"{request_type} response error: {e}") from e

    async def get_addons_actor(self) -> Optional[str]:
        """Find the add-ons actor, None if the browser has none."""
        try:
            root = await self.client.request("getRoot")
            if root.get("addonsActor"):
                return root["addonsActor"]
        except RDPError as e:
            # getRoot is not available on older versions.
            logger.debug(f"getRoot failed, falling back to listTabs: {e}")

        try:
            tabs = await self.client.request("listTabs")
        except RDPError as e:
            raise ExtRunnerError(f"Remote Firefox: listTabs() error: {e}") from e
        return tabs.get("addonsActor")

    async def install_temporary_addon(self, addon_path: str) -> dict[str, Any]:
        """
        Install an unpacked extension as a temporary add-on.

        Returns:
            The install reply, carrying the add-on under ``addon``

        Raises:
            RemoteTempInstallNotSupported: If the browser has no add-ons actor
            ExtRunnerError: If the install fails
        """
        addons_actor = await self.get_addons_actor()
        if not addons_actor:
            logger.debug(f"No addonsActor returned by the remote Firefox: {addons_actor}")
            raise RemoteTempInstallNotSupported(
                "This version of Firefox does not provide an add-ons actor for "
                "remote installation."
            )

        try:
            response = await self.client.request({
                "to": addons_actor,
                "type": "installTemporaryAddon",
                "addonPath": addon_path,
            })
        except RDPError as e:
            raise ExtRunnerError(f"installTemporaryAddon: Error: {e}") from e

        logger.debug(f"installTemporaryAddon: {response}")
        logger.info(f"Installed {addon_path} as a temporary add-on")
        return response

    async def get_installed_addon(self, addon_id: str) -> dict[str, Any]:
        """Find an installed add-on by its id."""
        try:
            response = await self.client.request("listAddons")
        except RDPError as e:
            raise ExtRunnerError(f"Remote Firefox: listAddons() error: {e}") from e

        addons = response.get("addons", [])
        for addon in addons:
            if addon.get("id") == addon_id:
                return addon

        logger.debug(f"Remote Firefox has these addons: {[a.get('id') for a in addons]}")
        raise ExtRunnerError("The remote Firefox does not have your extension installed")

    async def check_for_addon_reloading(self, addon: dict[str, Any]) -> dict[str, Any]:
        """Make sure the add-on actor supports reload (checked once)."""
        if self.checked_for_addon_reloading:
            return addon

        response = await self.addon_request(addon, "requestTypes")
        request_types = response.get("requestTypes", [])
        if "reload" not in request_types:
            logger.debug(f"Remote Firefox only supports: {request_types}")
            raise ExtRunnerError(
                "This Firefox version does not support add-on reloading. "
                "Re-run with --no-reload"
            )

        self.checked_for_addon_reloading = True
        return addon

    async def reload_addon(self, addon_id: str) -> None:
        """Reload an installed add-on."""
        addon = await self.get_installed_addon(addon_id)
        await self.check_for_addon_reloading(addon)
        await self.addon_request(addon, "reload")
        logger.info(f"{datetime.now():%H:%M:%S}: Reloaded extension: {addon['id']}")


async def connect(
    port: int,
    connect_to_firefox: ConnectToFirefoxFn = connect_to_firefox,
) -> RemoteFirefox:
    """Open a remote-debugging session."""
    logger.debug(f"Connecting to Firefox on port {port}")
    client = await connect_to_firefox(port)
    logger.debug(f"Connected to the remote Firefox debugger on port {port}")
    return RemoteFirefox(client)


async def connect_with_max_retries(
    port: int,
    max_retries: int = 250,
    retry_interval: float = 0.12,
    connect_to_firefox: ConnectToFirefoxFn = connect_to_firefox,
) -> RemoteFirefox:
    """
    Open a remote-debugging session, retrying while Firefox starts up.

    Args:
        port: Debugger server port
        max_retries: Connection attempts before giving up
        retry_interval: Seconds between attempts
        connect_to_firefox: Connection factory

    Raises:
        ExtRunnerError: If every attempt was refused
    """
    last_error: Optional[Exception] = None
    for attempt in range(1, max_retries + 1):
        try:
            return await connect(port, connect_to_firefox=connect_to_firefox)
        except ConnectionRefusedError as e:
            last_error = e
            if attempt % 10 == 0:
                logger.debug(f"Retrying Firefox connection (attempt {attempt}): {e}")
            await asyncio.sleep(retry_interval)

    logger.debug("Connect to Firefox debugger: too many retries")
    raise ExtRunnerError(
        f"Unable to connect to the Firefox debugger on port {port}: {last_error}"
    )
