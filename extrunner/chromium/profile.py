"""Chromium user-data-dir and profile directory helpers."""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from extrunner.errors import UsageError
from extrunner.runners.base import ProfileStrategy, select_profile_strategy

logger = logging.getLogger(__name__)


@dataclass
class ChromiumProfilePaths:
    """Where Chromium keeps its state for one run."""

    user_data_dir: Optional[str] = None
    profile_dir_name: Optional[str] = None


@dataclass
class PreparedProfile:
    """The profile location a Chromium instance is launched with."""

    user_data_dir: str
    profile_dir_name: Optional[str]
    strategy: ProfileStrategy
    # Set when user_data_dir is a temporary copy owned by the runner.
    temporary: bool = False

    def remove(self) -> None:
        """Delete the user-data-dir if this run created it."""
        if self.temporary:
            logger.debug(f"Removing temporary user-data-dir {self.user_data_dir}")
            shutil.rmtree(self.user_data_dir, ignore_errors=True)


def is_user_data_dir(dir_path: str) -> bool:
    """``Local State`` and ``Default`` are typical for a user-data-dir."""
    path = Path(dir_path)
    return (path / "Local State").is_file() and (path / "Default").is_dir()


def is_profile_dir(dir_path: str) -> bool:
    """``Secure Preferences`` is typical for a profile dir inside a user-data-dir."""
    return (Path(dir_path) / "Secure Preferences").is_file()


def get_profile_paths(chromium_profile: Optional[str]) -> ChromiumProfilePaths:
    """Split a --chromium-profile value into user-data-dir and profile name."""
    if not chromium_profile:
        return ChromiumProfilePaths()

    if is_profile_dir(chromium_profile) and not is_user_data_dir(chromium_profile):
        path = Path(chromium_profile)
        return ChromiumProfilePaths(
            user_data_dir=str(path.parent),
            profile_dir_name=path.name,
        )

    return ChromiumProfilePaths(user_data_dir=chromium_profile)


def _copy_into_temp_dir(paths: ChromiumProfilePaths) -> str:
    tmp_dir = tempfile.mkdtemp(prefix="extrunner-chromium-")
    assert paths.user_data_dir is not None

    if paths.profile_dir_name:
        shutil.copytree(
            Path(paths.user_data_dir) / paths.profile_dir_name,
            Path(tmp_dir) / paths.profile_dir_name,
        )
    else:
        shutil.copytree(paths.user_data_dir, tmp_dir, dirs_exist_ok=True)
    return tmp_dir


async def prepare_profile(
    chromium_profile: Optional[str],
    keep_profile_changes: bool,
) -> PreparedProfile:
    """
    Resolve the user-data-dir a Chromium instance is launched with.

    Args:
        chromium_profile: A user-data-dir or a profile dir inside one
        keep_profile_changes: Launch on the given profile in place

    Returns:
        The prepared profile location

    Raises:
        UsageError: If changes have to be kept on a profile that is not
            inside a user-data-dir
    """
    paths = get_profile_paths(chromium_profile)
    strategy = select_profile_strategy(chromium_profile, keep_profile_changes)

    if strategy is ProfileStrategy.REUSE:
        assert paths.user_data_dir is not None
        if paths.profile_dir_name and not is_user_data_dir(paths.user_data_dir):
            raise UsageError(
                "The profile you provided is not in a user-data-dir. "
                "The changes cannot be kept. Please either remove "
                "--keep-profile-changes or use a profile in a user-data-dir directory",
                details={"profile": chromium_profile},
            )
        logger.debug(f"Using Chromium user-data-dir {paths.user_data_dir}")
        return PreparedProfile(
            user_data_dir=paths.user_data_dir,
            profile_dir_name=paths.profile_dir_name,
            strategy=strategy,
        )

    if strategy is ProfileStrategy.COPY:
        logger.debug(f"Copying Chromium profile from {chromium_profile}")
        tmp_dir = await asyncio.to_thread(_copy_into_temp_dir, paths)
    else:
        logger.debug("Creating new Chromium user-data-dir")
        tmp_dir = tempfile.mkdtemp(prefix="extrunner-chromium-")

    return PreparedProfile(
        user_data_dir=tmp_dir,
        profile_dir_name=paths.profile_dir_name,
        strategy=strategy,
        temporary=True,
    )
