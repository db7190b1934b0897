"""
Firefox profile handling.

Profiles are plain directories; development preferences go into their
``user.js`` which Firefox applies on every start.
"""

from __future__ import annotations

import asyncio
import configparser
import logging
import platform
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from extrunner.errors import ExtRunnerError
from extrunner.firefox.preferences import FirefoxPreferences, format_pref_value, get_prefs
from extrunner.manifest import get_manifest_id

logger = logging.getLogger(__name__)

USER_PREFS_FILE = "user.js"


@dataclass
class FirefoxProfile:
    """A profile directory Firefox is launched with."""

    path: Path
    # Set when the directory is a temporary one owned by the runner.
    temporary: bool = False

    @property
    def extensions_dir(self) -> Path:
        return self.path / "extensions"

    def remove(self) -> None:
        """Delete the profile directory if this run created it."""
        if self.temporary:
            logger.debug(f"Removing temporary Firefox profile {self.path}")
            shutil.rmtree(self.path, ignore_errors=True)


def default_profiles_root() -> Path:
    """Directory holding profiles.ini for the current user."""
    system = platform.system()
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / "Firefox"
    if system == "Windows":
        return Path.home() / "AppData" / "Roaming" / "Mozilla" / "Firefox"
    return Path.home() / ".mozilla" / "firefox"


def find_named_profile(name: str, profiles_root: Optional[Path] = None) -> Optional[Path]:
    """Look up a profile by name in profiles.ini."""
    root = profiles_root or default_profiles_root()
    ini_path = root / "profiles.ini"
    if not ini_path.is_file():
        return None

    parser = configparser.ConfigParser()
    parser.read(ini_path, encoding="utf-8")
    for section in parser.sections():
        if parser.get(section, "Name", fallback=None) != name:
            continue
        profile_path = Path(parser.get(section, "Path"))
        if parser.get(section, "IsRelative", fallback="1") == "1":
            profile_path = root / profile_path
        return profile_path
    return None


def configure_profile(
    profile: FirefoxProfile,
    app: str = "firefox",
    custom_prefs: Optional[FirefoxPreferences] = None,
) -> FirefoxProfile:
    """Write the development preferences (and custom ones) into user.js."""
    prefs: dict[str, Any] = {**get_prefs(app), **(custom_prefs or {})}

    lines = [
        f"user_pref({format_pref_value(name)}, {format_pref_value(value)});"
        for name, value in prefs.items()
    ]
    profile.path.mkdir(parents=True, exist_ok=True)
    (profile.path / USER_PREFS_FILE).write_text("\n".join(lines) + "\n", encoding="utf-8")
    logger.debug(f"Wrote {len(prefs)} preferences to {profile.path / USER_PREFS_FILE}")
    return profile


async def create_profile(
    app: str = "firefox",
    custom_prefs: Optional[FirefoxPreferences] = None,
) -> FirefoxProfile:
    """Create and configure a temporary profile."""
    profile = FirefoxProfile(
        path=Path(tempfile.mkdtemp(prefix="extrunner-firefox-")),
        temporary=True,
    )
    return configure_profile(profile, app=app, custom_prefs=custom_prefs)


async def copy_profile(
    profile_directory: str,
    app: str = "firefox",
    custom_prefs: Optional[FirefoxPreferences] = None,
) -> FirefoxProfile:
    """
    Copy an existing profile into a temporary one and configure the copy.

    Args:
        profile_directory: A profile directory or the name of a profile of
            the current user

    Raises:
        ExtRunnerError: If the profile can't be found or copied
    """
    source = Path(profile_directory)
    if not source.is_dir():
        logger.debug(f"Assuming {profile_directory} is a named profile")
        named = find_named_profile(profile_directory)
        if named is None:
            raise ExtRunnerError(
                f"Could not copy Firefox profile from {profile_directory}: "
                "no such directory or named profile"
            )
        source = named
    else:
        logger.debug(f'Copying profile directory from "{profile_directory}"')

    tmp_dir = Path(tempfile.mkdtemp(prefix="extrunner-firefox-"))
    try:
        await asyncio.to_thread(shutil.copytree, source, tmp_dir, dirs_exist_ok=True)
    except (OSError, shutil.Error) as e:
        shutil.rmtree(tmp_dir, ignore_errors=True)
        raise ExtRunnerError(f"Could not copy Firefox profile from {profile_directory}: {e}")

    return configure_profile(
        FirefoxProfile(path=tmp_dir, temporary=True),
        app=app,
        custom_prefs=custom_prefs,
    )


async def use_profile(
    profile_path: str,
    app: str = "firefox",
    custom_prefs: Optional[FirefoxPreferences] = None,
) -> FirefoxProfile:
    """Configure an existing profile in place; changes are kept."""
    path = Path(profile_path)
    if not path.is_dir():
        named = find_named_profile(profile_path)
        if named is None:
            raise ExtRunnerError(f"Firefox profile not found: {profile_path}")
        path = named
    return configure_profile(FirefoxProfile(path=path), app=app, custom_prefs=custom_prefs)


async def install_extension(
    profile: FirefoxProfile,
    extension_path: str,
    manifest_data: dict[str, Any],
    as_proxy: bool = False,
) -> Path:
    """
    Install an extension into a profile.

    With ``as_proxy`` a proxy file pointing at the source directory is
    written, otherwise extension_path must be a packaged .xpi that gets
    copied into the profile.

    Returns:
        Path of the file written into the profile

    Raises:
        ExtRunnerError: If the manifest has no gecko id or the source is
            not the expected kind of file
    """
    profile.extensions_dir.mkdir(parents=True, exist_ok=True)

    addon_id = get_manifest_id(manifest_data)
    if not addon_id:
        raise ExtRunnerError(
            "An explicit extension ID is required when installing to a profile "
            "(browser_specific_settings.gecko.id not found in manifest.json)"
        )

    if as_proxy:
        logger.debug(f"Installing as an extension proxy; source: {extension_path}")
        if not Path(extension_path).is_dir():
            raise ExtRunnerError(
                "proxy install: extension_path must be the extension source "
                f"directory; got: {extension_path}"
            )
        dest_path = profile.extensions_dir / addon_id
        dest_path.write_text(str(Path(extension_path).resolve()), encoding="utf-8")
        return dest_path

    dest_path = profile.extensions_dir / f"{addon_id}.xpi"
    logger.debug(f"Installing extension from {extension_path} to {dest_path}")
    await asyncio.to_thread(shutil.copyfile, extension_path, dest_path)
    return dest_path
