"""Preferences written into every Firefox profile used for development."""

from __future__ import annotations

from typing import Any, Optional, Union

from extrunner.errors import UsageError

FirefoxPreferences = dict[str, Union[bool, str, int]]

PREFS_COMMON: FirefoxPreferences = {
    # Allow debug output via dump to be printed to the system console
    "browser.dom.window.dump.enabled": True,
    "javascript.options.showInConsole": True,

    # Remote debugger connections without a prompt
    "devtools.debugger.remote-enabled": True,
    "devtools.debugger.prompt-connection": False,

    "extensions.logging.enabled": False,

    # No extension updates or update notifications
    "extensions.checkCompatibility.nightly": False,
    "extensions.update.enabled": False,
    "extensions.update.notifyUser": False,

    # Only load extensions from the application and user profile
    # (AddonManager.SCOPE_PROFILE + AddonManager.SCOPE_APPLICATION).
    "extensions.enabledScopes": 5,
    "extensions.getAddons.cache.enabled": False,
    "extensions.installDistroAddons": False,
    # Allow installing extensions dropped into the profile folder
    "extensions.autoDisableScopes": 10,

    "app.update.enabled": False,

    # Nonexistent local URLs for fast failures
    "extensions.update.url": "http://localhost/extensions-dummy/updateURL",
    "extensions.blocklist.url": "http://localhost/extensions-dummy/blocklistURL",
    "extensions.webservice.discoverURL": "http://localhost/extensions-dummy/discoveryURL",

    # Allow unsigned add-ons
    "xpinstall.signatures.required": False,

    # Don't show the content blocking introduction panel
    "browser.contentblocking.introCount": 99,
}

PREFS_FIREFOX: FirefoxPreferences = {
    "browser.startup.homepage": "about:blank",
    "startup.homepage_welcome_url": "about:blank",
    "startup.homepage_welcome_url.additional": "",
    "devtools.errorconsole.enabled": True,
    "devtools.chrome.enabled": True,

    # Make url-classifier updates so rare that they won't get in the way
    "urlclassifier.updateinterval": 172800,
    "browser.safebrowsing.provider.0.gethashURL": "http://localhost/safebrowsing-dummy/gethash",
    "browser.safebrowsing.provider.0.keyURL": "http://localhost/safebrowsing-dummy/newkey",
    "browser.safebrowsing.provider.0.updateURL": "http://localhost/safebrowsing-dummy/update",

    # Disable self repair/SHIELD
    "browser.selfsupport.url": "https://localhost/selfrepair",
    # Disable Reader Mode UI tour
    "browser.reader.detectedFirstArticle": True,

    # Set the policy firstURL to an empty string to prevent
    # the privacy info page to be opened on every run
    "datareporting.policy.firstRunURL": "",
}

_PREFS_BY_APP = {
    "firefox": PREFS_FIREFOX,
}


def get_prefs(app: str = "firefox") -> FirefoxPreferences:
    """Get the development preferences of an application."""
    app_prefs = _PREFS_BY_APP.get(app)
    if app_prefs is None:
        raise UsageError(f"Unsupported application: {app}")
    return {**PREFS_COMMON, **app_prefs}


def format_pref_value(value: Any) -> str:
    """Render a value the way prefs.js and user.js expect it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    return '"' + str(value).replace("\\", "\\\\").replace('"', '\\"') + '"'


def coerce_pref_value(value: str) -> Union[bool, int, str]:
    """Parse a ``--pref`` style value into a bool, int or string."""
    if value in ("true", "false"):
        return value == "true"
    try:
        return int(value)
    except ValueError:
        return value


def parse_custom_prefs(pairs: Optional[list[str]]) -> FirefoxPreferences:
    """Parse ``name=value`` pairs given on the command line."""
    prefs: FirefoxPreferences = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise UsageError(f"Incomplete custom preference: \"{pair}\". Syntax expected: \"prefname=prefvalue\".")
        prefs[name.strip()] = coerce_pref_value(value.strip())
    return prefs
