"""Firefox profile, process and remote-debugging helpers.

The desktop runner uses this package as its ``firefox_app`` collaborator.
"""

from extrunner.firefox.app import FirefoxInfo, find_firefox_binary, find_free_tcp_port, run
from extrunner.firefox.profile import (
    FirefoxProfile,
    configure_profile,
    copy_profile,
    create_profile,
    install_extension,
    use_profile,
)

__all__ = [
    "FirefoxInfo",
    "FirefoxProfile",
    "configure_profile",
    "copy_profile",
    "create_profile",
    "find_firefox_binary",
    "find_free_tcp_port",
    "install_extension",
    "run",
    "use_profile",
]
