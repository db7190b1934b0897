"""Chromium support: pipe transport, protocol client and launcher."""

from extrunner.chromium.connection import (
    ChromiumConnection,
    CDPRequest,
    NulFrameDecoder,
)
from extrunner.chromium.launcher import (
    ChromiumInstance,
    find_chromium_binary,
    launch_chromium,
)

__all__ = [
    "ChromiumConnection",
    "CDPRequest",
    "NulFrameDecoder",
    "ChromiumInstance",
    "find_chromium_binary",
    "launch_chromium",
]
