"""Extension runners.

Each runner drives one browser target; the multi-target runner fans the same
operations out to several of them. Use ``create_extension_runner`` from
``extrunner.runners.multi`` to build runners from target names.
"""

from extrunner.runners.base import (
    Extension,
    ExtensionRunner,
    ExtensionRunnerParams,
    ExtensionRunnerReloadResult,
)

__all__ = [
    "Extension",
    "ExtensionRunner",
    "ExtensionRunnerParams",
    "ExtensionRunnerReloadResult",
]
