"""Desktop notifications for reload failures."""

from __future__ import annotations

import logging
from typing import Any, Optional

from extrunner import __app_name__

logger = logging.getLogger(__name__)

_notifier: Optional[Any] = None


def _get_notifier() -> Any:
    global _notifier
    if _notifier is None:
        from desktop_notifier import DesktopNotifier

        _notifier = DesktopNotifier(app_name=__app_name__)
    return _notifier


async def show_desktop_notification(
    title: str,
    message: str,
    notifier: Optional[Any] = None,
) -> None:
    """Show a desktop notification.

    A notification that can't be shown (no notification server, headless
    session) is logged and otherwise ignored.

    Args:
        title: Notification title
        message: Notification body
        notifier: Optional DesktopNotifier-like object (defaults to a shared one)
    """
    try:
        notifier = notifier or _get_notifier()
        await notifier.send(title=title, message=message)
    except Exception as e:
        logger.debug(f"Desktop notification failed: {e}")
