"""Watch extension sources and report changes."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional, Sequence, Union

from watchfiles import awatch

from extrunner.file_filter import FileFilter, is_sub_path

logger = logging.getLogger(__name__)

ShouldWatchFn = Callable[[str], bool]
OnChangeFn = Callable[[], Awaitable[None]]

DEFAULT_DEBOUNCE_MS = 1000


def proxy_file_changes(
    file_path: str,
    artifacts_dir: Optional[Union[str, Path]],
    should_watch_file: ShouldWatchFn,
) -> bool:
    """Whether a change to file_path should trigger a reload."""
    if artifacts_dir and is_sub_path(artifacts_dir, file_path):
        logger.debug(f"Ignoring change to: {file_path}")
        return False
    if not should_watch_file(file_path):
        logger.debug(f"Ignoring change to: {file_path}")
        return False

    logger.info(f"Changed: {file_path}")
    logger.debug(f"Last change detection: {datetime.now():%H:%M:%S}")
    return True


async def on_source_change(
    source_dir: Union[str, Path],
    on_change: OnChangeFn,
    artifacts_dir: Optional[Union[str, Path]] = None,
    should_watch_file: Optional[ShouldWatchFn] = None,
    watch_file: Optional[Sequence[Union[str, Path]]] = None,
    debounce_ms: int = DEFAULT_DEBOUNCE_MS,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    """
    Call on_change whenever wanted files of a source directory change.

    Changes arriving within the debounce window are batched into a single
    call. Runs until stop_event is set.

    Args:
        source_dir: Directory to watch
        on_change: Coroutine function called after a batch of changes
        artifacts_dir: Directory whose changes are ignored
        should_watch_file: File predicate (defaults to a FileFilter)
        watch_file: Watch only these files instead of the directory
        debounce_ms: Debounce window in milliseconds
        stop_event: Stops the watcher once set
    """
    if should_watch_file is None:
        file_filter = FileFilter(source_dir, artifacts_dir=artifacts_dir)
        should_watch_file = file_filter.want_file

    paths: Iterable[Union[str, Path]] = watch_file or [source_dir]
    logger.debug(f"Watching for file changes in {', '.join(str(p) for p in paths)}")

    async for changes in awatch(*paths, debounce=debounce_ms, stop_event=stop_event):
        wanted = [
            path for _, path in sorted(changes, key=lambda c: c[1])
            if proxy_file_changes(path, artifacts_dir, should_watch_file)
        ]
        if not wanted:
            continue

        try:
            await on_change()
        except Exception as e:
            logger.error(f"Error while handling changes in {source_dir}: {e}")
