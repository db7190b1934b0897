"""Decide which files of an extension source directory matter."""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path
from typing import Iterable, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_IGNORED_PATTERNS = [
    "**/*.xpi",
    "**/*.zip",
    # Any hidden file or folder and what's inside hidden folders
    "**/.*",
    "**/.*/**",
    "**/node_modules",
    "**/node_modules/**",
]


def is_sub_path(src: Union[str, Path], target: Union[str, Path]) -> bool:
    """Whether target is strictly inside src."""
    relative = os.path.relpath(os.path.abspath(target), os.path.abspath(src))
    if relative in (".", ".."):
        return False
    return not relative.startswith(".." + os.sep)


def _match(path: str, pattern: str) -> bool:
    # fnmatch's "*" already crosses separators; "**/" also has to match
    # nothing so that top-level files are covered.
    if fnmatch.fnmatchcase(path, pattern):
        return True
    if "/**/" in pattern:
        return fnmatch.fnmatchcase(path, pattern.replace("/**/", "/"))
    return False


class FileFilter:
    """
    Allows or ignores files of a source directory.

    Patterns are resolved against the source directory; a leading ``!``
    re-includes files matched by an earlier pattern.

    Example:
        file_filter = FileFilter("/path/to/extension", ignore_files=["*.log"])
        file_filter.want_file("background.js")  # True
    """

    def __init__(
        self,
        source_dir: Union[str, Path],
        base_ignored_patterns: Optional[Iterable[str]] = None,
        ignore_files: Optional[Iterable[str]] = None,
        artifacts_dir: Optional[Union[str, Path]] = None,
    ):
        self.source_dir = os.path.abspath(source_dir)
        self.files_to_ignore: list[str] = []

        if base_ignored_patterns is None:
            base_ignored_patterns = DEFAULT_IGNORED_PATTERNS
        self.add_to_ignore_list(base_ignored_patterns)
        if ignore_files:
            self.add_to_ignore_list(ignore_files)

        if artifacts_dir and is_sub_path(self.source_dir, artifacts_dir):
            artifacts_dir = os.path.abspath(artifacts_dir)
            logger.debug(f'Ignoring artifacts directory "{artifacts_dir}" and all its subdirectories')
            self.add_to_ignore_list([artifacts_dir, os.path.join(artifacts_dir, "**")])

    def resolve_with_source_dir(self, file: Union[str, Path]) -> str:
        """Resolve a relative path against the source directory."""
        return os.path.normpath(os.path.join(self.source_dir, file))

    def add_to_ignore_list(self, files: Iterable[str]) -> None:
        for file in files:
            if file.startswith("!"):
                self.files_to_ignore.append("!" + self.resolve_with_source_dir(file[1:]))
            else:
                self.files_to_ignore.append(self.resolve_with_source_dir(file))

    def want_file(self, file_path: Union[str, Path]) -> bool:
        """Whether a file is wanted.

        Relative paths are taken relative to the source directory.
        """
        resolved = self.resolve_with_source_dir(file_path)

        ignored = False
        for pattern in self.files_to_ignore:
            if pattern.startswith("!"):
                if ignored and _match(resolved, pattern[1:]):
                    ignored = False
            elif not ignored and _match(resolved, pattern):
                ignored = True

        if ignored:
            logger.debug(f"FileFilter: ignoring file {resolved}")
        return not ignored
