"""CLI command modules for extrunner.

This package contains the ``run`` and ``config`` commands together with the exit codes and
error handling shared by the CLI entry points.
"""
