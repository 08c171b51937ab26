"""
CLI layer for release-spine.

Provides a Typer application with sub-commands that delegate to the
operations layer (``release_spine.ops``). All business logic lives in
ops; this package handles only terminal transport: argument parsing,
coloured output, and table formatting.

Entry point::

    release-spine --help
"""

from release_spine.cli.app import app

__all__ = ["app"]
