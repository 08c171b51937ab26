"""
Root Typer application for the release-spine CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from release_spine.core.logging import configure_logging
from release_spine.core.settings import get_settings

app = Typer(
    name="release-spine",
    help="release-spine: staged release orchestration driven by a global scheduler.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("release-spine")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"release-spine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override RELEASE_SPINE_LOG_LEVEL."),
) -> None:
    """release-spine CLI: manage releases, the scheduler and leases."""
    settings = get_settings()
    configure_logging(level=log_level or settings.log_level, json_format=settings.log_json)


# ── Sub-command registration ─────────────────────────────────────────────

from release_spine.cli.db import app as db_app  # noqa: E402
from release_spine.cli.locks import app as locks_app  # noqa: E402
from release_spine.cli.release import app as release_app  # noqa: E402
from release_spine.cli.scheduler import app as scheduler_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(scheduler_app, name="scheduler", help="Run the global scheduler.")
app.add_typer(release_app, name="release", help="Create and steer releases.")
app.add_typer(locks_app, name="locks", help="Per-release lease management.")
