"""CLI package for imforest."""

from typing import Optional

import typer

from imforest.cli.common import NO_HELP_OPTION, help_option, show_help, show_version
from imforest.logging import configure_logging

app = typer.Typer(
    name="imforest",
    help="Train random decision forests on labeled RGB-D images.",
    invoke_without_command=True,
    pretty_exceptions_enable=False,
    context_settings=NO_HELP_OPTION,
)


@app.callback()
def root(
    ctx: typer.Context,
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Logging level (DEBUG, INFO, WARNING, ERROR)."),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Also write logs to this file."),
    structured_logs: bool = typer.Option(False, "--structured-logs", help="Emit JSON log lines."),
    _version: bool = typer.Option(
        False,
        "--version",
        is_eager=True,
        expose_value=False,
        callback=show_version,
        help="Show the version and exit.",
    ),
    _help: bool = help_option(),
) -> None:
    """Train random decision forests on labeled RGB-D images."""
    configure_logging(level=log_level, file=log_file, structured=structured_logs)
    if ctx.invoked_subcommand is None:
        show_help(ctx, True)


# Register commands at import time so the app can be used programmatically
# (e.g., in tests) without invoking the full CLI entrypoint.
from imforest.cli import train as _train_module  # noqa: E402

app.command("train", context_settings=NO_HELP_OPTION)(_train_module.train)

__all__ = ["app"]
