"""Option callbacks shared by the imforest commands.

``--help`` and ``--version`` print their output and exit with status 1 so
scripts that chain the trainer never mistake them for a completed run.
"""

from __future__ import annotations

import typer

from imforest import __version__

NO_HELP_OPTION = {"help_option_names": []}


def show_help(ctx: typer.Context, value: bool) -> None:
    if not value or ctx.resilient_parsing:
        return
    typer.echo(ctx.get_help())
    raise typer.Exit(code=1)


def show_version(ctx: typer.Context, value: bool) -> None:
    if not value or ctx.resilient_parsing:
        return
    typer.echo(f"imforest {__version__}")
    raise typer.Exit(code=1)


def help_option() -> bool:
    return typer.Option(
        False,
        "--help",
        "-h",
        is_eager=True,
        expose_value=False,
        callback=show_help,
        help="Show this message and exit.",
    )


def fail(ctx: typer.Context, message: str) -> None:
    """Print usage and a red error message to stderr and exit with status 1."""
    typer.echo(ctx.get_usage(), err=True)
    typer.echo(typer.style(f"Error: {message}", fg=typer.colors.RED, bold=True), err=True)
    raise typer.Exit(code=1)


__all__ = ["NO_HELP_OPTION", "show_help", "show_version", "help_option", "fail"]
