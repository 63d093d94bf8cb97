"""Main Typer application — registers the CLI commands.

Entry point: ``cellarforge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from cellarforge import __version__
from cellarforge.cli.commands.install import install_cmd

app = typer.Typer(
    name="cellarforge",
    help="Cellarforge: reproducible package installs into a versioned store.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Extra args carry the open-ended --with-<feature> flags.
app.command(
    name="install",
    help="Install a package and its dependencies.",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)(install_cmd)


@app.command(name="version", help="Show the cellarforge version.")
def version_cmd() -> None:
    typer.echo(__version__)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
