"""``cellarforge install`` — install a package and its dependencies.

Builds the ``InstallRequest`` and ``InstallConfig`` once, at this
boundary, and hands both to the orchestrator.  Store paths of installed
packages are printed to stdout, one per line; everything else goes to
stderr.  The exit status is the failing error's ``exit_code``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.markup import escape
from rich.table import Table

from cellarforge.cli.console import configure_logging, err
from cellarforge.config import InstallConfig
from cellarforge.core.orchestrator import InstallOrchestrator
from cellarforge.errors import InstallError
from cellarforge.models.plan import InstallPlan
from cellarforge.models.states import InstallRequest, StepOutcome


def parse_feature_flags(args: list[str]) -> frozenset[str]:
    """Turn ``--with-foo`` / ``--without-bar`` extra args into option names."""
    options: set[str] = set()
    for arg in args:
        if arg.startswith(("--with-", "--without-")) and "=" not in arg:
            options.add(arg[2:])
        else:
            raise typer.BadParameter(f"unexpected argument {arg!r}")
    return frozenset(options)


def _confirm_plan(plan: InstallPlan) -> bool:
    table = Table(title=f"Install plan for {plan.target}")
    table.add_column("#", justify="right")
    table.add_column("Package", style="cyan")
    table.add_column("Version", style="green")
    table.add_column("Artifact")
    table.add_column("Options")
    for i, step in enumerate(plan.steps, 1):
        table.add_row(
            str(i),
            step.name,
            step.version_id or "HEAD",
            step.kind.value,
            " ".join(sorted(step.options)),
        )
    err.print(table)
    return typer.confirm("Do you want to proceed with the installation?", default=False, err=True)


def install_cmd(
    ctx: typer.Context,
    package: str = typer.Argument(..., help="Name of the package to install."),
    ask: bool = typer.Option(
        False, "--ask", help="Show the install plan and ask before doing anything."
    ),
    head: bool = typer.Option(
        False, "--HEAD", help="Install the development version from version control."
    ),
    build_from_source: bool = typer.Option(
        False, "--build-from-source", "-s", help="Build the target from source even if a prebuilt artifact exists."
    ),
    debug_symbols: bool = typer.Option(
        False, "--debug-symbols", help="Generate debug symbols and keep the source (implies building from source)."
    ),
    ignore_dependencies: bool = typer.Option(
        False, "--ignore-dependencies", help="Install only the target, skipping its dependencies."
    ),
    formula_path: Optional[Path] = typer.Option(
        None, "--formula-path", help="Directory of package descriptors (overrides CELLARFORGE_FORMULA_PATH)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output."),
) -> None:
    """Install PACKAGE into the store and link it into the prefix.

    Build options are passed as extra flags, e.g. ``--with-foo``.
    """
    options = parse_feature_flags(list(ctx.args))

    config = InstallConfig()
    if formula_path is not None:
        config = config.model_copy(update={"formula_path": formula_path})
    configure_logging("DEBUG" if verbose else config.log_level)

    request = InstallRequest(
        name=package,
        options=options,
        interactive=ask,
        force_head=head,
        force_source=build_from_source,
        debug_symbols=debug_symbols,
        ignore_dependencies=ignore_dependencies,
    )
    orchestrator = InstallOrchestrator(config, confirm=_confirm_plan)

    try:
        result = orchestrator.install(request)
    except InstallError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=exc.exit_code) from exc

    for step in result.steps:
        marker = "[green]==>[/green]" if step.outcome == StepOutcome.INSTALLED else "[yellow]==>[/yellow]"
        note = "" if step.outcome == StepOutcome.INSTALLED else " (already installed)"
        err.print(f"{marker} {escape(step.name)} {escape(step.entry.version_id)}{note}", soft_wrap=True)
        typer.echo(str(step.entry.path))

    if verbose:
        fetches = orchestrator.cache.network_fetches
        err.print(f"[dim]{len(fetches)} download(s) from the network[/dim]")
