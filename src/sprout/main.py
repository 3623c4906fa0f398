"""
sprout CLI entry point.

Commands
--------
  sprout new BRANCH [--base REF]   — create a worktree, set it up, verify the baseline
  sprout where [--branch NAME]     — show where worktrees for this repo live

Exit codes for `new`: 0 ready, 2 ready but baseline failing, 1 failed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .config import load_config, normalize_log_level
from .models import (
    BaselineFailed,
    BaselinePassed,
    NoTestsConfigured,
    ProvisionResult,
    ProvisionStatus,
)
from .orchestrator import build_request, provision
from .paths import resolve_location
from .vcs import GitClient, VcsError, WorktreeProvisioner

# ── Typer app ─────────────────────────────────────────────────────────────────

app = typer.Typer(
    name="sprout",
    help="Provision an isolated git worktree with a verified test baseline.",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()
err_console = Console(stderr=True)

EXIT_READY = 0
EXIT_FAILED = 1
EXIT_NEEDS_DECISION = 2

_STATUS_STYLE = {
    ProvisionStatus.READY: "[bold green]✓ ready[/bold green]",
    ProvisionStatus.READY_NEEDS_DECISION: "[bold yellow]⚠ ready, baseline failing: decide before continuing[/bold yellow]",
    ProvisionStatus.FAILED: "[bold red]✗ failed[/bold red]",
}


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _format_baseline(result: ProvisionResult) -> str:
    baseline = result.baseline
    if baseline is None:
        return "—"
    if isinstance(baseline, NoTestsConfigured):
        return "[dim]no tests configured[/dim]"
    count = "?" if baseline.count is None else str(baseline.count)
    if isinstance(baseline, BaselinePassed):
        return f"[green]{count} passing[/green]"
    return f"[red]{count} failing[/red]"


def _exit_code(status: ProvisionStatus) -> int:
    if status == ProvisionStatus.READY:
        return EXIT_READY
    if status == ProvisionStatus.READY_NEEDS_DECISION:
        return EXIT_NEEDS_DECISION
    return EXIT_FAILED


def _render_result(result: ProvisionResult) -> None:
    console.print()
    console.print(f"[bold]Feature:[/bold]   {escape(result.label)}")
    console.print(f"[bold]Branch:[/bold]    {escape(result.branch_name)} (from {escape(result.base_branch)})")
    console.print(f"[bold]Worktree:[/bold]  {escape(str(result.worktree_path))}")
    console.print(f"[bold]Baseline:[/bold]  {_format_baseline(result)}")
    console.print(f"[bold]Status:[/bold]    {_STATUS_STYLE[result.status]}")

    if result.error is not None:
        console.print(
            Panel(Text(result.error.message), title=result.error.kind.value, border_style="red", expand=False)
        )

    if result.setup_outcomes:
        console.print()
        table = Table(show_header=True, header_style="bold")
        table.add_column("Setup action")
        table.add_column("Result")
        table.add_column("Detail")
        for outcome in result.setup_outcomes:
            status_str = "[green]✓ ok[/green]" if outcome.succeeded else "[red]✗ failed[/red]"
            table.add_row(outcome.action, status_str, Text(outcome.detail))
        console.print(table)

    if isinstance(result.baseline, BaselineFailed) and result.baseline.failure_summary:
        console.print(
            Panel(
                Text(result.baseline.failure_summary),
                title="Baseline failures",
                border_style="yellow",
                expand=False,
            )
        )
    console.print()


# ── Commands ──────────────────────────────────────────────────────────────────


@app.callback()
def _main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        envvar="SPROUT_LOG_LEVEL",
        help="CRITICAL | ERROR | WARNING | INFO | DEBUG (default from config).",
    ),
) -> None:
    """
    Provision an isolated git worktree with a verified test baseline.
    """
    ctx.obj = {"explicit_log_level": log_level is not None}
    level = log_level or load_config().get("logging", {}).get("level", "WARNING")
    try:
        _configure_logging(normalize_log_level(level))
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--log-level")


def _apply_repo_log_level(ctx: typer.Context, config: dict) -> None:
    """Re-apply the level once the repo-local config is known, unless --log-level was given."""
    if (ctx.obj or {}).get("explicit_log_level"):
        return
    level = config.get("logging", {}).get("level", "WARNING")
    try:
        _configure_logging(normalize_log_level(level))
    except ValueError as exc:
        err_console.print(f"[yellow]Ignoring repo log level: {escape(str(exc))}[/yellow]")


@app.command()
def new(
    ctx: typer.Context,
    branch: str = typer.Argument(..., help="Name of the new branch (and worktree directory)."),
    base: Optional[str] = typer.Option(
        None,
        "--base",
        help="Branch or ref to start from (default: the current branch).",
    ),
    label: Optional[str] = typer.Option(
        None,
        "--label",
        help="Feature label shown in the report (default: the branch name).",
    ),
    no_setup: bool = typer.Option(False, "--no-setup", help="Skip dependency setup."),
    no_tests: bool = typer.Option(False, "--no-tests", help="Skip the baseline test run."),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON."),
) -> None:
    """
    Create a worktree for BRANCH next to the primary checkout, install its
    dependencies and run its tests once.
    """
    cwd = Path.cwd().resolve()
    try:
        request = build_request(
            GitClient(control_root=cwd),
            cwd,
            branch,
            base_branch=base,
            label=label,
        )
    except VcsError as exc:
        err_console.print(f"[bold red]✗[/bold red] {escape(str(exc))}")
        raise typer.Exit(EXIT_FAILED)

    config = load_config(request.project_root)
    _apply_repo_log_level(ctx, config)
    provisioner = WorktreeProvisioner(GitClient(control_root=request.project_root))

    if as_json:
        result = provision(
            request,
            config,
            provisioner=provisioner,
            run_setup_actions=not no_setup,
            run_tests=not no_tests,
        )
        typer.echo(result.model_dump_json(indent=2))
    else:
        with console.status(f"Provisioning [bold]{branch}[/bold]…") as spinner:
            result = provision(
                request,
                config,
                provisioner=provisioner,
                on_state=lambda state: spinner.update(
                    f"Provisioning [bold]{branch}[/bold]: {state.value.replace('_', ' ')}…"
                ),
                run_setup_actions=not no_setup,
                run_tests=not no_tests,
            )
        _render_result(result)

    raise typer.Exit(_exit_code(result.status))


@app.command()
def where(
    ctx: typer.Context,
    branch: Optional[str] = typer.Option(
        None,
        "--branch",
        help="Also show the path a worktree for this branch would get.",
    ),
) -> None:
    """
    Print the worktree root for the current repository. Makes no changes.
    """
    cwd = Path.cwd().resolve()
    try:
        project_root = GitClient(control_root=cwd).repository_root(cwd=cwd)
    except VcsError as exc:
        err_console.print(f"[bold red]✗[/bold red] {escape(str(exc))}")
        raise typer.Exit(EXIT_FAILED)

    _apply_repo_log_level(ctx, load_config(project_root))
    location = resolve_location(cwd, project_root)
    typer.echo(str(location.worktree_root_dir))
    if branch:
        typer.echo(str(location.worktree_path_for(branch)))


# ── Entry point ───────────────────────────────────────────────────────────────


def main() -> None:
    app()


if __name__ == "__main__":
    main()
