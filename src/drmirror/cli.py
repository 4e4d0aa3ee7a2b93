from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from .config import AppConfig, ConfigError, load_config, resolve_config_path
from .executor import (
    CommandSyncExecutor,
    ExecutorError,
    InvalidOperationError,
    LocalSyncExecutor,
    SimulatedSyncExecutor,
    SyncExecutor,
)
from .logging_setup import setup_logging
from .models import Application
from .orchestrator import BatchOutcome, BulkSyncPlan, SyncSession
from .provider import CommandTreeProvider, LocalTreeProvider, ProviderError, TreeProvider
from .render import differences_table, log_table, plan_text, tree_view

app = typer.Typer(
    help="Compare a primary tree with its DR mirror and bring the mirror in sync",
    no_args_is_help=True,
)
console = Console()


def _config(ctx: typer.Context) -> AppConfig:
    config = ctx.obj
    assert isinstance(config, AppConfig)
    return config


def _application(
    config: AppConfig, name: str | None, primary: str | None, dr: str | None
) -> Application:
    base = config.application
    primary_path = primary or (base.primary_path if base else None)
    dr_path = dr or (base.dr_path if base else None)
    if not primary_path or not dr_path:
        console.print(
            "[red]Missing paths.[/red] Use `--primary` and `--dr`, or an \\[application] config table."
        )
        raise typer.Exit(2)
    app_name = name or (base.name if base else Path(primary_path).name or primary_path)
    return Application(name=app_name, primary_path=primary_path, dr_path=dr_path)


def _provider(config: AppConfig) -> TreeProvider:
    if config.executor.list_command:
        return CommandTreeProvider(config.executor.list_command, config.executor.timeout)
    return LocalTreeProvider()


def _executor(config: AppConfig) -> SyncExecutor:
    if config.executor.sync_command:
        return CommandSyncExecutor(config.executor.sync_command, config.executor.timeout)
    return LocalSyncExecutor()


def _session(config: AppConfig, application: Application) -> SyncSession:
    return SyncSession(
        application,
        provider=_provider(config),
        executor=_executor(config),
        settings=config.compare,
        max_depth=config.max_depth,
    )


async def _simulated_session(config: AppConfig, application: Application) -> SyncSession:
    session = _session(config, application)
    await session.load()
    simulated = SimulatedSyncExecutor(
        application.primary_path,
        application.dr_path,
        session.primary_tree,
        session.dr_tree,
    )
    session.provider = simulated
    session.executor = simulated
    return session


def _load(session: SyncSession) -> None:
    try:
        asyncio.run(session.load())
    except ProviderError as exc:
        console.print(f"[red]Load failed:[/red] {escape(str(exc))}")
        raise typer.Exit(1)


def _report_outcome(outcome: BatchOutcome) -> None:
    if outcome.fatal_error:
        console.print(f"[red]Sync failed:[/red] {escape(outcome.fatal_error)}")
        return
    for result in outcome.results:
        style = "green" if result.ok else "red"
        console.print(
            f"[{style}]{result.outcome.value}[/{style}] "
            f"{escape(result.path)}  {escape(result.message)}"
        )


@app.callback()
def _main(
    ctx: typer.Context,
    config_path: Path | None = typer.Option(
        None,
        "--config",
        help="TOML config file (default: $DRMIRROR_CONFIG or ~/.config/drmirror/drmirror.toml)",
    ),
    debug: bool = typer.Option(False, help="Enable debug logging"),
    log_file: Path | None = typer.Option(None, help="Also write log records to this file"),
) -> None:
    setup_logging(debug=debug, log_file=log_file)
    ctx.meta["config_path"] = resolve_config_path(config_path)
    try:
        ctx.obj = load_config(config_path)
    except ConfigError as exc:
        console.print(f"[red]Invalid config:[/red] {escape(str(exc))}")
        raise typer.Exit(1)


@app.command()
def compare(
    ctx: typer.Context,
    primary: str | None = typer.Option(None, help="Primary root path"),
    dr: str | None = typer.Option(None, help="DR root path"),
    name: str | None = typer.Option(None, help="Application name used in log messages"),
    show_tree: bool = typer.Option(False, "--tree/--no-tree", help="Print both annotated trees"),
    as_json: bool = typer.Option(False, "--json", help="Print differences as JSON"),
) -> None:
    """Classify every relative path and list the actionable differences."""
    config = _config(ctx)
    session = _session(config, _application(config, name, primary, dr))
    _load(session)

    if as_json:
        payload = [
            {
                "path": diff.path,
                "name": diff.name,
                "type": diff.kind.value,
                "status": diff.status.value,
                "summary": diff.summary,
            }
            for diff in session.differences
        ]
        typer.echo(json.dumps(payload, indent=2))
        return

    if show_tree:
        console.print(tree_view("Primary", session.primary_tree))
        console.print(tree_view("DR", session.dr_tree))
    if session.differences:
        console.print(differences_table(session.differences))
    else:
        console.print("[green]Primary and DR are in sync.[/green]")
    console.print(plan_text(session.plan_sync_all()))


@app.command()
def sync(
    ctx: typer.Context,
    primary: str | None = typer.Option(None, help="Primary root path"),
    dr: str | None = typer.Option(None, help="DR root path"),
    name: str | None = typer.Option(None, help="Application name used in log messages"),
    path: list[str] | None = typer.Option(
        None, "--path", help="Sync only this relative path (repeatable)"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the sync-all confirmation"),
    simulate: bool = typer.Option(
        False, help="Apply operations to in-memory trees only; nothing on disk changes"
    ),
) -> None:
    """Overwrite the DR side so it matches primary."""
    config = _config(ctx)
    application = _application(config, name, primary, dr)

    def confirm(plan: BulkSyncPlan) -> bool:
        console.print(plan_text(plan))
        return yes or typer.confirm(f"Proceed with {plan.total} operation(s)?", default=False)

    async def run() -> tuple[SyncSession, list[BatchOutcome]]:
        if simulate:
            session = await _simulated_session(config, application)
        else:
            session = _session(config, application)
            await session.load()
        outcomes: list[BatchOutcome] = []
        if path:
            for relpath in path:
                diff = session.select(relpath)
                if diff is None:
                    session.reporter.error(f"No such path on either side: {relpath}")
                    outcomes.append(BatchOutcome(fatal_error=f"unknown path {relpath}"))
                    continue
                outcomes.append(await session.sync_one(diff))
        else:
            outcomes.append(await session.sync_all(confirm))
        return session, outcomes

    try:
        session, outcomes = asyncio.run(run())
    except (ProviderError, ExecutorError, InvalidOperationError) as exc:
        console.print(f"[red]Sync failed:[/red] {escape(str(exc))}")
        raise typer.Exit(1)

    for outcome in outcomes:
        _report_outcome(outcome)
    console.print(log_table(session.reporter.newest_first()))
    remaining = len(session.plan_sync_all().differences)
    console.print(f"Remaining differences: {remaining}")
    if any(not outcome.ok and not outcome.cancelled for outcome in outcomes):
        raise typer.Exit(1)


@app.command("show-config")
def show_config(ctx: typer.Context) -> None:
    """Print the resolved configuration."""
    config = _config(ctx)
    console.print(f"Config file: {ctx.meta.get('config_path', resolve_config_path())}")
    if config.application is not None:
        console.print(f"Application: {config.application.name}")
        console.print(f"Primary: {config.application.primary_path}")
        console.print(f"DR: {config.application.dr_path}")
    else:
        console.print("Application: -")
    console.print(f"DR newer forces sync: {config.compare.dr_newer_forces_sync}")
    console.print(f"mtime tolerance: {config.compare.mtime_tolerance_seconds}s")
    console.print(f"Provider command: {' '.join(config.executor.list_command) or 'local'}")
    console.print(f"Sync command: {' '.join(config.executor.sync_command) or 'local'}")
    console.print(f"Max depth: {config.max_depth if config.max_depth is not None else 'all'}")


if __name__ == "__main__":
    app()
