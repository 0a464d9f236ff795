"""Command-line interface for the directory tenant migration tool."""

import asyncio
import json
import signal
import sys
from contextlib import suppress
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from dirmigrator import __version__
from dirmigrator.api.client import RestDirectoryClient
from dirmigrator.config import (
    Config,
    LoggingConfig,
    MigrationConfig,
    StateConfig,
    TenantConfig,
    load_config,
)
from dirmigrator.core.models import RunOptions
from dirmigrator.core.orchestrator import MigrationOrchestrator, OrchestrationResult
from dirmigrator.core.report import RunReport, report as load_report
from dirmigrator.core.rollback import RollbackManager, RollbackReport
from dirmigrator.logging import logger
from dirmigrator.processors import default_pipeline
from dirmigrator.utils.errors import MigrationError, StructuralError

console = Console()

EXIT_OK = 0
EXIT_INCOMPLETE = 1
EXIT_STRUCTURAL = 2
EXIT_INTERRUPTED = 130

STATUS_STYLES = {
    "completed": "green",
    "failed": "red",
    "blocked": "yellow",
    "in_progress": "cyan",
    "not_started": "dim",
}

COUNT_COLUMNS = ("pending", "in_progress", "completed", "failed", "skipped")


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="dirmigrate")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML or JSON)",
)
@click.option(
    "--env-file",
    "-e",
    type=click.Path(exists=True, path_type=Path),
    help="Path to .env file",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[Path], env_file: Optional[Path]) -> None:
    """Directory tenant migration tool.

    Migrates users, groups and policy configuration between two directory
    tenants, phase by phase, with a resumable ledger.
    """
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        return

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["env_file"] = env_file


def _load(ctx: click.Context) -> Config:
    try:
        config = load_config(ctx.obj.get("config_path"), ctx.obj.get("env_file"))
    except Exception as e:
        console.print(f"[bold red]Error loading configuration:[/bold red] {e}")
        sys.exit(EXIT_STRUCTURAL)
    logger.configure(config.logging)
    return config


@cli.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=Path("config.yaml"),
    help="Output path for configuration file",
)
def init(output: Path) -> None:
    """Initialize a new configuration file with default values."""
    console.print(f"[bold blue]Creating configuration file: {output}[/bold blue]")

    source_tenant = click.prompt("Source tenant id")
    source_url = click.prompt("Source directory API URL")
    destination_tenant = click.prompt("Destination tenant id")
    destination_url = click.prompt("Destination directory API URL")

    config = Config(
        source=TenantConfig(tenant_id=source_tenant, base_url=source_url),
        destination=TenantConfig(tenant_id=destination_tenant, base_url=destination_url),
        state=StateConfig(),
        migration=MigrationConfig(),
        logging=LoggingConfig(),
    )
    config.to_file(output)

    console.print(f"\n[bold green]✓[/bold green] Configuration saved to: {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Set SOURCE_API_TOKEN and DESTINATION_API_TOKEN (or a .env file)")
    console.print("2. Add rewrite rules under migration.rewrite_rules")
    console.print("3. Run 'dirmigrate start'")


@cli.command()
@click.pass_context
def plan(ctx: click.Context) -> None:
    """Show the phase execution order."""
    config = _load(ctx)
    orchestrator = MigrationOrchestrator(source=None, destination=None)  # type: ignore[arg-type]
    default_pipeline(orchestrator, config.migration.phases)

    try:
        order = orchestrator.plan()
    except StructuralError as e:
        console.print(f"[bold red]Invalid phase graph:[/bold red] {e}")
        sys.exit(EXIT_STRUCTURAL)

    table = Table(title="Phase Plan", show_header=True)
    table.add_column("#", style="cyan")
    table.add_column("Phase", style="yellow")
    table.add_column("Depends on", style="green")
    for index, name in enumerate(order, 1):
        table.add_row(str(index), name, ", ".join(orchestrator.phases[name].depends_on) or "-")
    console.print(table)


@cli.command()
@click.pass_context
@click.option("--dry-run", is_flag=True, help="Record outcomes without creating objects")
@click.option("--parallelism", type=int, help="Override per-phase parallelism")
@click.option("--run-id", help="Run identifier (generated if omitted)")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def start(
    ctx: click.Context,
    dry_run: bool,
    parallelism: Optional[int],
    run_id: Optional[str],
    yes: bool,
) -> None:
    """Start a new migration run."""
    config = _load(ctx)
    if dry_run:
        config.migration.dry_run = True
    if parallelism:
        config.migration.parallelism = parallelism

    console.print("\n[bold blue]Migration Configuration:[/bold blue]")
    console.print(f"  • Source: {config.source.tenant_id} ({config.source.base_url})")
    console.print(
        f"  • Destination: {config.destination.tenant_id} ({config.destination.base_url})"
    )
    console.print(f"  • Ledger: {config.state.path}")
    console.print(f"  • Parallelism: {config.migration.parallelism}")
    console.print(f"  • Dry Run: {config.migration.dry_run}")
    console.print(f"  • Rewrite rules: {len(config.migration.rewrite_rules)}")

    if not config.migration.dry_run and not yes:
        if not click.confirm("\nProceed with migration?"):
            console.print("[yellow]Migration cancelled[/yellow]")
            return

    options = RunOptions(
        dry_run=config.migration.dry_run,
        parallelism=config.migration.parallelism,
        max_retry=config.migration.max_retry,
        retry_base=config.migration.retry_base,
        create_timeout=config.migration.create_timeout,
        rewrite_rules=config.migration.rewrite_rules,
    )

    async def action(orchestrator: MigrationOrchestrator) -> OrchestrationResult:
        return await orchestrator.start(
            config.state.path,
            source_tenant=config.source.tenant_id,
            destination_tenant=config.destination.tenant_id,
            options=options,
            run_id=run_id or config.migration.run_id,
        )

    _run(config, action)


@cli.command()
@click.pass_context
@click.option(
    "--ledger",
    type=click.Path(path_type=Path),
    help="Ledger to resume (defaults to state.path)",
)
def resume(ctx: click.Context, ledger: Optional[Path]) -> None:
    """Resume an interrupted or partially failed run."""
    config = _load(ctx)
    path = ledger or config.state.path

    async def action(orchestrator: MigrationOrchestrator) -> OrchestrationResult:
        return await orchestrator.resume(path)

    _run(config, action)


@cli.command()
@click.pass_context
@click.option("--ledger", type=click.Path(path_type=Path), help="Ledger to report on")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["summary", "detailed", "json"]),
    default="summary",
    help="Report format",
)
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Save report to file")
def report(
    ctx: click.Context,
    ledger: Optional[Path],
    output_format: str,
    output: Optional[Path],
) -> None:
    """Summarize a run ledger (read-only)."""
    config = _load(ctx)
    path = ledger or config.state.path

    try:
        run_report = asyncio.run(load_report(path))
    except StructuralError as e:
        console.print(f"[bold red]{e}[/bold red]")
        sys.exit(EXIT_STRUCTURAL)

    if output_format == "json" or output:
        text = json.dumps(run_report.model_dump(mode="json"), indent=2)
        if output:
            output.write_text(text)
            console.print(f"[green]Report saved to {output}[/green]")
        else:
            click.echo(text)
    else:
        _display_report(run_report, detailed=output_format == "detailed")

    sys.exit(EXIT_OK if run_report.succeeded else EXIT_INCOMPLETE)


@cli.command()
@click.pass_context
@click.option("--ledger", type=click.Path(path_type=Path), help="Ledger to roll back")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def rollback(ctx: click.Context, ledger: Optional[Path], yes: bool) -> None:
    """Delete every destination object the run created (best effort)."""
    config = _load(ctx)
    path = ledger or config.state.path

    if not yes and not click.confirm(f"\nDelete all objects created by the run in {path}?"):
        console.print("[yellow]Rollback cancelled[/yellow]")
        return

    async def _rollback() -> RollbackReport:
        async with RestDirectoryClient(config.source) as source, RestDirectoryClient(
            config.destination
        ) as destination:
            orchestrator = MigrationOrchestrator(source, destination)
            default_pipeline(orchestrator, config.migration.phases)
            return await RollbackManager(orchestrator).rollback(path)

    try:
        result = asyncio.run(_rollback())
    except StructuralError as e:
        console.print(f"[bold red]{e}[/bold red]")
        sys.exit(EXIT_STRUCTURAL)

    console.print(f"[green]✓[/green] Deleted {len(result.deleted)} object(s)")
    for warning in result.warnings:
        console.print(f"  [yellow]![/yellow] {warning}")
    sys.exit(EXIT_OK if result.clean else EXIT_INCOMPLETE)


def _run(config: Config, action) -> None:
    """Open both tenant sessions, run ``action`` and exit with its status."""
    log = logger.get_logger("cli")
    log.info("configuration_loaded", config=config.redacted())

    async def _main() -> OrchestrationResult:
        async with RestDirectoryClient(config.source) as source, RestDirectoryClient(
            config.destination
        ) as destination:
            orchestrator = MigrationOrchestrator(source, destination)
            default_pipeline(orchestrator, config.migration.phases)

            # First Ctrl-C stops at the next object boundary
            loop = asyncio.get_running_loop()
            with suppress(NotImplementedError):
                loop.add_signal_handler(signal.SIGINT, orchestrator.shutdown)
                loop.add_signal_handler(signal.SIGTERM, orchestrator.shutdown)

            return await action(orchestrator)

    try:
        result = asyncio.run(_main())
    except StructuralError as e:
        console.print(f"\n[bold red]Cannot run:[/bold red] {e}")
        log.error("structural_error", error=str(e))
        sys.exit(EXIT_STRUCTURAL)
    except KeyboardInterrupt:
        console.print("\n[yellow]Migration interrupted by user[/yellow]")
        log.warning("migration_interrupted")
        sys.exit(EXIT_INTERRUPTED)
    except MigrationError as e:
        console.print(f"\n[bold red]Migration failed:[/bold red] {e}")
        log.error("migration_failed", error=str(e), exc_info=e)
        sys.exit(EXIT_INCOMPLETE)

    _display_result(result)
    if result.cancelled:
        sys.exit(EXIT_INTERRUPTED)
    sys.exit(EXIT_OK if result.succeeded else EXIT_INCOMPLETE)


def _display_result(result: OrchestrationResult) -> None:
    table = Table(title=f"Run {result.run_id}", show_header=True)
    table.add_column("Phase", style="cyan")
    table.add_column("Status")
    table.add_column("Created", justify="right")
    table.add_column("Adopted", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Failed", justify="right")

    for name, status in result.phases.items():
        outcomes = result.outcomes.get(name, {})
        style = STATUS_STYLES.get(status.value, "white")
        table.add_row(
            name,
            f"[{style}]{status.value}[/{style}]",
            str(outcomes.get("created", 0)),
            str(outcomes.get("adopted", 0)),
            str(outcomes.get("skipped", 0)),
            str(outcomes.get("failed", 0)),
        )

    console.print("\n")
    console.print(table)
    if result.aborted:
        console.print(f"[bold red]Aborted:[/bold red] {result.aborted}")
    if result.cancelled:
        console.print("[yellow]Stopped early; run 'dirmigrate resume' to continue[/yellow]")
    elif result.succeeded:
        console.print(f"[bold green]All phases completed[/bold green] in {result.duration_seconds:.1f}s")
    else:
        console.print("[bold yellow]Some phases did not complete; see 'dirmigrate report'[/bold yellow]")


def _display_report(run_report: RunReport, detailed: bool = False) -> None:
    console.print(f"[bold]Run:[/bold] {run_report.run_id}")
    console.print(
        f"[bold]Tenants:[/bold] {run_report.source_tenant} → {run_report.destination_tenant}"
    )
    console.print(f"[bold]Started:[/bold] {run_report.started_at}")
    console.print(f"[bold]Completed:[/bold] {run_report.completed_at or 'In Progress'}")
    if run_report.rolled_back_at:
        console.print(f"[bold red]Rolled back:[/bold red] {run_report.rolled_back_at}")
    if run_report.dry_run:
        console.print("[yellow]Dry run ledger[/yellow]")

    table = Table(show_header=True)
    table.add_column("Phase", style="cyan")
    table.add_column("Status")
    for column in COUNT_COLUMNS:
        table.add_column(column.replace("_", " ").title(), justify="right")

    for phase in run_report.phases:
        style = STATUS_STYLES.get(phase.status.value, "white")
        table.add_row(
            phase.name,
            f"[{style}]{phase.status.value}[/{style}]",
            *(str(phase.counts.get(column, 0)) for column in COUNT_COLUMNS),
        )
    console.print(table)
    console.print(f"Rollback manifest: {run_report.manifest_size} object(s)")

    if detailed:
        for phase in run_report.phases:
            if phase.error:
                console.print(f"\n[bold]{phase.name}[/bold]: {phase.error}")
            for failure in phase.failures:
                console.print(f"  • {failure['key']}: {failure['error']}")


def main() -> None:
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
