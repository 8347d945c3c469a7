"""Main CLI entry point."""

import signal
import sys
import threading
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mlstack.config.parser import DesiredStateConfig, load_desired_state
from mlstack.config.secrets import SecretStore
from mlstack.config.settings import get_settings
from mlstack.orchestrator.executor import ApplyReport, ApplyStatus, ExecutionStatus
from mlstack.orchestrator.orchestrator import Orchestrator
from mlstack.orchestrator.planner import Operation, Plan
from mlstack.provisioners import create_provider
from mlstack.state.manager import open_state_store
from mlstack.utils.errors import DeploymentError, ExitCode, exit_code_for
from mlstack.utils.logging import LogContext, get_logger, setup_logging

console = Console()
err_console = Console(stderr=True)
logger = get_logger(__name__)

OPERATION_STYLES = {
    Operation.CREATE: "[green]+ create[/green]",
    Operation.UPDATE: "[yellow]~ update[/yellow]",
    Operation.DELETE: "[red]- delete[/red]",
    Operation.SKIP: "[dim]  unchanged[/dim]",
}

STATUS_STYLES = {
    ExecutionStatus.APPLIED: "[green]applied[/green]",
    ExecutionStatus.SKIPPED: "[dim]skipped[/dim]",
    ExecutionStatus.FAILED: "[red]failed[/red]",
    ExecutionStatus.NOT_APPLIED: "[yellow]not applied[/yellow]",
}


@click.group()
@click.option('--log-level', default=None, type=click.Choice(['debug', 'info', 'warning', 'error']),
              help='Console log level (default: MLSTACK_LOG_LEVEL or info)')
@click.pass_context
def cli(ctx, log_level):
    """Declarative provisioning of the experiment-tracking stack."""
    settings = get_settings()
    ctx.ensure_object(dict)
    ctx.obj['settings'] = settings

    setup_logging(log_level or settings.log_level, settings.log_dir)


def build_orchestrator(
    ctx,
    desired_file: str,
    state: str,
    max_workers: Optional[int] = None
) -> Orchestrator:
    """Wire config, secrets, state store and provider for one invocation."""
    settings = ctx.obj['settings']
    config: DesiredStateConfig = load_desired_state(desired_file)

    # Every referenced secret must be set before anything is planned
    secrets = SecretStore.from_environment(config.secret_names())

    return Orchestrator(
        config=config,
        store=open_state_store(state, lock_timeout=settings.lock_timeout),
        provider=create_provider(settings),
        secrets=secrets,
        max_workers=max_workers or settings.max_workers
    )


def fail(error: DeploymentError) -> None:
    """Report a failure on stderr and exit with its class's code."""
    resource = f" {error.resource_id}:" if error.resource_id else ""
    err_console.print(f"[red]Error[/red] [bold]{error.error_class}[/bold]{resource} {error.message}")
    for suggestion in error.suggestions:
        err_console.print(f"  [dim]- {suggestion}[/dim]")
    sys.exit(exit_code_for(error))


def print_plan(plan: Plan, title: str = "Plan") -> None:
    table = Table(title=title)
    table.add_column("Resource", style="cyan")
    table.add_column("Kind")
    table.add_column("Action")
    table.add_column("Reason", style="dim")

    for action in plan.actions:
        table.add_row(
            action.resource_id,
            action.spec.kind.value,
            OPERATION_STYLES[action.operation],
            action.reason
        )
    console.print(table)

    summary = plan.summary()
    console.print(
        f"[bold]{summary['create']}[/bold] to create, [bold]{summary['update']}[/bold] to update, "
        f"[bold]{summary['delete']}[/bold] to delete, {summary['skip']} unchanged"
    )

    if plan.orphaned:
        console.print(
            f"\n[yellow]Recorded but no longer declared (left untouched, use --prune to delete):"
            f"[/yellow] {', '.join(plan.orphaned)}"
        )


def print_report(report: ApplyReport) -> None:
    table = Table(title="Results")
    table.add_column("Resource", style="cyan")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Handle", style="dim")
    table.add_column("Duration", justify="right")

    for result in report.results:
        table.add_row(
            result.resource_id,
            result.operation.value,
            STATUS_STYLES[result.status],
            result.provider_handle or "",
            f"{result.duration:.1f}s" if result.duration else ""
        )
    console.print(table)

    if report.status == ApplyStatus.SUCCESS:
        console.print(Panel.fit(
            f"[green]Apply complete[/green]\n\n"
            f"Applied: {len(report.applied_ids())}\n"
            f"Unchanged: {len(report.skipped_ids())}\n"
            f"Duration: {report.duration:.2f}s",
            border_style="green"
        ))
    elif report.status == ApplyStatus.CANCELLED:
        err_console.print(
            f"[yellow]Cancelled[/yellow]: {len(report.not_applied_ids())} action(s) not applied. "
            f"Rerun to continue."
        )


def run_with_cancellation(func, *args, **kwargs) -> ApplyReport:
    """Run an apply with SIGINT setting the cancel event."""
    cancel_event = threading.Event()

    def handle_sigint(signum, frame):
        err_console.print("\n[yellow]Interrupt received; stopping after the running action[/yellow]")
        cancel_event.set()

    previous = signal.signal(signal.SIGINT, handle_sigint)
    try:
        return func(*args, cancel_event=cancel_event, **kwargs)
    finally:
        signal.signal(signal.SIGINT, previous)


def finish(report: ApplyReport) -> None:
    """Exit with the code matching the apply outcome."""
    if report.status == ApplyStatus.FAILED and report.error is not None:
        fail(report.error)
    if report.status == ApplyStatus.CANCELLED:
        sys.exit(ExitCode.CANCELLED)


@cli.command()
@click.argument('desired_file', type=click.Path(dir_okay=False))
@click.option('--state', required=True, help='State store path or file:// URI')
@click.option('--prune', is_flag=True, help='Plan deletion of resources no longer declared')
@click.pass_context
def plan(ctx, desired_file, state, prune):
    """Show what apply would change."""
    try:
        with LogContext(logger, command='plan'):
            orchestrator = build_orchestrator(ctx, desired_file, state)
            print_plan(orchestrator.plan(prune=prune))
    except DeploymentError as e:
        fail(e)


@cli.command()
@click.argument('desired_file', type=click.Path(dir_okay=False))
@click.option('--state', required=True, help='State store path or file:// URI')
@click.option('--prune', is_flag=True, help='Delete resources no longer declared')
@click.option('--max-workers', type=click.IntRange(min=1), default=None,
              help='Run up to N independent actions at once')
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompt')
@click.pass_context
def apply(ctx, desired_file, state, prune, max_workers, yes):
    """Converge the recorded state onto the desired state."""
    try:
        with LogContext(logger, command='apply'):
            orchestrator = build_orchestrator(ctx, desired_file, state, max_workers)
            current_plan = orchestrator.plan(prune=prune)
            print_plan(current_plan)

            if not current_plan.has_changes():
                console.print("\n[green]Nothing to do[/green]")
                return

            if not yes and not click.confirm("\nApply these changes?", default=False):
                console.print("[yellow]Apply aborted[/yellow]")
                return

            report = run_with_cancellation(orchestrator.apply, current_plan)
            print_report(report)
            finish(report)
    except DeploymentError as e:
        fail(e)


@cli.command()
@click.argument('desired_file', type=click.Path(dir_okay=False))
@click.option('--state', required=True, help='State store path or file:// URI')
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompt')
@click.pass_context
def destroy(ctx, desired_file, state, yes):
    """Delete every declared resource, dependents first."""
    try:
        with LogContext(logger, command='destroy'):
            orchestrator = build_orchestrator(ctx, desired_file, state)
            destroy_plan = orchestrator.plan_destroy()

            if not destroy_plan.has_changes():
                console.print("[green]Nothing to destroy[/green]")
                return

            print_plan(destroy_plan, title="Destruction plan")

            if not yes and not click.confirm(
                "\nAre you sure you want to destroy these resources?",
                default=False
            ):
                console.print("[yellow]Destruction aborted[/yellow]")
                return

            report = run_with_cancellation(orchestrator.destroy, destroy_plan)
            print_report(report)
            finish(report)
    except DeploymentError as e:
        fail(e)


@cli.command(name='state')
@click.option('--state', 'state_uri', required=True, help='State store path or file:// URI')
@click.pass_context
def show_state(ctx, state_uri):
    """Show the recorded state of every resource."""
    try:
        store = open_state_store(state_uri, lock_timeout=ctx.obj['settings'].lock_timeout)
        records = store.all()
    except DeploymentError as e:
        fail(e)
        return

    if not records:
        console.print("[dim]No resources recorded[/dim]")
        return

    table = Table(title=f"State: {state_uri}")
    table.add_column("Resource", style="cyan")
    table.add_column("Kind")
    table.add_column("Exists")
    table.add_column("Handle", style="dim")
    table.add_column("Last applied")

    for resource_id in sorted(records):
        record = records[resource_id]
        table.add_row(
            resource_id,
            record.kind.value,
            "[green]yes[/green]" if record.exists else "[red]no[/red]",
            record.provider_handle or "",
            record.last_applied_at.isoformat(timespec='seconds') if record.last_applied_at else ""
        )
    console.print(table)


if __name__ == '__main__':
    cli()
