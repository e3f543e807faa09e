"""``quikdeploy status`` — show the latest deployment, its stages and history."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from quikdeploy.cli.render import DeploymentRenderer
from quikdeploy.cli.runtime import load_settings, open_target, resolve_identity, setup_logging
from quikdeploy.client import ComponentManager, IncompleteDeploymentError
from quikdeploy.core.record_store import DeploymentRecordStore, RecordStoreError
from quikdeploy.core.run_ledger import RunLedger
from quikdeploy.core.stage_machine import StageMachine
from quikdeploy.environment import TargetUnavailableError

console = Console()


def status_cmd(
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the dry-run records instead."),
    check: bool = typer.Option(
        False, "--check", help="Probe every recorded component on the target."
    ),
    rpc_url: str = typer.Option(None, "--rpc-url", help="Target endpoint (overrides RPC_URL)."),
) -> None:
    """Show the latest deployment record."""
    settings = load_settings(rpc_url)
    setup_logging(settings)
    config = settings.deployment_config(dry_run=dry_run)
    store = DeploymentRecordStore(config.deployments_dir, config.history_limit)
    renderer = DeploymentRenderer(console)

    try:
        record = store.latest()
        history = store.history()
        upgrades = store.upgrades()
    except RecordStoreError as exc:
        console.print(f"[bold red]Unreadable record:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    if record is None:
        console.print(f"[dim]No deployment recorded under {store.root}.[/dim]")
        return

    renderer.print_record(record, title="Latest deployment")
    machine = StageMachine(RunLedger(config.ledger_db_path))
    console.print(renderer.render_stages(machine.get_all_states(record.run_id), record.completed_stages))

    if history:
        table = Table(title=f"History (last {len(history)})", show_header=True, header_style="bold")
        table.add_column("Run", style="cyan")
        table.add_column("Timestamp")
        table.add_column("Status")
        table.add_column("Stage")
        table.add_column("Gas", justify="right")
        for past in reversed(history):
            table.add_row(
                past.run_id,
                past.timestamp.isoformat(timespec="seconds"),
                past.status.value,
                past.current_stage.value,
                past.gas_used or "0",
            )
        console.print(table)

    if upgrades:
        last = upgrades[-1]
        console.print(
            f"[bold]Upgrades:[/bold] {len(upgrades)} recorded; last "
            f"{last.version_salt} ({last.status.value}) at "
            f"{last.timestamp.isoformat(timespec='seconds')}"
        )

    if check:
        environment = open_target(settings, broadcast=False)
        try:
            manager = ComponentManager(
                environment, record, identity=resolve_identity(settings)
            )
            components = manager.get_components()
            manager.test_connectivity()
            write_access = manager.has_write_access()
        except IncompleteDeploymentError as exc:
            console.print(f"[bold red]{exc}[/bold red]")
            raise typer.Exit(code=1) from exc
        except TargetUnavailableError as exc:
            console.print(f"[bold red]Connectivity check failed:[/bold red] {exc}")
            raise typer.Exit(code=1) from exc
        finally:
            environment.close()

        console.print(
            f"[bold]Connectivity:[/bold] [green]all {len(components)} components reachable[/green]"
        )
        access = "[green]Yes[/green]" if write_access else "[yellow]No[/yellow]"
        console.print(f"[bold]Write access:[/bold] {access}")
