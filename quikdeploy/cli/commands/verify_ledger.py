"""``quikdeploy verify-ledger [RUN_ID]`` — check the audit ledger's hash chain."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from quikdeploy.cli.runtime import load_settings, setup_logging
from quikdeploy.core.run_ledger import LedgerIntegrityError, RunLedger

console = Console()


def verify_ledger_cmd(
    run_id: str = typer.Argument(None, help="Run to verify (default: every run)."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Verify the dry-run ledger instead."),
) -> None:
    """Verify ledger integrity for one run or all runs."""
    settings = load_settings()
    setup_logging(settings)
    config = settings.deployment_config(dry_run=dry_run)
    if not config.ledger_db_path.exists():
        console.print(f"[bold red]No ledger at {config.ledger_db_path}[/bold red]")
        raise typer.Exit(code=1)

    ledger = RunLedger(config.ledger_db_path)
    run_ids = [run_id] if run_id else ledger.get_all_run_ids()
    if not run_ids:
        console.print("[dim]Ledger is empty.[/dim]")
        return

    table = Table(title="Ledger verification", show_header=True, header_style="bold")
    table.add_column("Run", style="cyan")
    table.add_column("Entries", justify="right")
    table.add_column("Chain", justify="center")
    broken = 0
    for rid in run_ids:
        entries = ledger.get_run_entries(rid)
        if not entries:
            table.add_row(rid, "0", "[yellow]unknown run[/yellow]")
            broken += 1
            continue
        try:
            ledger.verify_chain(rid)
            table.add_row(rid, str(len(entries)), "[green]VALID[/green]")
        except LedgerIntegrityError as exc:
            table.add_row(rid, str(len(entries)), f"[bold red]BROKEN[/bold red] {exc}")
            broken += 1

    console.print(table)
    if broken:
        raise typer.Exit(code=1)
