"""Rich terminal rendering for deployment records, stages and upgrades.

Color scheme
------------
- green     : success / PASSED / confirmed
- yellow    : partial / RUNNING / unconfirmed / warnings
- red       : failed / FAILED
- dim       : NOT_STARTED
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from quikdeploy.models.records import (
    DeploymentRecord,
    DeploymentStatus,
    UpgradeBatch,
    UpgradeStatus,
)
from quikdeploy.models.stages import DEFAULT_STAGE_DEFINITIONS, StageId, StageState

# ---------------------------------------------------------------------------
# Status -> Rich markup
# ---------------------------------------------------------------------------

_STATUS_MARKUP: dict[DeploymentStatus, str] = {
    DeploymentStatus.SUCCESS: "[bold green]success[/bold green]",
    DeploymentStatus.PARTIAL: "[bold yellow]partial[/bold yellow]",
    DeploymentStatus.FAILED: "[bold red]failed[/bold red]",
}

_STATE_MARKUP: dict[StageState, str] = {
    StageState.PASSED: "[green]PASSED[/green]",
    StageState.FAILED: "[bold red]FAILED[/bold red]",
    StageState.RUNNING: "[yellow]RUNNING[/yellow]",
    StageState.NOT_STARTED: "[dim]NOT STARTED[/dim]",
}

_UPGRADE_MARKUP: dict[UpgradeStatus, str] = {
    UpgradeStatus.CONFIRMED: "[green]confirmed[/green]",
    UpgradeStatus.UNCONFIRMED: "[yellow]unconfirmed[/yellow]",
    UpgradeStatus.FAILED: "[bold red]failed[/bold red]",
}

_BORDER: dict[DeploymentStatus, str] = {
    DeploymentStatus.SUCCESS: "green",
    DeploymentStatus.PARTIAL: "yellow",
    DeploymentStatus.FAILED: "red",
}


class DeploymentRenderer:
    """Renders deployment and upgrade records as Rich output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Deployment records
    # ------------------------------------------------------------------

    def render_record(self, record: DeploymentRecord, *, title: str = "Deployment") -> Panel:
        table = Table(show_header=True, header_style="bold", expand=True)
        table.add_column("Category", style="cyan", no_wrap=True)
        table.add_column("Component")
        table.add_column("Address", style="green")
        for category, mapping in (
            ("storage", record.storage),
            ("implementations", record.implementations),
            ("proxies", record.proxies),
        ):
            for name, address in sorted(mapping.items()):
                table.add_row(category, name, address)

        summary = "  |  ".join(
            [
                f"[bold]Run:[/bold] {record.run_id}",
                f"[bold]Status:[/bold] {_STATUS_MARKUP[record.status]}",
                f"[bold]Stage:[/bold] {record.current_stage.value}",
                f"[bold]Network:[/bold] {record.network}"
                + ("" if record.broadcast else " [dim](dry run)[/dim]"),
                f"[bold]Gas:[/bold] {record.gas_used or '0'}",
            ]
        )
        parts: list = [table, Text(""), Text.from_markup(summary)]
        if record.warnings:
            parts.append(Text(""))
            parts.append(Text.from_markup(f"[bold yellow]Warnings ({len(record.warnings)}):[/bold yellow]"))
            parts.extend(Text(f"  - {w}", style="yellow") for w in record.warnings)
        if record.errors:
            parts.append(Text(""))
            parts.append(Text.from_markup(f"[bold red]Errors ({len(record.errors)}):[/bold red]"))
            parts.extend(Text(f"  - {e}", style="red") for e in record.errors)

        return Panel(
            Group(*parts),
            title=f"[bold]{title}[/bold]",
            border_style=_BORDER[record.status],
            padding=(1, 2),
        )

    def print_record(self, record: DeploymentRecord, *, title: str = "Deployment") -> None:
        self.console.print(self.render_record(record, title=title))

    def render_stages(
        self, states: dict[StageId, StageState], completed: list[StageId] | None = None
    ) -> Table:
        """Stage table; *completed* (from the record) fills in states the ledger lacks."""
        completed = completed or []
        table = Table(title="Stages", show_header=True, header_style="bold")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Stage", style="cyan")
        table.add_column("State", justify="center")
        for definition in DEFAULT_STAGE_DEFINITIONS:
            state = states.get(definition.stage_id, StageState.NOT_STARTED)
            if definition.stage_id in completed and state == StageState.NOT_STARTED:
                state = StageState.PASSED
            table.add_row(str(definition.ordinal), definition.display_name, _STATE_MARKUP[state])
        return table

    # ------------------------------------------------------------------
    # Upgrades
    # ------------------------------------------------------------------

    def render_upgrade(self, batch: UpgradeBatch) -> Panel:
        table = Table(show_header=True, header_style="bold", expand=True)
        table.add_column("Component", style="cyan")
        table.add_column("Proxy")
        table.add_column("Old implementation", style="dim")
        table.add_column("New implementation", style="green")
        table.add_column("Status", justify="center")
        for u in batch.upgrades:
            table.add_row(
                u.component,
                u.proxy_address,
                u.old_implementation_address,
                u.new_implementation_address,
                _UPGRADE_MARKUP[u.status],
            )
        parts: list = [table]
        if batch.errors:
            parts.append(Text(""))
            parts.extend(Text(f"  - {e}", style="red") for e in batch.errors)
        return Panel(
            Group(*parts),
            title=f"[bold]Upgrade {batch.version_salt}[/bold] {_STATUS_MARKUP[batch.status]}",
            border_style=_BORDER[batch.status],
            padding=(1, 2),
        )

    def print_upgrade(self, batch: UpgradeBatch) -> None:
        self.console.print(self.render_upgrade(batch))
