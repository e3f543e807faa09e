"""``quikdeploy deploy`` — run or resume the staged deployment.

Picks up from ``latest.json`` when an unfinished run by the same deployer
exists. ``--stage`` limits the run to one group of stages; every earlier
stage must already be complete.
"""

from __future__ import annotations

import typer
from rich.console import Console

from quikdeploy.cli.render import DeploymentRenderer
from quikdeploy.cli.runtime import load_settings, open_target, resolve_identity, setup_logging
from quikdeploy.core.catalog import ArtifactNotFoundError
from quikdeploy.core.errors import DeploymentError
from quikdeploy.core.orchestrator import Orchestrator
from quikdeploy.core.production_guard import ProductionConfigError
from quikdeploy.core.record_store import DeploymentRecordStore, RecordStoreError
from quikdeploy.core.stage_machine import InvalidTransitionError, StageNotReadyError
from quikdeploy.environment import TargetEnvironmentError
from quikdeploy.models.stages import STAGE_SELECTIONS, StageId
from quikdeploy.stages import StageExecutionError

console = Console()

_DEPLOY_ERRORS = (
    DeploymentError,
    StageExecutionError,
    TargetEnvironmentError,
    InvalidTransitionError,
    StageNotReadyError,
    ArtifactNotFoundError,
    RecordStoreError,
)


def deploy_cmd(
    stage: str = typer.Option(
        "complete",
        "--stage",
        "-s",
        help=f"Stage group to run: {', '.join(STAGE_SELECTIONS)}.",
    ),
    broadcast: bool = typer.Option(
        False,
        "--broadcast/--dry-run",
        help="Apply to the target, or rehearse against a throwaway copy.",
    ),
    rpc_url: str = typer.Option(None, "--rpc-url", help="Target endpoint (overrides RPC_URL)."),
) -> None:
    """Deploy the component graph, resuming an unfinished run if there is one."""
    if stage not in STAGE_SELECTIONS:
        console.print(
            f"[bold red]Unknown stage {stage!r}.[/bold red] "
            f"Choose one of: {', '.join(STAGE_SELECTIONS)}"
        )
        raise typer.Exit(code=1)

    settings = load_settings(rpc_url)
    setup_logging(settings)
    config = settings.deployment_config(dry_run=not broadcast)
    deployer = resolve_identity(settings)
    environment = open_target(settings, broadcast=broadcast)
    store = DeploymentRecordStore(config.deployments_dir, config.history_limit)
    renderer = DeploymentRenderer(console)

    mode = "[bold]broadcast[/bold]" if broadcast else "[dim]dry run[/dim]"
    console.print(f"Deploying as [cyan]{deployer}[/cyan] to {environment.network} ({mode})")

    try:
        orchestrator = Orchestrator.resume(
            config,
            environment,
            deployer,
            store=store,
            broadcast=broadcast,
            prod_config=settings,
        )
        if stage == "complete":
            orchestrator.run_all()
        else:
            for stage_id in STAGE_SELECTIONS[stage]:
                orchestrator.run_single(stage_id)
    except ProductionConfigError as exc:
        console.print(f"[bold red]Production guard:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    except _DEPLOY_ERRORS as exc:
        console.print(f"[bold red]Deployment failed:[/bold red] {exc}")
        record = store.latest()
        if record is not None:
            renderer.print_record(record, title="Deployment (failed)")
        console.print(f"[dim]Error log written under {store.logs_dir}[/dim]")
        raise typer.Exit(code=1) from exc
    finally:
        environment.close()

    record = store.latest()
    if record is not None:
        renderer.print_record(record)
        console.print(renderer.render_stages(orchestrator.get_states(), record.completed_stages))
        if orchestrator.current != StageId.COMPLETE:
            console.print(
                f"[yellow]Next stage:[/yellow] {orchestrator.current.value} "
                f"(run [bold]quikdeploy deploy[/bold] again to continue)"
            )
    if not broadcast:
        console.print("[dim]Dry run: nothing was applied to the target.[/dim]")
