"""``quikdeploy upgrade`` — repoint component proxies at new implementations.

Proxy addresses and the data behind them never change. A dry run rehearses
the upgrade against a copy of the target and of the latest record.
"""

from __future__ import annotations

import typer
from rich.console import Console

from quikdeploy.cli.render import DeploymentRenderer
from quikdeploy.cli.runtime import load_settings, open_target, resolve_identity, setup_logging
from quikdeploy.core.catalog import ArtifactNotFoundError
from quikdeploy.core.errors import AuthorizationError, DeploymentError, VerificationFailure
from quikdeploy.core.production_guard import ProductionConfigError, enforce_production_constraints
from quikdeploy.core.record_store import DeploymentRecordStore, RecordStoreError
from quikdeploy.core.upgrade_controller import UpgradeController
from quikdeploy.environment import TargetEnvironmentError

console = Console()


def upgrade_cmd(
    version_salt: str = typer.Option(
        ..., "--version-salt", "-v", help="Version tag salting the new implementations."
    ),
    component: list[str] = typer.Option(
        None, "--component", "-c", help="Component to upgrade (repeatable; default: all)."
    ),
    broadcast: bool = typer.Option(
        False,
        "--broadcast/--dry-run",
        help="Apply to the target, or rehearse against a throwaway copy.",
    ),
    rpc_url: str = typer.Option(None, "--rpc-url", help="Target endpoint (overrides RPC_URL)."),
) -> None:
    """Upgrade proxied components in place."""
    settings = load_settings(rpc_url)
    setup_logging(settings)
    try:
        enforce_production_constraints(settings)
    except ProductionConfigError as exc:
        console.print(f"[bold red]Production guard:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    config = settings.deployment_config(dry_run=not broadcast)
    store = DeploymentRecordStore(config.deployments_dir, config.history_limit)
    if not broadcast:
        live = DeploymentRecordStore(settings.deployments_dir, settings.history_limit).latest()
        if live is not None:
            store.checkpoint(live)

    deployer = resolve_identity(settings)
    environment = open_target(settings, broadcast=broadcast)
    renderer = DeploymentRenderer(console)
    controller = UpgradeController(config, environment, deployer, store=store)

    try:
        batch = controller.upgrade_all(version_salt, deployer, components=component or None)
    except AuthorizationError as exc:
        console.print(f"[bold red]Not authorized:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    except VerificationFailure as exc:
        batches = store.upgrades()
        if batches:
            renderer.print_upgrade(batches[-1])
        console.print(f"[bold red]Upgrade incomplete:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    except (
        DeploymentError,
        TargetEnvironmentError,
        ArtifactNotFoundError,
        RecordStoreError,
    ) as exc:
        console.print(f"[bold red]Upgrade failed:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    finally:
        environment.close()

    renderer.print_upgrade(batch)
    if not broadcast:
        console.print("[dim]Dry run: nothing was applied to the target.[/dim]")
