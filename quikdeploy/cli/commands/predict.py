"""``quikdeploy predict`` — print every address a deployment would occupy.

Pure computation: nothing is created and the target is not contacted.
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from quikdeploy.cli.runtime import load_settings, resolve_identity, setup_logging
from quikdeploy.core.address_predictor import is_address, normalize_address
from quikdeploy.core.catalog import ArtifactCatalog, ArtifactNotFoundError, predict_layout

console = Console()


def predict_cmd(
    deployer: str = typer.Option(
        None, "--deployer", "-d", help="Deployer identity (default: from the credential)."
    ),
    version_tag: str = typer.Option(
        None, "--version-tag", help="Implementation version tag (default: configured)."
    ),
) -> None:
    """Predict component addresses without deploying anything."""
    settings = load_settings()
    setup_logging(settings)
    if deployer is not None and not is_address(deployer):
        console.print(f"[bold red]Not an address:[/bold red] {deployer}")
        raise typer.Exit(code=1)
    identity = normalize_address(deployer) if deployer else resolve_identity(settings)
    config = settings.deployment_config()
    version = version_tag or config.version_tag

    try:
        layout = predict_layout(
            ArtifactCatalog(config.artifacts_path), config.topology, identity, version
        )
    except ArtifactNotFoundError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1) from exc

    table = Table(
        title=f"Predicted layout for {identity} ({version})",
        show_header=True,
        header_style="bold",
    )
    table.add_column("Category", style="cyan", no_wrap=True)
    table.add_column("Component")
    table.add_column("Address", style="green")
    for key, address in layout.items():
        category, name = key.split(":", 1)
        table.add_row(category, name, address)
    console.print(table)
