"""Shared CLI plumbing: settings, logging, identity and target selection."""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from quikdeploy.config import ProdConfig
from quikdeploy.core.address_predictor import derive_identity
from quikdeploy.environment import TargetEnvironmentError, connect_environment
from quikdeploy.environment.local import LocalEnvironment

# Identity used when no credential is configured (local development only).
DEV_CREDENTIAL = "quikdeploy-local-development"

console = Console()
err_console = Console(stderr=True)


def load_settings(rpc_url: str | None = None) -> ProdConfig:
    """Load settings from env/.env, letting ``--rpc-url`` win."""
    settings = ProdConfig()
    if rpc_url:
        settings = settings.model_copy(update={"rpc_url": rpc_url})
    return settings


def setup_logging(settings: ProdConfig) -> None:
    """Route library logging through Rich at the configured level."""
    level = "DEBUG" if settings.debug else settings.log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=settings.debug)],
        force=True,
    )


def resolve_identity(settings: ProdConfig) -> str:
    """Deployer identity derived from the configured credential."""
    if not settings.deployer_key:
        logging.getLogger(__name__).warning(
            "No deployer credential configured; using the local development identity"
        )
        return derive_identity(DEV_CREDENTIAL)
    return derive_identity(settings.deployer_key)


def open_target(settings: ProdConfig, *, broadcast: bool) -> LocalEnvironment:
    """Connect to the configured endpoint or exit with code 1."""
    try:
        return connect_environment(settings.rpc_url, broadcast=broadcast)
    except TargetEnvironmentError as exc:
        console.print(f"[bold red]Cannot open target:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
