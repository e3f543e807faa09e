"""Operator configuration — env-driven.

Centralized settings using pydantic-settings. Reads from a .env file and
QUIKDEPLOY_* environment variables. ``PRIVATE_KEY`` and ``RPC_URL`` are
also honored, matching the variables the existing deployment scripts use.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from quikdeploy.models.config import DeploymentConfig, RoleAssignments


class ProdConfig(BaseSettings):
    """Deployment settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export QUIKDEPLOY_ENVIRONMENT=staging
        export QUIKDEPLOY_LOG_LEVEL=DEBUG
        export PRIVATE_KEY=0x...
        export RPC_URL=local://deployments/chain.db

    Or via .env file::

        QUIKDEPLOY_ENVIRONMENT=production
        QUIKDEPLOY_ADMIN_GRANTEES=0xabc...,0xdef...
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="QUIKDEPLOY_",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Storage paths
    deployments_dir: Path = Path("deployments")
    ledger_path: Path = Path("deployments/ledger.db")
    artifacts_path: Path | None = None

    # Target and identity
    rpc_url: str = Field(
        default="local://deployments/chain.db",
        validation_alias=AliasChoices("QUIKDEPLOY_RPC_URL", "RPC_URL"),
    )
    deployer_key: str = Field(
        default="",
        validation_alias=AliasChoices("QUIKDEPLOY_DEPLOYER_KEY", "PRIVATE_KEY"),
    )

    # Deployment behaviour
    history_limit: int = 10
    version_tag: str = "v1"

    # Role grantees; empty means the deployer
    admin_grantees: Annotated[list[str], NoDecode] = []
    auth_service_grantees: Annotated[list[str], NoDecode] = []
    upgrader_grantees: Annotated[list[str], NoDecode] = []

    @field_validator(
        "admin_grantees", "auth_service_grantees", "upgrader_grantees", mode="before"
    )
    @classmethod
    def _split_csv(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"

    def deployment_config(self, *, dry_run: bool = False) -> DeploymentConfig:
        """Build the DeploymentConfig for a run.

        Dry runs keep their records and ledger under ``<deployments_dir>/dry-run``
        so they never overwrite the real ``latest.json``.
        """
        root = self.deployments_dir / "dry-run" if dry_run else self.deployments_dir
        ledger = root / self.ledger_path.name if dry_run else self.ledger_path
        return DeploymentConfig(
            deployments_dir=root,
            ledger_db_path=ledger,
            history_limit=self.history_limit,
            version_tag=self.version_tag,
            artifacts_path=self.artifacts_path,
            roles=RoleAssignments(
                admin_grantees=self.admin_grantees,
                auth_service_grantees=self.auth_service_grantees,
                upgrader_grantees=self.upgrader_grantees,
            ),
        )
