"""Persisted deployment and upgrade records.

These models are the on-disk JSON contract (``deployments/*.json``). Field
names serialize in camelCase (``gasUsed``, ``completedStages``) to stay
readable by the existing tooling that consumes ``latest.json``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from quikdeploy.models.components import ComponentDescriptor
from quikdeploy.models.outcomes import WiringWarning
from quikdeploy.models.stages import StageId

_RECORD_CONFIG = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class UpgradeStatus(str, Enum):
    """Whether a repoint is known to have taken effect."""

    CONFIRMED = "confirmed"  # readback equals the new implementation
    UNCONFIRMED = "unconfirmed"  # repoint submitted, readback disagrees
    FAILED = "failed"  # repoint not applied


class RoleGrant(BaseModel):
    """An authorization record: *grantee* holds *role* on *target*."""

    model_config = _RECORD_CONFIG

    role: str
    role_id: str  # hex
    grantee: str
    target: str


class DeploymentRecord(BaseModel):
    """One deployment run, as persisted to ``addresses.json``/``latest.json``.

    Category maps go from component name to address, e.g.
    ``storage={"nodeStorage": "0x..."}``.
    """

    model_config = _RECORD_CONFIG

    run_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    deployer: str
    network: str = "local"
    broadcast: bool = False
    storage: dict[str, str] = {}
    implementations: dict[str, str] = {}
    proxies: dict[str, str] = {}
    gas_used: str | None = None
    status: DeploymentStatus = DeploymentStatus.PARTIAL
    current_stage: StageId = StageId.DEPLOY_STORAGE
    completed_stages: list[StageId] = []
    role_grants: list[RoleGrant] = []
    warnings: list[str] = []
    errors: list[str] = []
    # the same open warnings in structured form, so a resumed run sees them
    wiring_warnings: list[WiringWarning] = []
    # full placement data, so a resumed run can re-verify every address
    components: list[ComponentDescriptor] = []

    @property
    def is_complete(self) -> bool:
        return self.current_stage == StageId.COMPLETE


class UpgradeRecord(BaseModel):
    """Outcome of repointing one proxy.

    ``proxy_address`` never changes across upgrades of a component; only
    the implementation pointer does.
    """

    model_config = _RECORD_CONFIG

    component: str
    proxy_address: str
    old_implementation_address: str
    new_implementation_address: str
    observed_implementation_address: str = ""
    version_salt: str
    authorized_by: str
    status: UpgradeStatus
    timestamp: datetime = Field(default_factory=_utcnow)
    errors: list[str] = []

    @property
    def confirmed(self) -> bool:
        return self.status == UpgradeStatus.CONFIRMED


class UpgradeBatch(BaseModel):
    """One ``quikdeploy upgrade`` invocation, persisted to ``upgrades.json``."""

    model_config = _RECORD_CONFIG

    timestamp: datetime = Field(default_factory=_utcnow)
    deployer: str
    version_salt: str
    status: DeploymentStatus
    upgrades: list[UpgradeRecord] = []
    errors: list[str] = []

    @property
    def previous_implementations(self) -> dict[str, str]:
        return {u.component: u.old_implementation_address for u in self.upgrades}

    @property
    def new_implementations(self) -> dict[str, str]:
        return {
            u.component: u.new_implementation_address
            for u in self.upgrades
            if u.confirmed
        }
