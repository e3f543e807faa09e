"""quikdeploy data models — all Pydantic v2."""

from quikdeploy.models.components import (
    ZERO_ADDRESS,
    ComponentCategory,
    ComponentDescriptor,
    ComponentKind,
    CreationPayload,
    Role,
    descriptor_key,
)
from quikdeploy.models.config import (
    DEFAULT_TOPOLOGY,
    ComponentSpec,
    DeploymentConfig,
    FacadeSpec,
    LogicSpec,
    RoleAssignments,
    Topology,
)
from quikdeploy.models.ledger import LedgerEntry
from quikdeploy.models.outcomes import StageOutcome, StepResult, WiringWarning
from quikdeploy.models.records import (
    DeploymentRecord,
    DeploymentStatus,
    RoleGrant,
    UpgradeBatch,
    UpgradeRecord,
    UpgradeStatus,
)
from quikdeploy.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    STAGE_ORDER,
    STAGE_SELECTIONS,
    VALID_TRANSITIONS,
    StageDefinition,
    StageId,
    StageState,
    next_stage,
    stages_before,
)

__all__ = [
    # components
    "ZERO_ADDRESS",
    "ComponentCategory",
    "ComponentDescriptor",
    "ComponentKind",
    "CreationPayload",
    "Role",
    "descriptor_key",
    # config
    "DEFAULT_TOPOLOGY",
    "ComponentSpec",
    "DeploymentConfig",
    "FacadeSpec",
    "LogicSpec",
    "RoleAssignments",
    "Topology",
    # ledger
    "LedgerEntry",
    # outcomes
    "StageOutcome",
    "StepResult",
    "WiringWarning",
    # records
    "DeploymentRecord",
    "DeploymentStatus",
    "RoleGrant",
    "UpgradeBatch",
    "UpgradeRecord",
    "UpgradeStatus",
    # stages
    "DEFAULT_STAGE_DEFINITIONS",
    "STAGE_ORDER",
    "STAGE_SELECTIONS",
    "VALID_TRANSITIONS",
    "StageDefinition",
    "StageId",
    "StageState",
    "next_stage",
    "stages_before",
]
