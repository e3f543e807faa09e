"""Deployment stage models — fixed total order, strict transitions."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class StageId(str, Enum):
    """Ordered deployment stages plus the terminal ``COMPLETE`` marker."""

    DEPLOY_STORAGE = "deploy_storage"
    DEPLOY_LOGIC_IMPLS = "deploy_logic_impls"
    DEPLOY_PROXY_FRONT = "deploy_proxy_front"
    DEPLOY_PROXIES = "deploy_proxies"
    WIRE_STORAGE = "wire_storage"
    SETUP_ROLES = "setup_roles"
    VERIFY = "verify"
    COMPLETE = "complete"


# Execution order. COMPLETE is not a stage, only the state after VERIFY.
STAGE_ORDER: list[StageId] = [
    StageId.DEPLOY_STORAGE,
    StageId.DEPLOY_LOGIC_IMPLS,
    StageId.DEPLOY_PROXY_FRONT,
    StageId.DEPLOY_PROXIES,
    StageId.WIRE_STORAGE,
    StageId.SETUP_ROLES,
    StageId.VERIFY,
]


def next_stage(stage: StageId) -> StageId:
    """Return the stage that follows *stage* (``COMPLETE`` after ``VERIFY``)."""
    if stage == StageId.COMPLETE:
        return StageId.COMPLETE
    idx = STAGE_ORDER.index(stage)
    if idx + 1 < len(STAGE_ORDER):
        return STAGE_ORDER[idx + 1]
    return StageId.COMPLETE


def stages_before(stage: StageId) -> list[StageId]:
    """Return every stage that must be complete before *stage* may run."""
    if stage == StageId.COMPLETE:
        return list(STAGE_ORDER)
    return STAGE_ORDER[: STAGE_ORDER.index(stage)]


class StageState(str, Enum):
    """Per-stage execution state recorded in the run ledger."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    FAILED = "failed"
    PASSED = "passed"


# PASSED -> RUNNING is a re-run; allowed because every stage operation is
# idempotent or fault-isolated.
VALID_TRANSITIONS: dict[StageState, set[StageState]] = {
    StageState.NOT_STARTED: {StageState.RUNNING},
    StageState.RUNNING: {StageState.PASSED, StageState.FAILED},
    StageState.FAILED: {StageState.NOT_STARTED, StageState.RUNNING},
    StageState.PASSED: {StageState.RUNNING},
}


class StageDefinition(BaseModel):
    """Display metadata for a deployment stage."""

    model_config = ConfigDict(frozen=True)

    stage_id: StageId
    display_name: str
    ordinal: int


DEFAULT_STAGE_DEFINITIONS: list[StageDefinition] = [
    StageDefinition(
        stage_id=StageId.DEPLOY_STORAGE, display_name="Storage Components", ordinal=0
    ),
    StageDefinition(
        stage_id=StageId.DEPLOY_LOGIC_IMPLS,
        display_name="Logic Implementations",
        ordinal=1,
    ),
    StageDefinition(
        stage_id=StageId.DEPLOY_PROXY_FRONT, display_name="Proxy Admin", ordinal=2
    ),
    StageDefinition(
        stage_id=StageId.DEPLOY_PROXIES, display_name="Component Proxies", ordinal=3
    ),
    StageDefinition(
        stage_id=StageId.WIRE_STORAGE, display_name="Storage Wiring", ordinal=4
    ),
    StageDefinition(
        stage_id=StageId.SETUP_ROLES, display_name="Role Grants", ordinal=5
    ),
    StageDefinition(
        stage_id=StageId.VERIFY, display_name="Verification", ordinal=6
    ),
]


# Operator-facing stage selections (``quikdeploy deploy --stage``).
# ``complete`` is handled as a full run_all().
STAGE_SELECTIONS: dict[str, list[StageId]] = {
    "storage": [StageId.DEPLOY_STORAGE],
    "logic": [StageId.DEPLOY_LOGIC_IMPLS],
    "proxies": [StageId.DEPLOY_PROXY_FRONT, StageId.DEPLOY_PROXIES],
    "config": [StageId.WIRE_STORAGE, StageId.SETUP_ROLES, StageId.VERIFY],
    "complete": list(STAGE_ORDER),
}
