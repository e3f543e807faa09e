"""In-memory deployment state for one run.

A single explicit object, created by the Orchestrator and handed to every
executor. It owns the component descriptors and enforces their two rules:
the actual address equals the prediction, and once recorded it never
changes.
"""

from __future__ import annotations

import logging

from quikdeploy.core.errors import CreationMismatchError, DescriptorImmutableError
from quikdeploy.models.components import (
    ComponentCategory,
    ComponentDescriptor,
    descriptor_key,
)
from quikdeploy.models.outcomes import WiringWarning
from quikdeploy.models.records import DeploymentRecord, DeploymentStatus, RoleGrant
from quikdeploy.models.stages import STAGE_ORDER, StageId

logger = logging.getLogger(__name__)


class DeploymentState:
    """Mutable state of one deployment run.

    Parameters
    ----------
    run_id:
        Identifier shared by the record, the ledger and the logs.
    deployer:
        Identity performing every creation and grant.
    network:
        Target name recorded in the deployment record.
    broadcast:
        Whether the run is persisted to the target (``False`` for dry runs).
    """

    def __init__(
        self,
        run_id: str,
        deployer: str,
        *,
        network: str = "local",
        broadcast: bool = False,
    ) -> None:
        self.run_id = run_id
        self.deployer = deployer
        self.network = network
        self.broadcast = broadcast
        self.descriptors: dict[str, ComponentDescriptor] = {}
        self.completed_stages: list[StageId] = []
        self.warnings: list[WiringWarning] = []
        self.errors: list[str] = []
        self.role_grants: list[RoleGrant] = []
        self.gas_used = 0
        # restored warning text with no structured form, kept until its stage re-runs
        self._restored_warnings: list[str] = []

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    @property
    def current(self) -> StageId:
        """First stage not yet complete, or ``COMPLETE``."""
        for stage in STAGE_ORDER:
            if stage not in self.completed_stages:
                return stage
        return StageId.COMPLETE

    def is_complete(self, stage: StageId) -> bool:
        return stage in self.completed_stages

    def mark_complete(self, stage: StageId) -> None:
        if stage not in self.completed_stages:
            self.completed_stages.append(stage)
            self.completed_stages.sort(key=STAGE_ORDER.index)

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def get(self, category: ComponentCategory, name: str) -> ComponentDescriptor | None:
        return self.descriptors.get(descriptor_key(category, name))

    def address_of(self, category: ComponentCategory, name: str) -> str | None:
        descriptor = self.get(category, name)
        return descriptor.actual_address if descriptor else None

    def addresses(self, category: ComponentCategory) -> dict[str, str]:
        """Name -> actual address for every created component in *category*."""
        return {
            d.name: d.actual_address
            for d in self.descriptors.values()
            if d.category == category and d.actual_address
        }

    def record_creation(
        self, descriptor: ComponentDescriptor, actual_address: str
    ) -> ComponentDescriptor:
        """Assign *actual_address* to the component *descriptor* names.

        Raises ``CreationMismatchError`` if it differs from the prediction
        and ``DescriptorImmutableError`` if a different address was already
        recorded for the same component.
        """
        actual = actual_address.lower()
        if actual != descriptor.predicted_address:
            raise CreationMismatchError(
                descriptor.predicted_address, actual, name=descriptor.name
            )

        existing = self.descriptors.get(descriptor.key)
        if existing is not None and existing.actual_address not in (None, actual):
            raise DescriptorImmutableError(
                f"{descriptor.key} is already recorded at {existing.actual_address}; "
                f"refusing to move it to {actual}"
            )

        recorded = descriptor.model_copy(update={"actual_address": actual})
        self.descriptors[descriptor.key] = recorded
        return recorded

    def replace_descriptor(self, descriptor: ComponentDescriptor) -> None:
        """Swap in a new implementation descriptor after a confirmed upgrade."""
        if descriptor.category != ComponentCategory.IMPLEMENTATIONS:
            raise DescriptorImmutableError(
                f"Only implementations can be replaced, not {descriptor.key}"
            )
        self.descriptors[descriptor.key] = descriptor

    # ------------------------------------------------------------------
    # Warnings, errors, gas, grants
    # ------------------------------------------------------------------

    def set_stage_warnings(self, stage: StageId, warnings: list[WiringWarning]) -> None:
        """Replace any earlier warnings of *stage* with *warnings*."""
        self.warnings = [w for w in self.warnings if w.stage != stage] + list(warnings)
        prefix = f"[{stage.value}]"
        self._restored_warnings = [
            w for w in self._restored_warnings if not w.startswith(prefix)
        ]

    @property
    def has_open_warnings(self) -> bool:
        return bool(self.warnings or self._restored_warnings)

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def add_gas(self, amount: int) -> None:
        self.gas_used += amount

    def add_role_grant(self, grant: RoleGrant) -> None:
        if grant not in self.role_grants:
            self.role_grants.append(grant)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_record(self, status: DeploymentStatus) -> DeploymentRecord:
        return DeploymentRecord(
            run_id=self.run_id,
            deployer=self.deployer,
            network=self.network,
            broadcast=self.broadcast,
            storage=self.addresses(ComponentCategory.STORAGE),
            implementations=self.addresses(ComponentCategory.IMPLEMENTATIONS),
            proxies=self.addresses(ComponentCategory.PROXIES),
            gas_used=str(self.gas_used) if self.gas_used else None,
            status=status,
            current_stage=self.current,
            completed_stages=list(self.completed_stages),
            role_grants=list(self.role_grants),
            warnings=self._restored_warnings + [w.describe() for w in self.warnings],
            wiring_warnings=list(self.warnings),
            errors=list(self.errors),
            components=sorted(self.descriptors.values(), key=lambda d: d.key),
        )

    @classmethod
    def from_record(cls, record: DeploymentRecord) -> DeploymentState:
        """Rebuild state from a persisted record so a run can resume."""
        state = cls(
            record.run_id,
            record.deployer,
            network=record.network,
            broadcast=record.broadcast,
        )
        for descriptor in record.components:
            state.descriptors[descriptor.key] = descriptor
        for stage in record.completed_stages:
            state.mark_complete(stage)
        state.role_grants = list(record.role_grants)
        state.gas_used = int(record.gas_used) if record.gas_used else 0
        state.warnings = list(record.wiring_warnings)
        described = {w.describe() for w in state.warnings}
        state._restored_warnings = [w for w in record.warnings if w not in described]
        logger.info(
            "Restored run %s at %s (%d components)",
            record.run_id,
            state.current.value,
            len(state.descriptors),
        )
        return state
