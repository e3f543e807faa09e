"""DEPLOY_STORAGE — create every storage component.

Storage components have no dependencies beyond their owner, so this stage
always runs first.
"""

from __future__ import annotations

from quikdeploy.core.catalog import storage_salt
from quikdeploy.models.components import ComponentCategory, ComponentKind, descriptor_key
from quikdeploy.models.outcomes import StageOutcome
from quikdeploy.models.stages import StageId
from quikdeploy.stages.base import BaseExecutor


class StorageExecutor(BaseExecutor):
    stage_ids = (StageId.DEPLOY_STORAGE,)
    display_name = "Storage Components"

    def execute(self, stage: StageId) -> StageOutcome:
        addresses = self.deploy_storage_components(self.owner)
        return StageOutcome(
            stage=stage,
            succeeded=True,
            components={
                descriptor_key(ComponentCategory.STORAGE, n): a for n, a in addresses.items()
            },
            gas_used=self.gas_used,
        )

    def deploy_storage_components(self, owner: str) -> dict[str, str]:
        """Create each storage component owned by *owner*; name -> address."""
        owner = self.require_address(owner, "storage owner")
        addresses: dict[str, str] = {}
        for spec in self.config.topology.storage:
            payload = self.catalog.payload(
                spec, ComponentKind.STORAGE, {"owner": owner}
            )
            addresses[spec.name] = self.create(
                StageId.DEPLOY_STORAGE,
                ComponentCategory.STORAGE,
                spec.name,
                storage_salt(spec.name, self.owner),
                payload,
            )
        return addresses
