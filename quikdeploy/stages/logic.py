"""DEPLOY_LOGIC_IMPLS — create the logic and facade implementations.

Implementations hold behavior only; their state lives in the proxies
created later. Salts carry the configured version tag.
"""

from __future__ import annotations

from quikdeploy.core.catalog import implementation_salt
from quikdeploy.models.components import ComponentCategory, ComponentKind, descriptor_key
from quikdeploy.models.config import FacadeSpec
from quikdeploy.models.outcomes import StageOutcome
from quikdeploy.models.stages import StageId
from quikdeploy.stages.base import BaseExecutor


class LogicExecutor(BaseExecutor):
    stage_ids = (StageId.DEPLOY_LOGIC_IMPLS,)
    display_name = "Logic Implementations"

    def execute(self, stage: StageId) -> StageOutcome:
        addresses = self.deploy_logic_implementations()
        return StageOutcome(
            stage=stage,
            succeeded=True,
            components={
                descriptor_key(ComponentCategory.IMPLEMENTATIONS, n): a
                for n, a in addresses.items()
            },
            gas_used=self.gas_used,
        )

    def deploy_logic_implementations(self) -> dict[str, str]:
        """Create every proxied implementation; name -> address."""
        addresses: dict[str, str] = {}
        for spec in self.config.topology.proxied:
            kind = ComponentKind.FACADE if isinstance(spec, FacadeSpec) else ComponentKind.LOGIC
            addresses[spec.name] = self.create(
                StageId.DEPLOY_LOGIC_IMPLS,
                ComponentCategory.IMPLEMENTATIONS,
                spec.name,
                implementation_salt(spec.name, self.owner, self.config.version_tag),
                self.catalog.payload(spec, kind),
            )
        return addresses
