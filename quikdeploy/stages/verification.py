"""VERIFY — read everything back before the run is declared complete.

Fatal checks (``VerificationFailure``):

* every component in the topology has a non-zero recorded address
* something actually exists at each of those addresses
* each proxy points at its recorded implementation through the proxy admin
* each logic proxy's storage pointer equals its storage component
* each storage component accepts exactly its logic proxy, unless an
  outstanding WIRE_STORAGE warning already reports that storage

Role checks are advisory and come back as warnings.
"""

from __future__ import annotations

import logging

from quikdeploy.core.address_predictor import is_zero_address, role_id
from quikdeploy.core.deployment_state import DeploymentState
from quikdeploy.core.errors import VerificationFailure
from quikdeploy.environment.base import TargetEnvironmentError
from quikdeploy.models.components import ComponentCategory, Role
from quikdeploy.models.outcomes import StageOutcome, StepResult
from quikdeploy.models.stages import StageId
from quikdeploy.stages.base import BaseExecutor

logger = logging.getLogger(__name__)


class VerificationExecutor(BaseExecutor):
    stage_ids = (StageId.VERIFY,)
    display_name = "Verification"

    def execute(self, stage: StageId) -> StageOutcome:
        return self.verify(self.state)

    def verify(self, state: DeploymentState) -> StageOutcome:
        """Check *state* against the target; raise on any fatal mismatch."""
        topology = self.config.topology
        problems: list[str] = []

        expected: list[tuple[ComponentCategory, str]] = [
            *((ComponentCategory.STORAGE, s.name) for s in topology.storage),
            *((ComponentCategory.IMPLEMENTATIONS, s.name) for s in topology.proxied),
            (ComponentCategory.PROXIES, topology.proxy_admin.name),
            *((ComponentCategory.PROXIES, s.name) for s in topology.proxied),
        ]
        for category, name in expected:
            address = state.address_of(category, name)
            if is_zero_address(address):
                problems.append(f"{category.value}.{name} has no address")
            elif self.env.code_at(address) is None:
                problems.append(f"{category.value}.{name}: nothing exists at {address}")
        if problems:
            raise VerificationFailure("Deployment is incomplete", problems)

        admin = state.address_of(ComponentCategory.PROXIES, topology.proxy_admin.name)
        for spec in topology.proxied:
            proxy = state.address_of(ComponentCategory.PROXIES, spec.name)
            recorded = state.address_of(ComponentCategory.IMPLEMENTATIONS, spec.name)
            try:
                observed = self.env.implementation(admin, proxy)
            except TargetEnvironmentError as exc:
                problems.append(f"{spec.name}: cannot read implementation pointer ({exc})")
                continue
            if observed != recorded:
                problems.append(
                    f"{spec.name}: proxy points at {observed}, record says {recorded}"
                )

        unwired = {
            w.target for w in state.warnings if w.stage == StageId.WIRE_STORAGE
        }
        for lg in topology.logic:
            proxy = state.address_of(ComponentCategory.PROXIES, lg.name)
            storage = state.address_of(ComponentCategory.STORAGE, lg.storage)
            pointer = self.env.read_var(proxy, "storage")
            if pointer != storage:
                problems.append(f"{lg.name}: storage pointer {pointer}, expected {storage}")
            caller = self.env.logic_contract(storage)
            if caller != proxy and storage not in unwired:
                problems.append(f"{lg.storage}: logic caller {caller}, expected {proxy}")

        if problems:
            raise VerificationFailure("Readback does not match the deployment record", problems)

        results = [self._check_grant(g.role, g.grantee, g.target) for g in state.role_grants]
        logger.info("verified %d components", len(expected))
        return StageOutcome.fold(StageId.VERIFY, results)

    def _check_grant(self, role: str, grantee: str, target: str) -> StepResult:
        if self.env.has_role(target, role_id(Role(role)), grantee):
            return StepResult(operation="has_role", target=target, ok=True, skipped=True)
        return self.warn(
            StageId.VERIFY,
            "has_role",
            target,
            f"{grantee} no longer holds {role}",
            arguments={"role": role, "grantee": grantee},
        )
