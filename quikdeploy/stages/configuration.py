"""WIRE_STORAGE and SETUP_ROLES — fault-isolated wiring and grants.

Every call here is attempted on its own. A failure becomes a
``WiringWarning`` on the stage outcome and the remaining calls still run;
the stage itself succeeds. Calls whose effect is already in place are
skipped without submitting anything, which makes both stages safe to
re-run after fixing whatever caused a warning.
"""

from __future__ import annotations

import logging

from quikdeploy.core.address_predictor import role_id
from quikdeploy.models.components import ComponentCategory, Role
from quikdeploy.models.config import RoleAssignments
from quikdeploy.models.outcomes import StageOutcome, StepResult
from quikdeploy.models.records import RoleGrant
from quikdeploy.models.stages import StageId
from quikdeploy.stages.base import BaseExecutor

logger = logging.getLogger(__name__)


class ConfigurationExecutor(BaseExecutor):
    stage_ids = (StageId.WIRE_STORAGE, StageId.SETUP_ROLES)
    display_name = "Configuration"

    def execute(self, stage: StageId) -> StageOutcome:
        if stage == StageId.WIRE_STORAGE:
            return self.wire_storage_to_logic(
                self.state.addresses(ComponentCategory.STORAGE),
                self.state.addresses(ComponentCategory.PROXIES),
            )
        return self.setup_roles(self.config.roles.resolved(self.owner))

    # ------------------------------------------------------------------
    # WIRE_STORAGE
    # ------------------------------------------------------------------

    def wire_storage_to_logic(
        self, storage_addrs: dict[str, str], logic_addrs: dict[str, str]
    ) -> StageOutcome:
        """Authorize each logic proxy as the sole caller of its storage.

        *logic_addrs* maps logic component names to their proxy addresses.
        All addresses are validated before the first call.
        """
        stage = StageId.WIRE_STORAGE
        pairs = [
            (
                lg.storage,
                self.require_address(storage_addrs.get(lg.storage), lg.storage),
                self.require_address(logic_addrs.get(lg.name), f"{lg.name} proxy"),
            )
            for lg in self.config.topology.logic
        ]

        results: list[StepResult] = []
        for name, storage, logic in pairs:
            if self.env.logic_contract(storage) == logic:
                logger.info("%s already wired to %s", name, logic)
                results.append(
                    StepResult(operation="set_logic_contract", target=storage, ok=True, skipped=True)
                )
                continue
            results.append(
                self.attempt(
                    stage,
                    "set_logic_contract",
                    storage,
                    lambda s=storage, lg=logic: self.env.set_logic_contract(self.owner, s, lg),
                    arguments={"storage": storage, "logic": logic},
                )
            )

        return StageOutcome.fold(stage, results)

    # ------------------------------------------------------------------
    # SETUP_ROLES
    # ------------------------------------------------------------------

    def setup_roles(self, assignments: RoleAssignments) -> StageOutcome:
        """Grant every configured role. Grantees default to the deployer.

        * ADMIN_ROLE on each logic proxy and the facade proxy
        * AUTH_SERVICE_ROLE on the configured auth-service targets
        * UPGRADER_ROLE on the proxy administrator
        """
        stage = StageId.SETUP_ROLES
        topology = self.config.topology

        plan: list[tuple[Role, str, str]] = []
        for spec in topology.proxied:
            target = self.require_address(
                self.state.address_of(ComponentCategory.PROXIES, spec.name), f"{spec.name} proxy"
            )
            plan += [(Role.ADMIN_ROLE, grantee, target) for grantee in assignments.admin_grantees]
        for name in assignments.auth_service_targets:
            target = self.require_address(
                self.state.address_of(ComponentCategory.PROXIES, name), f"{name} proxy"
            )
            plan += [
                (Role.AUTH_SERVICE_ROLE, grantee, target)
                for grantee in assignments.auth_service_grantees
            ]
        admin = self.require_address(
            self.state.address_of(ComponentCategory.PROXIES, topology.proxy_admin.name),
            topology.proxy_admin.name,
        )
        plan += [(Role.UPGRADER_ROLE, grantee, admin) for grantee in assignments.upgrader_grantees]

        for _, grantee, _ in plan:
            self.require_address(grantee, "role grantee")

        results = [self.grant_role(role, grantee, target) for role, grantee, target in plan]
        return StageOutcome.fold(stage, results)

    def grant_role(self, role: Role, grantee: str, target: str) -> StepResult:
        """Grant *role* to *grantee* on *target*, checking before and after.

        Already-held roles are skipped. The deployer's own admin role on
        the target is confirmed first, so a grant that cannot succeed is
        reported without being submitted.
        """
        stage = StageId.SETUP_ROLES
        rid = role_id(role)
        grantee, target = grantee.lower(), target.lower()
        arguments = {"role": role.value, "grantee": grantee}
        grant = RoleGrant(role=role.value, role_id=rid.hex(), grantee=grantee, target=target)

        if self.env.has_role(target, rid, grantee):
            logger.info("%s already holds %s on %s", grantee, role.value, target)
            self.state.add_role_grant(grant)
            return StepResult(operation="grant_role", target=target, ok=True, skipped=True)

        if not self.env.has_role(target, role_id(Role.DEFAULT_ADMIN_ROLE), self.owner):
            return self.warn(
                stage,
                "grant_role",
                target,
                f"deployer {self.owner} does not hold DEFAULT_ADMIN_ROLE on {target}",
                arguments=arguments,
            )

        result = self.attempt(
            stage,
            "grant_role",
            target,
            lambda: self.env.grant_role(self.owner, target, rid, grantee),
            arguments=arguments,
        )
        if not result.ok:
            return result

        if not self.env.has_role(target, rid, grantee):
            return self.warn(
                stage,
                "grant_role",
                target,
                f"grant of {role.value} to {grantee} is not visible after submission",
                arguments=arguments,
            )

        logger.info("granted %s to %s on %s", role.value, grantee, target)
        self.state.add_role_grant(grant)
        return result
