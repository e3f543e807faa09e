"""Upgrade controller — swap a component's behavior, keep its identity.

An upgrade never touches the proxy's address or state. It places a new
implementation at a fresh, version-salted address and repoints the proxy
through the proxy administrator:

1. authorization query (fatal ``AuthorizationError``, nothing created)
2. create the new implementation via the content-addressed deployer
3. repoint the proxy
4. read the pointer back: confirmed, unconfirmed or failed
"""

from __future__ import annotations

import logging

from quikdeploy.core.address_predictor import normalize_address, payload_hash
from quikdeploy.core.authorizer import Authorizer, EnvironmentAuthorizer
from quikdeploy.core.catalog import ArtifactCatalog, implementation_salt
from quikdeploy.core.deployer import ContentAddressedDeployer
from quikdeploy.core.errors import AuthorizationError, PreconditionError, VerificationFailure
from quikdeploy.core.record_store import DeploymentRecordStore
from quikdeploy.environment.base import TargetEnvironment, TargetEnvironmentError
from quikdeploy.models.components import (
    ComponentCategory,
    ComponentDescriptor,
    ComponentKind,
    CreationPayload,
    Role,
)
from quikdeploy.models.config import DeploymentConfig, FacadeSpec
from quikdeploy.models.records import (
    DeploymentRecord,
    DeploymentStatus,
    UpgradeBatch,
    UpgradeRecord,
    UpgradeStatus,
)
from quikdeploy.models.stages import StageId

logger = logging.getLogger(__name__)

UPGRADE_CAPABILITY = Role.UPGRADER_ROLE


class UpgradeController:
    """Repoints proxies at new implementations.

    Parameters
    ----------
    config:
        Topology and persistence paths.
    environment:
        The deployment target.
    deployer:
        Identity that creates the new implementations.
    authorizer:
        Capability oracle; defaults to role membership in *environment*.
    store:
        Record store holding the deployment being upgraded.
    """

    def __init__(
        self,
        config: DeploymentConfig,
        environment: TargetEnvironment,
        deployer: str,
        *,
        authorizer: Authorizer | None = None,
        store: DeploymentRecordStore | None = None,
    ) -> None:
        self.config = config
        self.environment = environment
        self.deployer = ContentAddressedDeployer(environment, deployer)
        self.authorizer = authorizer or EnvironmentAuthorizer(environment)
        self.store = store or DeploymentRecordStore(config.deployments_dir, config.history_limit)
        self.catalog = ArtifactCatalog(config.artifacts_path)
        # implementation descriptors created by this controller, by component name
        self.created: dict[str, ComponentDescriptor] = {}

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _deployment(self) -> DeploymentRecord:
        record = self.store.latest()
        if record is None or not record.proxies:
            raise PreconditionError(
                f"No deployment with proxies recorded under {self.store.root}"
            )
        return record

    def _proxy_admin(self, record: DeploymentRecord) -> str:
        name = self.config.topology.proxy_admin.name
        admin = record.proxies.get(name)
        if not admin:
            raise PreconditionError(f"Deployment record has no {name} address")
        return normalize_address(admin)

    def _component_for(self, record: DeploymentRecord, proxy: str) -> str:
        proxied = {s.name for s in self.config.topology.proxied}
        for name, address in record.proxies.items():
            if name in proxied and address.lower() == proxy:
                return name
        raise PreconditionError(f"{proxy} is not a recorded component proxy")

    def _check_authorized(self, identity: str, admin: str) -> None:
        if not self.authorizer.has_capability(identity, UPGRADE_CAPABILITY, admin):
            logger.error("%s is not authorized to upgrade through %s", identity, admin)
            raise AuthorizationError(identity, UPGRADE_CAPABILITY.value, admin)

    def payload_for(self, component: str) -> CreationPayload:
        """Creation payload of *component*'s current code."""
        spec = self.config.topology.proxied_spec(component)
        kind = ComponentKind.FACADE if isinstance(spec, FacadeSpec) else ComponentKind.LOGIC
        return self.catalog.payload(spec, kind)

    # ------------------------------------------------------------------
    # Single upgrade
    # ------------------------------------------------------------------

    def upgrade(
        self,
        proxy: str,
        new_payload: CreationPayload,
        version_salt: str,
        authorized_by: str,
        *,
        component: str | None = None,
    ) -> UpgradeRecord:
        """Upgrade the component behind *proxy* to *new_payload*.

        Raises ``AuthorizationError`` before anything is created if
        *authorized_by* lacks the upgrade capability on the proxy admin.
        Every other outcome is reported in the returned record's status.
        """
        if not version_salt:
            raise PreconditionError("version_salt must not be empty")
        proxy = normalize_address(proxy)
        authorized_by = normalize_address(authorized_by)
        record = self._deployment()
        admin = self._proxy_admin(record)
        name = component or self._component_for(record, proxy)

        self._check_authorized(authorized_by, admin)

        old = self.environment.implementation(admin, proxy) or ""
        salt = implementation_salt(name, self.deployer.deployer, version_salt)
        predicted = self.deployer.predict(salt, new_payload)
        errors: list[str] = []

        result = self.deployer.deploy(salt, new_payload, name=f"{name}@{version_salt}")
        new = result.address
        self.created[name] = ComponentDescriptor(
            name=name,
            category=ComponentCategory.IMPLEMENTATIONS,
            salt=salt.hex(),
            creation_payload_hash=payload_hash(new_payload).hex(),
            predicted_address=predicted,
            actual_address=new,
            stage=StageId.DEPLOY_LOGIC_IMPLS,
        )

        status = UpgradeStatus.CONFIRMED
        if old == new:
            logger.info("%s already points at %s", name, new)
        else:
            try:
                self.environment.upgrade(authorized_by, admin, proxy, new)
            except TargetEnvironmentError as exc:
                errors.append(f"repoint failed: {type(exc).__name__}: {exc}")
                status = UpgradeStatus.FAILED

        try:
            observed = self.environment.implementation(admin, proxy) or ""
        except TargetEnvironmentError as exc:
            errors.append(f"readback failed: {type(exc).__name__}: {exc}")
            observed = ""

        if status == UpgradeStatus.CONFIRMED and observed != new:
            status = UpgradeStatus.UNCONFIRMED
            errors.append(f"readback {observed or 'unavailable'} does not equal {new}")
        if status == UpgradeStatus.FAILED and observed == new:
            # the repoint reported an error but took effect anyway
            status = UpgradeStatus.CONFIRMED

        upgrade_record = UpgradeRecord(
            component=name,
            proxy_address=proxy,
            old_implementation_address=old,
            new_implementation_address=new,
            observed_implementation_address=observed,
            version_salt=version_salt,
            authorized_by=authorized_by,
            status=status,
            errors=errors,
        )
        log = logger.info if upgrade_record.confirmed else logger.error
        log("%s upgrade %s: %s -> %s (observed %s)", name, status.value, old, new, observed)
        return upgrade_record

    # ------------------------------------------------------------------
    # Batch upgrade
    # ------------------------------------------------------------------

    def upgrade_all(
        self,
        version_salt: str,
        authorized_by: str,
        *,
        components: list[str] | None = None,
    ) -> UpgradeBatch:
        """Upgrade every proxied component (or just *components*).

        Authorization is checked once, before the first creation. The batch
        is persisted to ``upgrades.json`` and confirmed repoints are folded
        into ``latest.json``. Raises ``VerificationFailure`` after persisting
        if any upgrade is not confirmed.
        """
        record = self._deployment()
        admin = self._proxy_admin(record)
        authorized_by = normalize_address(authorized_by)
        self._check_authorized(authorized_by, admin)

        names = components or [s.name for s in self.config.topology.proxied]
        for name in names:
            try:
                self.config.topology.proxied_spec(name)
            except KeyError as exc:
                raise PreconditionError(exc.args[0]) from exc
            if not record.proxies.get(name):
                raise PreconditionError(f"No proxy recorded for {name}")

        upgrades: list[UpgradeRecord] = []
        errors: list[str] = []
        for name in names:
            try:
                upgrades.append(
                    self.upgrade(
                        record.proxies[name],
                        self.payload_for(name),
                        version_salt,
                        authorized_by,
                        component=name,
                    )
                )
            except (TargetEnvironmentError, PreconditionError) as exc:
                logger.error("%s upgrade aborted: %s", name, exc)
                errors.append(f"{name}: {type(exc).__name__}: {exc}")

        confirmed = [u for u in upgrades if u.confirmed]
        if len(confirmed) == len(names):
            status = DeploymentStatus.SUCCESS
        elif confirmed:
            status = DeploymentStatus.PARTIAL
        else:
            status = DeploymentStatus.FAILED

        batch = UpgradeBatch(
            deployer=self.deployer.deployer,
            version_salt=version_salt,
            status=status,
            upgrades=upgrades,
            errors=errors + [e for u in upgrades for e in u.errors],
        )
        self.store.append_upgrade(
            batch, [self.created[u.component] for u in confirmed if u.component in self.created]
        )

        if status != DeploymentStatus.SUCCESS:
            raise VerificationFailure(
                f"Upgrade {version_salt} finished {status.value}", batch.errors
            )
        return batch
