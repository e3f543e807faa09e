"""Read-side client for services that talk to a finished deployment.

``ComponentManager`` loads the latest deployment record, refuses to start
against an incomplete one, and hands out the addresses a service should
call: proxies for everything proxied, storage components directly.
"""

from __future__ import annotations

import logging

from quikdeploy.core.address_predictor import is_address, is_zero_address, role_id
from quikdeploy.core.record_store import DeploymentRecordStore
from quikdeploy.environment.base import (
    TargetEnvironment,
    TargetEnvironmentError,
    TargetUnavailableError,
)
from quikdeploy.models.components import Role
from quikdeploy.models.config import DEFAULT_TOPOLOGY, Topology
from quikdeploy.models.records import DeploymentRecord

logger = logging.getLogger(__name__)


class IncompleteDeploymentError(RuntimeError):
    """Raised when the deployment record lacks required component addresses."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Incomplete deployment: missing {', '.join(missing)}")


class ComponentManager:
    """Resolved component addresses plus access and liveness checks.

    Parameters
    ----------
    environment:
        The target the components live in.
    record:
        Deployment record to serve from.
    identity:
        The service's own identity; ``None`` means read-only.
    topology:
        Component graph the record is expected to contain.
    """

    def __init__(
        self,
        environment: TargetEnvironment,
        record: DeploymentRecord,
        *,
        identity: str | None = None,
        topology: Topology = DEFAULT_TOPOLOGY,
    ) -> None:
        self._env = environment
        self._record = record
        self._identity = identity.lower() if identity else None
        self._topology = topology
        self._addresses = self._resolve()
        if self._identity is None:
            logger.warning("Component manager initialized without identity - read-only mode")

    @classmethod
    def from_store(
        cls,
        store: DeploymentRecordStore,
        environment: TargetEnvironment,
        *,
        identity: str | None = None,
        topology: Topology = DEFAULT_TOPOLOGY,
    ) -> ComponentManager:
        """Load the newest record: ``latest.json``, else the last history entry."""
        record = store.latest()
        if record is None:
            history = store.history()
            if not history:
                raise FileNotFoundError(f"No deployment record found under {store.root}")
            record = history[-1]
        logger.info("Loaded deployment %s from %s", record.run_id, store.root)
        return cls(environment, record, identity=identity, topology=topology)

    def _resolve(self) -> dict[str, str]:
        record = self._record
        addresses: dict[str, str] = {}
        for spec in self._topology.storage:
            addresses[spec.name] = record.storage.get(spec.name, "")
        for spec in self._topology.proxied:
            addresses[spec.name] = (
                record.proxies.get(spec.name) or record.implementations.get(spec.name, "")
            )
        admin = self._topology.proxy_admin.name
        addresses[admin] = record.proxies.get(admin, "")

        required = [s.name for s in self._topology.storage] + [
            s.name for s in self._topology.proxied
        ]
        missing = [
            name
            for name in required
            if not is_address(addresses[name]) or is_zero_address(addresses[name])
        ]
        if missing:
            logger.error("Deployment %s is incomplete: %s", record.run_id, missing)
            raise IncompleteDeploymentError(missing)
        return addresses

    def get_components(self) -> dict[str, str]:
        """Component name -> address to call."""
        return dict(self._addresses)

    def has_write_access(self) -> bool:
        """True if the identity holds ADMIN_ROLE on every logic proxy."""
        if self._identity is None:
            return False
        admin_role = role_id(Role.ADMIN_ROLE)
        return all(
            self._env.has_role(self._addresses[lg.name], admin_role, self._identity)
            for lg in self._topology.logic
        )

    def test_connectivity(self) -> None:
        """Probe every resolved component on the target.

        Raises
        ------
        TargetUnavailableError
            Naming every component that could not be reached.
        """
        unreachable: list[str] = []
        for name, address in self._addresses.items():
            try:
                reachable = bool(address) and self._env.code_at(address) is not None
            except TargetEnvironmentError as exc:
                logger.warning("Connectivity check for %s failed: %s", name, exc)
                reachable = False
            if not reachable:
                unreachable.append(name)
        if unreachable:
            raise TargetUnavailableError(
                f"Unreachable components: {', '.join(unreachable)}"
            )
        logger.info("All %d components reachable", len(self._addresses))
