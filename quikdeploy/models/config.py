"""Deployment configuration models: topology, role assignments, paths."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, model_validator


class ComponentSpec(BaseModel):
    """A named component and the code artifact it is created from."""

    model_config = ConfigDict(frozen=True)

    name: str  # key in the deployment record, e.g. "nodeStorage"
    code: str  # artifact name, e.g. "NodeStorage"
    code_version: str = "1.0.0"


class LogicSpec(ComponentSpec):
    """A proxied logic component bound to exactly one storage component."""

    storage: str


class FacadeSpec(ComponentSpec):
    """The proxied facade aggregating every logic component."""

    logic: list[str]


class Topology(BaseModel):
    """The fixed component graph of one application."""

    model_config = ConfigDict(frozen=True)

    storage: list[ComponentSpec]
    logic: list[LogicSpec]
    facade: FacadeSpec
    proxy_admin: ComponentSpec

    @model_validator(mode="after")
    def _check_references(self) -> Topology:
        storage_names = {s.name for s in self.storage}
        logic_names = {lg.name for lg in self.logic}
        if len(storage_names) != len(self.storage):
            raise ValueError("duplicate storage component names")
        if len(logic_names) != len(self.logic):
            raise ValueError("duplicate logic component names")
        if self.facade.name in logic_names:
            raise ValueError(f"facade name {self.facade.name!r} collides with a logic component")
        for lg in self.logic:
            if lg.storage not in storage_names:
                raise ValueError(
                    f"logic component {lg.name!r} references unknown storage {lg.storage!r}"
                )
        for name in self.facade.logic:
            if name not in logic_names:
                raise ValueError(f"facade references unknown logic component {name!r}")
        bound = [lg.storage for lg in self.logic]
        if len(set(bound)) != len(bound):
            raise ValueError("each storage component accepts exactly one logic caller")
        return self

    @property
    def proxied(self) -> list[ComponentSpec]:
        """Components deployed behind a proxy: every logic component, then the facade."""
        return [*self.logic, self.facade]

    def proxied_spec(self, name: str) -> ComponentSpec:
        for spec in self.proxied:
            if spec.name == name:
                return spec
        raise KeyError(
            f"Unknown proxied component {name!r}. "
            f"Known: {sorted(s.name for s in self.proxied)}"
        )


DEFAULT_TOPOLOGY = Topology(
    storage=[
        ComponentSpec(name="nodeStorage", code="NodeStorage"),
        ComponentSpec(name="userStorage", code="UserStorage"),
        ComponentSpec(name="resourceStorage", code="ResourceStorage"),
    ],
    logic=[
        LogicSpec(name="nodeLogic", code="NodeLogic", storage="nodeStorage"),
        LogicSpec(name="userLogic", code="UserLogic", storage="userStorage"),
        LogicSpec(name="resourceLogic", code="ResourceLogic", storage="resourceStorage"),
    ],
    facade=FacadeSpec(
        name="facade",
        code="Facade",
        logic=["nodeLogic", "userLogic", "resourceLogic"],
    ),
    proxy_admin=ComponentSpec(name="proxyAdmin", code="ProxyAdmin"),
)


class RoleAssignments(BaseModel):
    """Who receives each administrative role. Empty lists mean the deployer."""

    model_config = ConfigDict(frozen=True)

    admin_grantees: list[str] = []
    auth_service_grantees: list[str] = []
    upgrader_grantees: list[str] = []
    auth_service_targets: list[str] = ["userLogic"]

    def resolved(self, deployer: str) -> RoleAssignments:
        """Return a copy with every empty grantee list defaulted to *deployer*."""
        return self.model_copy(
            update={
                "admin_grantees": self.admin_grantees or [deployer],
                "auth_service_grantees": self.auth_service_grantees or [deployer],
                "upgrader_grantees": self.upgrader_grantees or [deployer],
            }
        )


class DeploymentConfig(BaseModel):
    """Project-level configuration for a deployment pipeline."""

    model_config = ConfigDict(frozen=True)

    project_name: str = "quikdb"
    deployments_dir: Path = Path("deployments")
    ledger_db_path: Path = Path("deployments/ledger.db")
    history_limit: int = 10
    version_tag: str = "v1"
    artifacts_path: Path | None = None
    topology: Topology = DEFAULT_TOPOLOGY
    roles: RoleAssignments = RoleAssignments()
