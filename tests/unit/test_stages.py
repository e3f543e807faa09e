"""Tests for the stage executors — creation, wiring, grants, verification."""

from __future__ import annotations

import pytest

from quikdeploy.core.address_predictor import derive_salt, role_id
from quikdeploy.core.catalog import ArtifactCatalog
from quikdeploy.core.deployer import ContentAddressedDeployer
from quikdeploy.core.deployment_state import DeploymentState
from quikdeploy.core.errors import PreconditionError, VerificationFailure
from quikdeploy.models.components import ComponentCategory, ComponentKind, CreationPayload, Role
from quikdeploy.models.config import DeploymentConfig
from quikdeploy.models.stages import STAGE_ORDER, StageId
from quikdeploy.stages import (
    EXECUTOR_REGISTRY,
    ConfigurationExecutor,
    LogicExecutor,
    ProxyFrontExecutor,
    StageExecutionError,
    StorageExecutor,
    VerificationExecutor,
    get_executor_class,
)


@pytest.fixture
def state(deployer: str, run_id: str) -> DeploymentState:
    return DeploymentState(run_id, deployer, network="memory")


@pytest.fixture
def make(state, config: DeploymentConfig, deployer: str):
    """Build an executor of a given class against an environment."""

    def _factory(cls, environment):
        return cls(state, ContentAddressedDeployer(environment, deployer), ArtifactCatalog(), config)

    return _factory


def _run(make, environment, *stages: StageId):
    outcomes = []
    for stage in stages:
        outcomes.append(make(get_executor_class(stage), environment).run_stage(stage))
    return outcomes


class TestRegistry:
    def test_every_stage_has_an_executor(self):
        assert set(EXECUTOR_REGISTRY) == set(STAGE_ORDER)

    def test_complete_has_no_executor(self):
        with pytest.raises(KeyError):
            get_executor_class(StageId.COMPLETE)

    def test_executor_refuses_foreign_stage(self, make, env):
        with pytest.raises(StageExecutionError):
            make(StorageExecutor, env).run_stage(StageId.VERIFY)


class TestCreationStages:
    def test_storage_stage(self, make, env, state):
        [outcome] = _run(make, env, StageId.DEPLOY_STORAGE)
        storage = state.addresses(ComponentCategory.STORAGE)
        assert set(storage) == {"nodeStorage", "userStorage", "resourceStorage"}
        assert outcome.gas_used > 0
        assert sorted(outcome.components.values()) == sorted(storage.values())

    def test_rerun_reuses_components(self, make, env, state):
        _run(make, env, StageId.DEPLOY_STORAGE)
        before = state.addresses(ComponentCategory.STORAGE)
        [again] = _run(make, env, StageId.DEPLOY_STORAGE)
        assert state.addresses(ComponentCategory.STORAGE) == before
        assert again.gas_used == 0

    def test_logic_stage_includes_facade(self, make, env, state):
        _run(make, env, StageId.DEPLOY_LOGIC_IMPLS)
        assert set(state.addresses(ComponentCategory.IMPLEMENTATIONS)) == {
            "nodeLogic",
            "userLogic",
            "resourceLogic",
            "facade",
        }

    def test_proxies_need_their_dependencies(self, make, env):
        _run(make, env, StageId.DEPLOY_STORAGE, StageId.DEPLOY_LOGIC_IMPLS)
        with pytest.raises(PreconditionError, match="proxyAdmin"):
            make(ProxyFrontExecutor, env).run_stage(StageId.DEPLOY_PROXIES)

    def test_proxies_point_at_implementations(self, make, env, state):
        _run(
            make,
            env,
            StageId.DEPLOY_STORAGE,
            StageId.DEPLOY_LOGIC_IMPLS,
            StageId.DEPLOY_PROXY_FRONT,
            StageId.DEPLOY_PROXIES,
        )
        proxies = state.addresses(ComponentCategory.PROXIES)
        impls = state.addresses(ComponentCategory.IMPLEMENTATIONS)
        admin = proxies["proxyAdmin"]
        for name in ("nodeLogic", "userLogic", "resourceLogic", "facade"):
            assert env.implementation(admin, proxies[name]) == impls[name]
        assert env.read_var(proxies["facade"], "userLogic") == proxies["userLogic"]


class TestConfigurationStages:
    @pytest.fixture
    def built(self, make, faulty_env):
        _run(
            make,
            faulty_env,
            StageId.DEPLOY_STORAGE,
            StageId.DEPLOY_LOGIC_IMPLS,
            StageId.DEPLOY_PROXY_FRONT,
            StageId.DEPLOY_PROXIES,
        )
        return faulty_env

    def test_wiring_failure_is_a_warning(self, make, built, state):
        built.fail("set_logic_contract")
        [outcome] = _run(make, built, StageId.WIRE_STORAGE)
        assert outcome.succeeded
        assert len(outcome.warnings) == 3
        assert all(w.operation == "set_logic_contract" for w in outcome.warnings)
        assert "storage" in outcome.warnings[0].arguments

    def test_one_failure_does_not_stop_the_rest(self, make, built, state):
        user_storage = state.address_of(ComponentCategory.STORAGE, "userStorage")
        built.fail("set_logic_contract", when=lambda caller, storage, logic: storage == user_storage)
        [outcome] = _run(make, built, StageId.WIRE_STORAGE)
        assert [w.target for w in outcome.warnings] == [user_storage]
        node_storage = state.address_of(ComponentCategory.STORAGE, "nodeStorage")
        assert built.logic_contract(node_storage) == state.address_of(
            ComponentCategory.PROXIES, "nodeLogic"
        )

    def test_rewire_is_skipped(self, make, built):
        [first] = _run(make, built, StageId.WIRE_STORAGE)
        built.calls.clear()
        [second] = _run(make, built, StageId.WIRE_STORAGE)
        assert first.gas_used > 0
        assert second.gas_used == 0
        assert "set_logic_contract" not in built.calls

    def test_roles_granted_and_recorded(self, make, built, state, deployer):
        _run(make, built, StageId.WIRE_STORAGE)
        [outcome] = _run(make, built, StageId.SETUP_ROLES)
        assert outcome.warnings == []
        user_proxy = state.address_of(ComponentCategory.PROXIES, "userLogic")
        assert built.has_role(user_proxy, role_id(Role.AUTH_SERVICE_ROLE), deployer)
        granted = {(g.role, g.target) for g in state.role_grants}
        assert ("AUTH_SERVICE_ROLE", user_proxy) in granted
        assert ("UPGRADER_ROLE", state.address_of(ComponentCategory.PROXIES, "proxyAdmin")) in granted

    def test_grant_without_admin_is_not_submitted(self, make, built, deployer, intruder):
        foreign = ContentAddressedDeployer(built, intruder).deploy(
            derive_salt("foreign", deployer=intruder),
            CreationPayload(
                code="NodeStorage",
                code_hash="ee" * 32,
                kind=ComponentKind.STORAGE,
                constructor_args={"owner": intruder},
            ),
        ).address
        built.calls.clear()
        result = make(ConfigurationExecutor, built).grant_role(Role.ADMIN_ROLE, deployer, foreign)
        assert not result.ok
        assert "DEFAULT_ADMIN_ROLE" in result.warning.detail
        assert "grant_role" not in built.calls

    def test_grant_failure_is_a_warning(self, make, built, state, intruder):
        built.fail("grant_role")
        executor = make(ConfigurationExecutor, built)
        proxy = state.address_of(ComponentCategory.PROXIES, "nodeLogic")
        result = executor.grant_role(Role.ADMIN_ROLE, intruder, proxy)
        assert not result.ok
        assert result.warning.operation == "grant_role"
        assert result.warning.arguments == {"role": "ADMIN_ROLE", "grantee": intruder}
        assert all(g.grantee != intruder for g in state.role_grants)

    def test_repeated_grant_is_skipped(self, make, built, state, intruder):
        executor = make(ConfigurationExecutor, built)
        proxy = state.address_of(ComponentCategory.PROXIES, "nodeLogic")
        first = executor.grant_role(Role.ADMIN_ROLE, intruder, proxy)
        assert first.ok and not first.skipped
        grants = list(state.role_grants)

        built.calls.clear()
        second = executor.grant_role(Role.ADMIN_ROLE, intruder, proxy)
        assert second.ok and second.skipped
        assert state.role_grants == grants
        assert "grant_role" not in built.calls


class TestVerification:
    def _build(self, make, environment):
        return _run(make, environment, *STAGE_ORDER[:-1])

    def test_clean_deployment_verifies(self, make, env):
        self._build(make, env)
        [outcome] = _run(make, env, StageId.VERIFY)
        assert outcome.warnings == []

    def test_missing_component_fails(self, make, env, state):
        _run(make, env, StageId.DEPLOY_STORAGE)
        with pytest.raises(VerificationFailure, match="no address"):
            make(VerificationExecutor, env).run_stage(StageId.VERIFY)

    def test_unreported_wiring_gap_fails(self, make, env, state, deployer):
        self._build(make, env)
        storage = state.address_of(ComponentCategory.STORAGE, "nodeStorage")
        stray = state.address_of(ComponentCategory.IMPLEMENTATIONS, "nodeLogic")
        env.set_logic_contract(deployer, storage, stray)
        with pytest.raises(VerificationFailure, match="logic caller"):
            make(VerificationExecutor, env).run_stage(StageId.VERIFY)

    def test_revoked_role_is_a_warning(self, make, env, state, deployer):
        self._build(make, env)
        grant = state.role_grants[0]
        env._conn.execute(
            "DELETE FROM roles WHERE target = ? AND role = ? AND grantee = ?",
            (grant.target, grant.role_id, grant.grantee),
        )
        [outcome] = _run(make, env, StageId.VERIFY)
        assert len(outcome.warnings) == 1
        assert outcome.warnings[0].operation == "has_role"


class TestLogicExecutor:
    def test_display_name_and_repr(self, make, env):
        executor = make(LogicExecutor, env)
        assert executor.display_name == "Logic Implementations"
        assert "deploy_logic_impls" in repr(executor)
