"""Tests for the UpgradeController — authorization, repoint, readback."""

from __future__ import annotations

import pytest

from quikdeploy.core.authorizer import Authorizer, EnvironmentAuthorizer, StaticAuthorizer
from quikdeploy.core.errors import AuthorizationError, PreconditionError, VerificationFailure
from quikdeploy.core.upgrade_controller import UPGRADE_CAPABILITY, UpgradeController
from quikdeploy.environment.base import Receipt
from quikdeploy.models.components import Role
from quikdeploy.models.records import DeploymentStatus, UpgradeStatus


@pytest.fixture
def controller(deployed, config, env, deployer, store) -> UpgradeController:
    return UpgradeController(config, env, deployer, store=store)


class TestAuthorizers:
    def test_environment_authorizer_reads_roles(self, deployed, env, deployer, intruder, store):
        admin = store.latest().proxies["proxyAdmin"]
        authorizer = EnvironmentAuthorizer(env)
        assert isinstance(authorizer, Authorizer)
        assert authorizer.has_capability(deployer, UPGRADE_CAPABILITY, admin)
        assert not authorizer.has_capability(intruder, UPGRADE_CAPABILITY, admin)

    def test_static_authorizer(self, deployer):
        target = "0x" + "a" * 40
        authorizer = StaticAuthorizer()
        assert not authorizer.has_capability(deployer, Role.UPGRADER_ROLE, target)
        authorizer.allow(deployer, Role.UPGRADER_ROLE, target.upper().replace("0X", "0x"))
        assert authorizer.has_capability(deployer, "UPGRADER_ROLE", target)


class TestUpgradeAll:
    def test_upgrade_keeps_proxies(self, controller: UpgradeController, store, env, deployer):
        before = store.latest()
        batch = controller.upgrade_all("v2", deployer)

        assert batch.status == DeploymentStatus.SUCCESS
        assert {u.component for u in batch.upgrades} == set(before.implementations)
        assert all(u.status == UpgradeStatus.CONFIRMED for u in batch.upgrades)

        after = store.latest()
        assert after.proxies == before.proxies
        assert after.storage == before.storage
        admin = after.proxies["proxyAdmin"]
        for name, impl in after.implementations.items():
            assert impl != before.implementations[name]
            assert env.implementation(admin, after.proxies[name]) == impl
        assert len(store.upgrades()) == 1

    def test_upgrade_records_old_and_new(self, controller: UpgradeController, store, deployer):
        before = store.latest()
        batch = controller.upgrade_all("v2", deployer, components=["userLogic"])
        [record] = batch.upgrades
        assert record.proxy_address == before.proxies["userLogic"]
        assert record.old_implementation_address == before.implementations["userLogic"]
        assert record.observed_implementation_address == record.new_implementation_address
        assert record.authorized_by == deployer
        assert batch.previous_implementations == {"userLogic": before.implementations["userLogic"]}

    def test_current_version_is_a_no_op(self, controller: UpgradeController, store, deployer):
        before = store.latest()
        batch = controller.upgrade_all("v1", deployer)
        assert batch.status == DeploymentStatus.SUCCESS
        assert store.latest().implementations == before.implementations

    def test_unknown_component_rejected(self, controller: UpgradeController, deployer):
        with pytest.raises(PreconditionError, match="Unknown proxied component"):
            controller.upgrade_all("v2", deployer, components=["nodeStorage"])

    def test_requires_a_deployment(self, config, env, deployer, store):
        controller = UpgradeController(config, env, deployer, store=store)
        with pytest.raises(PreconditionError, match="No deployment"):
            controller.upgrade_all("v2", deployer)

    def test_unconfirmed_repoint_is_reported(self, controller, env, store, deployer, monkeypatch):
        monkeypatch.setattr(
            env, "upgrade", lambda caller, admin, proxy, impl: Receipt(operation="upgrade", target=proxy)
        )
        before = store.latest()
        with pytest.raises(VerificationFailure, match="partial|failed"):
            controller.upgrade_all("v2", deployer)

        [batch] = store.upgrades()
        assert batch.status == DeploymentStatus.FAILED
        assert all(u.status == UpgradeStatus.UNCONFIRMED for u in batch.upgrades)
        assert store.latest().implementations == before.implementations


class TestSingleUpgrade:
    def test_explicit_payload(self, controller: UpgradeController, store, deployer):
        proxy = store.latest().proxies["nodeLogic"]
        record = controller.upgrade(proxy, controller.payload_for("nodeLogic"), "v3", deployer)
        assert record.component == "nodeLogic"
        assert record.confirmed
        assert controller.created["nodeLogic"].actual_address == record.new_implementation_address

    def test_unknown_proxy_rejected(self, controller: UpgradeController, deployer):
        with pytest.raises(PreconditionError, match="not a recorded component proxy"):
            controller.upgrade(
                "0x" + "9" * 40, controller.payload_for("nodeLogic"), "v3", deployer
            )

    def test_empty_version_rejected(self, controller: UpgradeController, store, deployer):
        proxy = store.latest().proxies["nodeLogic"]
        with pytest.raises(PreconditionError):
            controller.upgrade(proxy, controller.payload_for("nodeLogic"), "", deployer)

    def test_injected_authorizer_is_consulted(self, deployed, config, env, deployer, store):
        controller = UpgradeController(
            config, env, deployer, authorizer=StaticAuthorizer(), store=store
        )
        proxy = store.latest().proxies["nodeLogic"]
        with pytest.raises(AuthorizationError):
            controller.upgrade(proxy, controller.payload_for("nodeLogic"), "v2", deployer)
        assert controller.created == {}
