"""Tests for the Orchestrator — ordering, checkpoints, resume, finalization."""

from __future__ import annotations

import pytest

from quikdeploy.config import ProdConfig
from quikdeploy.core.errors import StageOrderError
from quikdeploy.core.orchestrator import Orchestrator, new_run_id
from quikdeploy.core.production_guard import ProductionConfigError
from quikdeploy.core.deployment_state import DeploymentState
from quikdeploy.models.records import DeploymentStatus
from quikdeploy.models.stages import STAGE_ORDER, STAGE_SELECTIONS, StageId, StageState


@pytest.fixture
def orchestrator(config, env, deployer, store) -> Orchestrator:
    return Orchestrator(config, env, deployer, store=store, broadcast=True)


class TestRunAll:
    def test_full_run_completes(self, orchestrator: Orchestrator, store):
        record = orchestrator.run_all()
        assert record.status == DeploymentStatus.SUCCESS
        assert record.is_complete
        assert record.completed_stages == STAGE_ORDER
        assert record.errors == []
        assert record.warnings == []
        assert int(record.gas_used) > 0
        assert len(record.storage) == 3
        assert len(record.implementations) == 4
        assert len(record.proxies) == 5
        assert store.latest() == record
        assert [r.run_id for r in store.history()] == [orchestrator.run_id]

    def test_ledger_records_every_stage(self, orchestrator: Orchestrator):
        orchestrator.run_all()
        states = orchestrator.get_states()
        assert all(states[s] == StageState.PASSED for s in STAGE_ORDER)
        # RUNNING + PASSED per stage
        assert len(orchestrator.get_run_entries()) == 2 * len(STAGE_ORDER)
        assert orchestrator.verify_chain() is True

    def test_passed_entries_carry_addresses(self, orchestrator: Orchestrator):
        orchestrator.run_all()
        storage_passed = [
            e
            for e in orchestrator.get_run_entries()
            if e.stage_id == StageId.DEPLOY_STORAGE.value and e.state_transition.endswith("passed")
        ]
        assert len(storage_passed[0].component_addresses) == 3
        assert storage_passed[0].output_hash != ""

    def test_run_id_format(self):
        assert new_run_id().startswith("qd-")
        assert new_run_id() != new_run_id()


class TestRunSingle:
    def test_checkpoint_after_each_stage(self, orchestrator: Orchestrator, store):
        orchestrator.run_single(StageId.DEPLOY_STORAGE)
        latest = store.latest()
        assert latest.status == DeploymentStatus.PARTIAL
        assert latest.completed_stages == [StageId.DEPLOY_STORAGE]
        assert latest.current_stage == StageId.DEPLOY_LOGIC_IMPLS
        assert store.history() == []

    def test_out_of_order_stage_rejected(self, orchestrator: Orchestrator, store):
        with pytest.raises(StageOrderError, match="deploy_storage"):
            orchestrator.run_single(StageId.DEPLOY_PROXIES)
        latest = store.latest()
        assert latest.status == DeploymentStatus.FAILED
        assert "StageOrderError" in latest.errors[0]
        assert list(store.logs_dir.glob("error-*.log"))

    def test_complete_is_not_runnable(self, orchestrator: Orchestrator):
        with pytest.raises(StageOrderError):
            orchestrator.run_single(StageId.COMPLETE)

    def test_selections_reach_complete(self, orchestrator: Orchestrator, store):
        for selection in ("storage", "logic", "proxies", "config"):
            for stage in STAGE_SELECTIONS[selection]:
                orchestrator.run_single(stage)
        assert orchestrator.current == StageId.COMPLETE
        assert store.latest().status == DeploymentStatus.SUCCESS

    def test_completed_stage_may_rerun(self, orchestrator: Orchestrator):
        orchestrator.run_single(StageId.DEPLOY_STORAGE)
        outcome = orchestrator.run_single(StageId.DEPLOY_STORAGE)
        assert outcome.gas_used == 0
        assert orchestrator.current == StageId.DEPLOY_LOGIC_IMPLS


class TestResume:
    def test_unfinished_run_is_resumed(self, config, env, deployer, store):
        first = Orchestrator(config, env, deployer, store=store, broadcast=True)
        first.run_single(StageId.DEPLOY_STORAGE)

        resumed = Orchestrator.resume(config, env, deployer, store=store, broadcast=True)
        assert resumed.run_id == first.run_id
        assert resumed.current == StageId.DEPLOY_LOGIC_IMPLS
        record = resumed.run_all()
        assert record.status == DeploymentStatus.SUCCESS
        assert record.storage == first.state.to_record(DeploymentStatus.PARTIAL).storage

    def test_new_run_after_complete_reuses_components(self, deployed, config, env, deployer, store):
        before = store.latest()
        again = Orchestrator.resume(config, env, deployer, store=store, broadcast=True)
        assert again.run_id != before.run_id
        record = again.run_all()
        assert record.proxies == before.proxies
        assert record.implementations == before.implementations
        assert record.gas_used is None
        assert len(store.history()) == 2

    def test_other_deployer_starts_fresh(self, config, env, deployer, intruder, store):
        Orchestrator(config, env, deployer, store=store).run_single(StageId.DEPLOY_STORAGE)
        other = Orchestrator.resume(config, env, intruder, store=store)
        assert other.current == StageId.DEPLOY_STORAGE
        assert other.state.descriptors == {}

    def test_foreign_state_rejected(self, config, env, deployer, intruder):
        state = DeploymentState("qd-x", intruder)
        with pytest.raises(ValueError, match="deployer"):
            Orchestrator(config, env, deployer, state=state)


class TestProductionGuard:
    def test_production_constraints_enforced(self, config, env, deployer):
        settings = ProdConfig(environment="production", rpc_url="memory://")
        with pytest.raises(ProductionConfigError):
            Orchestrator(config, env, deployer, prod_config=settings)

    def test_development_passes(self, config, env, deployer):
        Orchestrator(config, env, deployer, prod_config=ProdConfig(environment="development"))
