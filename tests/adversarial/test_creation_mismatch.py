"""Adversarial tests — a target that places components at unexpected addresses.

A creation mismatch means address derivation can no longer be trusted. It
must abort the run outright, and nothing downstream may use the stray
address.
"""

from __future__ import annotations

import pytest

from quikdeploy.core.errors import CreationMismatchError, DescriptorImmutableError
from quikdeploy.core.deployment_state import DeploymentState
from quikdeploy.core.orchestrator import Orchestrator
from quikdeploy.models.components import ComponentCategory
from quikdeploy.models.records import DeploymentStatus
from quikdeploy.models.stages import StageId, StageState


class TestCreationMismatch:
    def test_mismatch_aborts_the_run(self, config, misplacing_env, deployer, store):
        orchestrator = Orchestrator(config, misplacing_env, deployer, store=store, broadcast=True)
        with pytest.raises(CreationMismatchError) as info:
            orchestrator.run_all()

        assert info.value.predicted != info.value.actual
        latest = store.latest()
        assert latest.status == DeploymentStatus.FAILED
        assert latest.storage == {}
        assert "CreationMismatchError" in latest.errors[0]
        assert orchestrator.get_states()[StageId.DEPLOY_STORAGE] == StageState.FAILED
        assert list(store.logs_dir.glob("error-*.log"))

    def test_stray_address_not_recorded(self, config, misplacing_env, deployer, store):
        orchestrator = Orchestrator(config, misplacing_env, deployer, store=store, broadcast=True)
        with pytest.raises(CreationMismatchError) as info:
            orchestrator.run_all()
        assert info.value.actual not in store.latest().storage.values()
        assert orchestrator.state.descriptors == {}


class TestDescriptorImmutability:
    def test_recorded_address_cannot_move(self, deployed, deployer):
        state: DeploymentState = deployed.state
        descriptor = state.get(ComponentCategory.STORAGE, "nodeStorage")
        moved = "0x" + "6" * 40
        forged = descriptor.model_copy(update={"predicted_address": moved, "actual_address": None})
        with pytest.raises(DescriptorImmutableError):
            state.record_creation(forged, moved)
        assert state.address_of(ComponentCategory.STORAGE, "nodeStorage") == (
            descriptor.actual_address
        )
