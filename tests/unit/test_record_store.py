"""Tests for DeploymentRecordStore — latest pointer, bounded history, upgrades."""

from __future__ import annotations

import json

import pytest

from quikdeploy.core.record_store import DeploymentRecordStore, RecordStoreError
from quikdeploy.models.components import ComponentCategory, ComponentDescriptor
from quikdeploy.models.records import (
    DeploymentRecord,
    DeploymentStatus,
    UpgradeBatch,
    UpgradeRecord,
    UpgradeStatus,
)
from quikdeploy.models.stages import StageId

OLD = "0x" + "1" * 40
NEW = "0x" + "2" * 40
PROXY = "0x" + "3" * 40


def _record(run_id: str, deployer: str, **overrides) -> DeploymentRecord:
    fields = {"run_id": run_id, "deployer": deployer, "status": DeploymentStatus.SUCCESS}
    fields.update(overrides)
    return DeploymentRecord(**fields)


class TestLatest:
    def test_nothing_deployed(self, store: DeploymentRecordStore):
        assert store.latest() is None
        assert store.history() == []

    def test_checkpoint_round_trip(self, store: DeploymentRecordStore, deployer: str):
        store.checkpoint(_record("r1", deployer, proxies={"nodeLogic": PROXY}))
        latest = store.latest()
        assert latest is not None
        assert latest.run_id == "r1"
        assert latest.proxies == {"nodeLogic": PROXY}

    def test_json_uses_camel_case(self, store: DeploymentRecordStore, deployer: str):
        store.checkpoint(_record("r1", deployer, gas_used="42"))
        data = json.loads(store.latest_path.read_text())
        assert data["gasUsed"] == "42"
        assert data["runId"] == "r1"
        assert "completedStages" in data

    def test_unreadable_latest_raises(self, store: DeploymentRecordStore):
        store.root.mkdir(parents=True)
        store.latest_path.write_text("{not json")
        with pytest.raises(RecordStoreError):
            store.latest()

    def test_no_temp_file_left_behind(self, store: DeploymentRecordStore, deployer: str):
        store.checkpoint(_record("r1", deployer))
        assert [p.name for p in store.root.iterdir()] == ["latest.json"]


class TestHistory:
    def test_history_is_bounded(self, tmp_dir, deployer: str):
        store = DeploymentRecordStore(tmp_dir / "d", history_limit=3)
        for i in range(5):
            store.finalize(_record(f"r{i}", deployer))
        assert [r.run_id for r in store.history()] == ["r2", "r3", "r4"]
        assert store.latest().run_id == "r4"

    def test_refinalized_run_replaces_entry(self, store: DeploymentRecordStore, deployer: str):
        store.finalize(_record("r1", deployer, status=DeploymentStatus.PARTIAL))
        store.finalize(_record("r2", deployer))
        store.finalize(_record("r1", deployer, status=DeploymentStatus.SUCCESS))
        history = store.history()
        assert [r.run_id for r in history] == ["r2", "r1"]
        assert history[-1].status == DeploymentStatus.SUCCESS

    def test_corrupt_history_starts_over(self, store: DeploymentRecordStore, deployer: str):
        store.root.mkdir(parents=True)
        store.history_path.write_text("garbage")
        store.finalize(_record("r1", deployer))
        assert [r.run_id for r in store.history()] == ["r1"]

    def test_limit_must_be_positive(self, tmp_dir):
        with pytest.raises(ValueError):
            DeploymentRecordStore(tmp_dir, history_limit=0)


class TestUpgrades:
    def _batch(self, deployer: str, status: UpgradeStatus) -> UpgradeBatch:
        return UpgradeBatch(
            deployer=deployer,
            version_salt="v2",
            status=DeploymentStatus.SUCCESS,
            upgrades=[
                UpgradeRecord(
                    component="nodeLogic",
                    proxy_address=PROXY,
                    old_implementation_address=OLD,
                    new_implementation_address=NEW,
                    version_salt="v2",
                    authorized_by=deployer,
                    status=status,
                )
            ],
        )

    def _descriptor(self) -> ComponentDescriptor:
        return ComponentDescriptor(
            name="nodeLogic",
            category=ComponentCategory.IMPLEMENTATIONS,
            salt="00" * 32,
            creation_payload_hash="11" * 32,
            predicted_address=NEW,
            actual_address=NEW,
            stage=StageId.DEPLOY_LOGIC_IMPLS,
        )

    def test_confirmed_upgrade_folds_into_latest(self, store: DeploymentRecordStore, deployer: str):
        store.checkpoint(
            _record(
                "r1",
                deployer,
                implementations={"nodeLogic": OLD},
                proxies={"nodeLogic": PROXY},
            )
        )
        store.append_upgrade(self._batch(deployer, UpgradeStatus.CONFIRMED), [self._descriptor()])

        latest = store.latest()
        assert latest.implementations == {"nodeLogic": NEW}
        assert latest.proxies == {"nodeLogic": PROXY}
        assert [d.actual_address for d in latest.components] == [NEW]
        assert len(store.upgrades()) == 1

    def test_unconfirmed_upgrade_leaves_latest(self, store: DeploymentRecordStore, deployer: str):
        store.checkpoint(_record("r1", deployer, implementations={"nodeLogic": OLD}))
        store.append_upgrade(self._batch(deployer, UpgradeStatus.UNCONFIRMED), [self._descriptor()])
        assert store.latest().implementations == {"nodeLogic": OLD}
        assert store.upgrades()[0].upgrades[0].status == UpgradeStatus.UNCONFIRMED


class TestErrorLog:
    def test_log_error_writes_traceback(self, store: DeploymentRecordStore):
        try:
            raise RuntimeError("target went away")
        except RuntimeError as exc:
            path = store.log_error("run r1 stage deploy_storage", exc)
        text = path.read_text()
        assert path.parent == store.logs_dir
        assert path.name.startswith("error-")
        assert "RuntimeError: target went away" in text
        assert "Traceback" in text
        assert "run r1 stage deploy_storage" in text
