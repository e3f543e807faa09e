"""Tests for operator config — env-driven settings."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from quikdeploy.config import ProdConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ("RPC_URL", "PRIVATE_KEY"):
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("QUIKDEPLOY_"):
            monkeypatch.delenv(name)
    # no stray .env file
    monkeypatch.chdir(tmp_path)


class TestProdConfig:
    def test_defaults(self):
        config = ProdConfig()
        assert config.environment == "development"
        assert config.log_level == "INFO"
        assert config.rpc_url == "local://deployments/chain.db"
        assert config.deployer_key == ""
        assert config.admin_grantees == []

    def test_is_production_when_set(self):
        assert ProdConfig().is_production is False
        assert ProdConfig(environment="production").is_production is True

    def test_script_variables_honored(self, monkeypatch):
        monkeypatch.setenv("RPC_URL", "memory://")
        monkeypatch.setenv("PRIVATE_KEY", "secret")
        config = ProdConfig()
        assert config.rpc_url == "memory://"
        assert config.deployer_key == "secret"

    def test_grantees_split_on_commas(self, monkeypatch):
        monkeypatch.setenv("QUIKDEPLOY_ADMIN_GRANTEES", "0xabc, 0xdef,,")
        assert ProdConfig().admin_grantees == ["0xabc", "0xdef"]

    def test_dot_env_file(self, tmp_path):
        (tmp_path / ".env").write_text("QUIKDEPLOY_VERSION_TAG=v7\n")
        assert ProdConfig().version_tag == "v7"


class TestDeploymentConfig:
    def test_live_paths(self):
        config = ProdConfig(deployments_dir=Path("out"), ledger_path=Path("out/ledger.db"))
        deployment = config.deployment_config()
        assert deployment.deployments_dir == Path("out")
        assert deployment.ledger_db_path == Path("out/ledger.db")

    def test_dry_run_paths_are_separate(self):
        config = ProdConfig(deployments_dir=Path("out"), ledger_path=Path("out/ledger.db"))
        deployment = config.deployment_config(dry_run=True)
        assert deployment.deployments_dir == Path("out/dry-run")
        assert deployment.ledger_db_path == Path("out/dry-run/ledger.db")

    def test_grantees_flow_into_roles(self):
        config = ProdConfig(upgrader_grantees=["0x" + "1" * 40], version_tag="v2")
        deployment = config.deployment_config()
        assert deployment.version_tag == "v2"
        assert deployment.roles.upgrader_grantees == ["0x" + "1" * 40]
