"""Shared test fixtures for quikdeploy."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from quikdeploy.core.address_predictor import derive_identity
from quikdeploy.core.orchestrator import Orchestrator
from quikdeploy.core.record_store import DeploymentRecordStore
from quikdeploy.core.run_ledger import RunLedger
from quikdeploy.core.stage_machine import StageMachine
from quikdeploy.environment.base import CreationReceipt, TargetUnavailableError
from quikdeploy.environment.local import LocalEnvironment
from quikdeploy.models.components import CreationPayload
from quikdeploy.models.config import DeploymentConfig


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FaultyEnvironment:
    """Wraps a real environment and fails selected operations on demand.

    ``fail("create", when=lambda deployer, salt, payload: ...)`` makes every
    matching call raise ``TargetUnavailableError`` until ``heal()``.
    """

    def __init__(self, inner: LocalEnvironment) -> None:
        self._inner = inner
        self._faults: dict[str, Callable[..., bool] | None] = {}
        self.calls: list[str] = []

    def fail(self, operation: str, when: Callable[..., bool] | None = None) -> None:
        self._faults[operation] = when

    def heal(self, operation: str | None = None) -> None:
        if operation is None:
            self._faults.clear()
        else:
            self._faults.pop(operation, None)

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._inner, name)
        if not callable(attr):
            return attr

        def call(*args: Any, **kwargs: Any) -> Any:
            self.calls.append(name)
            if name in self._faults:
                when = self._faults[name]
                if when is None or when(*args, **kwargs):
                    raise TargetUnavailableError(f"injected failure in {name}")
            return attr(*args, **kwargs)

        return call


class MisplacingEnvironment(LocalEnvironment):
    """A target that creates components somewhere other than requested."""

    def create(
        self, deployer: str, salt: bytes, payload: CreationPayload
    ) -> CreationReceipt:
        return super().create(deployer, bytes(reversed(salt)), payload)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def deployer() -> str:
    """Identity that performs every deployment in the tests."""
    return derive_identity("test-deployer-key")


@pytest.fixture
def intruder() -> str:
    """An identity that holds no roles anywhere."""
    return derive_identity("someone-else")


@pytest.fixture
def env() -> Iterator[LocalEnvironment]:
    """Provide a fresh in-memory target."""
    environment = LocalEnvironment()
    yield environment
    environment.close()


@pytest.fixture
def misplacing_env() -> Iterator[MisplacingEnvironment]:
    environment = MisplacingEnvironment()
    yield environment
    environment.close()


@pytest.fixture
def faulty_env(env: LocalEnvironment) -> FaultyEnvironment:
    return FaultyEnvironment(env)


@pytest.fixture
def config(tmp_dir: Path) -> DeploymentConfig:
    """DeploymentConfig with every path inside the temp directory."""
    return DeploymentConfig(
        deployments_dir=tmp_dir / "deployments",
        ledger_db_path=tmp_dir / "deployments" / "ledger.db",
    )


@pytest.fixture
def store(config: DeploymentConfig) -> DeploymentRecordStore:
    return DeploymentRecordStore(config.deployments_dir, config.history_limit)


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def stage_machine(ledger: RunLedger) -> StageMachine:
    return StageMachine(ledger)


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "qd-test-run-001"


@pytest.fixture
def deployed(
    config: DeploymentConfig,
    env: LocalEnvironment,
    deployer: str,
    store: DeploymentRecordStore,
) -> Orchestrator:
    """An orchestrator whose run has already completed every stage."""
    orchestrator = Orchestrator(config, env, deployer, store=store, broadcast=True)
    orchestrator.run_all()
    return orchestrator
