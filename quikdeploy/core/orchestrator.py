"""Deployment orchestrator — the central coordinator for quikdeploy runs.

The Orchestrator wires together the DeploymentState, the stage executors,
the StageMachine/RunLedger audit trail and the DeploymentRecordStore into a
single linear pipeline:

    DEPLOY_STORAGE -> DEPLOY_LOGIC_IMPLS -> DEPLOY_PROXY_FRONT
        -> DEPLOY_PROXIES -> WIRE_STORAGE -> SETUP_ROLES -> VERIFY -> COMPLETE

Every stage that passes is checkpointed to ``latest.json``. Every fatal
error is recorded (record, ledger, error log) before it is re-raised.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from quikdeploy.config import ProdConfig
from quikdeploy.core.address_predictor import normalize_address
from quikdeploy.core.catalog import ArtifactCatalog
from quikdeploy.core.deployer import ContentAddressedDeployer
from quikdeploy.core.deployment_state import DeploymentState
from quikdeploy.core.errors import StageOrderError
from quikdeploy.core.hasher import compute_output_hash
from quikdeploy.core.production_guard import enforce_production_constraints
from quikdeploy.core.record_store import DeploymentRecordStore
from quikdeploy.core.run_ledger import RunLedger
from quikdeploy.core.stage_machine import StageMachine
from quikdeploy.environment.base import TargetEnvironment
from quikdeploy.models.config import DeploymentConfig
from quikdeploy.models.ledger import LedgerEntry
from quikdeploy.models.outcomes import StageOutcome
from quikdeploy.models.records import DeploymentRecord, DeploymentStatus
from quikdeploy.models.stages import STAGE_ORDER, StageId, StageState, stages_before
from quikdeploy.stages import BaseExecutor, get_executor_class

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"qd-{ts}-{uuid.uuid4().hex[:6]}"


class Orchestrator:
    """Runs deployment stages in their fixed order.

    Parameters
    ----------
    config:
        Topology, role assignments and persistence paths.
    environment:
        The deployment target.
    deployer:
        Identity that creates and wires every component.
    state:
        Existing state to continue (see ``resume``). A fresh state is
        created if omitted.
    store, ledger:
        Persistence backends; default to the paths in *config*.
    broadcast:
        Recorded in the deployment record; ``False`` marks a dry run.
    prod_config:
        When given, production constraints are enforced before anything runs.
    """

    def __init__(
        self,
        config: DeploymentConfig,
        environment: TargetEnvironment,
        deployer: str,
        *,
        state: DeploymentState | None = None,
        store: DeploymentRecordStore | None = None,
        ledger: RunLedger | None = None,
        broadcast: bool = False,
        prod_config: ProdConfig | None = None,
    ) -> None:
        if prod_config is not None:
            enforce_production_constraints(prod_config)

        self.config = config
        self.environment = environment
        self.deployer = ContentAddressedDeployer(environment, deployer)
        self.catalog = ArtifactCatalog(config.artifacts_path)
        self.store = store or DeploymentRecordStore(config.deployments_dir, config.history_limit)
        self.ledger = ledger or RunLedger(config.ledger_db_path)
        self.stage_machine = StageMachine(self.ledger)

        self.state = state or DeploymentState(
            new_run_id(),
            self.deployer.deployer,
            network=environment.network,
            broadcast=broadcast,
        )
        if normalize_address(self.state.deployer) != self.deployer.deployer:
            raise ValueError(
                f"State belongs to deployer {self.state.deployer}, not {self.deployer.deployer}"
            )
        self.stage_machine.initialize_run(
            self.state.run_id,
            completed=self.state.completed_stages,
            deployer=self.deployer.deployer,
        )

    @classmethod
    def resume(
        cls,
        config: DeploymentConfig,
        environment: TargetEnvironment,
        deployer: str,
        *,
        store: DeploymentRecordStore | None = None,
        ledger: RunLedger | None = None,
        broadcast: bool = False,
        prod_config: ProdConfig | None = None,
    ) -> Orchestrator:
        """Build an orchestrator that continues from ``latest.json``.

        An unfinished run by the same deployer on the same network is
        resumed under its run id. Otherwise a new run starts, but every
        component the latest record knows about is carried over so that
        it is reused rather than re-derived.
        """
        store = store or DeploymentRecordStore(config.deployments_dir, config.history_limit)
        identity = normalize_address(deployer)
        latest = store.latest()

        state: DeploymentState | None = None
        if latest is not None and normalize_address(latest.deployer) == identity:
            if not latest.is_complete and latest.network == environment.network:
                state = DeploymentState.from_record(latest)
                state.broadcast = broadcast
                logger.info("Resuming run %s at %s", latest.run_id, state.current.value)
            else:
                state = DeploymentState(
                    new_run_id(), identity, network=environment.network, broadcast=broadcast
                )
                for descriptor in latest.components:
                    state.descriptors[descriptor.key] = descriptor
                logger.info(
                    "Starting run %s with %d known components from %s",
                    state.run_id,
                    len(latest.components),
                    latest.run_id,
                )

        return cls(
            config,
            environment,
            deployer,
            state=state,
            store=store,
            ledger=ledger,
            broadcast=broadcast,
            prod_config=prod_config,
        )

    @property
    def run_id(self) -> str:
        return self.state.run_id

    @property
    def current(self) -> StageId:
        return self.state.current

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run_all(self) -> DeploymentRecord:
        """Run every unfinished stage through VERIFY and return the final record."""
        logger.info("Run %s starting at %s", self.run_id, self.current.value)
        for stage in STAGE_ORDER:
            if self.state.is_complete(stage):
                logger.info("%s already complete; skipping", stage.value)
                continue
            self._execute(stage)
        return self._finalize()

    def run_single(self, stage: StageId) -> StageOutcome:
        """Run exactly *stage*. Every earlier stage must already be complete.

        A completed stage may be run again; its operations are idempotent
        or fault-isolated. When VERIFY passes here the run is finalized.
        """
        if stage == StageId.COMPLETE:
            raise StageOrderError("COMPLETE is a terminal state, not a runnable stage")
        missing = [s for s in stages_before(stage) if not self.state.is_complete(s)]
        if missing:
            exc = StageOrderError(
                f"Cannot run {stage.value}: {', '.join(s.value for s in missing)} "
                f"not complete (current stage is {self.current.value})"
            )
            self._record_failure(stage, exc)
            raise exc

        outcome = self._execute(stage)
        if self.current == StageId.COMPLETE:
            self._finalize()
        return outcome

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    def _executor(self, stage: StageId) -> BaseExecutor:
        cls = get_executor_class(stage)
        return cls(self.state, self.deployer, self.catalog, self.config)

    def _execute(self, stage: StageId) -> StageOutcome:
        """Run one stage under the ledger lifecycle.

        1. Transition to RUNNING (order checked by the stage machine)
        2. Run the executor
        3. Fold the outcome into the state and checkpoint
        4. Transition to PASSED, or FAILED and re-raise
        """
        executor = self._executor(stage)
        input_hash = executor.compute_input_hash(stage)
        self.stage_machine.transition(
            self.run_id,
            stage,
            StageState.RUNNING,
            deployer=self.deployer.deployer,
            input_hash=input_hash,
        )

        try:
            outcome = executor.run_stage(stage)
        except Exception as exc:
            self.stage_machine.transition(
                self.run_id,
                stage,
                StageState.FAILED,
                deployer=self.deployer.deployer,
                input_hash=input_hash,
                output_hash=compute_output_hash(stage.value, {"error": str(exc)}),
            )
            self._record_failure(stage, exc)
            raise

        self.state.set_stage_warnings(stage, outcome.warnings)
        self.state.add_gas(outcome.gas_used)
        self.state.mark_complete(stage)
        self.stage_machine.transition(
            self.run_id,
            stage,
            StageState.PASSED,
            deployer=self.deployer.deployer,
            input_hash=input_hash,
            output_hash=executor.compute_output_hash(outcome),
            component_addresses=sorted(outcome.components.values()),
            warnings=[w.describe() for w in outcome.warnings],
        )
        self.store.checkpoint(self.state.to_record(DeploymentStatus.PARTIAL))
        logger.info(
            "%s passed (%d warning(s)); next: %s",
            stage.value,
            len(outcome.warnings),
            self.current.value,
        )
        return outcome

    def _record_failure(self, stage: StageId, exc: BaseException) -> DeploymentRecord:
        self.state.add_error(f"[{stage.value}] {type(exc).__name__}: {exc}")
        aborted = getattr(exc, "aborts_run", False)
        status = (
            DeploymentStatus.FAILED
            if aborted or not self.state.completed_stages
            else DeploymentStatus.PARTIAL
        )
        logger.error("%s failed (%s): %s", stage.value, status.value, exc)
        record = self.state.to_record(status)
        self.store.finalize(record)
        self.store.log_error(f"run {self.run_id} stage {stage.value}", exc)
        return record

    def _finalize(self) -> DeploymentRecord:
        # open warnings mean the graph is not fully wired yet
        status = (
            DeploymentStatus.PARTIAL if self.state.has_open_warnings else DeploymentStatus.SUCCESS
        )
        record = self.state.to_record(status)
        self.store.finalize(record)
        logger.info(
            "Run %s finished: %s, %d warning(s), gas %s",
            self.run_id,
            status.value,
            len(record.warnings),
            record.gas_used or "0",
        )
        return record

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_states(self) -> dict[StageId, StageState]:
        """Return the ledger's view of every stage in this run."""
        return self.stage_machine.get_all_states(self.run_id)

    def get_run_entries(self) -> list[LedgerEntry]:
        return self.ledger.get_run_entries(self.run_id)

    def verify_chain(self) -> bool:
        """Verify the hash chain integrity of this run's ledger entries."""
        return self.ledger.verify_chain(self.run_id)
