"""Deterministic stage state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Fixed stage order: a stage may start only when every earlier stage passed
- Every transition recorded in the run ledger
"""

from __future__ import annotations

import logging

from quikdeploy.core.run_ledger import RunLedger
from quikdeploy.models.ledger import LedgerEntry
from quikdeploy.models.stages import (
    STAGE_ORDER,
    VALID_TRANSITIONS,
    StageId,
    StageState,
    stages_before,
)

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class StageNotReadyError(RuntimeError):
    """Raised when a stage is started before every earlier stage passed."""


class StageMachine:
    """Tracks per-run stage states and records each transition.

    Parameters
    ----------
    ledger:
        The run ledger to record transitions into.
    """

    def __init__(self, ledger: RunLedger) -> None:
        self._ledger = ledger
        # run_id -> {stage_id -> StageState}
        self._states: dict[str, dict[StageId, StageState]] = {}

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def initialize_run(
        self,
        run_id: str,
        *,
        completed: list[StageId] | None = None,
        deployer: str = "",
    ) -> dict[StageId, StageState]:
        """Load (or create) the stage states of *run_id*.

        States are rebuilt from the ledger. A stage the ledger left RUNNING
        was interrupted and is recorded as FAILED. Stages listed in
        *completed* (from the deployment record) count as PASSED even if
        this ledger never saw them, e.g. after the ledger file was moved.
        """
        self._rebuild_state(run_id)
        states = self._states[run_id]

        for stage_id, state in list(states.items()):
            if state == StageState.RUNNING:
                logger.warning("%s was interrupted in run %s", stage_id.value, run_id)
                self.transition(run_id, stage_id, StageState.FAILED, deployer=deployer)

        for stage_id in completed or []:
            if states.get(stage_id) != StageState.PASSED:
                states[stage_id] = StageState.PASSED

        return dict(states)

    def get_current_state(self, run_id: str, stage_id: StageId) -> StageState:
        if run_id not in self._states:
            self._rebuild_state(run_id)
        return self._states[run_id].get(stage_id, StageState.NOT_STARTED)

    def get_all_states(self, run_id: str) -> dict[StageId, StageState]:
        if run_id not in self._states:
            self._rebuild_state(run_id)
        return dict(self._states[run_id])

    def _rebuild_state(self, run_id: str) -> None:
        """Rebuild in-memory state from the ledger (for resume)."""
        states = {sid: StageState.NOT_STARTED for sid in STAGE_ORDER}
        for entry in self._ledger.get_run_entries(run_id):
            if "->" not in entry.state_transition:
                continue
            _, to_state = entry.state_transition.split("->", 1)
            try:
                states[StageId(entry.stage_id)] = StageState(to_state)
            except ValueError:
                logger.warning(
                    "Ignoring unknown ledger transition %s for %s",
                    entry.state_transition,
                    entry.stage_id,
                )
        self._states[run_id] = states

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self,
        run_id: str,
        stage_id: StageId,
        target_state: StageState,
        *,
        deployer: str = "",
        input_hash: str = "",
        output_hash: str = "",
        component_addresses: list[str] | None = None,
        warnings: list[str] | None = None,
    ) -> LedgerEntry:
        """Move *stage_id* to *target_state* and return the sealed ledger entry.

        Validates that the transition is allowed by VALID_TRANSITIONS and,
        when entering RUNNING, that every earlier stage has PASSED.
        """
        if run_id not in self._states:
            self._rebuild_state(run_id)
        states = self._states[run_id]
        current = states.get(stage_id, StageState.NOT_STARTED)

        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {stage_id.value} from {current.value} to "
                f"{target_state.value}. Allowed: {sorted(s.value for s in allowed)}"
            )

        if target_state == StageState.RUNNING:
            blocking = [
                f"{sid.value} is {states.get(sid, StageState.NOT_STARTED).value}"
                for sid in stages_before(stage_id)
                if states.get(sid) != StageState.PASSED
            ]
            if blocking:
                raise StageNotReadyError(
                    f"Cannot start {stage_id.value}: {'; '.join(blocking)}"
                )

        entry = LedgerEntry(
            run_id=run_id,
            stage_id=stage_id.value,
            state_transition=f"{current.value}->{target_state.value}",
            deployer=deployer,
            input_hash=input_hash,
            output_hash=output_hash,
            component_addresses=component_addresses or [],
            warnings=warnings or [],
        )
        sealed = self._ledger.append(entry)
        states[stage_id] = target_state
        return sealed

    def can_start(self, run_id: str, stage_id: StageId) -> tuple[bool, list[str]]:
        """Return whether *stage_id* may enter RUNNING, and why not."""
        states = self.get_all_states(run_id)
        current = states.get(stage_id, StageState.NOT_STARTED)
        if StageState.RUNNING not in VALID_TRANSITIONS.get(current, set()):
            return False, [f"{stage_id.value} is currently {current.value}"]
        reasons = [
            f"{sid.value} is {states.get(sid, StageState.NOT_STARTED).value}"
            for sid in stages_before(stage_id)
            if states.get(sid) != StageState.PASSED
        ]
        return not reasons, reasons
