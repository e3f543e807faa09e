"""Abstract base executor with enforced lifecycle.

Every concrete executor inherits from BaseExecutor and implements only
``execute()``. The ``run_stage()`` wrapper is **not overridable**; it fixes
the lifecycle ordering:

    check stage -> compute_input_hash -> execute -> compute_output_hash

Helpers shared by every executor:

* ``require_address`` fails fast with ``PreconditionError`` on a missing or
  zero dependency, before any work in the stage is attempted.
* ``create`` places one component through the content-addressed deployer
  and records it in the DeploymentState.
* ``attempt`` runs one wiring or grant call in isolation and turns a
  failure into a ``WiringWarning`` instead of an exception.
"""

from __future__ import annotations

import abc
import logging
from collections.abc import Callable
from typing import Any, ClassVar, final

from quikdeploy.core.address_predictor import is_address, is_zero_address, payload_hash
from quikdeploy.core.catalog import ArtifactCatalog
from quikdeploy.core.deployer import ContentAddressedDeployer
from quikdeploy.core.deployment_state import DeploymentState
from quikdeploy.core.errors import DeploymentError, PreconditionError
from quikdeploy.core.hasher import compute_input_hash, compute_output_hash
from quikdeploy.environment.base import Receipt, TargetEnvironment, TargetEnvironmentError
from quikdeploy.models.components import (
    ComponentCategory,
    ComponentDescriptor,
    CreationPayload,
)
from quikdeploy.models.config import DeploymentConfig
from quikdeploy.models.outcomes import StageOutcome, StepResult, WiringWarning
from quikdeploy.models.stages import StageId

logger = logging.getLogger(__name__)


class StageExecutionError(RuntimeError):
    """Raised when an executor fails with an error outside the deployment taxonomy."""


class BaseExecutor(abc.ABC):
    """Abstract base for all deployment stage executors.

    Subclasses **must** set ``stage_ids`` and ``display_name`` and
    implement ``execute(stage)``. Subclasses **must not** override
    ``run_stage()``.

    Parameters
    ----------
    state:
        The run's DeploymentState; executors read dependencies from it and
        record creations into it.
    deployer:
        Content-addressed deployer bound to the target and the deployer
        identity.
    catalog:
        Source of code hashes and creation payloads.
    config:
        Topology, role assignments and version tag.
    """

    stage_ids: ClassVar[tuple[StageId, ...]] = ()
    display_name: ClassVar[str] = ""

    def __init__(
        self,
        state: DeploymentState,
        deployer: ContentAddressedDeployer,
        catalog: ArtifactCatalog,
        config: DeploymentConfig,
    ) -> None:
        self.state = state
        self.deployer = deployer
        self.catalog = catalog
        self.config = config
        self.gas_used = 0

    @property
    def env(self) -> TargetEnvironment:
        return self.deployer.environment

    @property
    def owner(self) -> str:
        return self.deployer.deployer

    @abc.abstractmethod
    def execute(self, stage: StageId) -> StageOutcome:
        """Run the work of *stage* and return its outcome."""
        ...

    # ------------------------------------------------------------------
    # Lifecycle (not overridable)
    # ------------------------------------------------------------------

    @final
    def run_stage(self, stage: StageId) -> StageOutcome:
        """Execute *stage* under the fixed lifecycle.  **Do not override.**

        Taxonomy errors (``DeploymentError``) propagate unchanged; anything
        else is wrapped in ``StageExecutionError``.
        """
        if stage not in self.stage_ids:
            raise StageExecutionError(
                f"{type(self).__name__} does not execute {stage.value}"
            )

        self.gas_used = 0
        input_hash = self.compute_input_hash(stage)
        logger.info("%s [%s] input_hash=%s", self.display_name, stage.value, input_hash[:12])

        try:
            outcome = self.execute(stage)
        except DeploymentError:
            raise
        except Exception as exc:
            logger.error("%s [%s] execution failed: %s", self.display_name, stage.value, exc)
            raise StageExecutionError(f"Stage {stage.value} failed: {exc}") from exc

        logger.info(
            "%s [%s] done: %d component(s), %d warning(s), output_hash=%s",
            self.display_name,
            stage.value,
            len(outcome.components),
            len(outcome.warnings),
            self.compute_output_hash(outcome)[:12],
        )
        return outcome

    @final
    def compute_input_hash(self, stage: StageId) -> str:
        """Hash of the addresses this stage may depend on."""
        inputs: dict[str, Any] = {
            "deployer": self.owner,
            "version_tag": self.config.version_tag,
            "components": {
                key: d.actual_address for key, d in sorted(self.state.descriptors.items())
            },
        }
        return compute_input_hash(stage.value, inputs)

    @final
    def compute_output_hash(self, outcome: StageOutcome) -> str:
        return compute_output_hash(
            outcome.stage.value,
            {
                "components": outcome.components,
                "warnings": [w.describe() for w in outcome.warnings],
            },
        )

    # ------------------------------------------------------------------
    # Helpers (not overridable)
    # ------------------------------------------------------------------

    @final
    def require_address(self, value: str | None, label: str) -> str:
        """Return *value* if it is a usable address; raise PreconditionError otherwise."""
        if value is None or not is_address(value) or is_zero_address(value):
            raise PreconditionError(f"Required address for {label} is missing or zero: {value!r}")
        return value.lower()

    @final
    def create(
        self,
        stage: StageId,
        category: ComponentCategory,
        name: str,
        salt: bytes,
        payload: CreationPayload,
    ) -> str:
        """Place one component and record it. Returns its address.

        A component already recorded in the state and still present in the
        target is reused as-is, so re-running a stage never moves it.
        """
        existing = self.state.get(category, name)
        if existing is not None and existing.actual_address:
            if self.env.code_at(existing.actual_address) is not None:
                logger.info("%s already recorded at %s", name, existing.actual_address)
                return existing.actual_address

        descriptor = ComponentDescriptor(
            name=name,
            category=category,
            salt=salt.hex(),
            creation_payload_hash=payload_hash(payload).hex(),
            predicted_address=self.deployer.predict(salt, payload),
            stage=stage,
        )
        result = self.deployer.deploy(salt, payload, name=name)
        self.state.record_creation(descriptor, result.address)
        self.gas_used += result.gas_used
        return result.address

    @final
    def attempt(
        self,
        stage: StageId,
        operation: str,
        target: str,
        call: Callable[[], Receipt],
        *,
        arguments: dict[str, Any] | None = None,
    ) -> StepResult:
        """Run one wiring/grant call; a target failure becomes a warning."""
        try:
            receipt = call()
        except (TargetEnvironmentError, ValueError) as exc:
            warning = WiringWarning(
                stage=stage,
                operation=operation,
                target=target,
                detail=f"{type(exc).__name__}: {exc}",
                arguments=arguments or {},
            )
            logger.warning("%s", warning.describe())
            return StepResult(operation=operation, target=target, ok=False, warning=warning)
        return StepResult(
            operation=operation, target=target, ok=True, gas_used=receipt.gas_used
        )

    @final
    def warn(
        self,
        stage: StageId,
        operation: str,
        target: str,
        detail: str,
        *,
        arguments: dict[str, Any] | None = None,
    ) -> StepResult:
        """A failed step that was detected without submitting anything."""
        warning = WiringWarning(
            stage=stage,
            operation=operation,
            target=target,
            detail=detail,
            arguments=arguments or {},
        )
        logger.warning("%s", warning.describe())
        return StepResult(operation=operation, target=target, ok=False, warning=warning)

    def __repr__(self) -> str:
        stages = ",".join(s.value for s in self.stage_ids)
        return f"<{type(self).__name__} stages={stages}>"
