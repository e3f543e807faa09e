"""Stage outcome models — partial success as a first-class value."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

from quikdeploy.models.stages import StageId


class WiringWarning(BaseModel):
    """A single wiring or grant call that failed without failing its stage.

    ``arguments`` holds what an operator needs to retry just this call.
    """

    model_config = ConfigDict(frozen=True)

    stage: StageId
    operation: str  # e.g. "grant_role", "set_logic_contract"
    target: str
    detail: str
    arguments: dict[str, Any] = {}

    def describe(self) -> str:
        args = ", ".join(f"{k}={v}" for k, v in sorted(self.arguments.items()))
        return f"[{self.stage.value}] {self.operation}({args}) on {self.target}: {self.detail}"


class StepResult(BaseModel):
    """Result of one fault-isolated call: ok, or a warning."""

    model_config = ConfigDict(frozen=True)

    operation: str
    target: str
    ok: bool
    gas_used: int = 0
    skipped: bool = False  # already in the desired state, nothing submitted
    warning: WiringWarning | None = None


class StageOutcome(BaseModel):
    """Aggregate outcome of one stage execution."""

    model_config = ConfigDict(frozen=True)

    stage: StageId
    succeeded: bool
    warnings: list[WiringWarning] = []
    components: dict[str, str] = {}  # descriptor key -> address
    gas_used: int = 0

    @classmethod
    def fold(
        cls,
        stage: StageId,
        results: list[StepResult],
        *,
        components: dict[str, str] | None = None,
        gas_used: int = 0,
    ) -> StageOutcome:
        """Collect step results into a single outcome.

        Failed steps become warnings; the stage itself still succeeds.
        """
        warnings = [r.warning for r in results if r.warning is not None]
        return cls(
            stage=stage,
            succeeded=True,
            warnings=warnings,
            components=components or {},
            gas_used=gas_used + sum(r.gas_used for r in results),
        )
