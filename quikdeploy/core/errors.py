"""Deployment error taxonomy.

Fatal errors unwind to the Orchestrator, which persists a ``partial`` or
``failed`` record before re-raising. Non-fatal problems are not exceptions
at all: they are ``WiringWarning`` values attached to a ``StageOutcome``.
"""

from __future__ import annotations


class DeploymentError(RuntimeError):
    """Base class for every fatal deployment or upgrade error."""

    #: aborts the whole run rather than just the current stage
    aborts_run: bool = False


class PreconditionError(DeploymentError):
    """A required dependency address is missing or zero.

    Raised before any work in the stage is attempted.
    """


class CreationMismatchError(DeploymentError):
    """A component was created somewhere other than its predicted address.

    The placement scheme is broken; nothing downstream can be trusted.
    """

    aborts_run = True

    def __init__(self, predicted: str, actual: str, *, name: str = "") -> None:
        self.predicted = predicted
        self.actual = actual
        label = f" for {name}" if name else ""
        super().__init__(
            f"Creation mismatch{label}: predicted {predicted}, created at {actual}"
        )


class AuthorizationError(DeploymentError):
    """The caller lacks the capability required for an upgrade. Never retried."""

    def __init__(self, identity: str, capability: str, target: str) -> None:
        self.identity = identity
        self.capability = capability
        self.target = target
        super().__init__(
            f"{identity} does not hold {capability} on {target}"
        )


class VerificationFailure(DeploymentError):
    """A readback after a stage or upgrade did not match expectations."""

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        self.problems = list(problems or [])
        detail = f": {'; '.join(self.problems)}" if self.problems else ""
        super().__init__(f"{message}{detail}")


class DescriptorImmutableError(DeploymentError):
    """An attempt to change a component's address after it was recorded."""

    aborts_run = True


class StageOrderError(DeploymentError):
    """A stage was requested before every earlier stage completed."""
