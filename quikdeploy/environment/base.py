"""Target environment interface — where components are created and wired.

The orchestrator never assumes it can roll anything back in the target.
Every state-changing call blocks until the change is durable and then
returns a receipt; a later dependent call is only issued after that.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from quikdeploy.models.components import CreationPayload


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TargetEnvironmentError(RuntimeError):
    """Base class for failures reported by the target environment."""


class TargetUnavailableError(TargetEnvironmentError):
    """The target could not be reached or did not confirm the operation."""


class ComponentExistsError(TargetEnvironmentError):
    """A creation targeted an address that is already occupied."""


class UnknownComponentError(TargetEnvironmentError):
    """No component exists at the given address."""


class AccessDeniedError(TargetEnvironmentError):
    """The caller is not permitted to perform the operation."""


class RecordExistsError(TargetEnvironmentError):
    """Storage ``register`` on a key that already holds data."""


class RecordNotFoundError(TargetEnvironmentError):
    """Storage ``read``/``update`` on a key with no data."""


# ---------------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------------


class Receipt(BaseModel):
    """Confirmation that a state-changing operation is durable."""

    model_config = ConfigDict(frozen=True)

    operation: str
    target: str
    gas_used: int = 0
    sequence: int = 0  # monotonically increasing per environment


class CreationReceipt(Receipt):
    """Confirmation of a component creation at ``address``."""

    address: str
    code_hash: str


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class TargetEnvironment(Protocol):
    """Operations the orchestrator needs from a deployment target."""

    network: str

    # -- creation -------------------------------------------------------

    def code_at(self, address: str) -> str | None:
        """Existence probe: the code hash at *address*, or ``None``."""
        ...

    def create(
        self, deployer: str, salt: bytes, payload: CreationPayload
    ) -> CreationReceipt:
        """Create a component at the deterministic placement for the inputs."""
        ...

    # -- wiring ---------------------------------------------------------

    def set_logic_contract(self, caller: str, storage: str, logic: str) -> Receipt:
        """Authorize *logic* as the single caller of *storage*."""
        ...

    def logic_contract(self, storage: str) -> str | None:
        ...

    def grant_role(self, caller: str, target: str, role: bytes, grantee: str) -> Receipt:
        ...

    def has_role(self, target: str, role: bytes, identity: str) -> bool:
        ...

    def read_var(self, address: str, name: str) -> Any:
        """Read a named state variable (through a proxy, its delegated state)."""
        ...

    # -- proxy administration ------------------------------------------

    def upgrade(self, caller: str, proxy_admin: str, proxy: str, implementation: str) -> Receipt:
        """Repoint *proxy* at *implementation* via its administrator."""
        ...

    def implementation(self, proxy_admin: str, proxy: str) -> str | None:
        """Read back the active implementation pointer of *proxy*."""
        ...

    # -- storage collaborator ------------------------------------------

    def register(self, caller: str, storage: str, key: str, data: dict[str, Any]) -> Receipt:
        ...

    def read(self, storage: str, key: str) -> dict[str, Any]:
        ...

    def update(self, caller: str, storage: str, key: str, data: dict[str, Any]) -> Receipt:
        ...
