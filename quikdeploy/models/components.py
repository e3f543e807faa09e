"""Component and creation payload models."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from quikdeploy.models.stages import StageId

ZERO_ADDRESS = "0x" + "0" * 40


class ComponentCategory(str, Enum):
    """Top-level grouping used in the persisted deployment record."""

    STORAGE = "storage"
    IMPLEMENTATIONS = "implementations"
    PROXIES = "proxies"


class ComponentKind(str, Enum):
    """What a created component does once it exists in the target."""

    STORAGE = "storage"
    LOGIC = "logic"
    FACADE = "facade"
    PROXY_ADMIN = "proxy_admin"
    PROXY = "proxy"


class Role(str, Enum):
    """Capability roles granted on deployed components."""

    DEFAULT_ADMIN_ROLE = "DEFAULT_ADMIN_ROLE"
    ADMIN_ROLE = "ADMIN_ROLE"
    LOGIC_ROLE = "LOGIC_ROLE"
    AUTH_SERVICE_ROLE = "AUTH_SERVICE_ROLE"
    UPGRADER_ROLE = "UPGRADER_ROLE"


class CreationPayload(BaseModel):
    """The immutable definition of a component: code plus constructor args.

    Two payloads with equal ``code_hash``, ``kind`` and ``constructor_args``
    hash identically and therefore land at the same address for a given salt.
    """

    model_config = ConfigDict(frozen=True)

    code: str  # artifact name, e.g. "NodeStorage"
    code_hash: str  # hex digest of the compiled artifact
    kind: ComponentKind
    constructor_args: dict[str, Any] = {}


class ComponentDescriptor(BaseModel):
    """Placement record for one component.

    ``actual_address`` is assigned once, after creation, and must equal
    ``predicted_address``. DeploymentState enforces both rules.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    category: ComponentCategory
    salt: str  # hex
    creation_payload_hash: str  # hex
    predicted_address: str
    actual_address: str | None = None
    stage: StageId

    @property
    def key(self) -> str:
        return descriptor_key(self.category, self.name)

    @property
    def is_created(self) -> bool:
        return self.actual_address is not None


def descriptor_key(category: ComponentCategory | str, name: str) -> str:
    """Key used by DeploymentState, e.g. ``"proxies:nodeLogic"``."""
    cat = category.value if isinstance(category, ComponentCategory) else category
    return f"{cat}:{name}"
