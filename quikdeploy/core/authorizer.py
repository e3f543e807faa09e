"""Capability checks for privileged operations.

The UpgradeController asks an injected ``Authorizer`` before it does
anything. The default implementation reads roles straight from the target,
so the question is answered by the same component that will later enforce
it.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from quikdeploy.core.address_predictor import role_id
from quikdeploy.environment.base import TargetEnvironment
from quikdeploy.models.components import Role

logger = logging.getLogger(__name__)


@runtime_checkable
class Authorizer(Protocol):
    """Answers whether *identity* holds *capability* on *target*."""

    def has_capability(self, identity: str, capability: Role | str, target: str) -> bool:
        ...


class EnvironmentAuthorizer:
    """Authorizer backed by role membership in the target environment."""

    def __init__(self, environment: TargetEnvironment) -> None:
        self._env = environment

    def has_capability(self, identity: str, capability: Role | str, target: str) -> bool:
        granted = self._env.has_role(target, role_id(capability), identity)
        logger.debug(
            "capability %s for %s on %s: %s",
            capability.value if isinstance(capability, Role) else capability,
            identity,
            target,
            granted,
        )
        return granted


class StaticAuthorizer:
    """Authorizer over a fixed set of ``(identity, capability, target)`` grants.

    Useful for off-target policy checks and in tests.
    """

    def __init__(self, grants: set[tuple[str, str, str]] | None = None) -> None:
        self._grants = {
            (identity.lower(), cap, target.lower()) for identity, cap, target in grants or set()
        }

    def allow(self, identity: str, capability: Role | str, target: str) -> None:
        cap = capability.value if isinstance(capability, Role) else capability
        self._grants.add((identity.lower(), cap, target.lower()))

    def has_capability(self, identity: str, capability: Role | str, target: str) -> bool:
        cap = capability.value if isinstance(capability, Role) else capability
        return (identity.lower(), cap, target.lower()) in self._grants
