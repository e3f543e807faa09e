"""Deployment targets.

Usage::

    from quikdeploy.environment import connect_environment

    env = connect_environment("local://deployments/chain.db", broadcast=False)
"""

from __future__ import annotations

import logging
from pathlib import Path

from quikdeploy.environment.base import (
    AccessDeniedError,
    ComponentExistsError,
    CreationReceipt,
    Receipt,
    RecordExistsError,
    RecordNotFoundError,
    TargetEnvironment,
    TargetEnvironmentError,
    TargetUnavailableError,
    UnknownComponentError,
)
from quikdeploy.environment.local import LocalEnvironment

logger = logging.getLogger(__name__)

_LOCAL_SCHEME = "local://"
_MEMORY_SCHEME = "memory://"


def connect_environment(endpoint: str, *, broadcast: bool = False) -> LocalEnvironment:
    """Open the target named by *endpoint*.

    ``local://<path>`` opens (or creates) a SQLite-backed target at *path*;
    ``memory://`` opens a throwaway in-memory target. Without *broadcast*
    the returned target is an in-memory copy, so nothing persists.

    Raises ``TargetUnavailableError`` for any other scheme.
    """
    if endpoint.startswith(_MEMORY_SCHEME):
        return LocalEnvironment(None)

    if endpoint.startswith(_LOCAL_SCHEME):
        path = Path(endpoint[len(_LOCAL_SCHEME):])
        if not str(path) or str(path) == ".":
            raise TargetUnavailableError(f"No database path in endpoint {endpoint!r}")
        if broadcast:
            logger.info("Broadcasting to %s", path)
            return LocalEnvironment(path)
        logger.info("Dry run against a copy of %s", path)
        return LocalEnvironment.snapshot_of(path)

    raise TargetUnavailableError(
        f"Unsupported target endpoint {endpoint!r}. "
        f"Use {_LOCAL_SCHEME}<path> or {_MEMORY_SCHEME}."
    )


__all__ = [
    "AccessDeniedError",
    "ComponentExistsError",
    "CreationReceipt",
    "LocalEnvironment",
    "Receipt",
    "RecordExistsError",
    "RecordNotFoundError",
    "TargetEnvironment",
    "TargetEnvironmentError",
    "TargetUnavailableError",
    "UnknownComponentError",
    "connect_environment",
]
