"""Deployment stage executors — registry mapping StageId to executor class.

Usage::

    from quikdeploy.stages import get_executor_class

    cls = get_executor_class(StageId.WIRE_STORAGE)
    outcome = cls(state, deployer, catalog, config).run_stage(StageId.WIRE_STORAGE)
"""

from __future__ import annotations

from quikdeploy.models.stages import StageId
from quikdeploy.stages.base import BaseExecutor, StageExecutionError
from quikdeploy.stages.configuration import ConfigurationExecutor
from quikdeploy.stages.logic import LogicExecutor
from quikdeploy.stages.proxy_front import ProxyFrontExecutor
from quikdeploy.stages.storage import StorageExecutor
from quikdeploy.stages.verification import VerificationExecutor

# ---------------------------------------------------------------------------
# Executor registry: StageId -> executor class
# ---------------------------------------------------------------------------

EXECUTOR_REGISTRY: dict[StageId, type[BaseExecutor]] = {
    stage: cls
    for cls in (
        StorageExecutor,
        LogicExecutor,
        ProxyFrontExecutor,
        ConfigurationExecutor,
        VerificationExecutor,
    )
    for stage in cls.stage_ids
}


def get_executor_class(stage: StageId) -> type[BaseExecutor]:
    """Return the executor class for *stage*.

    Raises ``KeyError`` if no executor serves the stage.
    """
    try:
        return EXECUTOR_REGISTRY[stage]
    except KeyError:
        raise KeyError(
            f"No executor for {stage!r}. "
            f"Registered stages: {sorted(s.value for s in EXECUTOR_REGISTRY)}"
        ) from None


__all__ = [
    "BaseExecutor",
    "StageExecutionError",
    "EXECUTOR_REGISTRY",
    "get_executor_class",
    "ConfigurationExecutor",
    "LogicExecutor",
    "ProxyFrontExecutor",
    "StorageExecutor",
    "VerificationExecutor",
]
