"""Content-addressed deployer — create once, reuse forever.

Mirrors the artifact store's put/get contract: an identical
``(salt, payload)`` always resolves to the same address, and creation is
skipped when something already lives there.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict

from quikdeploy.core.address_predictor import normalize_address, payload_hash, predict_address
from quikdeploy.core.errors import CreationMismatchError
from quikdeploy.environment.base import TargetEnvironment
from quikdeploy.models.components import CreationPayload

logger = logging.getLogger(__name__)


class DeployResult(BaseModel):
    """Where a component lives and whether this call created it."""

    model_config = ConfigDict(frozen=True)

    address: str
    created: bool
    gas_used: int = 0


class ContentAddressedDeployer:
    """Idempotent component creation at predicted addresses.

    Parameters
    ----------
    environment:
        The deployment target.
    deployer:
        Identity that owns every creation; part of every placement.
    """

    def __init__(self, environment: TargetEnvironment, deployer: str) -> None:
        self._env = environment
        self._deployer = normalize_address(deployer)

    @property
    def deployer(self) -> str:
        return self._deployer

    @property
    def environment(self) -> TargetEnvironment:
        return self._env

    def predict(self, salt: bytes, payload: CreationPayload) -> str:
        """Return the address *payload* will occupy under *salt*."""
        return predict_address(self._deployer, salt, payload_hash(payload))

    def deploy(self, salt: bytes, payload: CreationPayload, *, name: str = "") -> DeployResult:
        """Create *payload* at its predicted address unless it already exists.

        Raises ``CreationMismatchError`` if the target reports any other
        address; that error aborts the whole run.
        """
        predicted = self.predict(salt, payload)
        label = name or payload.code

        if self._env.code_at(predicted) is not None:
            logger.info("%s already exists at %s; reusing", label, predicted)
            return DeployResult(address=predicted, created=False)

        receipt = self._env.create(self._deployer, salt, payload)
        actual = normalize_address(receipt.address)
        if actual != predicted:
            logger.error(
                "%s created at %s but predicted %s", label, actual, predicted
            )
            raise CreationMismatchError(predicted, actual, name=label)

        logger.info("%s created at %s (gas %d)", label, actual, receipt.gas_used)
        return DeployResult(address=actual, created=True, gas_used=receipt.gas_used)
