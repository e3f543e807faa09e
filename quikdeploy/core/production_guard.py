"""Production configuration guard — enforces hard constraints in production.

The guard validates production-critical settings before a deployment or
upgrade starts. It runs once and fails hard (raises
``ProductionConfigError``) if any constraint is violated, so other code
does not need scattered ``if is_production`` checks.
"""

from __future__ import annotations

import logging

from quikdeploy.config import ProdConfig

logger = logging.getLogger(__name__)

# Endpoint schemes that only ever reach a throwaway or developer-local target.
NON_PRODUCTION_SCHEMES: tuple[str, ...] = ("memory://",)


class ProductionConfigError(RuntimeError):
    """Raised when production configuration constraints are violated.

    The process should exit; this must not be caught and ignored.
    """


def enforce_production_constraints(config: ProdConfig) -> None:
    """Validate all production-critical configuration constraints.

    Constraints enforced
    --------------------
    1. Debug mode must be disabled.
    2. A deployer credential must be configured.
    3. The target endpoint must not be a throwaway in-memory target.

    Raises
    ------
    ProductionConfigError
        If any production constraint is violated.
    """
    if not config.is_production:
        return

    violations: list[str] = []

    if config.debug:
        violations.append(
            "debug=True is not allowed in production. Set QUIKDEPLOY_DEBUG=false."
        )

    if not config.deployer_key:
        violations.append(
            "No deployer credential configured. Set QUIKDEPLOY_DEPLOYER_KEY or PRIVATE_KEY."
        )

    if config.rpc_url.startswith(NON_PRODUCTION_SCHEMES):
        violations.append(
            f"Target endpoint {config.rpc_url!r} is not persistent. "
            f"Set QUIKDEPLOY_RPC_URL or RPC_URL."
        )

    if violations:
        msg = "Production configuration guard failed.\n" + "\n".join(
            f"  - {v}" for v in violations
        )
        logger.critical(msg)
        raise ProductionConfigError(msg)

    logger.info("Production configuration guard passed.")
