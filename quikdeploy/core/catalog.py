"""Component catalog — code hashes, salts and creation payloads.

Everything that feeds a placement lives here, so the executors and the
upgrade controller derive identical addresses from identical inputs.

Code hashes come from compiled artifacts when an artifacts directory is
configured (``<artifacts>/<Code>.sol/<Code>.json``, the Foundry layout);
otherwise a stable digest of ``<Code>@<version>`` stands in.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from quikdeploy.core.address_predictor import (
    derive_salt,
    normalize_address,
    payload_hash,
    predict_address,
)
from quikdeploy.core.hasher import canonical_json_bytes, sha256_hex
from quikdeploy.models.components import (
    ComponentCategory,
    ComponentKind,
    CreationPayload,
    descriptor_key,
)
from quikdeploy.models.config import ComponentSpec, FacadeSpec, Topology

logger = logging.getLogger(__name__)

# Every proxy runs the same forwarding code; only its constructor args differ.
PROXY_SPEC = ComponentSpec(name="proxy", code="TransparentUpgradeableProxy")


class ArtifactNotFoundError(RuntimeError):
    """Raised when a configured artifacts directory lacks a component's artifact."""


class ArtifactCatalog:
    """Resolves component code to a content hash.

    Parameters
    ----------
    artifacts_path:
        Root of compiled artifacts. ``None`` uses name@version digests.
    """

    def __init__(self, artifacts_path: Path | None = None) -> None:
        self._root = Path(artifacts_path) if artifacts_path is not None else None
        self._cache: dict[str, str] = {}

    def artifact_path(self, code: str) -> Path | None:
        if self._root is None:
            return None
        return self._root / f"{code}.sol" / f"{code}.json"

    def code_hash(self, spec: ComponentSpec) -> str:
        """Return the content hash of *spec*'s code."""
        cache_key = f"{spec.code}@{spec.code_version}"
        if cache_key in self._cache:
            return self._cache[cache_key]

        path = self.artifact_path(spec.code)
        if path is None:
            digest = sha256_hex(cache_key.encode("utf-8"))
        else:
            if not path.exists():
                raise ArtifactNotFoundError(
                    f"Artifact for {spec.code} not found at {path}"
                )
            artifact = json.loads(path.read_text(encoding="utf-8"))
            bytecode = artifact.get("bytecode")
            if bytecode:
                digest = sha256_hex(str(bytecode).encode("utf-8"))
            else:
                digest = sha256_hex(canonical_json_bytes(artifact))
            logger.debug("code hash for %s from %s", spec.code, path)

        self._cache[cache_key] = digest
        return digest

    def payload(
        self,
        spec: ComponentSpec,
        kind: ComponentKind,
        constructor_args: dict[str, Any] | None = None,
    ) -> CreationPayload:
        """Build the immutable creation payload for *spec*."""
        return CreationPayload(
            code=spec.code,
            code_hash=self.code_hash(spec),
            kind=kind,
            constructor_args=constructor_args or {},
        )


# ---------------------------------------------------------------------------
# Salts
# ---------------------------------------------------------------------------


def storage_salt(name: str, deployer: str) -> bytes:
    return derive_salt(f"{name}.storage", deployer=deployer)


def implementation_salt(name: str, deployer: str, version: str) -> bytes:
    """Versioned salt; each upgrade version lands at a fresh address."""
    return derive_salt(f"{name}.implementation", deployer=deployer, version=version)


def proxy_admin_salt(name: str, deployer: str) -> bytes:
    return derive_salt(f"{name}.admin", deployer=deployer)


def proxy_salt(name: str, deployer: str) -> bytes:
    """Unversioned salt of the proxy fronting *name*."""
    return derive_salt(f"{name}.proxy", deployer=deployer)


# ---------------------------------------------------------------------------
# Constructor arguments
# ---------------------------------------------------------------------------


def proxy_constructor_args(
    implementation: str, proxy_admin: str, init: dict[str, Any]
) -> dict[str, Any]:
    return {"implementation": implementation, "admin": proxy_admin, "init": init}


def logic_init(storage: str, owner: str) -> dict[str, Any]:
    return {"storage": storage, "owner": owner}


def facade_init(logic_proxies: dict[str, str], owner: str) -> dict[str, Any]:
    return {**logic_proxies, "owner": owner}


# ---------------------------------------------------------------------------
# Offline layout
# ---------------------------------------------------------------------------


def predict_layout(
    catalog: ArtifactCatalog, topology: Topology, deployer: str, version: str
) -> dict[str, str]:
    """Every address a full deployment by *deployer* would occupy.

    Nothing is created or queried. Keys are ``<category>:<name>``. Later
    placements depend on earlier ones (proxies embed implementation and
    storage addresses), so they are predicted in stage order.
    """
    owner = normalize_address(deployer)
    layout: dict[str, str] = {}

    def place(category: ComponentCategory, name: str, salt: bytes, payload: CreationPayload) -> str:
        address = predict_address(owner, salt, payload_hash(payload))
        layout[descriptor_key(category, name)] = address
        return address

    storage = {
        spec.name: place(
            ComponentCategory.STORAGE,
            spec.name,
            storage_salt(spec.name, owner),
            catalog.payload(spec, ComponentKind.STORAGE, {"owner": owner}),
        )
        for spec in topology.storage
    }
    impls = {
        spec.name: place(
            ComponentCategory.IMPLEMENTATIONS,
            spec.name,
            implementation_salt(spec.name, owner, version),
            catalog.payload(
                spec,
                ComponentKind.FACADE if isinstance(spec, FacadeSpec) else ComponentKind.LOGIC,
            ),
        )
        for spec in topology.proxied
    }
    admin_spec = topology.proxy_admin
    admin = place(
        ComponentCategory.PROXIES,
        admin_spec.name,
        proxy_admin_salt(admin_spec.name, owner),
        catalog.payload(admin_spec, ComponentKind.PROXY_ADMIN, {"owner": owner}),
    )

    proxies: dict[str, str] = {}
    for lg in topology.logic:
        args = proxy_constructor_args(impls[lg.name], admin, logic_init(storage[lg.storage], owner))
        proxies[lg.name] = place(
            ComponentCategory.PROXIES,
            lg.name,
            proxy_salt(lg.name, owner),
            catalog.payload(PROXY_SPEC, ComponentKind.PROXY, args),
        )
    facade = topology.facade
    args = proxy_constructor_args(
        impls[facade.name], admin, facade_init({n: proxies[n] for n in facade.logic}, owner)
    )
    place(
        ComponentCategory.PROXIES,
        facade.name,
        proxy_salt(facade.name, owner),
        catalog.payload(PROXY_SPEC, ComponentKind.PROXY, args),
    )
    return layout
