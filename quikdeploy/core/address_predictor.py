"""Deterministic placement: salts, payload hashes and predicted addresses.

Every function here is pure. The placement construction mirrors CREATE2::

    address = sha256(0xff || deployer || salt || payload_hash)[12:]

so a component's address is known before it exists, and dependents can be
built against it.
"""

from __future__ import annotations

import re

from quikdeploy.core.hasher import canonical_json_bytes, sha256_bytes
from quikdeploy.models.components import ZERO_ADDRESS, CreationPayload, Role

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_PLACEMENT_PREFIX = b"\xff"


def is_address(value: str | None) -> bool:
    """True if *value* is a well-formed ``0x`` + 40 hex identifier."""
    return bool(value) and bool(_ADDRESS_RE.match(value))


def is_zero_address(value: str | None) -> bool:
    """True for a missing, empty, or all-zero identifier."""
    return not value or normalize_address(value) == ZERO_ADDRESS


def normalize_address(value: str) -> str:
    """Lower-case an identifier after validating its shape."""
    if not is_address(value):
        raise ValueError(f"Malformed address: {value!r}")
    return value.lower()


def address_bytes(value: str) -> bytes:
    return bytes.fromhex(normalize_address(value)[2:])


def derive_salt(
    name: str,
    *,
    deployer: str | None = None,
    version: str | None = None,
) -> bytes:
    """Derive a 32-byte placement salt from a component name and context.

    A distinct *version* tag gives a distinct salt, so an upgraded
    implementation never collides with the initial one.
    """
    context = {
        "name": name,
        "deployer": normalize_address(deployer) if deployer else None,
        "version": version,
    }
    return sha256_bytes(canonical_json_bytes(context))


def payload_hash(payload: CreationPayload) -> bytes:
    """Hash of the immutable creation payload (code + constructor args)."""
    return sha256_bytes(canonical_json_bytes(payload.model_dump(mode="json")))


def predict_address(deployer: str, salt: bytes, payload_digest: bytes) -> str:
    """Compute the placement identifier for ``(deployer, salt, payload)``."""
    if len(salt) != 32 or len(payload_digest) != 32:
        raise ValueError("salt and payload hash must be 32 bytes")
    digest = sha256_bytes(
        _PLACEMENT_PREFIX + address_bytes(deployer) + salt + payload_digest
    )
    return "0x" + digest[12:].hex()


def role_id(role: Role | str) -> bytes:
    """Identifier for a capability role. DEFAULT_ADMIN_ROLE is all zeros."""
    name = role.value if isinstance(role, Role) else role
    if name == Role.DEFAULT_ADMIN_ROLE.value:
        return bytes(32)
    return sha256_bytes(name.encode("utf-8"))


def derive_identity(credential: str) -> str:
    """Derive a stable deployer identity from a signing credential."""
    if not credential:
        raise ValueError("credential must not be empty")
    return "0x" + sha256_bytes(credential.encode("utf-8"))[12:].hex()
