"""SQLite-backed local target — a content-addressed component arena.

Components live in a table keyed by their computed placement address.
Every state-changing method commits before it returns, so a receipt
always describes a durable change.

Proxy semantics: a proxy owns its state (storage pointer, roles, records
written through it) and delegates behavior to its implementation. An
upgrade only rewrites the ``implementation`` pointer, so the proxy's
address and accumulated state survive it.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from quikdeploy.core.address_predictor import (
    normalize_address,
    payload_hash,
    predict_address,
    role_id,
)
from quikdeploy.core.hasher import canonical_json_bytes
from quikdeploy.environment.base import (
    AccessDeniedError,
    ComponentExistsError,
    CreationReceipt,
    Receipt,
    RecordExistsError,
    RecordNotFoundError,
    UnknownComponentError,
)
from quikdeploy.models.components import ComponentKind, CreationPayload, Role

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_COMPONENTS = """
CREATE TABLE IF NOT EXISTS components (
    address       TEXT PRIMARY KEY,
    kind          TEXT NOT NULL,
    code          TEXT NOT NULL,
    code_hash     TEXT NOT NULL,
    creator       TEXT NOT NULL,
    salt          TEXT NOT NULL,
    payload_hash  TEXT NOT NULL,
    state_json    TEXT NOT NULL DEFAULT '{}'
);
"""

_CREATE_ROLES = """
CREATE TABLE IF NOT EXISTS roles (
    target   TEXT NOT NULL,
    role     TEXT NOT NULL,
    grantee  TEXT NOT NULL,
    PRIMARY KEY (target, role, grantee)
);
"""

_CREATE_RECORDS = """
CREATE TABLE IF NOT EXISTS records (
    storage    TEXT NOT NULL,
    key        TEXT NOT NULL,
    data_json  TEXT NOT NULL,
    PRIMARY KEY (storage, key)
);
"""

_CREATE_JOURNAL = """
CREATE TABLE IF NOT EXISTS journal (
    seq        INTEGER PRIMARY KEY AUTOINCREMENT,
    operation  TEXT NOT NULL,
    caller     TEXT NOT NULL,
    target     TEXT NOT NULL
);
"""

_CREATION_BASE_GAS = 32_000
_CREATION_BYTE_GAS = 200
_CALL_GAS = 21_000
_STORE_GAS = 20_000

_DEFAULT_ADMIN = role_id(Role.DEFAULT_ADMIN_ROLE).hex()
_ADMIN = role_id(Role.ADMIN_ROLE).hex()
_LOGIC = role_id(Role.LOGIC_ROLE).hex()
_UPGRADER = role_id(Role.UPGRADER_ROLE).hex()


class LocalEnvironment:
    """Local deployment target backed by a single SQLite database.

    Parameters
    ----------
    db_path:
        Database file. ``None`` keeps everything in memory (tests, dry runs).
    network:
        Name recorded in deployment records.
    """

    def __init__(self, db_path: Path | None = None, *, network: str | None = None) -> None:
        self._db_path = Path(db_path) if db_path is not None else None
        if self._db_path is not None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        else:
            self._conn = sqlite3.connect(":memory:", check_same_thread=False)
        self.network = network or ("local" if self._db_path else "memory")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._conn:
            self._conn.execute(_CREATE_COMPONENTS)
            self._conn.execute(_CREATE_ROLES)
            self._conn.execute(_CREATE_RECORDS)
            self._conn.execute(_CREATE_JOURNAL)

    @property
    def db_path(self) -> Path | None:
        return self._db_path

    @classmethod
    def snapshot_of(cls, db_path: Path, *, network: str = "local (dry-run)") -> LocalEnvironment:
        """In-memory copy of the target stored at *db_path*.

        The file is opened read-only. A missing file yields an empty target
        and nothing is created on disk.
        """
        copy = cls(None, network=network)
        path = Path(db_path)
        if path.exists():
            source = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
            try:
                source.backup(copy._conn)
            finally:
                source.close()
            copy._init_schema()
        return copy

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def code_at(self, address: str) -> str | None:
        row = self._conn.execute(
            "SELECT code_hash FROM components WHERE address = ?",
            (normalize_address(address),),
        ).fetchone()
        return row[0] if row else None

    def create(
        self, deployer: str, salt: bytes, payload: CreationPayload
    ) -> CreationReceipt:
        deployer = normalize_address(deployer)
        digest = payload_hash(payload)
        address = predict_address(deployer, salt, digest)
        if self.code_at(address) is not None:
            raise ComponentExistsError(f"Address {address} is already occupied")

        state, grants = self._initial_state(payload)
        gas = _CREATION_BASE_GAS + _CREATION_BYTE_GAS * len(
            canonical_json_bytes(payload.model_dump(mode="json"))
        )
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO components
                    (address, kind, code, code_hash, creator, salt, payload_hash, state_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    address,
                    payload.kind.value,
                    payload.code,
                    payload.code_hash,
                    deployer,
                    salt.hex(),
                    digest.hex(),
                    json.dumps(state, sort_keys=True),
                ),
            )
            for role, grantee in grants:
                self._conn.execute(
                    "INSERT OR IGNORE INTO roles (target, role, grantee) VALUES (?, ?, ?)",
                    (address, role, grantee),
                )
            seq = self._journal("create", deployer, address)

        logger.debug("created %s %s at %s", payload.kind.value, payload.code, address)
        return CreationReceipt(
            operation="create",
            target=address,
            address=address,
            code_hash=payload.code_hash,
            gas_used=gas,
            sequence=seq,
        )

    def _initial_state(
        self, payload: CreationPayload
    ) -> tuple[dict[str, Any], list[tuple[str, str]]]:
        """Constructor semantics per component kind."""
        args = payload.constructor_args
        kind = payload.kind

        if kind == ComponentKind.STORAGE:
            owner = normalize_address(args["owner"])
            return {"owner": owner, "logic_contract": None}, [(_DEFAULT_ADMIN, owner)]

        if kind == ComponentKind.PROXY_ADMIN:
            owner = normalize_address(args["owner"])
            return {"owner": owner}, [(_DEFAULT_ADMIN, owner), (_UPGRADER, owner)]

        if kind == ComponentKind.PROXY:
            implementation = normalize_address(args["implementation"])
            admin = normalize_address(args["admin"])
            if self.code_at(implementation) is None:
                raise UnknownComponentError(f"No implementation at {implementation}")
            if self._kind(admin) != ComponentKind.PROXY_ADMIN:
                raise UnknownComponentError(f"No proxy admin at {admin}")
            init = dict(args.get("init", {}))
            state = {**init, "implementation": implementation, "admin": admin}
            grants: list[tuple[str, str]] = []
            if init.get("owner"):
                owner = normalize_address(init["owner"])
                grants = [(_DEFAULT_ADMIN, owner), (_ADMIN, owner)]
            return state, grants

        # Logic and facade implementations: behavior only, no owned state.
        return {"code": payload.code, "code_hash": payload.code_hash}, []

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def set_logic_contract(self, caller: str, storage: str, logic: str) -> Receipt:
        caller, storage, logic = (normalize_address(a) for a in (caller, storage, logic))
        if self._kind(storage) != ComponentKind.STORAGE:
            raise UnknownComponentError(f"No storage component at {storage}")
        if self.code_at(logic) is None:
            raise UnknownComponentError(f"No logic component at {logic}")
        self._require_role(storage, _DEFAULT_ADMIN, caller)

        state = self._state(storage)
        previous = state.get("logic_contract")
        state["logic_contract"] = logic
        with self._conn:
            self._write_state(storage, state)
            if previous and previous != logic:
                self._conn.execute(
                    "DELETE FROM roles WHERE target = ? AND role = ? AND grantee = ?",
                    (storage, _LOGIC, previous),
                )
            self._conn.execute(
                "INSERT OR IGNORE INTO roles (target, role, grantee) VALUES (?, ?, ?)",
                (storage, _LOGIC, logic),
            )
            seq = self._journal("set_logic_contract", caller, storage)
        return Receipt(
            operation="set_logic_contract", target=storage, gas_used=_STORE_GAS, sequence=seq
        )

    def logic_contract(self, storage: str) -> str | None:
        return self._state(normalize_address(storage)).get("logic_contract")

    def grant_role(self, caller: str, target: str, role: bytes, grantee: str) -> Receipt:
        caller, target, grantee = (normalize_address(a) for a in (caller, target, grantee))
        if self.code_at(target) is None:
            raise UnknownComponentError(f"No component at {target}")
        self._require_role(target, _DEFAULT_ADMIN, caller)

        if self.has_role(target, role, grantee):
            return Receipt(operation="grant_role", target=target, gas_used=0)
        with self._conn:
            self._conn.execute(
                "INSERT INTO roles (target, role, grantee) VALUES (?, ?, ?)",
                (target, role.hex(), grantee),
            )
            seq = self._journal("grant_role", caller, target)
        return Receipt(operation="grant_role", target=target, gas_used=_STORE_GAS, sequence=seq)

    def has_role(self, target: str, role: bytes, identity: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM roles WHERE target = ? AND role = ? AND grantee = ?",
            (normalize_address(target), role.hex(), normalize_address(identity)),
        ).fetchone()
        return row is not None

    def read_var(self, address: str, name: str) -> Any:
        address = normalize_address(address)
        state = self._state(address)
        if name in state:
            return state[name]
        # Proxies delegate anything they do not own to the implementation.
        if self._kind(address) == ComponentKind.PROXY:
            return self._state(state["implementation"]).get(name)
        return None

    # ------------------------------------------------------------------
    # Proxy administration
    # ------------------------------------------------------------------

    def upgrade(self, caller: str, proxy_admin: str, proxy: str, implementation: str) -> Receipt:
        caller, proxy_admin, proxy, implementation = (
            normalize_address(a) for a in (caller, proxy_admin, proxy, implementation)
        )
        self._require_admin_of(proxy_admin, proxy)
        self._require_role(proxy_admin, _UPGRADER, caller)
        if self.code_at(implementation) is None:
            raise UnknownComponentError(f"No implementation at {implementation}")

        state = self._state(proxy)
        state["implementation"] = implementation
        with self._conn:
            self._write_state(proxy, state)
            seq = self._journal("upgrade", caller, proxy)
        return Receipt(operation="upgrade", target=proxy, gas_used=_CALL_GAS, sequence=seq)

    def implementation(self, proxy_admin: str, proxy: str) -> str | None:
        proxy_admin, proxy = normalize_address(proxy_admin), normalize_address(proxy)
        self._require_admin_of(proxy_admin, proxy)
        return self._state(proxy).get("implementation")

    def _require_admin_of(self, proxy_admin: str, proxy: str) -> None:
        if self._kind(proxy_admin) != ComponentKind.PROXY_ADMIN:
            raise UnknownComponentError(f"No proxy admin at {proxy_admin}")
        if self._kind(proxy) != ComponentKind.PROXY:
            raise UnknownComponentError(f"No proxy at {proxy}")
        if self._state(proxy).get("admin") != proxy_admin:
            raise AccessDeniedError(f"{proxy_admin} does not administer {proxy}")

    # ------------------------------------------------------------------
    # Storage collaborator
    # ------------------------------------------------------------------

    def register(self, caller: str, storage: str, key: str, data: dict[str, Any]) -> Receipt:
        storage = self._authorized_storage(caller, storage)
        if self._record(storage, key) is not None:
            raise RecordExistsError(f"{key!r} already registered in {storage}")
        with self._conn:
            self._conn.execute(
                "INSERT INTO records (storage, key, data_json) VALUES (?, ?, ?)",
                (storage, key, json.dumps(data, sort_keys=True)),
            )
            seq = self._journal("register", normalize_address(caller), storage)
        return Receipt(operation="register", target=storage, gas_used=_STORE_GAS, sequence=seq)

    def read(self, storage: str, key: str) -> dict[str, Any]:
        data = self._record(normalize_address(storage), key)
        if data is None:
            raise RecordNotFoundError(f"{key!r} not found in {storage}")
        return data

    def update(self, caller: str, storage: str, key: str, data: dict[str, Any]) -> Receipt:
        storage = self._authorized_storage(caller, storage)
        if self._record(storage, key) is None:
            raise RecordNotFoundError(f"{key!r} not found in {storage}")
        with self._conn:
            self._conn.execute(
                "UPDATE records SET data_json = ? WHERE storage = ? AND key = ?",
                (json.dumps(data, sort_keys=True), storage, key),
            )
            seq = self._journal("update", normalize_address(caller), storage)
        return Receipt(operation="update", target=storage, gas_used=_STORE_GAS, sequence=seq)

    def _authorized_storage(self, caller: str, storage: str) -> str:
        storage = normalize_address(storage)
        if self._kind(storage) != ComponentKind.STORAGE:
            raise UnknownComponentError(f"No storage component at {storage}")
        if self._state(storage).get("logic_contract") != normalize_address(caller):
            raise AccessDeniedError(f"{caller} is not the logic caller of {storage}")
        return storage

    def _record(self, storage: str, key: str) -> dict[str, Any] | None:
        row = self._conn.execute(
            "SELECT data_json FROM records WHERE storage = ? AND key = ?",
            (storage, key),
        ).fetchone()
        return json.loads(row[0]) if row else None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _kind(self, address: str) -> ComponentKind | None:
        row = self._conn.execute(
            "SELECT kind FROM components WHERE address = ?", (address,)
        ).fetchone()
        return ComponentKind(row[0]) if row else None

    def _state(self, address: str) -> dict[str, Any]:
        row = self._conn.execute(
            "SELECT state_json FROM components WHERE address = ?", (address,)
        ).fetchone()
        if row is None:
            raise UnknownComponentError(f"No component at {address}")
        return json.loads(row[0])

    def _write_state(self, address: str, state: dict[str, Any]) -> None:
        self._conn.execute(
            "UPDATE components SET state_json = ? WHERE address = ?",
            (json.dumps(state, sort_keys=True), address),
        )

    def _require_role(self, target: str, role_hex: str, caller: str) -> None:
        row = self._conn.execute(
            "SELECT 1 FROM roles WHERE target = ? AND role = ? AND grantee = ?",
            (target, role_hex, caller),
        ).fetchone()
        if row is None:
            raise AccessDeniedError(f"{caller} lacks role {role_hex[:12]} on {target}")

    def _journal(self, operation: str, caller: str, target: str) -> int:
        cur = self._conn.execute(
            "INSERT INTO journal (operation, caller, target) VALUES (?, ?, ?)",
            (operation, caller, target),
        )
        return int(cur.lastrowid)

