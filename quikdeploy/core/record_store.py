"""Deployment record persistence under ``deployments/``.

Layout::

    deployments/
        latest.json       most recent DeploymentRecord (checkpointed per stage)
        addresses.json    bounded history of finalized DeploymentRecords
        upgrades.json     history of UpgradeBatch entries
        logs/error-<ts>.log

Files are written to a temporary sibling and renamed into place, so a
crash mid-write never leaves a truncated record behind.
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from quikdeploy.models.components import ComponentDescriptor
from quikdeploy.models.records import DeploymentRecord, UpgradeBatch

logger = logging.getLogger(__name__)

LATEST_FILE = "latest.json"
HISTORY_FILE = "addresses.json"
UPGRADES_FILE = "upgrades.json"
LOGS_DIR = "logs"


class RecordStoreError(RuntimeError):
    """Raised when a persisted record cannot be read back."""


class DeploymentRecordStore:
    """Reads and writes deployment records.

    Parameters
    ----------
    deployments_dir:
        Root directory for every persisted file.
    history_limit:
        Number of finalized records kept in ``addresses.json``.
    """

    def __init__(self, deployments_dir: Path, history_limit: int = 10) -> None:
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1")
        self._root = Path(deployments_dir)
        self._history_limit = history_limit

    @property
    def root(self) -> Path:
        return self._root

    @property
    def latest_path(self) -> Path:
        return self._root / LATEST_FILE

    @property
    def history_path(self) -> Path:
        return self._root / HISTORY_FILE

    @property
    def upgrades_path(self) -> Path:
        return self._root / UPGRADES_FILE

    @property
    def logs_dir(self) -> Path:
        return self._root / LOGS_DIR

    # ------------------------------------------------------------------
    # Deployment records
    # ------------------------------------------------------------------

    def checkpoint(self, record: DeploymentRecord) -> Path:
        """Overwrite ``latest.json`` with *record*."""
        self._write_json(self.latest_path, _dump(record))
        logger.debug("checkpointed %s at %s", record.run_id, record.current_stage.value)
        return self.latest_path

    def finalize(self, record: DeploymentRecord) -> None:
        """Persist the final record of a run to history and ``latest.json``.

        A run that was finalized before (e.g. a re-run after resume) replaces
        its earlier history entry rather than adding a second one.
        """
        history = [
            entry for entry in self._read_list(self.history_path)
            if entry.get("runId") != record.run_id
        ]
        history.append(_dump(record))
        history = history[-self._history_limit:]
        self._write_json(self.history_path, history)
        self.checkpoint(record)
        logger.info(
            "Deployment %s saved (%s, %d in history)",
            record.run_id,
            record.status.value,
            len(history),
        )

    def latest(self) -> DeploymentRecord | None:
        """Return the most recent record, or ``None`` if nothing was deployed."""
        if not self.latest_path.exists():
            return None
        try:
            data = json.loads(self.latest_path.read_text(encoding="utf-8"))
            return DeploymentRecord.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as exc:
            raise RecordStoreError(f"Unreadable {self.latest_path}: {exc}") from exc

    def history(self) -> list[DeploymentRecord]:
        """Return the bounded history, oldest first."""
        return [DeploymentRecord.model_validate(e) for e in self._read_list(self.history_path)]

    # ------------------------------------------------------------------
    # Upgrades
    # ------------------------------------------------------------------

    def append_upgrade(
        self,
        batch: UpgradeBatch,
        replaced: list[ComponentDescriptor] | None = None,
    ) -> None:
        """Record an upgrade batch and fold confirmed repoints into ``latest.json``.

        *replaced* carries the new implementation descriptors, so a later
        resume sees the upgraded implementations as already created.
        """
        upgrades = self._read_list(self.upgrades_path)
        upgrades.append(_dump(batch))
        self._write_json(self.upgrades_path, upgrades)

        latest = self.latest()
        new_impls = batch.new_implementations
        if latest is None or not new_impls:
            return

        by_key = {d.key: d for d in latest.components}
        for descriptor in replaced or []:
            if descriptor.name in new_impls:
                by_key[descriptor.key] = descriptor
        updated = latest.model_copy(
            update={
                "implementations": {**latest.implementations, **new_impls},
                "components": sorted(by_key.values(), key=lambda d: d.key),
            }
        )
        self.checkpoint(updated)
        logger.info("latest.json implementations updated: %s", sorted(new_impls))

    def upgrades(self) -> list[UpgradeBatch]:
        return [UpgradeBatch.model_validate(e) for e in self._read_list(self.upgrades_path)]

    # ------------------------------------------------------------------
    # Error logs
    # ------------------------------------------------------------------

    def log_error(self, context: str, exc: BaseException) -> Path:
        """Write one error log file for a fatal failure and return its path."""
        ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        path = self.logs_dir / f"error-{ts}.log"
        path.parent.mkdir(parents=True, exist_ok=True)
        body = [
            f"timestamp: {datetime.now(timezone.utc).isoformat()}",
            f"context: {context}",
            f"error: {type(exc).__name__}: {exc}",
            "",
            "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        ]
        path.write_text("\n".join(body), encoding="utf-8")
        logger.error("Error details written to %s", path)
        return path

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_list(self, path: Path) -> list[dict[str, Any]]:
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("%s is not valid JSON; starting a new history", path)
            return []
        if not isinstance(data, list):
            logger.warning("%s does not hold a list; starting a new history", path)
            return []
        return data

    def _write_json(self, path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        tmp.replace(path)


def _dump(model: DeploymentRecord | UpgradeBatch) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)
