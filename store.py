"""
store.py
────────
Persists SnapshotRecords as one JSON document per snapshot.

    <directory>/<snapshot id>.json

Snapshot ids are random hex strings; anything else is rejected before the
filesystem is touched. Writes go through a temporary file and an atomic
rename, and each document carries a checksum that is verified on read.
"""

from __future__ import annotations
import hashlib
import json
import logging
import os
import re
import tempfile
from pathlib import Path

from errors import NotFound, SnapshotCorrupt
from models import SnapshotRecord

logger = logging.getLogger(__name__)

_ID_RE = re.compile(r"^[0-9a-f]{8,64}$")


def checksum(data: dict) -> str:
    raw = json.dumps(data, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def is_valid_id(snapshot_id: str) -> bool:
    return bool(_ID_RE.match(snapshot_id or ""))


class SnapshotStore:
    def __init__(self, directory: str | os.PathLike = "./backups"):
        self.directory = Path(directory)

    def _path(self, snapshot_id: str) -> Path:
        return self.directory / f"{snapshot_id}.json"

    def exists(self, snapshot_id: str) -> bool:
        return is_valid_id(snapshot_id) and self._path(snapshot_id).is_file()

    def put(self, snapshot: SnapshotRecord) -> str:
        if not is_valid_id(snapshot.id):
            raise ValueError(f"invalid snapshot id {snapshot.id!r}")
        data = snapshot.to_dict()
        document = {"checksum": checksum(data), "snapshot": data}

        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(snapshot.id)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".tmp_", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
        logger.info("Stored snapshot %s (%s)", snapshot.id, document["checksum"])
        return snapshot.id

    def get(self, snapshot_id: str) -> SnapshotRecord:
        if not self.exists(snapshot_id):
            raise NotFound(f"Backup ID `{snapshot_id}` not found.")
        try:
            with open(self._path(snapshot_id), encoding="utf-8") as f:
                document = json.load(f)
            data = document["snapshot"]
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise SnapshotCorrupt(f"snapshot {snapshot_id} is unreadable: {e}") from e

        if document.get("checksum") != checksum(data):
            raise SnapshotCorrupt(f"snapshot {snapshot_id} failed its checksum")
        try:
            return SnapshotRecord.from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            raise SnapshotCorrupt(f"snapshot {snapshot_id} is malformed: {e}") from e

    def list_ids(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json") if is_valid_id(p.stem))

    def delete(self, snapshot_id: str) -> None:
        if not self.exists(snapshot_id):
            raise NotFound(f"Backup ID `{snapshot_id}` not found.")
        self._path(snapshot_id).unlink()
