"""
JSON file snapshot backend.

One document per feed type:
    {"matches": [...], "lastUpdated": ..., "collectionInterval": ...,
     "selectedSport": ..., "totalMatches": ..., "totalLeagues": ...}

Saves are read-merge-write keyed by match id: existing entries are replaced,
new ones appended, entries absent from the current snapshot are kept. The
file is replaced atomically so readers never see a partial document.
"""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Any

import orjson
import structlog

from src.models.errors import StorageFailure
from src.models.schemas import Match, Snapshot, SnapshotMetadata

logger = structlog.get_logger()


class JsonFileStore:
    """File backend. Blocking I/O runs in a worker thread."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.logger = logger.bind(component="file_store", path=str(self.path))

    async def save(self, matches: list[Match], metadata: SnapshotMetadata) -> int:
        """Merge matches into the document. Returns the resulting total match count."""
        try:
            return await asyncio.to_thread(self._save, matches, metadata)
        except OSError as e:
            raise StorageFailure(f"Cannot write {self.path}: {e}") from e

    async def load(self) -> Snapshot:
        try:
            document = await asyncio.to_thread(self._read)
        except OSError as e:
            raise StorageFailure(f"Cannot read {self.path}: {e}") from e
        except orjson.JSONDecodeError as e:
            raise StorageFailure(f"Corrupt snapshot file {self.path}: {e}") from e

        matches = []
        for entry in document.get("matches") or []:
            try:
                matches.append(Match.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning("Skipping unreadable stored match", error=str(e))
        metadata = SnapshotMetadata.from_dict(document) if "lastUpdated" in document else None
        return Snapshot(matches=matches, metadata=metadata)

    async def clear(self) -> None:
        try:
            await asyncio.to_thread(self.path.unlink, missing_ok=True)
        except OSError as e:
            raise StorageFailure(f"Cannot delete {self.path}: {e}") from e

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        document = orjson.loads(self.path.read_bytes())
        return document if isinstance(document, dict) else {}

    def _save(self, matches: list[Match], metadata: SnapshotMetadata) -> int:
        try:
            document = self._read()
        except orjson.JSONDecodeError as e:
            self.logger.warning("Existing snapshot unreadable, starting fresh", error=str(e))
            document = {}

        merged: dict[Any, dict] = {}
        for entry in document.get("matches") or []:
            if isinstance(entry, dict) and "id" in entry:
                merged[entry["id"]] = entry
        for match in matches:
            merged[match.id] = match.to_dict()

        metadata.total_matches = len(merged)
        document = {"matches": list(merged.values()), **metadata.to_dict()}
        self._write_atomic(orjson.dumps(document, option=orjson.OPT_INDENT_2))
        return len(merged)

    def _write_atomic(self, payload: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
