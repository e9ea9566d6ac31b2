"""
Server Registry
===============

Registry of backend job servers and the resolver the relay depends on.

The streaming core only ever calls `resolve()`; it never touches storage.
Everything else here (add, delete, import, export, reset) backs the
registry HTTP surface in api/servers.py.

Storage:
    In memory, optionally mirrored to a JSON file loaded once at startup.
    A mutation is applied to a copy of the record map, written to disk
    atomically (temp file + rename), and only then swapped in. A failed
    write leaves the file and the in-memory registry unchanged.

Consistency:
    All reads and writes go through one lock, so resolve() always sees
    the latest committed state (read-your-writes). URL uniqueness, when
    enforced, is checked under the same lock.
"""

import json
import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

from pydantic import ValidationError

from jpid_gateway.errors import (
    DuplicateServerError,
    InvalidServerError,
    UnknownServerError,
)
from jpid_gateway.models.registry import (
    ImportResults,
    ImportSummary,
    ServerCreate,
    ServerRecord,
)


logger = logging.getLogger(__name__)


class RegistryResolver(Protocol):
    """Read path consumed by the command router and relay."""

    def resolve(self, server_id: str) -> ServerRecord:
        """
        Look up a server.

        Raises:
            UnknownServerError: If no record has this id.
        """
        ...


def generate_id() -> str:
    return uuid.uuid4().hex


class ServerRegistry:
    """
    Lock-guarded registry of ServerRecords.

    Attributes:
        path: JSON persistence file, or None for memory only
        enforce_unique_urls: Reject records whose URL is already present

    Example:
        registry = ServerRegistry(path="data/servers.json")
        registry.load()
        record = registry.add(ServerCreate(url="http://10.0.0.5:8000", description="ci"))
        registry.resolve(record.id).url
    """

    def __init__(
        self,
        path: Optional[str] = None,
        enforce_unique_urls: bool = True,
    ) -> None:
        self.path: Optional[Path] = Path(path) if path else None
        self.enforce_unique_urls = enforce_unique_urls
        self._records: Dict[str, ServerRecord] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._records)

    # -------------------------------------------------------------------------
    # Read path
    # -------------------------------------------------------------------------

    def resolve(self, server_id: str) -> ServerRecord:
        with self._lock:
            record = self._records.get(server_id)
        if record is None:
            raise UnknownServerError(server_id)
        return record

    def get(self, server_id: str) -> Optional[ServerRecord]:
        with self._lock:
            return self._records.get(server_id)

    def list(self) -> List[ServerRecord]:
        """All records, newest first."""
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def export(self) -> List[Dict[str, Any]]:
        return [record.model_dump() for record in self.list()]

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def add(self, payload: ServerCreate, server_id: Optional[str] = None) -> ServerRecord:
        """
        Register a server.

        Args:
            payload: URL and description
            server_id: Explicit id (config seeds); generated when None

        Raises:
            DuplicateServerError: If the id exists, or the URL does and
                uniqueness is enforced.
        """
        record = ServerRecord(
            id=server_id or generate_id(),
            url=payload.url,
            description=payload.description,
        )
        with self._lock:
            records = dict(self._records)
            self._insert(records, record)
            self._commit(records)
        logger.info(f"Registered server {record.id} ({record.url})")
        return record

    def delete(self, server_id: str) -> ServerRecord:
        with self._lock:
            records = dict(self._records)
            record = records.pop(server_id, None)
            if record is None:
                raise UnknownServerError(server_id)
            self._commit(records)
        logger.info(f"Unregistered server {server_id}")
        return record

    def import_records(self, items: Iterable[Any]) -> ImportSummary:
        """
        Bulk-register servers from an exported list.

        Every imported record gets a fresh id. Entries that are not
        objects, fail validation, or collide with the uniqueness policy
        are counted as failed; the rest are kept.
        """
        results = ImportResults()
        imported: List[ServerRecord] = []

        with self._lock:
            records = dict(self._records)
            for item in items:
                results.total += 1
                try:
                    if not isinstance(item, dict):
                        raise InvalidServerError("import entry is not an object")
                    payload = ServerCreate(
                        url=item.get("url") or "",
                        description=item.get("description") or "",
                    )
                    record = ServerRecord(
                        id=generate_id(),
                        url=payload.url,
                        description=payload.description,
                    )
                    self._insert(records, record)
                except (ValidationError, InvalidServerError, DuplicateServerError) as e:
                    results.failed += 1
                    logger.warning(f"Skipping import entry #{results.total}: {e}")
                    continue
                imported.append(record)
                results.imported += 1
            self._commit(records)

        logger.info(f"Imported {results.imported}/{results.total} servers")
        return ImportSummary(
            message=f"Imported {results.imported} servers, {results.failed} failed",
            results=results,
            servers=imported,
        )

    def seed(self, servers: Iterable[Any]) -> int:
        """
        Register config-declared servers, skipping ids already present.

        Returns:
            Number of servers added.
        """
        added = 0
        for server in servers:
            if server.id and self.get(server.id) is not None:
                continue
            try:
                self.add(
                    ServerCreate(url=server.url, description=server.description or server.url),
                    server_id=server.id,
                )
            except (ValidationError, DuplicateServerError) as e:
                logger.warning(f"Ignoring seed server {server.url}: {e}")
                continue
            added += 1
        return added

    def reset(self) -> int:
        """
        Remove every record.

        Returns:
            Number of records removed.
        """
        with self._lock:
            removed = len(self._records)
            self._commit({})
        logger.info(f"Registry reset, {removed} servers removed")
        return removed

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def load(self) -> int:
        """
        Load records from the persistence file, if configured and present.

        Returns:
            Number of records loaded.
        """
        if self.path is None or not self.path.exists():
            return 0

        with open(self.path, "r", encoding="utf-8") as f:
            raw = json.load(f)

        loaded = 0
        with self._lock:
            for item in raw if isinstance(raw, list) else []:
                try:
                    record = ServerRecord.model_validate(item)
                except ValidationError as e:
                    logger.warning(f"Ignoring invalid registry entry in {self.path}: {e}")
                    continue
                self._records[record.id] = record
                loaded += 1

        logger.info(f"Loaded {loaded} servers from {self.path}")
        return loaded

    def _insert(self, records: Dict[str, ServerRecord], record: ServerRecord) -> None:
        if record.id in records:
            raise DuplicateServerError(f'Server with id "{record.id}" already exists.')
        if self.enforce_unique_urls and any(
            existing.url == record.url for existing in records.values()
        ):
            raise DuplicateServerError(f'Server with url "{record.url}" already exists.')
        records[record.id] = record

    def _commit(self, records: Dict[str, ServerRecord]) -> None:
        # Caller holds the lock
        self._save(records)
        self._records = records

    def _save(self, records: Dict[str, ServerRecord]) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(
                [record.model_dump() for record in records.values()],
                f,
                indent=2,
                ensure_ascii=False,
            )
        os.replace(tmp, self.path)
