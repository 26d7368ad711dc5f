from __future__ import annotations

import copy
import json
import logging
import threading
from collections import defaultdict
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .errors import RemoteServiceError

logger = logging.getLogger(__name__)

Document = Dict[str, Any]


class MemoryStore:
    """
    Keyed documents grouped in collections, kept in insertion order.

    Writes to one collection are serialized by that collection's lock, which also
    makes `update` a non-interleaving read-modify-write per id. Reads return deep
    copies, so callers always hold a point-in-time snapshot.
    """

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Document]] = defaultdict(dict)
        self._locks: Dict[str, threading.RLock] = defaultdict(threading.RLock)
        self._guard = threading.Lock()

    def _lock(self, collection: str) -> threading.RLock:
        with self._guard:
            return self._locks[collection]

    def _persist(self, collection: str) -> None:
        """Hook for file-backed stores; called with the collection lock held."""

    def _commit(self, collection: str, doc_id: str, doc: Document) -> None:
        """Write one document and persist; on a persistence failure the previous state is restored."""
        coll = self._data[collection]
        previous = coll.get(doc_id)
        coll[doc_id] = copy.deepcopy(doc)
        try:
            self._persist(collection)
        except OSError as e:
            if previous is None:
                coll.pop(doc_id, None)
            else:
                coll[doc_id] = previous
            logger.error(f"Failed to persist {collection}/{doc_id}: {e}")
            raise RemoteServiceError(f"Could not save {collection} record; nothing was changed.")

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        with self._lock(collection):
            doc = self._data[collection].get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def insert(self, collection: str, doc_id: str, doc: Document) -> bool:
        """Store `doc` under `doc_id` unless the id is taken. Returns False on collision."""
        with self._lock(collection):
            if doc_id in self._data[collection]:
                return False
            self._commit(collection, doc_id, doc)
            return True

    def put(self, collection: str, doc_id: str, doc: Document) -> None:
        with self._lock(collection):
            self._commit(collection, doc_id, doc)

    def update(self, collection: str, doc_id: str, mutate: Callable[[Document], Document]) -> Optional[Document]:
        """
        Atomically replace a document with `mutate(current)`.
        Returns the new document, or None when the id is absent (nothing is written).
        """
        with self._lock(collection):
            current = self._data[collection].get(doc_id)
            if current is None:
                return None
            updated = mutate(copy.deepcopy(current))
            self._commit(collection, doc_id, updated)
            return copy.deepcopy(updated)

    def list(self, collection: str, **equals: Any) -> List[Document]:
        with self._lock(collection):
            docs = list(self._data[collection].values())
        out = []
        for d in docs:
            if all(d.get(k) == v for k, v in equals.items()):
                out.append(copy.deepcopy(d))
        return out

    def count(self, collection: str) -> int:
        with self._lock(collection):
            return len(self._data[collection])


class JsonFileStore(MemoryStore):
    """One JSON file per collection under `root`, rewritten atomically after each write."""

    def __init__(self, root: Path) -> None:
        super().__init__()
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        for path in sorted(self.root.glob("*.json")):
            self._load(path)

    def _load(self, path: Path) -> None:
        try:
            docs = json.loads(path.read_text("utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Skipping unreadable collection file {path}: {e}")
            return
        if not isinstance(docs, list):
            logger.error(f"Skipping {path}: expected a JSON list of documents")
            return
        coll = self._data[path.stem]
        for d in docs:
            if isinstance(d, dict) and d.get("id"):
                coll[str(d["id"])] = d
        logger.info(f"Loaded {len(coll)} documents from {path}")

    def _persist(self, collection: str) -> None:
        path = self.root / f"{collection}.json"
        tmp = path.with_suffix(".tmp")
        tmp.write_text(
            json.dumps(list(self._data[collection].values()), indent=2, ensure_ascii=False),
            "utf-8",
        )
        tmp.replace(path)
