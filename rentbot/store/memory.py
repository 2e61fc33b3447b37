"""In-process RecordStore for tests and local development.

Implements the filter/update subset documented in ``store.base`` over
plain dicts.  Every operation runs under one lock without awaiting in
between, so a conditional ``update_one`` is atomic just like the
single-document update on MongoDB.
"""

from __future__ import annotations

import copy
import re
import threading
from typing import Any, Optional

from .base import (
    LISTINGS,
    TRANSACTIONS,
    USERS,
    Document,
    DuplicateKeyError,
    RecordStore,
)

_MISSING = object()

DEFAULT_UNIQUE_KEYS = {
    USERS: "phone",
    LISTINGS: "id",
    TRANSACTIONS: "reference",
}


def _get_path(doc: Document, path: str) -> Any:
    """Resolve a dotted path; returns _MISSING when any segment is absent."""
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _set_path(doc: Document, path: str, value: Any) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value


def _unset_path(doc: Document, path: str) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.get(part)
        if not isinstance(current, dict):
            return
    current.pop(parts[-1], None)


def _match_operator(value: Any, op: str, arg: Any, ops: dict) -> bool:
    if op == "$exists":
        return (value is not _MISSING) == bool(arg)
    if op == "$ne":
        return not _match_value(value, arg)
    if op == "$in":
        return any(_match_value(value, a) for a in arg)
    if op == "$regex":
        if not isinstance(value, str):
            return False
        flags = re.IGNORECASE if "i" in ops.get("$options", "") else 0
        pattern = arg if isinstance(arg, re.Pattern) else re.compile(arg, flags)
        return pattern.search(value) is not None
    if op == "$options":
        return True
    if value is _MISSING or value is None:
        return False
    try:
        if op == "$gte":
            return value >= arg
        if op == "$gt":
            return value > arg
        if op == "$lte":
            return value <= arg
        if op == "$lt":
            return value < arg
    except TypeError:
        return False
    raise ValueError(f"Unsupported filter operator: {op}")


def _match_value(value: Any, expected: Any) -> bool:
    if expected is None:
        return value is _MISSING or value is None
    if isinstance(expected, dict) and any(k.startswith("$") for k in expected):
        return all(_match_operator(value, op, arg, expected) for op, arg in expected.items())
    if isinstance(value, list) and not isinstance(expected, list):
        return expected in value
    return value is not _MISSING and value == expected


def matches(doc: Document, filter: Document) -> bool:
    """Return True if ``doc`` satisfies the query document ``filter``."""
    for key, expected in filter.items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in expected):
                return False
            continue
        if not _match_value(_get_path(doc, key), expected):
            return False
    return True


def apply_update(doc: Document, update: Document) -> None:
    """Apply ``$set`` / ``$unset`` / ``$inc`` to ``doc`` in place."""
    for op, fields in update.items():
        if op == "$set":
            for path, value in fields.items():
                _set_path(doc, path, copy.deepcopy(value))
        elif op == "$unset":
            for path in fields:
                _unset_path(doc, path)
        elif op == "$inc":
            for path, delta in fields.items():
                current = _get_path(doc, path)
                base = 0 if current is _MISSING or current is None else current
                _set_path(doc, path, base + delta)
        else:
            raise ValueError(f"Unsupported update operator: {op}")


def _sort_key(path: str):
    def key(doc: Document):
        value = _get_path(doc, path)
        missing = value is _MISSING or value is None
        return (missing, value if not missing else 0)
    return key


class MemoryRecordStore(RecordStore):
    """RecordStore backed by per-collection lists of dicts."""

    def __init__(self, unique_keys: Optional[dict[str, str]] = None) -> None:
        self._collections: dict[str, list[Document]] = {}
        self._unique_keys = dict(DEFAULT_UNIQUE_KEYS if unique_keys is None else unique_keys)
        self._lock = threading.Lock()

    def _docs(self, collection: str) -> list[Document]:
        return self._collections.setdefault(collection, [])

    async def find_one(self, collection: str, filter: Document) -> Optional[Document]:
        with self._lock:
            for doc in self._docs(collection):
                if matches(doc, filter):
                    return copy.deepcopy(doc)
        return None

    async def find(
        self,
        collection: str,
        filter: Document,
        sort: Optional[list[tuple[str, int]]] = None,
        limit: int = 0,
    ) -> list[Document]:
        with self._lock:
            found = [copy.deepcopy(d) for d in self._docs(collection) if matches(d, filter)]
        # Stable sorts applied last-key-first give multi-key ordering
        for path, direction in reversed(sort or []):
            found.sort(key=_sort_key(path), reverse=direction < 0)
        if limit:
            found = found[:limit]
        return found

    async def insert_one(self, collection: str, document: Document) -> None:
        with self._lock:
            docs = self._docs(collection)
            key = self._unique_keys.get(collection)
            if key is not None:
                value = _get_path(document, key)
                if any(_get_path(d, key) == value for d in docs):
                    raise DuplicateKeyError(f"{collection}.{key} already exists: {value!r}")
            docs.append(copy.deepcopy(document))

    async def update_one(
        self, collection: str, filter: Document, update: Document
    ) -> bool:
        with self._lock:
            for doc in self._docs(collection):
                if matches(doc, filter):
                    apply_update(doc, update)
                    return True
        return False

    async def update_many(
        self, collection: str, filter: Document, update: Document
    ) -> int:
        count = 0
        with self._lock:
            for doc in self._docs(collection):
                if matches(doc, filter):
                    apply_update(doc, update)
                    count += 1
        return count
