"""Document-store interface plus the in-memory implementation.

Collections hold plain dict documents keyed by their ``id`` field. Filters are
equality matches on top-level fields, which is all the repositories need.
"""

from __future__ import annotations

import copy
from typing import Any, Protocol


class DocumentCollection(Protocol):
    async def find_one(self, filter: dict[str, Any]) -> dict[str, Any] | None: ...

    async def find(
        self,
        filter: dict[str, Any] | None = None,
        sort: list[tuple[str, int]] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def replace(self, doc_id: str, document: dict[str, Any]) -> None: ...

    async def update(
        self,
        filter: dict[str, Any],
        set_fields: dict[str, Any],
        set_on_insert: dict[str, Any] | None = None,
        upsert: bool = False,
        many: bool = False,
    ) -> int: ...

    async def increment(
        self,
        doc_id: str,
        field: str,
        amount: int | float,
        set_fields: dict[str, Any] | None = None,
        set_on_insert: dict[str, Any] | None = None,
    ) -> dict[str, Any]: ...

    async def delete(self, filter: dict[str, Any]) -> int: ...

    async def count(self, filter: dict[str, Any] | None = None) -> int: ...


class DocumentStore(Protocol):
    def collection(self, name: str) -> DocumentCollection: ...

    async def ensure_indexes(self) -> None: ...

    async def close(self) -> None: ...


def _matches(document: dict[str, Any], filter: dict[str, Any] | None) -> bool:
    if not filter:
        return True
    return all(document.get(key) == value for key, value in filter.items())


class InMemoryCollection:
    """Dict-backed collection; every read returns a deep copy."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._documents: dict[str, dict[str, Any]] = {}

    async def find_one(self, filter: dict[str, Any]) -> dict[str, Any] | None:
        if set(filter) == {"id"}:
            found = self._documents.get(filter["id"])
            return copy.deepcopy(found) if found is not None else None
        for document in self._documents.values():
            if _matches(document, filter):
                return copy.deepcopy(document)
        return None

    async def find(
        self,
        filter: dict[str, Any] | None = None,
        sort: list[tuple[str, int]] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        results = [copy.deepcopy(doc) for doc in self._documents.values() if _matches(doc, filter)]
        for key, direction in reversed(sort or []):
            results.sort(key=lambda doc: _sort_key(doc.get(key)), reverse=direction < 0)
        if limit is not None:
            results = results[:limit]
        return results

    async def replace(self, doc_id: str, document: dict[str, Any]) -> None:
        stored = copy.deepcopy(document)
        stored["id"] = doc_id
        self._documents[doc_id] = stored

    async def update(
        self,
        filter: dict[str, Any],
        set_fields: dict[str, Any],
        set_on_insert: dict[str, Any] | None = None,
        upsert: bool = False,
        many: bool = False,
    ) -> int:
        modified = 0
        for document in self._documents.values():
            if _matches(document, filter):
                document.update(copy.deepcopy(set_fields))
                modified += 1
                if not many:
                    break
        if modified or not upsert:
            return modified
        inserted = dict(filter)
        inserted.update(copy.deepcopy(set_on_insert or {}))
        inserted.update(copy.deepcopy(set_fields))
        doc_id = inserted.get("id")
        if doc_id is None:
            raise ValueError(f"Upsert into '{self.name}' needs an 'id' in the filter or insert fields.")
        self._documents[doc_id] = inserted
        return 1

    async def increment(
        self,
        doc_id: str,
        field: str,
        amount: int | float,
        set_fields: dict[str, Any] | None = None,
        set_on_insert: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        document = self._documents.get(doc_id)
        if document is None:
            document = {"id": doc_id}
            document.update(copy.deepcopy(set_on_insert or {}))
            self._documents[doc_id] = document
        document[field] = (document.get(field) or 0) + amount
        document.update(copy.deepcopy(set_fields or {}))
        return copy.deepcopy(document)

    async def delete(self, filter: dict[str, Any]) -> int:
        doomed = [doc_id for doc_id, doc in self._documents.items() if _matches(doc, filter)]
        for doc_id in doomed:
            del self._documents[doc_id]
        return len(doomed)

    async def count(self, filter: dict[str, Any] | None = None) -> int:
        return sum(1 for doc in self._documents.values() if _matches(doc, filter))


def _sort_key(value: Any) -> tuple[int, Any]:
    # None sorts first, mirroring MongoDB's ordering of missing fields.
    if value is None:
        return (0, 0)
    if isinstance(value, (int, float)):
        return (1, value)
    return (2, str(value))


class InMemoryDocumentStore:
    """Process-local store used by default and in tests."""

    def __init__(self) -> None:
        self._collections: dict[str, InMemoryCollection] = {}

    def collection(self, name: str) -> InMemoryCollection:
        if name not in self._collections:
            self._collections[name] = InMemoryCollection(name)
        return self._collections[name]

    async def ensure_indexes(self) -> None:
        return None

    async def close(self) -> None:
        return None
