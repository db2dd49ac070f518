"""
Document store used by the exchange stores.

The production deployment keeps documents in a hosted document database; the
in-memory implementation here follows the same semantics, including the
requirement for a composite index when a query filters on one field and
orders by another.
"""

import copy
import threading
from typing import Any, Iterable, Optional, Protocol
from uuid import uuid4


class DocumentStoreError(Exception):
    pass


class DocumentNotFoundError(DocumentStoreError):
    pass


class IndexUnavailableError(DocumentStoreError):
    """Raised for filtered + ordered queries without a matching composite index."""
    pass


class DocumentStore(Protocol):
    def add(self, collection: str, data: dict) -> str: ...

    def get(self, collection: str, doc_id: str) -> Optional[dict]: ...

    def update(self, collection: str, doc_id: str, fields: dict) -> dict: ...

    def delete(self, collection: str, doc_id: str) -> bool: ...

    def query(
        self,
        collection: str,
        filters: Iterable[tuple[str, Any]] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]: ...


class InMemoryDocumentStore:
    """Process-local store; every operation holds one lock so handlers on a threadpool can share it."""

    def __init__(self, composite_indexes: Optional[Iterable[tuple[str, str, str]]] = None):
        # (collection, filter_field, order_field)
        self.composite_indexes: set[tuple[str, str, str]] = set(composite_indexes or ())
        self.collections: dict[str, dict[str, dict]] = {}
        self._lock = threading.Lock()

    def _collection(self, name: str) -> dict[str, dict]:
        return self.collections.setdefault(name, {})

    def add(self, collection: str, data: dict) -> str:
        doc_id = data.get("id") or uuid4().hex
        doc = copy.deepcopy(data)
        doc["id"] = doc_id
        with self._lock:
            self._collection(collection)[doc_id] = doc
        return doc_id

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def update(self, collection: str, doc_id: str, fields: dict) -> dict:
        fields = copy.deepcopy(fields)
        with self._lock:
            docs = self._collection(collection)
            if doc_id not in docs:
                raise DocumentNotFoundError(f"{collection}/{doc_id} does not exist")
            docs[doc_id].update(fields)
            return copy.deepcopy(docs[doc_id])

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            return self._collection(collection).pop(doc_id, None) is not None

    def query(
        self,
        collection: str,
        filters: Iterable[tuple[str, Any]] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        filters = list(filters)
        if order_by:
            for field_name, _ in filters:
                if field_name != order_by and (collection, field_name, order_by) not in self.composite_indexes:
                    raise IndexUnavailableError(
                        f"The query requires an index on {collection} ({field_name}, {order_by})"
                    )

        with self._lock:
            results = [
                copy.deepcopy(d) for d in self._collection(collection).values()
                if all(d.get(f) == v for f, v in filters)
            ]
        if order_by:
            results.sort(key=lambda d: d.get(order_by), reverse=descending)
        if limit is not None:
            results = results[:limit]
        return results
