import logging
from datetime import datetime, timezone
from typing import Optional

from .documents import DocumentNotFoundError, DocumentStore, IndexUnavailableError
from .errors import NotFoundError
from .models import ExchangeRequest

logger = logging.getLogger(__name__)

EXCHANGE_REQUESTS = "exchange_requests"


class ExchangeRequestStore:
    """Persistence for exchange requests on top of a document store."""

    def __init__(self, documents: DocumentStore, collection: str = EXCHANGE_REQUESTS):
        self.documents = documents
        self.collection = collection

    def create(self, data: dict) -> ExchangeRequest:
        doc_id = self.documents.add(self.collection, data)
        return self.get(doc_id)

    def get(self, request_id: str) -> ExchangeRequest:
        doc = self.documents.get(self.collection, request_id)
        if doc is None:
            raise NotFoundError(f"Exchange request {request_id} not found")
        return ExchangeRequest(**doc)

    def list_by_owner(self, owner_id: str) -> list[ExchangeRequest]:
        try:
            docs = self.documents.query(
                self.collection,
                filters=[("owner_id", owner_id)],
                order_by="created_at",
                descending=True,
            )
        except IndexUnavailableError as e:
            # Same result either way; the index may simply not be deployed yet.
            logger.warning("Ordered owner query unavailable, sorting client-side: %s", e)
            docs = self.documents.query(self.collection, filters=[("owner_id", owner_id)])
            docs.sort(key=lambda d: d["created_at"], reverse=True)
        return [ExchangeRequest(**d) for d in docs]

    def list_all(self, limit: Optional[int] = 100) -> list[ExchangeRequest]:
        docs = self.documents.query(
            self.collection, order_by="created_at", descending=True, limit=limit
        )
        return [ExchangeRequest(**d) for d in docs]

    def update(self, request_id: str, fields: dict) -> ExchangeRequest:
        fields = {**fields, "updated_at": datetime.now(timezone.utc)}
        try:
            doc = self.documents.update(self.collection, request_id, fields)
        except DocumentNotFoundError:
            raise NotFoundError(f"Exchange request {request_id} not found")
        return ExchangeRequest(**doc)

    def delete(self, request_id: str) -> None:
        if not self.documents.delete(self.collection, request_id):
            raise NotFoundError(f"Exchange request {request_id} not found")
