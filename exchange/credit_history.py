from datetime import datetime, timezone
from typing import Optional

from .documents import DocumentStore
from .models import CreditHistoryEntry, CreditType

CREDIT_HISTORY = "credit_history"


class CreditHistoryRecorder:
    """Append-only audit trail of credit grants. Entries are never updated or removed."""

    def __init__(self, documents: DocumentStore, collection: str = CREDIT_HISTORY):
        self.documents = documents
        self.collection = collection

    def record(
        self,
        owner_id: str,
        exchange_request_id: str,
        amount: int,
        currency: str,
        assigned_by: str,
        ledger_success: bool,
        ledger_customer_id: Optional[str] = None,
        total_loyalty_points: Optional[int] = None,
    ) -> CreditHistoryEntry:
        data = {
            "owner_id": owner_id,
            "exchange_request_id": exchange_request_id,
            "amount": amount,
            "currency": currency,
            "type": CreditType.EXCHANGE_CREDIT,
            "assigned_by": assigned_by,
            "ledger_success": ledger_success,
            "ledger_customer_id": ledger_customer_id,
            "total_loyalty_points": total_loyalty_points,
            "created_at": datetime.now(timezone.utc),
        }
        doc_id = self.documents.add(self.collection, data)
        return CreditHistoryEntry(**self.documents.get(self.collection, doc_id))

    def list_entries(self, owner_id: Optional[str] = None, limit: Optional[int] = 50) -> list[CreditHistoryEntry]:
        filters = [("owner_id", owner_id)] if owner_id else []
        docs = self.documents.query(self.collection, filters=filters)
        # Sorted here so the owner filter needs no composite index.
        docs.sort(key=lambda d: d["created_at"], reverse=True)
        if limit is not None:
            docs = docs[:limit]
        return [CreditHistoryEntry(**d) for d in docs]

    def list_for_request(self, exchange_request_id: str) -> list[CreditHistoryEntry]:
        docs = self.documents.query(
            self.collection, filters=[("exchange_request_id", exchange_request_id)]
        )
        docs.sort(key=lambda d: d["created_at"])
        return [CreditHistoryEntry(**d) for d in docs]
