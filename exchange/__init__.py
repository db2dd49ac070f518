"""
Exchange-for-Store-Credit Backend

This package provides:
- Exchange request lifecycle: pending → approved → (shipping → received) → completed / declined
- Warehouse directory with copy-on-approve address snapshots
- Loyalty-point credit assignment against the Shopify customer ledger
- Append-only credit history
- Queued email notifications that never block a transition
"""

from .models import (
    Actor,
    CreditHistoryEntry,
    ExchangeRequest,
    ExchangeStatus,
    TransitStatus,
    Warehouse,
)
from .service import ExchangeService

__all__ = [
    "Actor",
    "CreditHistoryEntry",
    "ExchangeRequest",
    "ExchangeStatus",
    "TransitStatus",
    "Warehouse",
    "ExchangeService",
]
