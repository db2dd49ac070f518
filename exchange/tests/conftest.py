"""
Shared fixtures for the exchange tests.

Everything runs against the in-memory document store and ledger, so no
external service is contacted.
"""

from datetime import datetime, timezone

import pytest

from exchange.credit_history import CreditHistoryRecorder
from exchange.documents import InMemoryDocumentStore
from exchange.ledger_client import InMemoryLedgerClient
from exchange.models import (
    Actor,
    CreateExchangeRequest,
    CreateWarehouseRequest,
    StatusUpdateRequest,
    SubmitShippingRequest,
    TransitUpdateRequest,
    ExchangeStatus,
    TransitStatus,
)
from exchange.notifications import NotificationQueue
from exchange.service import ExchangeService
from exchange.store import EXCHANGE_REQUESTS, ExchangeRequestStore
from exchange.warehouses import WarehouseDirectory


OWNER = Actor(id="user-1", email="alice@example.com")
OTHER_USER = Actor(id="user-2", email="bob@example.com")
ADMIN = Actor(id="admin-1", email="ops@example.com", is_admin=True)

STARTING_BALANCE = 3000


@pytest.fixture
def documents() -> InMemoryDocumentStore:
    return InMemoryDocumentStore(composite_indexes={(EXCHANGE_REQUESTS, "owner_id", "created_at")})


@pytest.fixture
def ledger() -> InMemoryLedgerClient:
    ledger = InMemoryLedgerClient()
    ledger.add_customer(OWNER.email, balance=STARTING_BALANCE)
    return ledger


@pytest.fixture
def queue() -> NotificationQueue:
    return NotificationQueue()


@pytest.fixture
def warehouses(documents) -> WarehouseDirectory:
    return WarehouseDirectory(documents)


@pytest.fixture
def credit_history(documents) -> CreditHistoryRecorder:
    return CreditHistoryRecorder(documents)


@pytest.fixture
def service(documents, warehouses, credit_history, ledger, queue) -> ExchangeService:
    return ExchangeService(
        store=ExchangeRequestStore(documents),
        warehouses=warehouses,
        credit_history=credit_history,
        ledger=ledger,
        notifications=queue,
    )


@pytest.fixture
def warehouse(warehouses):
    return warehouses.create(CreateWarehouseRequest(
        name="Central Warehouse",
        address_line1="12 Dock Road",
        city="Mumbai",
        state="MH",
        postal_code="400001",
        country="India",
        contact_person="Ravi",
        contact_phone="+91 22 5555 0100",
    ))


def new_item(**overrides) -> CreateExchangeRequest:
    data = {
        "product_name": "Denim jacket",
        "description": "Worn twice",
        "brand": "Levi's",
        "condition": "like new",
        "images": ["front.jpg", "back.jpg"],
    }
    data.update(overrides)
    return CreateExchangeRequest(**data)


def shipping(**overrides) -> SubmitShippingRequest:
    data = {
        "carrier_name": "BlueDart",
        "tracking_number": "BD123456789IN",
        "shipping_date": datetime(2026, 3, 2, tzinfo=timezone.utc),
        "address": "221B Baker Street",
        "notes": "Fragile",
    }
    data.update(overrides)
    return SubmitShippingRequest(**data)


@pytest.fixture
def pending_request(service):
    return service.create_request(OWNER, new_item())


@pytest.fixture
def approved_request(service, pending_request, warehouse):
    return service.set_status(ADMIN, pending_request.id, StatusUpdateRequest(
        status=ExchangeStatus.APPROVED, warehouse_id=warehouse.id, admin_feedback="Looks good",
    ))


@pytest.fixture
def received_request(service, approved_request):
    service.submit_shipping(OWNER, approved_request.id, shipping())
    return service.set_transit(ADMIN, approved_request.id, TransitUpdateRequest(
        transit_status=TransitStatus.RECEIVED,
    ))
