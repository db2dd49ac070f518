"""
API Tests for the exchange endpoints

Drives the FastAPI app through TestClient with an in-memory ledger; email is
mock-sent because no SMTP host is configured.
"""

import pytest
from fastapi.testclient import TestClient

from exchange.api import build_services, create_app
from exchange.ledger_client import InMemoryLedgerClient
from exchange.settings import Settings

OWNER_HEADERS = {"X-User-Id": "user-1", "X-User-Email": "alice@example.com"}
OTHER_HEADERS = {"X-User-Id": "user-2", "X-User-Email": "bob@example.com"}
ADMIN_HEADERS = {"X-User-Id": "admin-1", "X-User-Email": "ops@example.com", "X-User-Admin": "true"}

ITEM = {
    "product_name": "Denim jacket",
    "description": "Worn twice",
    "brand": "Levi's",
    "condition": "like new",
    "images": ["front.jpg"],
}

WAREHOUSE = {
    "name": "Central Warehouse",
    "address_line1": "12 Dock Road",
    "city": "Mumbai",
    "state": "MH",
    "postal_code": "400001",
    "country": "India",
}

SHIPPING = {
    "carrier_name": "BlueDart",
    "tracking_number": "BD123456789IN",
    "shipping_date": "2026-03-02T10:00:00Z",
}


@pytest.fixture
def ledger():
    ledger = InMemoryLedgerClient()
    ledger.add_customer("alice@example.com", balance=3000)
    return ledger


@pytest.fixture
def client(ledger):
    settings = Settings(_env_file=None, SMTP_HOST=None, SHOPIFY_STORE_URL=None, SHOPIFY_ACCESS_TOKEN=None)
    app = create_app(services=build_services(settings, ledger=ledger), settings=settings)
    return TestClient(app)


@pytest.fixture
def warehouse_id(client):
    response = client.post("/admin/warehouses", json=WAREHOUSE, headers=ADMIN_HEADERS)
    assert response.status_code == 201
    return response.json()["id"]


@pytest.fixture
def request_id(client):
    response = client.post("/exchange", json=ITEM, headers=OWNER_HEADERS)
    assert response.status_code == 201
    return response.json()["id"]


class TestAuthentication:

    def test_health_is_public(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_missing_identity_is_401(self, client):
        assert client.get("/exchange").status_code == 401
        assert client.post("/exchange", json=ITEM).status_code == 401

    def test_admin_routes_reject_non_admin(self, client):
        assert client.get("/admin/exchange-requests", headers=OWNER_HEADERS).status_code == 403
        assert client.post("/admin/warehouses", json=WAREHOUSE, headers=OWNER_HEADERS).status_code == 403

    def test_other_owner_cannot_read(self, client, request_id):
        response = client.get(f"/exchange/{request_id}", headers=OTHER_HEADERS)

        assert response.status_code == 403


class TestOwnerEndpoints:

    def test_create_and_list(self, client, request_id):
        response = client.get("/exchange", headers=OWNER_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert [r["id"] for r in body] == [request_id]
        assert body[0]["status"] == "pending"
        assert body[0]["credit_amount"] == 0
        assert body[0]["owner_email"] == "alice@example.com"

    def test_unknown_field_rejected(self, client):
        response = client.post("/exchange", json={**ITEM, "color": "blue"}, headers=OWNER_HEADERS)

        assert response.status_code == 400
        assert "color" in response.json()["detail"]

    def test_edit_then_cancel(self, client, request_id):
        edited = client.put(f"/exchange/{request_id}", json={"condition": "good"}, headers=OWNER_HEADERS)
        assert edited.status_code == 200
        assert edited.json()["condition"] == "good"

        canceled = client.delete(f"/exchange/{request_id}", headers=OWNER_HEADERS)
        assert canceled.status_code == 200
        assert client.get(f"/exchange/{request_id}", headers=OWNER_HEADERS).status_code == 404

    def test_shipping_on_pending_is_400(self, client, request_id):
        response = client.post(f"/exchange/{request_id}/shipping", json=SHIPPING, headers=OWNER_HEADERS)

        assert response.status_code == 400

    def test_my_points(self, client):
        response = client.get("/me/points", headers=OWNER_HEADERS)

        assert response.status_code == 200
        assert response.json()["amount"] == 3000
        assert response.json()["currency"] == "INR"

    def test_my_points_unknown_customer(self, client):
        response = client.get("/me/points", headers=OTHER_HEADERS)

        assert response.status_code == 200
        assert response.json()["amount"] == 0
        assert response.json()["error"]

    def test_my_credit_history_requires_identity(self, client):
        assert client.get("/me/credit-history").status_code == 401

    def test_my_credit_history_newest_first_with_limit(self, client):
        services = client.app.state.services
        for amount in (100, 200, 300):
            services.credit_history.record("user-1", f"req-{amount}", amount, "INR", "admin-1", True, "1000", None)
        services.credit_history.record("user-2", "req-other", 50, "INR", "admin-1", True, "1001", None)

        everything = client.get("/me/credit-history", headers=OWNER_HEADERS).json()
        assert {e["amount"] for e in everything} == {100, 200, 300}
        assert [e["created_at"] for e in everything] == sorted((e["created_at"] for e in everything), reverse=True)

        limited = client.get("/me/credit-history", params={"limit": 2}, headers=OWNER_HEADERS).json()
        assert limited == everything[:2]


class TestMalformedPayloads:
    """Schema-level failures are reported as 400 like service validation errors."""

    def test_non_numeric_credit_amount(self, client, request_id):
        response = client.put(
            f"/admin/exchange-requests/{request_id}/credit",
            json={"credit_amount": "lots"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 400
        assert "credit_amount" in response.json()["detail"]

    def test_missing_transit_status(self, client, request_id):
        response = client.put(
            f"/admin/exchange-requests/{request_id}/transit",
            json={"admin_note": "where is it"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 400
        assert "transit_status" in response.json()["detail"]

    def test_unknown_status_value(self, client, request_id):
        response = client.put(
            f"/admin/exchange-requests/{request_id}/status",
            json={"status": "archived"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 400
        assert response.json()["errors"]


class TestServerlessEntry:

    def test_handler_reuses_module_app(self):
        import exchange.api
        from api import index

        assert index.app is exchange.api.app
        assert index.handler is not None


class TestFullFlow:

    def test_request_to_credit(self, client, ledger, request_id, warehouse_id):
        approved = client.put(
            f"/admin/exchange-requests/{request_id}/status",
            json={"status": "approved", "warehouse_id": warehouse_id, "admin_feedback": "Looks good"},
            headers=ADMIN_HEADERS,
        )
        assert approved.status_code == 200
        assert approved.json()["warehouse_info"]["name"] == "Central Warehouse"

        shipped = client.post(f"/exchange/{request_id}/shipping", json=SHIPPING, headers=OWNER_HEADERS)
        assert shipped.status_code == 200
        assert shipped.json()["transit_status"] == "shipping"

        received = client.put(
            f"/admin/exchange-requests/{request_id}/transit",
            json={"transit_status": "received"},
            headers=ADMIN_HEADERS,
        )
        assert received.status_code == 200

        credited = client.put(
            f"/admin/exchange-requests/{request_id}/credit",
            json={"credit_amount": 1500},
            headers=ADMIN_HEADERS,
        )
        assert credited.status_code == 200
        body = credited.json()
        assert body["ledger_success"] is True
        assert body["request"]["total_loyalty_points"] == 4500
        assert ledger.get_points_balance(ledger.customers["alice@example.com"].id) == 4500

        history = client.get("/admin/credit-history", params={"owner_id": "user-1"}, headers=ADMIN_HEADERS)
        assert [e["amount"] for e in history.json()] == [1500]

        mine = client.get("/me/credit-history", headers=OWNER_HEADERS)
        assert mine.status_code == 200
        assert [e["exchange_request_id"] for e in mine.json()] == [request_id]
        assert client.get("/me/credit-history", headers=OTHER_HEADERS).json() == []

        completed = client.put(
            f"/admin/exchange-requests/{request_id}/transit",
            json={"transit_status": "completed"},
            headers=ADMIN_HEADERS,
        )
        assert completed.status_code == 200
        assert completed.json()["status"] == "completed"

        duplicate = client.put(
            f"/admin/exchange-requests/{request_id}/credit",
            json={"credit_amount": 1500},
            headers=ADMIN_HEADERS,
        )
        assert duplicate.status_code == 400

    def test_approval_without_warehouse_is_400(self, client, request_id):
        response = client.put(
            f"/admin/exchange-requests/{request_id}/status",
            json={"status": "approved"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 400

    def test_approval_with_unknown_warehouse_is_404(self, client, request_id):
        response = client.put(
            f"/admin/exchange-requests/{request_id}/status",
            json={"status": "approved", "warehouse_id": "missing"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 404

    def test_decline_is_terminal(self, client, request_id):
        declined = client.put(
            f"/admin/exchange-requests/{request_id}/status",
            json={"status": "declined", "admin_feedback": "Stained"},
            headers=ADMIN_HEADERS,
        )
        assert declined.status_code == 200

        again = client.put(
            f"/admin/exchange-requests/{request_id}/status",
            json={"status": "approved"},
            headers=ADMIN_HEADERS,
        )
        assert again.status_code == 400


class TestAdminEndpoints:

    def test_list_all_requests(self, client, request_id):
        client.post("/exchange", json=ITEM, headers=OTHER_HEADERS)

        response = client.get("/admin/exchange-requests", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert len(response.json()) == 2

    def test_warehouse_crud(self, client, warehouse_id):
        listed = client.get("/admin/warehouses", headers=ADMIN_HEADERS)
        assert [w["id"] for w in listed.json()] == [warehouse_id]

        updated = client.put(f"/admin/warehouses/{warehouse_id}", json={"is_active": False}, headers=ADMIN_HEADERS)
        assert updated.status_code == 200
        assert updated.json()["is_active"] is False

        deleted = client.delete(f"/admin/warehouses/{warehouse_id}", headers=ADMIN_HEADERS)
        assert deleted.status_code == 200
        assert client.get(f"/admin/warehouses/{warehouse_id}", headers=ADMIN_HEADERS).status_code == 404

    def test_warehouse_missing_field_is_400(self, client):
        response = client.post("/admin/warehouses", json={**WAREHOUSE, "city": ""}, headers=ADMIN_HEADERS)

        assert response.status_code == 400

    def test_check_customer(self, client):
        found = client.post("/ledger/check-customer", json={"email": "alice@example.com"})
        assert found.status_code == 200
        assert found.json()["exists"] is True

        missing = client.post("/ledger/check-customer", json={"email": "ghost@example.com"})
        assert missing.status_code == 404


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
