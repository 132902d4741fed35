import httpx
import pytest

from api.dependencies import get_gateway_manager, get_payment_lifecycle
from main import app


@pytest.fixture
async def client(lifecycle, manager):
    app.dependency_overrides[get_payment_lifecycle] = lambda: lifecycle
    app.dependency_overrides[get_gateway_manager] = lambda: manager
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


BODY = {
    "campaign_id": "campaign-1",
    "customer_id": "user-1",
    "creator_id": "creator-1",
    "amount": 1500,
    "numbers_quantity": 15,
    "customer": {
        "name": "Maria Silva",
        "email": "maria@example.com",
        "document": "123.456.789-01",
        "phone": "11988887777",
    },
}


def test_routes_registered():
    paths = {r.path for r in app.routes}
    assert "/api/v1/payments/pix" in paths
    assert "/api/v1/payments/webhooks/{tenant_id}" in paths
    assert "/api/v1/payments/gateways/{tenant_id}" in paths
    assert "/api/v1/payments/{payment_code}" in paths


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "healthy"
    assert "X-Request-ID" in resp.headers


@pytest.mark.asyncio
async def test_create_and_fetch_payment(client, configured):
    resp = await client.post("/api/v1/payments/pix", json=BODY, headers={"Idempotency-Key": "abc"})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "INITIALIZED"
    assert data["payment_code"].startswith("PG-")
    assert data["expires_at"].endswith("Z")
    assert data["customer"]["document"] == "123.***.***-01"

    again = await client.post("/api/v1/payments/pix", json=BODY, headers={"Idempotency-Key": "abc"})
    assert again.json()["data"]["payment_code"] == data["payment_code"]

    fetched = await client.get(f"/api/v1/payments/{data['payment_code']}")
    assert fetched.status_code == 200
    assert fetched.json()["data"]["id"] == data["id"]


@pytest.mark.asyncio
async def test_amount_below_minimum_is_422(client, configured):
    resp = await client.post("/api/v1/payments/pix", json=dict(BODY, amount=100))
    assert resp.status_code == 422
    assert resp.json()["code"] == 61001


@pytest.mark.asyncio
async def test_invalid_document_is_422(client, configured):
    body = dict(BODY, customer=dict(BODY["customer"], document="123"))
    resp = await client.post("/api/v1/payments/pix", json=body)
    assert resp.status_code == 422
    assert resp.json()["error"]["type"] == "ValidationError"


@pytest.mark.asyncio
async def test_unknown_payment_is_404(client):
    resp = await client.get("/api/v1/payments/PG-NOPE")
    assert resp.status_code == 404
    assert resp.json()["code"] == 61005


@pytest.mark.asyncio
async def test_refund_of_pending_payment_is_409(client, configured):
    created = await client.post("/api/v1/payments/pix", json=BODY)
    code = created.json()["data"]["payment_code"]

    resp = await client.post(f"/api/v1/payments/{code}/refund")

    assert resp.status_code == 409
    assert resp.json()["error"]["type"] == "InvalidStateTransition"


@pytest.mark.asyncio
async def test_cancel(client, configured):
    created = await client.post("/api/v1/payments/pix", json=BODY)
    code = created.json()["data"]["payment_code"]

    resp = await client.post(f"/api/v1/payments/{code}/cancel")

    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "CANCELED"


@pytest.mark.asyncio
async def test_webhook_is_always_acknowledged(client, configured):
    garbage = await client.post(
        "/api/v1/payments/webhooks/creator-1",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    unknown = await client.post("/api/v1/payments/webhooks/creator-1", json={"status": "APPROVED"})

    assert garbage.status_code == 200
    assert garbage.json()["data"] == {"accepted": False, "applied": False}
    assert unknown.status_code == 200
    assert unknown.json()["data"]["accepted"] is False


@pytest.mark.asyncio
async def test_webhook_approves_payment(client, configured, store):
    created = await client.post("/api/v1/payments/pix", json=BODY)
    data = created.json()["data"]

    resp = await client.post(
        "/api/v1/payments/webhooks/creator-1",
        json={"paymentId": data["processor_transaction_id"], "status": "APPROVED", "netValue": 1450},
    )

    assert resp.status_code == 200
    assert resp.json()["data"] == {"accepted": True, "applied": True}
    assert store.payments.rows[data["id"]].status.value == "APPROVED"


@pytest.mark.asyncio
async def test_gateway_listing_has_no_credentials(client, configured):
    resp = await client.get("/api/v1/payments/gateways/creator-1")
    assert resp.status_code == 200
    (gateway,) = resp.json()["data"]
    assert gateway["id"] == "gw-1"
    assert "credentials" not in gateway
