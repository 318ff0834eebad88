"""Products, customers and orders: tenant-scoped lists and the payment gate."""

import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient

from storekit.core.subscription import utcnow
from storekit.models.product import Product
from storekit.services import billing


async def _seed_products(client: AsyncClient, headers: dict) -> list[dict]:
    created = []
    for name, category, price in [
        ("Milk Powder", "dairy", 120),
        ("Oatmeal", "grocery", 40),
        ("Almond Milk", "dairy", 100),
    ]:
        resp = await client.post(
            "/v1/products", json={"name": name, "category": category, "price": price}, headers=headers,
        )
        assert resp.status_code == 201, resp.text
        created.append(resp.json())
    return created


@pytest.mark.asyncio
async def test_product_list_search_filter_sort(client: AsyncClient, tenant: dict):
    headers = tenant["headers"]
    await _seed_products(client, headers)

    resp = await client.get("/v1/products", params={"searchTerm": "milk", "sort": "name"}, headers=headers)
    body = resp.json()
    assert [p["name"] for p in body["data"]] == ["Almond Milk", "Milk Powder"]
    assert body["meta"] == {"page": 1, "limit": 10, "total": 2, "totalPage": 1}

    resp = await client.get("/v1/products", params={"price": ">=100", "sort": "-price"}, headers=headers)
    assert [p["name"] for p in resp.json()["data"]] == ["Milk Powder", "Almond Milk"]

    resp = await client.get("/v1/products", params={"category": "grocery"}, headers=headers)
    assert [p["name"] for p in resp.json()["data"]] == ["Oatmeal"]


@pytest.mark.asyncio
async def test_product_field_exclusion(client: AsyncClient, tenant: dict):
    headers = tenant["headers"]
    await _seed_products(client, headers)

    resp = await client.get(
        "/v1/products", params={"fields": "-description,-sku,-tenant_id", "limit": 1}, headers=headers,
    )
    row = resp.json()["data"][0]
    assert "description" not in row and "sku" not in row and "tenant_id" not in row
    assert {"id", "name", "price", "is_deleted"} <= set(row)


@pytest.mark.asyncio
async def test_soft_deleted_products_disappear(client: AsyncClient, tenant: dict):
    headers = tenant["headers"]
    products = await _seed_products(client, headers)

    resp = await client.delete(f"/v1/products/{products[0]['id']}", headers=headers)
    assert resp.status_code == 204

    resp = await client.get("/v1/products", headers=headers)
    assert resp.json()["meta"]["total"] == 2
    resp = await client.get(f"/v1/products/{products[0]['id']}", headers=headers)
    assert resp.status_code == 404

    resp = await client.get("/v1/products", params={"is_deleted": "true"}, headers=headers)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_catalog_is_tenant_isolated(client: AsyncClient, tenant: dict, other_tenant: dict):
    products = await _seed_products(client, tenant["headers"])

    resp = await client.get("/v1/products", headers=other_tenant["headers"])
    assert resp.json()["data"] == []
    resp = await client.get(f"/v1/products/{products[0]['id']}", headers=other_tenant["headers"])
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_orders_embed_customer_and_search_through_it(client: AsyncClient, tenant: dict):
    headers = tenant["headers"]
    resp = await client.post(
        "/v1/customers", json={"name": "Alice Smith", "phone": "555-0100"}, headers=headers,
    )
    assert resp.status_code == 201
    alice = resp.json()

    resp = await client.post("/v1/orders", json={"customer_id": alice["id"], "total": 50}, headers=headers)
    assert resp.status_code == 201, resp.text
    order = resp.json()
    assert order["order_number"].startswith("ORD-")
    assert order["customer"]["name"] == "Alice Smith"
    assert order["currency"] == "USD"

    await client.post("/v1/orders", json={"total": 5}, headers=headers)

    resp = await client.get("/v1/orders", params={"searchTerm": "smith"}, headers=headers)
    data = resp.json()["data"]
    assert [o["id"] for o in data] == [order["id"]]
    assert data[0]["customer"]["phone"] == "555-0100"

    resp = await client.get(f"/v1/orders/{order['id']}", headers=headers)
    assert resp.json()["customer"]["id"] == alice["id"]

    resp = await client.get("/v1/customers", params={"q": "alice"}, headers=headers)
    assert resp.json()["meta"]["total"] == 1


@pytest.mark.asyncio
async def test_order_for_foreign_customer_rejected(client: AsyncClient, tenant: dict, other_tenant: dict):
    resp = await client.post("/v1/customers", json={"name": "Bob"}, headers=other_tenant["headers"])
    bob = resp.json()

    resp = await client.post(
        "/v1/orders", json={"customer_id": bob["id"], "total": 10}, headers=tenant["headers"],
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_writes_blocked_when_payment_required(client: AsyncClient, session, tenant: dict):
    headers = tenant["headers"]
    sub = await billing.get_tenant_subscription(session, uuid.UUID(tenant["tenant"]["id"]))
    sub.current_period_end = utcnow() - timedelta(days=10)
    sub.grace_period_ends_at = sub.current_period_end + timedelta(days=7)
    session.add(sub)
    await session.commit()

    resp = await client.post("/v1/products", json={"name": "X", "price": 1}, headers=headers)
    assert resp.status_code == 402
    resp = await client.post("/v1/customers", json={"name": "Y"}, headers=headers)
    assert resp.status_code == 402

    # Reads stay available
    resp = await client.get("/v1/products", headers=headers)
    assert resp.status_code == 200

    invoice = (await client.post(
        "/v1/subscription/checkout", json={"plan_id": "starter_monthly"}, headers=headers,
    )).json()
    await client.post(f"/v1/invoices/{invoice['id']}/pay", headers=headers)

    resp = await client.post("/v1/products", json={"name": "X", "price": 1}, headers=headers)
    assert resp.status_code == 201


@pytest.mark.asyncio
async def test_product_limit_of_plan_enforced(client: AsyncClient, session, tenant: dict):
    headers = tenant["headers"]
    tenant_id = uuid.UUID(tenant["tenant"]["id"])
    session.add_all([Product(tenant_id=tenant_id, name=f"P{i}", price=1) for i in range(50)])
    await session.commit()

    resp = await client.post("/v1/products", json={"name": "One too many", "price": 1}, headers=headers)
    assert resp.status_code == 403
    assert "max products" in resp.json()["detail"]

    # Soft-deleted products free their slot
    listed = await client.get("/v1/products", params={"limit": 1}, headers=headers)
    await client.delete(f"/v1/products/{listed.json()['data'][0]['id']}", headers=headers)
    resp = await client.post("/v1/products", json={"name": "Replacement", "price": 1}, headers=headers)
    assert resp.status_code == 201
