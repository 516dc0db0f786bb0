import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from marketplace.api import register_error_handlers, routers


@pytest.fixture()
def client():
    app = FastAPI()
    for router in routers:
        app.include_router(router)
    register_error_handlers(app)
    return TestClient(app)


def _seller_headers(owner_id: str) -> dict:
    return {"X-Identity-Id": owner_id, "X-Identity-Role": "seller", "X-Identity-Email": f"{owner_id}@example.com"}


def _open_store_via_api(client, name, owner_id, postal_code, listings):
    """Register a vendor, a US profile and stocked listings through the API."""
    vendor_id = client.post(
        "/vendors",
        json={
            "name": name,
            "owner_id": owner_id,
            "origin": {"street": "12 Mill Lane", "city": "Portland", "postal_code": postal_code, "country": "US"},
        },
    ).json()["vendor_id"]
    client.post(
        f"/vendors/{vendor_id}/shipping-profiles",
        json={"name": "Domestic", "destinations": [{"country_code": "US", "first_item_price": 5.0}]},
    )

    listing_ids = {}
    for sku, title, price, stock in listings:
        listing_id = client.post(
            "/listings",
            json={
                "vendor_id": vendor_id,
                "sku": sku,
                "title": title,
                "price": price,
                "weight": 16.0,
                "length": 10.0,
                "width": 8.0,
                "height": 4.0,
            },
        ).json()["listing_id"]
        client.post("/stock/receive", json={"listing_id": listing_id, "quantity": stock})
        listing_ids[sku] = listing_id
    return {"vendor_id": vendor_id, "headers": _seller_headers(owner_id), "listings": listing_ids}


@pytest.fixture()
def api_store_a(client):
    return _open_store_via_api(
        client,
        "Alder & Pine",
        "seller-a",
        "97201",
        [("AP-MUG", "Stoneware Mug", 30.0, 10), ("AP-BOWL", "Serving Bowl", 20.0, 10)],
    )


@pytest.fixture()
def api_store_b(client):
    return _open_store_via_api(client, "Birch Goods", "seller-b", "10001", [("BG-LAMP", "Desk Lamp", 50.0, 10)])


@pytest.fixture()
def checkout_body(api_store_a, api_store_b, us_address):
    return {
        "items": [
            {"listing_id": api_store_a["listings"]["AP-MUG"], "quantity": 1},
            {"listing_id": api_store_a["listings"]["AP-BOWL"], "quantity": 1},
            {"listing_id": api_store_b["listings"]["BG-LAMP"], "quantity": 1},
        ],
        "shipping_address": us_address,
        "customer_email": "jane.doe@example.com",
        "customer_name": "Jane Doe",
        "discount_amount": 10,
        "shipping_amount": 15,
    }


@pytest.fixture()
def placed(client, checkout_body):
    response = client.post("/checkout", json=checkout_body)
    assert response.status_code == 201
    return response.json()


@pytest.fixture()
def paid(client, placed, gateway, signed_event):
    group_id = placed["order_group_id"]
    intent = client.post(f"/order-groups/{group_id}/payment-intent").json()
    payload, signature = signed_event(gateway, group_id, intent["payment_intent_id"], intent["amount"])
    response = client.post("/payments/webhook", content=payload, headers={"X-Gateway-Signature": signature})
    assert response.status_code == 200
    return placed
