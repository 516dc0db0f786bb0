"""HTTP surface of the marketplace engine, end to end."""

from protean import current_domain

from marketplace.catalogue.vendor import Vendor
from marketplace.order.order import Order


def _line_id(order_id, sku) -> str:
    order = current_domain.repository_for(Order).get(order_id)
    return str(next(i.id for i in order.items if i.sku == sku))


class TestCatalogueEndpoints:
    def test_register_vendor(self, client):
        response = client.post("/vendors", json={"name": "Cedar Works", "owner_id": "seller-c"})

        assert response.status_code == 201
        vendor = current_domain.repository_for(Vendor).get(response.json()["vendor_id"])
        assert vendor.name == "Cedar Works"

    def test_stock_levels(self, client, api_store_a):
        response = client.get("/stock", params={"vendor_id": api_store_a["vendor_id"]})

        assert response.status_code == 200
        assert [(r["sku"], r["available"]) for r in response.json()] == [("AP-BOWL", 10), ("AP-MUG", 10)]


class TestCheckoutEndpoints:
    def test_checkout_splits_by_vendor(self, placed):
        assert placed["cart_total"] == 105.0
        assert sorted(o["total"] for o in placed["orders"]) == [52.5, 52.5]

    def test_quote(self, client, checkout_body):
        response = client.post(
            "/checkout/quote",
            json={"items": checkout_body["items"], "shipping_address": checkout_body["shipping_address"]},
        )

        assert response.status_code == 200
        assert {o["service"] for o in response.json()["options"]} == {"Standard", "Express", "Overnight"}

    def test_master_status(self, client, placed):
        response = client.get(f"/order-groups/{placed['order_group_id']}/status")

        assert response.status_code == 200
        assert response.json()["status"] == "unfulfilled"


class TestPaymentEndpoints:
    def test_payment_intent(self, client, placed):
        response = client.post(f"/order-groups/{placed['order_group_id']}/payment-intent")

        assert response.status_code == 200
        assert response.json()["amount"] == 105.0
        assert response.json()["payment_intent_id"].startswith("pi_fake_")

    def test_webhook_marks_orders_paid(self, client, placed, gateway, signed_event):
        group_id = placed["order_group_id"]
        intent = client.post(f"/order-groups/{group_id}/payment-intent").json()
        payload, signature = signed_event(
            gateway, group_id, intent["payment_intent_id"], intent["amount"], event_id="evt_api_001"
        )

        first = client.post("/payments/webhook", content=payload, headers={"X-Gateway-Signature": signature})
        second = client.post("/payments/webhook", content=payload, headers={"X-Gateway-Signature": signature})

        assert first.json()["outcome"] == "new"
        assert len(first.json()["paid_order_ids"]) == 2
        assert second.json()["outcome"] == "already_processed"

    def test_webhook_rejects_bad_signature(self, client, placed, gateway, signed_event):
        payload, _ = signed_event(gateway, placed["order_group_id"], "pi_x", 105.0)

        response = client.post("/payments/webhook", content=payload, headers={"X-Gateway-Signature": "forged"})

        assert response.status_code == 401


class TestFulfillmentEndpoints:
    def test_ship_track_and_complete(self, client, paid, api_store_a, api_store_b):
        order_a, order_b = (o["order_id"] for o in paid["orders"])

        first = client.post(
            f"/orders/{order_a}/shipments",
            json={"carrier": "UPS", "tracking_number": "1Z001"},
            headers=api_store_a["headers"],
        )
        assert first.status_code == 200
        assert first.json()["notification"] == "first_shipment"
        token = first.json()["tracking_token"]

        tracking = client.get(f"/tracking/{token}")
        assert tracking.status_code == 200
        assert tracking.json()["master_status"] == "partial"

        second = client.post(
            f"/orders/{order_b}/shipments",
            json={"carrier": "FedEx", "tracking_number": "FX001"},
            headers=api_store_b["headers"],
        )
        assert second.json()["master_status"] == "fulfilled"
        assert second.json()["notification"] == "group_fulfilled"

    def test_refund_and_receipt(self, client, paid, api_store_a):
        order_a = paid["orders"][0]["order_id"]

        response = client.post(
            f"/orders/{order_a}/refunds",
            json={"lines": [{"line_item_id": _line_id(order_a, "AP-BOWL"), "quantity": 1}], "reason": "Chipped"},
            headers=api_store_a["headers"],
        )
        assert response.status_code == 200
        refund = response.json()
        assert refund["kind"] == "partial"
        assert refund["payment_status"] == "partially_refunded"

        receipt = client.get(f"/orders/{order_a}/refunds/{refund['refund_id']}/receipt")
        assert receipt.status_code == 200
        assert "REFUND RECEIPT" in receipt.text

    def test_cancel_and_archive(self, client, placed, api_store_a):
        order_a = placed["orders"][0]["order_id"]

        canceled = client.post(f"/orders/{order_a}/cancel", json={"reason": "Out of time"}, headers=api_store_a["headers"])
        assert canceled.status_code == 200
        assert canceled.json()["released"] == {"AP-MUG": 1, "AP-BOWL": 1}

        archived = client.post(f"/orders/{order_a}/archive", headers=api_store_a["headers"])
        assert archived.json()["status"] == "archived"

    def test_hold_blocks_shipment_until_released(self, client, paid, api_store_a):
        order_a = paid["orders"][0]["order_id"]

        held = client.post(
            f"/orders/{order_a}/workflow",
            json={"workflow_status": "on_hold", "hold_reason": "Address check"},
            headers=api_store_a["headers"],
        )
        assert held.status_code == 200
        assert held.json() == {"order_id": order_a, "workflow_status": "on_hold"}

        blocked = client.post(
            f"/orders/{order_a}/shipments",
            json={"carrier": "UPS", "tracking_number": "1ZHOLD"},
            headers=api_store_a["headers"],
        )
        assert blocked.status_code == 400

        client.post(f"/orders/{order_a}/workflow", json={"workflow_status": "normal"}, headers=api_store_a["headers"])
        shipped = client.post(
            f"/orders/{order_a}/shipments",
            json={"carrier": "UPS", "tracking_number": "1ZHOLD"},
            headers=api_store_a["headers"],
        )
        assert shipped.status_code == 200
