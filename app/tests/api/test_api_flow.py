import json

from app.core.deps import get_settlement_service
from app.core.deps_webhook import sign_payload
from app.models.enums import PaymentStage
from app.services.ledger_service import LedgerService
from app.services.settlement_service import SettlementService

PREFIX = "/api/v1"
WEBHOOK_SECRET = "test-webhook-secret"


def create_shipment(client, headers, cost="50000"):
    r = client.post(
        f"{PREFIX}/shipments",
        json={"estimatedCost": cost, "pickupLocation": "Apapa", "destination": "Kano", "cargoType": "grain"},
        headers=headers,
    )
    assert r.status_code == 201, r.text
    return r.json()


def post_charge(client, account_id, amount_kobo, reference, event="charge.success", secret=WEBHOOK_SECRET):
    body = json.dumps(
        {
            "event": event,
            "data": {
                "reference": reference,
                "amount": amount_kobo,
                "currency": "NGN",
                "metadata": {"accountId": account_id},
            },
        }
    ).encode("utf-8")
    return client.post(
        f"{PREFIX}/wallet/webhook",
        content=body,
        headers={"X-Paystack-Signature": sign_payload(secret, body), "Content-Type": "application/json"},
    )


class FlakyLedger(LedgerService):
    """Fails credits for one stage while `failing` is set."""

    def __init__(self, stage):
        super().__init__()
        self.stage = stage
        self.failing = True

    def credit(self, db, **kwargs):
        if self.failing and kwargs.get("payment_stage") == self.stage:
            raise RuntimeError("ledger store unavailable")
        return super().credit(db, **kwargs)


def test_health(client):
    r = client.get(f"{PREFIX}/health", headers={"X-Request-Id": "rid-1"})
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "database": "ok", "request_id": "rid-1"}
    assert r.headers["X-Request-Id"] == "rid-1"


def test_requests_without_token_are_rejected(client):
    r = client.get(f"{PREFIX}/wallet")
    assert r.status_code in (401, 403)


def test_marketplace_flow_settles_the_bid(client, auth_headers):
    shipper = auth_headers("shipper-1", "shipper")
    trucker = auth_headers("trucker-1", "trucker")
    assert post_charge(client, "shipper-1", 5_500_000, "PSK-1").json()["credited"] is True

    shipment = create_shipment(client, shipper)
    assert shipment["status"] == "pending"
    assert client.get(f"{PREFIX}/wallet", headers=shipper).json()["balance"] == "5000.00"

    available = client.get(f"{PREFIX}/shipments/available", headers=trucker).json()
    assert [s["id"] for s in available] == [shipment["id"]]

    r = client.post(f"{PREFIX}/bids", json={"shipmentId": shipment["id"], "amount": "55000"}, headers=trucker)
    assert r.status_code == 201, r.text
    bid = r.json()
    assert bid["status"] == "pending"
    assert bid["truckerId"] == "trucker-1"

    listed = client.get(f"{PREFIX}/shipments/{shipment['id']}/bids", headers=shipper).json()
    assert [b["id"] for b in listed] == [bid["id"]]

    r = client.post(f"{PREFIX}/bids/{bid['id']}/accept", headers=shipper)
    assert r.status_code == 200, r.text
    accepted = r.json()
    assert accepted["overageDebited"] == "5000.00"
    assert accepted["acceptanceCredit"]["amount"] == "2750.00"
    assert accepted["shipment"]["carrierId"] == "trucker-1"
    assert client.get(f"{PREFIX}/wallet", headers=shipper).json()["balance"] == "0.00"

    r = client.post(f"{PREFIX}/shipments/{shipment['id']}/status", json={"status": "in_transit"}, headers=trucker)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["changed"] is True
    assert body["settlements"][0]["stage"] == "picked_up"
    assert body["settlements"][0]["amount"] == "33000.00"

    r = client.post(f"{PREFIX}/shipments/{shipment['id']}/status", json={"status": "delivered"}, headers=trucker)
    assert r.status_code == 200, r.text

    wallet = client.get(f"{PREFIX}/wallet", headers=trucker).json()
    assert wallet["balance"] == "55000.00"
    assert wallet["currency"] == "NGN"

    txns = client.get(f"{PREFIX}/wallet/transactions", headers=trucker).json()["items"]
    assert [t["paymentStage"] for t in txns] == ["completed", "picked_up", "accepted"]
    assert all("reference" not in t for t in txns)

    summary = client.get(f"{PREFIX}/shipments/{shipment['id']}/settlement", headers=shipper).json()
    assert summary["totalCredited"] == "55000.00"
    assert summary["overageDebited"] == "5000.00"
    assert all(s["credited"] for s in summary["stages"])


def test_fleet_manager_bid_requires_driver(client, auth_headers, fund):
    fund("shipper-1", "50000")
    shipper = auth_headers("shipper-1", "shipper")
    fleet = auth_headers("fm-1", "fleet_manager")
    shipment = create_shipment(client, shipper)

    r = client.post(f"{PREFIX}/bids", json={"shipmentId": shipment["id"], "amount": "50000"}, headers=fleet)
    assert r.status_code == 400

    r = client.post(
        f"{PREFIX}/bids",
        json={"shipmentId": shipment["id"], "amount": "50000", "driverId": "driver-7"},
        headers=fleet,
    )
    assert r.status_code == 201
    assert r.json()["fleetManagerId"] == "fm-1"
    assert r.json()["driverId"] == "driver-7"

    driver = auth_headers("driver-7", "driver", fleet_manager_id="fm-1")
    mine = client.get(f"{PREFIX}/bids/my", headers=driver).json()
    assert len(mine) == 1


def test_bid_errors_map_to_http(client, auth_headers, fund):
    fund("shipper-1", "50000")
    shipper = auth_headers("shipper-1", "shipper")
    trucker = auth_headers("trucker-1", "trucker")
    shipment = create_shipment(client, shipper)

    low = client.post(f"{PREFIX}/bids", json={"shipmentId": shipment["id"], "amount": "100"}, headers=trucker)
    assert low.status_code == 400

    ok = client.post(f"{PREFIX}/bids", json={"shipmentId": shipment["id"], "amount": "50000"}, headers=trucker)
    dup = client.post(f"{PREFIX}/bids", json={"shipmentId": shipment["id"], "amount": "51000"}, headers=trucker)
    assert ok.status_code == 201
    assert dup.status_code == 409

    by_shipper = client.post(f"{PREFIX}/bids", json={"shipmentId": shipment["id"], "amount": "50000"}, headers=shipper)
    assert by_shipper.status_code == 403


def test_accept_requires_funds_and_ownership(client, auth_headers, fund):
    fund("shipper-1", "50000")
    shipper = auth_headers("shipper-1", "shipper")
    other_shipper = auth_headers("shipper-2", "shipper")
    trucker = auth_headers("trucker-1", "trucker")
    shipment = create_shipment(client, shipper)
    bid = client.post(
        f"{PREFIX}/bids", json={"shipmentId": shipment["id"], "amount": "60000"}, headers=trucker
    ).json()

    assert client.post(f"{PREFIX}/bids/{bid['id']}/accept", headers=other_shipper).status_code == 403
    assert client.post(f"{PREFIX}/bids/{bid['id']}/accept", headers=shipper).status_code == 402
    assert client.post(f"{PREFIX}/bids/{bid['id']}/accept", headers=trucker).status_code == 403

    still = client.get(f"{PREFIX}/shipments/{shipment['id']}", headers=shipper).json()
    assert still["carrierId"] is None


def test_delete_bid(client, auth_headers, fund):
    fund("shipper-1", "50000")
    shipper = auth_headers("shipper-1", "shipper")
    trucker = auth_headers("trucker-1", "trucker")
    other = auth_headers("trucker-2", "trucker")
    shipment = create_shipment(client, shipper)
    bid = client.post(
        f"{PREFIX}/bids", json={"shipmentId": shipment["id"], "amount": "50000"}, headers=trucker
    ).json()

    assert client.delete(f"{PREFIX}/bids/{bid['id']}", headers=other).status_code == 409
    assert client.delete(f"{PREFIX}/bids/{bid['id']}", headers=trucker).status_code == 200
    assert client.delete(f"{PREFIX}/bids/{bid['id']}", headers=trucker).status_code == 409


def test_idempotency_key_replays_status_response(client, auth_headers, fund):
    fund("shipper-1", "50000")
    shipper = auth_headers("shipper-1", "shipper")
    trucker = auth_headers("trucker-1", "trucker")
    shipment = create_shipment(client, shipper)
    bid = client.post(
        f"{PREFIX}/bids", json={"shipmentId": shipment["id"], "amount": "50000"}, headers=trucker
    ).json()

    accept_headers = {**shipper, "Idempotency-Key": "accept-1"}
    first = client.post(f"{PREFIX}/bids/{bid['id']}/accept", headers=accept_headers)
    replay = client.post(f"{PREFIX}/bids/{bid['id']}/accept", headers=accept_headers)
    assert first.status_code == replay.status_code == 200
    assert replay.json() == first.json()

    status_headers = {**trucker, "Idempotency-Key": "status-1"}
    url = f"{PREFIX}/shipments/{shipment['id']}/status"
    first = client.post(url, json={"status": "in_transit"}, headers=status_headers)
    replay = client.post(url, json={"status": "in_transit"}, headers=status_headers)
    assert replay.json() == first.json()
    assert replay.json()["settlements"][0]["applied"] is True

    reused = client.post(url, json={"status": "delivered"}, headers=status_headers)
    assert reused.status_code == 409

    wallet = client.get(f"{PREFIX}/wallet", headers=trucker).json()
    assert wallet["balance"] == "32500.00"


def test_status_permissions(client, auth_headers, fund):
    fund("shipper-1", "50000")
    shipper = auth_headers("shipper-1", "shipper")
    stranger = auth_headers("trucker-9", "trucker")
    shipment = create_shipment(client, shipper)
    url = f"{PREFIX}/shipments/{shipment['id']}/status"

    assert client.post(url, json={"status": "in_transit"}, headers=stranger).status_code == 403
    assert client.post(url, json={"status": "teleported"}, headers=shipper).status_code == 400
    assert client.post(url, json={"status": "cancelled"}, headers=shipper).status_code == 200
    assert client.post(url, json={"status": "in_transit"}, headers=shipper).status_code == 409
    assert client.post(url, json={"status": "assigned"}, headers=shipper).status_code == 400


def test_admin_chain_verification(client, auth_headers, fund):
    fund("trucker-1", "750")
    admin = auth_headers("admin-1", "admin")
    trucker = auth_headers("trucker-1", "trucker")

    assert client.get(f"{PREFIX}/wallet/trucker-1/verify", headers=trucker).status_code == 403
    body = client.get(f"{PREFIX}/wallet/trucker-1/verify", headers=admin).json()
    assert body == {"accountId": "trucker-1", "valid": True, "balance": "750.00", "currency": "NGN"}


def test_posting_a_shipment_takes_the_estimate_from_the_wallet(client, auth_headers, fund):
    shipper = auth_headers("shipper-1", "shipper")

    r = client.post(f"{PREFIX}/shipments", json={"estimatedCost": "50000"}, headers=shipper)
    assert r.status_code == 402
    assert client.get(f"{PREFIX}/shipments/my", headers=shipper).json() == []

    fund("shipper-1", "50000")
    shipment = create_shipment(client, shipper)
    assert client.get(f"{PREFIX}/wallet", headers=shipper).json()["balance"] == "0.00"

    url = f"{PREFIX}/shipments/{shipment['id']}/status"
    assert client.post(url, json={"status": "cancelled"}, headers=shipper).status_code == 200
    assert client.post(url, json={"status": "cancelled"}, headers=shipper).status_code == 200
    assert client.get(f"{PREFIX}/wallet", headers=shipper).json()["balance"] == "50000.00"


def test_failed_stage_is_retried_under_the_same_idempotency_key(client, auth_headers, fund):
    fund("shipper-1", "50000")
    ledger = FlakyLedger(PaymentStage.picked_up)
    client.app.dependency_overrides[get_settlement_service] = lambda: SettlementService(ledger=ledger)
    shipper = auth_headers("shipper-1", "shipper")
    trucker = auth_headers("trucker-1", "trucker")
    shipment = create_shipment(client, shipper)
    bid = client.post(
        f"{PREFIX}/bids", json={"shipmentId": shipment["id"], "amount": "50000"}, headers=trucker
    ).json()
    assert client.post(f"{PREFIX}/bids/{bid['id']}/accept", headers=shipper).status_code == 200

    url = f"{PREFIX}/shipments/{shipment['id']}/status"
    headers = {**trucker, "Idempotency-Key": "pickup-1"}
    first = client.post(url, json={"status": "in_transit"}, headers=headers).json()
    assert first["settlementFailed"] is True
    assert first["settlements"][0]["error"] == "credit_failed"
    assert "ledger" not in first["settlements"][0]["error"]

    ledger.failing = False
    retry = client.post(url, json={"status": "in_transit"}, headers=headers).json()
    assert retry["settlements"][0]["applied"] is True
    assert client.get(f"{PREFIX}/wallet", headers=trucker).json()["balance"] == "32500.00"

    replay = client.post(url, json={"status": "in_transit"}, headers=headers).json()
    assert replay == retry


def test_funding_webhook_credits_once_per_charge(client, auth_headers):
    shipper = auth_headers("shipper-1", "shipper")

    first = post_charge(client, "shipper-1", 1_250_050, "PSK-77")
    again = post_charge(client, "shipper-1", 1_250_050, "PSK-77")

    assert first.status_code == again.status_code == 200
    assert first.json()["credited"] is True
    assert again.json()["credited"] is False
    assert again.json()["transactionId"] == first.json()["transactionId"]
    assert client.get(f"{PREFIX}/wallet", headers=shipper).json()["balance"] == "12500.50"


def test_funding_webhook_rejects_bad_signatures_and_ignores_other_events(client, auth_headers):
    shipper = auth_headers("shipper-1", "shipper")

    assert post_charge(client, "shipper-1", 100_000, "PSK-1", secret="wrong").status_code == 401
    ignored = post_charge(client, "shipper-1", 100_000, "PSK-2", event="transfer.success")
    assert ignored.status_code == 200
    assert ignored.json() == {"received": True, "credited": False}

    assert client.get(f"{PREFIX}/wallet", headers=shipper).json()["balance"] == "0.00"
