import pytest

from app.core.errors import IdempotencyKeyReused
from app.services.idempotency_service import IdempotencyScope, IdempotencyService

SCOPE = IdempotencyScope(caller_id="shipper-1", endpoint_key="POST:/api/v1/bids/{bid_id}/accept", idem_key="k-1")


def test_first_request_has_nothing_to_replay(db):
    replay, fingerprint = IdempotencyService().check(db, SCOPE, {"body": None})

    assert replay is None
    assert len(fingerprint) == 64


def test_stored_response_is_replayed_for_same_payload(db):
    svc = IdempotencyService()
    _, fingerprint = svc.check(db, SCOPE, {"body": {"status": "in_transit"}})
    svc.remember(db, SCOPE, fingerprint=fingerprint, body={"changed": True}, status_code=200)

    replay, _ = svc.check(db, SCOPE, {"body": {"status": "in_transit"}})
    assert replay.body == {"changed": True}
    assert replay.status_code == 200


def test_same_key_with_other_payload_is_rejected(db):
    svc = IdempotencyService()
    _, fingerprint = svc.check(db, SCOPE, {"body": {"status": "in_transit"}})
    svc.remember(db, SCOPE, fingerprint=fingerprint, body={"changed": True})

    with pytest.raises(IdempotencyKeyReused):
        svc.check(db, SCOPE, {"body": {"status": "delivered"}})


def test_keys_are_scoped_per_caller(db):
    svc = IdempotencyService()
    _, fingerprint = svc.check(db, SCOPE, {"body": None})
    svc.remember(db, SCOPE, fingerprint=fingerprint, body={"ok": 1})

    other = IdempotencyScope(caller_id="shipper-2", endpoint_key=SCOPE.endpoint_key, idem_key=SCOPE.idem_key)
    replay, _ = svc.check(db, other, {"body": {"anything": "else"}})
    assert replay is None


def test_first_stored_response_wins(db):
    svc = IdempotencyService()
    _, fingerprint = svc.check(db, SCOPE, {"body": None})
    svc.remember(db, SCOPE, fingerprint=fingerprint, body={"n": 1})
    svc.remember(db, SCOPE, fingerprint=fingerprint, body={"n": 2}, status_code=201)

    replay, _ = svc.check(db, SCOPE, {"body": None})
    assert replay.body == {"n": 1}
    assert replay.status_code == 200
