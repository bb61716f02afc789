import json
from decimal import Decimal

import httpx
import pytest

from app.core.errors import InsufficientFunds, InvalidAmount, PayoutFailed
from app.models.enums import TransactionStatus
from app.services.ledger_service import LedgerService
from app.services.payout_service import BankDetails, PayoutClient, WithdrawalService

BANK = BankDetails(account_number="0123456789", bank_code="058", account_name="Ada Carrier")


class Provider:
    """In-process stand-in for the transfer provider."""

    def __init__(self, transfer_status=200):
        self.transfer_status = transfer_status
        self.requests = []
        self.tokens_issued = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = json.loads(request.content or b"{}")

        if request.url.path == "/oauth/token":
            self.tokens_issued += 1
            return httpx.Response(200, json={"access_token": f"tok-{self.tokens_issued}", "expires_in": 3600})

        if request.headers.get("Authorization") != f"Bearer tok-{self.tokens_issued}":
            return httpx.Response(401, json={"message": "Invalid key"})

        if request.url.path == "/transferrecipient":
            return httpx.Response(200, json={"status": True, "data": {"recipient_code": "RCP_1"}})

        if request.url.path == "/transfer":
            if self.transfer_status != 200:
                return httpx.Response(self.transfer_status, json={"status": False, "message": "Transfer declined"})
            return httpx.Response(
                200,
                json={"status": True, "data": {"transfer_code": "TRF_1", "amount": body["amount"]}},
            )

        return httpx.Response(404)


def make_client(provider) -> PayoutClient:
    return PayoutClient(
        base_url="https://payouts.test",
        client_id="id",
        client_secret="secret",
        transport=httpx.MockTransport(provider),
    )


def test_transfer_sends_minor_units_and_reuses_token():
    provider = Provider()
    client = make_client(provider)

    client.transfer(amount=Decimal("1500.50"), bank=BANK, reference="W-1", reason="test")
    client.transfer(amount=Decimal("10"), bank=BANK, reference="W-2", reason="test")

    assert provider.tokens_issued == 1
    transfers = [json.loads(r.content) for r in provider.requests if r.url.path == "/transfer"]
    assert [t["amount"] for t in transfers] == [150050, 1000]


def test_revoked_token_is_refreshed_once():
    provider = Provider()
    client = make_client(provider)
    client.tokens.get()

    provider.tokens_issued += 1  # provider rotated keys; cached token is now stale

    data = client.transfer(amount=Decimal("100"), bank=BANK, reference="W-1", reason="test")
    assert data["transfer_code"] == "TRF_1"


def test_provider_error_raises_payout_failed():
    client = make_client(Provider(transfer_status=400))

    with pytest.raises(PayoutFailed, match="Transfer declined"):
        client.transfer(amount=Decimal("100"), bank=BANK, reference="W-1", reason="test")


def test_missing_credentials_fail_before_any_request():
    provider = Provider()
    client = PayoutClient(
        base_url="https://payouts.test",
        client_id=None,
        client_secret=None,
        transport=httpx.MockTransport(provider),
    )

    with pytest.raises(PayoutFailed):
        client.transfer(amount=Decimal("100"), bank=BANK, reference="W-1", reason="test")
    assert provider.requests == []


# ---------------------------------------------------------------------
# withdrawals
# ---------------------------------------------------------------------


def test_successful_withdrawal_debits_wallet(db, fund):
    fund("trucker-1", "5000")
    svc = WithdrawalService(make_client(Provider()))

    txn = svc.withdraw(db, account_id="trucker-1", amount=Decimal("2000"), bank=BANK)

    assert txn.status == TransactionStatus.success.value
    assert txn.amount == Decimal("-2000.00")
    assert LedgerService().balance(db, "trucker-1") == Decimal("3000.00")


def test_failed_transfer_is_recorded_but_not_charged(db, fund):
    fund("trucker-1", "5000")
    svc = WithdrawalService(make_client(Provider(transfer_status=502)))

    with pytest.raises(PayoutFailed):
        svc.withdraw(db, account_id="trucker-1", amount=Decimal("2000"), bank=BANK)

    ledger = LedgerService()
    assert ledger.balance(db, "trucker-1") == Decimal("5000.00")
    latest = ledger.list_transactions(db, "trucker-1", limit=1)[0]
    assert latest.status == TransactionStatus.failed.value
    assert latest.amount == Decimal("-2000.00")
    assert ledger.verify_chain(db, "trucker-1") is True


def test_withdrawal_minimum_and_balance(db, fund):
    fund("trucker-1", "500")
    provider = Provider()
    svc = WithdrawalService(make_client(provider))

    with pytest.raises(InvalidAmount):
        svc.withdraw(db, account_id="trucker-1", amount=Decimal("99.99"), bank=BANK)
    with pytest.raises(InsufficientFunds):
        svc.withdraw(db, account_id="trucker-1", amount=Decimal("500.01"), bank=BANK)

    assert provider.requests == []
    assert LedgerService().balance(db, "trucker-1") == Decimal("500.00")
