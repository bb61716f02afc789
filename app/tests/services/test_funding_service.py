from decimal import Decimal

import pytest

from app.core.errors import DuplicateReference, ValidationFailed
from app.services.funding_service import FundingService, ProviderCharge, funding_reference
from app.services.ledger_service import LedgerService


def charge_event(reference="PSK-1", amount=500_000, account_id="shipper-1", event="charge.success", currency="NGN"):
    return {
        "event": event,
        "data": {
            "reference": reference,
            "amount": amount,
            "currency": currency,
            "metadata": {"accountId": account_id},
        },
    }


class LateDuplicateLedger(LedgerService):
    """Misses the existing credit on the first lookup, as if it landed concurrently."""

    def __init__(self):
        super().__init__()
        self.lookups = 0

    def get_by_reference(self, db, *, account_id, reference):
        self.lookups += 1
        if self.lookups == 1:
            return None
        return super().get_by_reference(db, account_id=account_id, reference=reference)


def test_charge_amount_is_converted_from_minor_units():
    charge = ProviderCharge.from_event(charge_event(amount=1_250_050))

    assert charge.amount == Decimal("12500.50")
    assert charge.account_id == "shipper-1"
    assert charge.reference == "PSK-1"


def test_non_charge_events_are_ignored():
    assert ProviderCharge.from_event(charge_event(event="transfer.success")) is None


def test_charge_without_account_is_rejected():
    with pytest.raises(ValidationFailed):
        ProviderCharge.from_event(charge_event(account_id=None))


def test_credit_is_written_once_per_provider_reference(db):
    svc = FundingService()
    charge = ProviderCharge.from_event(charge_event())

    txn, created = svc.credit_charge(db, charge)
    again, created_again = svc.credit_charge(db, charge)

    assert created is True
    assert created_again is False
    assert again.id == txn.id
    assert txn.reference == funding_reference("PSK-1")
    assert LedgerService().balance(db, "shipper-1") == Decimal("5000.00")


def test_concurrent_redelivery_returns_the_existing_credit(db):
    charge = ProviderCharge.from_event(charge_event())
    first, _ = FundingService().credit_charge(db, charge)

    txn, created = FundingService(ledger=LateDuplicateLedger()).credit_charge(db, charge)

    assert created is False
    assert txn.id == first.id
    assert LedgerService().balance(db, "shipper-1") == Decimal("5000.00")


def test_foreign_currency_is_rejected(db):
    charge = ProviderCharge.from_event(charge_event(currency="USD"))

    with pytest.raises(ValidationFailed):
        FundingService().credit_charge(db, charge)
    assert LedgerService().balance(db, "shipper-1") == Decimal("0.00")


def test_recording_a_funding_reference_twice_is_refused(db):
    ledger = LedgerService()
    ledger.credit(db, account_id="shipper-1", amount=Decimal("1"), reference=funding_reference("PSK-9"))
    db.commit()

    with pytest.raises(DuplicateReference):
        ledger.credit(db, account_id="shipper-1", amount=Decimal("1"), reference=funding_reference("PSK-9"))
