# app/services/funding_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.errors import DuplicateReference, InvalidAmount, ValidationFailed
from app.models.wallet_transaction import WalletTransaction
from app.services.ledger_service import LedgerService, money
from app.services.notifications import LoggingNotificationSink, NotificationSink

logger = logging.getLogger(__name__)

CHARGE_SUCCESS = "charge.success"


def funding_reference(provider_reference: str) -> str:
    return f"FUND-{provider_reference}"


@dataclass(frozen=True)
class ProviderCharge:
    """
    A completed card / transfer charge reported by the payment provider.
    amount is in major units; the provider reports minor units (kobo).
    """

    reference: str
    account_id: str
    amount: Decimal
    currency: Optional[str] = None

    @classmethod
    def from_event(cls, payload: Dict[str, Any]) -> Optional["ProviderCharge"]:
        """
        None for events that do not move money into a wallet.
        """
        if payload.get("event") != CHARGE_SUCCESS:
            return None

        data = payload.get("data") or {}
        reference = data.get("reference")
        metadata = data.get("metadata") or {}
        account_id = metadata.get("accountId") or metadata.get("userId")
        if not reference or not account_id:
            raise ValidationFailed("Charge event is missing its reference or account.")

        try:
            amount = money(Decimal(str(data.get("amount"))) / 100)
        except (InvalidOperation, TypeError, ValueError):
            raise InvalidAmount("Charge amount must be a number.")

        return cls(
            reference=str(reference),
            account_id=str(account_id),
            amount=amount,
            currency=data.get("currency"),
        )


class FundingService:
    """
    Money in: credits a wallet once per provider charge.

    The ledger reference is derived from the provider reference, so a
    redelivered webhook finds the existing credit instead of writing another.
    """

    def __init__(self, ledger: Optional[LedgerService] = None, notifier: Optional[NotificationSink] = None):
        self.ledger = ledger or LedgerService()
        self.notifier = notifier or LoggingNotificationSink()

    def credit_charge(self, db: Session, charge: ProviderCharge) -> Tuple[WalletTransaction, bool]:
        """
        Returns (transaction, created). created is False for a redelivery.
        """
        if charge.currency and charge.currency != self.ledger.currency:
            raise ValidationFailed(f"Unsupported currency {charge.currency}.")

        reference = funding_reference(charge.reference)
        existing = self.ledger.get_by_reference(db, account_id=charge.account_id, reference=reference)
        if existing is not None:
            logger.info("funding already recorded", extra={"account_id": charge.account_id})
            return existing, False

        try:
            txn = self.ledger.credit(
                db,
                account_id=charge.account_id,
                amount=charge.amount,
                reference=reference,
                description="Wallet funding",
                metadata={
                    "providerReference": charge.reference,
                    "source": "wallet_funding",
                },
            )
            db.commit()
        except DuplicateReference:
            # the same charge delivered twice at once; the other delivery wrote it
            db.rollback()
            existing = self.ledger.get_by_reference(db, account_id=charge.account_id, reference=reference)
            if existing is None:
                raise
            return existing, False
        except Exception:
            db.rollback()
            raise

        logger.info(
            "wallet funded",
            extra={"account_id": charge.account_id, "amount": str(txn.amount)},
        )
        try:
            self.notifier.transaction_recorded(txn)
        except Exception:
            logger.exception("notification failed", extra={"transaction_id": str(txn.id)})
        return txn, True
