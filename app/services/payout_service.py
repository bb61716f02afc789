# app/services/payout_service.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import httpx
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.errors import InvalidAmount, PayoutFailed, ValidationFailed
from app.core.token_cache import TokenCache
from app.models.enums import TransactionStatus, TransactionType
from app.models.wallet_transaction import WalletTransaction
from app.services.ledger_service import LedgerService, money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BankDetails:
    account_number: str
    bank_code: str
    account_name: Optional[str] = None
    bank_name: Optional[str] = None


class PayoutClient:
    """
    Bank transfer provider client.

    Authenticates with client credentials; the bearer token lives in an
    injected TokenCache so it is fetched once and reused until near expiry.
    """

    def __init__(
        self,
        *,
        base_url: str,
        client_id: Optional[str],
        client_secret: Optional[str],
        timeout: float = 15.0,
        token_cache: Optional[TokenCache] = None,
        refresh_margin: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self._http = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)
        self.tokens = token_cache or TokenCache(self._fetch_token, refresh_margin=refresh_margin)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "PayoutClient":
        return cls(
            base_url=settings.payout_base_url,
            client_id=settings.payout_client_id,
            client_secret=settings.payout_client_secret,
            timeout=settings.payout_timeout_seconds,
            refresh_margin=settings.payout_token_refresh_margin_seconds,
            **kwargs,
        )

    def close(self) -> None:
        self._http.close()

    def _fetch_token(self) -> Tuple[str, float]:
        if not self.client_id or not self.client_secret:
            raise PayoutFailed("Payout provider credentials are not configured.")
        data = self._send(
            "POST",
            "/oauth/token",
            json={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            authenticated=False,
        )
        token = data.get("access_token")
        if not token:
            raise PayoutFailed("Payout provider returned no access token.")
        return token, float(data.get("expires_in", 3600))

    def _send(self, method: str, path: str, *, json: Dict[str, Any], authenticated: bool = True) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.tokens.get()}"} if authenticated else {}
        try:
            response = self._http.request(method, path, json=json, headers=headers)
            if response.status_code == 401 and authenticated:
                # token revoked early; fetch a new one and retry once
                self.tokens.invalidate()
                headers = {"Authorization": f"Bearer {self.tokens.get()}"}
                response = self._http.request(method, path, json=json, headers=headers)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "payout provider error",
                extra={"path": path, "status_code": e.response.status_code},
            )
            message = _provider_message(e.response) or f"Payout provider returned {e.response.status_code}."
            raise PayoutFailed(message) from e
        except httpx.HTTPError as e:
            logger.warning("payout provider unreachable", extra={"path": path, "error": str(e)})
            raise PayoutFailed("Payout provider is unreachable.") from e
        except ValueError as e:
            raise PayoutFailed("Payout provider returned a malformed response.") from e

        if not isinstance(body, dict):
            raise PayoutFailed("Payout provider returned a malformed response.")
        return body

    def transfer(self, *, amount: Decimal, bank: BankDetails, reference: str, reason: str) -> Dict[str, Any]:
        """
        Create the transfer recipient, then move the funds.
        Amounts go out in minor units (kobo).
        """
        recipient = self._send(
            "POST",
            "/transferrecipient",
            json={
                "type": "nuban",
                "name": bank.account_name or bank.account_number,
                "account_number": bank.account_number,
                "bank_code": bank.bank_code,
                "currency": "NGN",
            },
        )
        recipient_code = (recipient.get("data") or {}).get("recipient_code")
        if not recipient.get("status") or not recipient_code:
            raise PayoutFailed(recipient.get("message") or "Failed to create transfer recipient.")

        result = self._send(
            "POST",
            "/transfer",
            json={
                "source": "balance",
                "amount": int(money(amount) * 100),
                "recipient": recipient_code,
                "reason": reason,
                "reference": reference,
            },
        )
        if not result.get("status") or not result.get("data"):
            raise PayoutFailed(result.get("message") or "Transfer was not accepted.")
        return result["data"]


def _provider_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("message") if isinstance(body, dict) else None


class WithdrawalService:
    """
    Moves wallet funds to the owner's bank account.

    The debit is written before the transfer is attempted so the balance
    check and the claim on the funds happen under the ledger's per-account
    serialization. A failed transfer rolls the debit back and records a
    failed debit instead, which never counts toward the balance.
    """

    def __init__(
        self,
        client: PayoutClient,
        *,
        ledger: Optional[LedgerService] = None,
        min_amount: Decimal = Decimal("100"),
    ):
        self.client = client
        self.ledger = ledger or LedgerService()
        self.min_amount = money(min_amount)

    def withdraw(self, db: Session, *, account_id: str, amount, bank: BankDetails) -> WalletTransaction:
        amount = money(amount)
        if amount < self.min_amount:
            raise InvalidAmount(f"Amount is required and must be at least {self.min_amount}.")
        if not bank.account_number or not bank.bank_code:
            raise ValidationFailed("Bank account details required.")

        reference = f"WITHDRAW-{uuid.uuid4().hex}-{account_id}"
        description = f"Withdrawal to bank account: {bank.account_number}"
        metadata = {
            "bankAccountNumber": bank.account_number,
            "bankCode": bank.bank_code,
            "bankName": bank.bank_name,
        }

        try:
            txn = self.ledger.debit(
                db,
                account_id=account_id,
                amount=amount,
                reference=reference,
                description=description,
                metadata=metadata,
            )
            transfer = self.client.transfer(
                amount=amount,
                bank=bank,
                reference=reference,
                reason=f"Wallet withdrawal - {reference}",
            )
            db.commit()
        except PayoutFailed as exc:
            db.rollback()
            self._record_failure(db, account_id=account_id, amount=amount, reference=reference,
                                 description=description, metadata={**metadata, "error": str(exc)})
            raise
        except Exception:
            db.rollback()
            raise

        logger.info(
            "withdrawal completed",
            extra={
                "account_id": account_id,
                "amount": str(amount),
                "transaction_id": str(txn.id),
                "transfer_code": transfer.get("transfer_code"),
            },
        )
        return txn

    def _record_failure(self, db: Session, **kwargs: Any) -> None:
        try:
            self.ledger.record(db, type=TransactionType.debit, status=TransactionStatus.failed, **kwargs)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("failed to record failed withdrawal", extra={"account_id": kwargs["account_id"]})
        else:
            logger.warning(
                "withdrawal failed",
                extra={"account_id": kwargs["account_id"], "amount": str(kwargs["amount"])},
            )
