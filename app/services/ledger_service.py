#app/services/ledger_service.py
from __future__ import annotations

import hashlib
import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import (
    ConcurrentLedgerWrite,
    DuplicateReference,
    InsufficientFunds,
    InvalidAmount,
)
from app.models.enums import PaymentStage, TransactionStatus, TransactionType
from app.models.wallet_transaction import WalletTransaction

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _now():
    return datetime.now(timezone.utc)


def money(value: Any) -> Decimal:
    """Quantize to currency precision (half-up)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def json_safe(value: Any) -> Any:
    """
    Convert metadata into a JSON-safe structure.
    Decimals are kept as strings to preserve precision.
    """
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    return value


def _canonical_json(payload: Dict[str, Any]) -> str:
    """
    Canonical JSON representation:
    - sorted keys
    - no whitespace
    - deterministic string
    """
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def _hash(prev_hash: str, payload: Dict[str, Any]) -> str:
    """
    entry_hash = SHA256(prev_hash + canonical(payload))
    """
    h = hashlib.sha256()
    h.update(prev_hash.encode("utf-8"))
    h.update(_canonical_json(payload).encode("utf-8"))
    return h.hexdigest()


def _entry_payload(row: WalletTransaction) -> Dict[str, Any]:
    return {
        "account_id": row.account_id,
        "seq": row.seq,
        "reference": row.reference,
        "amount": str(money(row.amount)),
        "currency": row.currency,
        "type": row.type,
        "status": row.status,
        "shipment_id": str(row.shipment_id) if row.shipment_id else None,
        "bid_id": str(row.bid_id) if row.bid_id else None,
        "payment_stage": row.payment_stage,
        "metadata": row.metadata_json or {},
    }


class LedgerService:
    """
    Append-only wallet ledger.
    This is the financial source of truth; balances are derived, never stored.

    Writes are serialized per account through the (account_id, seq) unique
    constraint: every entry claims last.seq + 1, so two writers that read the
    same balance cannot both commit.

    Methods only flush. The caller owns commit / rollback, which lets several
    ledger writes join one all-or-nothing unit.
    """

    GENESIS_HASH = "0" * 64

    def __init__(self, currency: str = "NGN"):
        self.currency = currency

    # ─────────────────────────────────────────────
    # INTERNAL HELPERS
    # ─────────────────────────────────────────────

    def _get_last_entry(
        self,
        db: Session,
        *,
        account_id: str,
        for_update: bool = False,
    ) -> Optional[WalletTransaction]:
        stmt = (
            select(WalletTransaction)
            .where(WalletTransaction.account_id == account_id)
            .order_by(WalletTransaction.seq.desc())
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return db.execute(stmt).scalar_one_or_none()

    def _reference_exists(self, db: Session, *, account_id: str, reference: str) -> bool:
        return (
            db.execute(
                select(WalletTransaction.id).where(
                    WalletTransaction.account_id == account_id,
                    WalletTransaction.reference == reference,
                )
            ).first()
            is not None
        )

    # ─────────────────────────────────────────────
    # READS
    # ─────────────────────────────────────────────

    def balance(self, db: Session, account_id: str) -> Decimal:
        total = db.execute(
            select(func.coalesce(func.sum(WalletTransaction.amount), 0)).where(
                WalletTransaction.account_id == account_id,
                WalletTransaction.status == TransactionStatus.success.value,
            )
        ).scalar_one()
        return money(total)

    def get_by_reference(self, db: Session, *, account_id: str, reference: str) -> Optional[WalletTransaction]:
        return db.execute(
            select(WalletTransaction).where(
                WalletTransaction.account_id == account_id,
                WalletTransaction.reference == reference,
            )
        ).scalar_one_or_none()

    def find_stage_credit(
        self,
        db: Session,
        *,
        shipment_id: uuid.UUID,
        bid_id: uuid.UUID,
        stage: PaymentStage,
    ) -> Optional[WalletTransaction]:
        """
        The successful credit for (shipment, bid, stage), if one exists.
        """
        return (
            db.execute(
                select(WalletTransaction).where(
                    WalletTransaction.shipment_id == shipment_id,
                    WalletTransaction.bid_id == bid_id,
                    WalletTransaction.payment_stage == stage.value,
                    WalletTransaction.type == TransactionType.credit.value,
                    WalletTransaction.status == TransactionStatus.success.value,
                )
            )
            .scalars()
            .first()
        )

    def list_transactions(
        self,
        db: Session,
        account_id: str,
        *,
        limit: int = 20,
        offset: int = 0,
    ) -> List[WalletTransaction]:
        return list(
            db.execute(
                select(WalletTransaction)
                .where(WalletTransaction.account_id == account_id)
                .order_by(WalletTransaction.seq.desc())
                .limit(limit)
                .offset(offset)
            )
            .scalars()
            .all()
        )

    def list_for_shipment(self, db: Session, shipment_id: uuid.UUID) -> List[WalletTransaction]:
        return list(
            db.execute(
                select(WalletTransaction)
                .where(WalletTransaction.shipment_id == shipment_id)
                .order_by(WalletTransaction.created_at.asc(), WalletTransaction.seq.asc())
            )
            .scalars()
            .all()
        )

    def verify_chain(self, db: Session, account_id: str) -> bool:
        """
        Verifies the account's hash chain. Used by auditors.
        """
        entries = list(
            db.execute(
                select(WalletTransaction)
                .where(WalletTransaction.account_id == account_id)
                .order_by(WalletTransaction.seq.asc())
            )
            .scalars()
            .all()
        )

        prev_hash = self.GENESIS_HASH
        for expected_seq, e in enumerate(entries, start=1):
            if e.seq != expected_seq or e.prev_hash != prev_hash:
                return False
            if e.entry_hash != _hash(prev_hash, _entry_payload(e)):
                return False
            prev_hash = e.entry_hash

        return True

    # ─────────────────────────────────────────────
    # WRITES
    # ─────────────────────────────────────────────

    def record(
        self,
        db: Session,
        *,
        account_id: str,
        reference: str,
        amount: Decimal,
        type: TransactionType,
        status: TransactionStatus = TransactionStatus.success,
        description: Optional[str] = None,
        shipment_id: Optional[uuid.UUID] = None,
        bid_id: Optional[uuid.UUID] = None,
        payment_stage: Optional[PaymentStage] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> WalletTransaction:
        """
        Append a single immutable entry.

        amount is the magnitude; the stored amount is signed by type.
        Raises DuplicateReference when the reference (or the stage credit)
        already exists for the account, ConcurrentLedgerWrite when another
        writer claimed the same sequence number first.
        """
        magnitude = money(amount)
        if magnitude <= 0:
            raise InvalidAmount("Ledger amounts must be positive.")

        if self._reference_exists(db, account_id=account_id, reference=reference):
            raise DuplicateReference(f"Reference {reference} already recorded.")

        last = self._get_last_entry(db, account_id=account_id, for_update=True)
        prev_hash = last.entry_hash if last else self.GENESIS_HASH
        seq = 1 if not last else last.seq + 1

        signed = magnitude if type == TransactionType.credit else -magnitude

        row = WalletTransaction(
            account_id=account_id,
            seq=seq,
            reference=reference,
            amount=signed,
            currency=self.currency,
            type=type.value,
            status=status.value,
            description=description,
            shipment_id=shipment_id,
            bid_id=bid_id,
            payment_stage=payment_stage.value if payment_stage else None,
            metadata_json=json_safe(metadata or {}),
            prev_hash=prev_hash,
            entry_hash="",
            created_at=_now(),
        )
        row.entry_hash = _hash(prev_hash, _entry_payload(row))

        db.add(row)
        try:
            db.flush()
        except IntegrityError as exc:
            msg = str(exc.orig)
            if "uq_wallet_txn_seq" in msg or "wallet_transactions.seq" in msg:
                raise ConcurrentLedgerWrite() from exc
            raise DuplicateReference(f"Reference {reference} already recorded.") from exc

        return row

    def credit(
        self,
        db: Session,
        *,
        account_id: str,
        amount: Decimal,
        reference: str,
        **kwargs: Any,
    ) -> WalletTransaction:
        return self.record(
            db,
            account_id=account_id,
            reference=reference,
            amount=amount,
            type=TransactionType.credit,
            **kwargs,
        )

    def debit(
        self,
        db: Session,
        *,
        account_id: str,
        amount: Decimal,
        reference: str,
        **kwargs: Any,
    ) -> WalletTransaction:
        """
        Balance check and write happen under the account's sequence claim:
        the last entry is locked (where the backend supports it) before the
        balance is read, and the insert fails if anyone appended meanwhile.
        """
        amount = money(amount)
        self._get_last_entry(db, account_id=account_id, for_update=True)

        available = self.balance(db, account_id)
        if available < amount:
            logger.warning(
                "debit rejected: insufficient funds",
                extra={"account_id": account_id, "amount": str(amount), "balance": str(available)},
            )
            raise InsufficientFunds(
                f"Insufficient wallet balance: {available} available, {amount} required."
            )

        return self.record(
            db,
            account_id=account_id,
            reference=reference,
            amount=amount,
            type=TransactionType.debit,
            **kwargs,
        )
