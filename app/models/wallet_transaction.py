# app/models/wallet_transaction.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    String,
    DateTime,
    Integer,
    Numeric,
    Uuid,
    CheckConstraint,
    Index,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class WalletTransaction(Base):
    """
    Append-only, per-account hash-chained wallet ledger entry.

    entry_hash = SHA256(prev_hash + canonical(payload))
    amount is signed: credits positive, debits negative.
    Balances are never stored; they are the sum of successful amounts.
    """

    __tablename__ = "wallet_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    account_id: Mapped[str] = mapped_column(String(128), nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)  # monotonic per account

    reference: Mapped[str] = mapped_column(String(160), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="NGN")
    type: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # promoted metadata; backs the one-credit-per-stage unique index
    shipment_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    bid_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    payment_stage: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    metadata_json: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )

    prev_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    entry_hash: Mapped[str] = mapped_column(String(128), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "(type = 'credit' AND amount > 0) OR (type = 'debit' AND amount < 0)",
            name="ck_wallet_txn_signed_amount",
        ),
        CheckConstraint("status IN ('success', 'failed')", name="ck_wallet_txn_status"),
        UniqueConstraint("account_id", "reference", name="uq_wallet_txn_reference"),
        UniqueConstraint("account_id", "seq", name="uq_wallet_txn_seq"),
        Index(
            "uq_wallet_txn_stage",
            "account_id",
            "shipment_id",
            "bid_id",
            "payment_stage",
            unique=True,
            postgresql_where=text("payment_stage IS NOT NULL AND status = 'success'"),
            sqlite_where=text("payment_stage IS NOT NULL AND status = 'success'"),
        ),
        Index("ix_wallet_txn_account", "account_id"),
        Index("ix_wallet_txn_shipment", "shipment_id"),
    )
