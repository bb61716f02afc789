from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.wallet_transaction import WalletTransaction
from app.schemas.settlement import _iso


class BalanceOut(BaseModel):
    accountId: str
    balance: str
    currency: str


class TransactionOut(BaseModel):
    """
    Ledger entries as shown to the wallet owner. Internal references and
    chain hashes stay server-side.
    """

    id: str
    amount: str
    currency: str
    type: str
    status: str
    description: Optional[str] = None

    shipmentId: Optional[str] = None
    bidId: Optional[str] = None
    paymentStage: Optional[str] = None

    createdAt: Optional[str] = None

    @classmethod
    def from_row(cls, t: WalletTransaction) -> "TransactionOut":
        return cls(
            id=str(t.id),
            amount=str(t.amount),
            currency=t.currency,
            type=t.type,
            status=t.status,
            description=t.description,
            shipmentId=str(t.shipment_id) if t.shipment_id else None,
            bidId=str(t.bid_id) if t.bid_id else None,
            paymentStage=t.payment_stage,
            createdAt=_iso(t.created_at),
        )


class TransactionPage(BaseModel):
    items: List[TransactionOut] = Field(default_factory=list)
    limit: int
    offset: int


class WithdrawRequest(BaseModel):
    amount: Decimal
    accountNumber: str = Field(..., min_length=1, max_length=32)
    bankCode: str = Field(..., min_length=1, max_length=16)
    accountName: Optional[str] = Field(default=None, max_length=200)
    bankName: Optional[str] = Field(default=None, max_length=200)
