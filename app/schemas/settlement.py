from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from app.services.settlement_service import SettlementSummary, StageOutcome, StageStatus


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


class StageOutcomeOut(BaseModel):
    """
    One settlement stage as seen by the caller that triggered it.
    """

    stage: str
    percentage: str
    amount: str
    recipientId: str

    applied: bool
    alreadyApplied: bool
    transactionId: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_outcome(cls, o: StageOutcome) -> "StageOutcomeOut":
        return cls(
            stage=o.stage.value,
            percentage=str(o.percentage),
            amount=str(o.amount),
            recipientId=o.recipient_id,
            applied=o.applied,
            alreadyApplied=o.already_applied,
            transactionId=str(o.transaction_id) if o.transaction_id else None,
            error=o.error,
        )


class StageStatusOut(BaseModel):
    stage: str
    percentage: str
    amount: str
    recipientId: str
    credited: bool
    transactionId: Optional[str] = None
    creditedAt: Optional[str] = None

    @classmethod
    def from_status(cls, s: StageStatus) -> "StageStatusOut":
        return cls(
            stage=s.stage.value,
            percentage=str(s.percentage),
            amount=str(s.amount),
            recipientId=s.recipient_id,
            credited=s.credited,
            transactionId=str(s.transaction_id) if s.transaction_id else None,
            creditedAt=_iso(s.credited_at),
        )


class SettlementSummaryOut(BaseModel):
    shipmentId: str
    status: str
    bidId: Optional[str] = None
    bidAmount: Optional[str] = None
    overageDebited: str = "0.00"
    totalCredited: str = "0.00"
    stages: List[StageStatusOut] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, s: SettlementSummary) -> "SettlementSummaryOut":
        return cls(
            shipmentId=str(s.shipment.id),
            status=s.shipment.status,
            bidId=str(s.bid.id) if s.bid else None,
            bidAmount=str(s.bid.amount) if s.bid else None,
            overageDebited=str(s.overage_debited),
            totalCredited=str(s.total_credited),
            stages=[StageStatusOut.from_status(st) for st in s.stages],
        )
