from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from app.models.bid import Bid
from app.schemas.settlement import StageOutcomeOut, _iso
from app.schemas.shipments import ShipmentOut
from app.services.settlement_service import AcceptanceResult


class BidCreate(BaseModel):
    """
    Carrier bid.

    Truckers bid for themselves. Fleet managers must name the driver the bid
    is placed for (driverId); the fleet manager is the one paid.
    Range checks against the shipment's estimate happen in the service.
    """

    shipmentId: uuid.UUID
    amount: Decimal
    message: Optional[str] = Field(default=None, max_length=2000)
    driverId: Optional[str] = Field(default=None, max_length=128)


class BidOut(BaseModel):
    id: str
    shipmentId: str
    truckerId: Optional[str] = None
    fleetManagerId: Optional[str] = None
    driverId: Optional[str] = None

    amount: str
    message: Optional[str] = None
    status: str

    createdAt: Optional[str] = None
    acceptedAt: Optional[str] = None

    @classmethod
    def from_row(cls, b: Bid) -> "BidOut":
        return cls(
            id=str(b.id),
            shipmentId=str(b.shipment_id),
            truckerId=b.trucker_id,
            fleetManagerId=b.fleet_manager_id,
            driverId=b.driver_id,
            amount=str(b.amount),
            message=b.message,
            status=b.status,
            createdAt=_iso(b.created_at),
            acceptedAt=_iso(b.accepted_at),
        )


class AcceptanceOut(BaseModel):
    bid: BidOut
    shipment: ShipmentOut
    overageDebited: str
    acceptanceCredit: StageOutcomeOut

    @classmethod
    def from_result(cls, r: AcceptanceResult) -> "AcceptanceOut":
        return cls(
            bid=BidOut.from_row(r.bid),
            shipment=ShipmentOut.from_row(r.shipment),
            overageDebited=str(r.overage_debited),
            acceptanceCredit=StageOutcomeOut.from_outcome(r.credit),
        )
