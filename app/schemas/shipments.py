from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.shipment import Shipment
from app.schemas.settlement import StageOutcomeOut, _iso
from app.services.settlement_service import TransitionResult


class ShipmentCreate(BaseModel):
    """
    estimatedCost comes from the pricing service; it is stored as given.
    """

    estimatedCost: Decimal = Field(..., gt=0)
    pickupLocation: Optional[str] = Field(default=None, max_length=500)
    destination: Optional[str] = Field(default=None, max_length=500)
    cargoType: Optional[str] = Field(default=None, max_length=120)


class StatusUpdate(BaseModel):
    status: str = Field(..., min_length=1, max_length=32)


class ShipmentOut(BaseModel):
    id: str
    shipperId: str
    carrierId: Optional[str] = None
    driverId: Optional[str] = None

    estimatedCost: str
    pickupLocation: Optional[str] = None
    destination: Optional[str] = None
    cargoType: Optional[str] = None

    status: str
    previousStatus: Optional[str] = None
    statusChangedAt: Optional[str] = None
    assignedAt: Optional[str] = None
    createdAt: Optional[str] = None

    @classmethod
    def from_row(cls, s: Shipment) -> "ShipmentOut":
        return cls(
            id=str(s.id),
            shipperId=s.shipper_id,
            carrierId=s.carrier_id,
            driverId=s.driver_id,
            estimatedCost=str(s.estimated_cost),
            pickupLocation=s.pickup_location,
            destination=s.destination,
            cargoType=s.cargo_type,
            status=s.status,
            previousStatus=s.previous_status,
            statusChangedAt=_iso(s.status_changed_at),
            assignedAt=_iso(s.assigned_at),
            createdAt=_iso(s.created_at),
        )


class TransitionOut(BaseModel):
    shipment: ShipmentOut
    oldStatus: str
    newStatus: str
    changed: bool

    settlementApplied: bool
    settlementFailed: bool
    settlements: List[StageOutcomeOut] = Field(default_factory=list)

    @classmethod
    def from_result(cls, r: TransitionResult) -> "TransitionOut":
        return cls(
            shipment=ShipmentOut.from_row(r.shipment),
            oldStatus=r.change.old_status,
            newStatus=r.change.new_status,
            changed=r.change.changed,
            settlementApplied=r.settlement_applied,
            settlementFailed=r.settlement_failed,
            settlements=[StageOutcomeOut.from_outcome(o) for o in r.settlements],
        )
