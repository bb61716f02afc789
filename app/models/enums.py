#app/models/enums.py
from __future__ import annotations
from decimal import Decimal
from enum import Enum


class UserRole(str, Enum):
    SHIPPER = "shipper"
    TRUCKER = "trucker"
    FLEET_MANAGER = "fleet_manager"
    DRIVER = "driver"
    ADMIN = "admin"


class BidStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"


class ShipmentStatus(str, Enum):
    pending = "pending"
    assigned = "assigned"
    picking_up = "picking_up"
    picked_up = "picked_up"
    in_transit = "in_transit"
    delivered = "delivered"
    cancelled = "cancelled"


TERMINAL_SHIPMENT_STATUSES = {ShipmentStatus.delivered.value, ShipmentStatus.cancelled.value}


class TransactionType(str, Enum):
    credit = "credit"
    debit = "debit"


class TransactionStatus(str, Enum):
    success = "success"
    failed = "failed"


class PaymentStage(str, Enum):
    """Milestone tranches of a winning bid. Percentages partition the bid amount."""

    accepted = "accepted"
    picked_up = "picked_up"
    completed = "completed"

    @property
    def percentage(self) -> Decimal:
        return STAGE_PERCENTAGES[self]


STAGE_PERCENTAGES = {
    PaymentStage.accepted: Decimal("5"),
    PaymentStage.picked_up: Decimal("60"),
    PaymentStage.completed: Decimal("35"),
}
