# app/services/shipment_lifecycle.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import select, update, desc
from sqlalchemy.orm import Session

from app.core.errors import (
    InvalidAmount,
    InvalidStatus,
    InvalidTransition,
    ShipmentNotFound,
)
from app.models.enums import ShipmentStatus, TERMINAL_SHIPMENT_STATUSES
from app.models.shipment import Shipment
from app.services.ledger_service import money

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StatusChange:
    shipment_id: uuid.UUID
    old_status: str
    new_status: str

    @property
    def changed(self) -> bool:
        return self.old_status != self.new_status


class ShipmentLifecycle:
    """
    Fulfillment state machine for a shipment.

    pending →(assign)→ assigned → {picking_up, picked_up, in_transit} → delivered
    pending → cancelled

    The graph is permissive: any later status may be set directly, except
    that nothing leaves delivered/cancelled and cancelled is only reachable
    from pending. assigned is produced only by assign_carrier. Setting the current status again is a no-op
    change, reported as such.
    """

    SETTABLE_STATUSES = frozenset(
        s.value for s in ShipmentStatus if s not in (ShipmentStatus.pending, ShipmentStatus.assigned)
    )

    # ─────────────────────────────────────────────
    # READS
    # ─────────────────────────────────────────────

    def get(self, db: Session, shipment_id: uuid.UUID, *, for_update: bool = False) -> Shipment:
        stmt = select(Shipment).where(Shipment.id == shipment_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        shipment = db.execute(stmt).scalar_one_or_none()
        if not shipment:
            raise ShipmentNotFound()
        return shipment

    def list_available(self, db: Session, *, limit: int = 20, offset: int = 0) -> List[Shipment]:
        """
        Shipments still open for bids.
        """
        return list(
            db.execute(
                select(Shipment)
                .where(
                    Shipment.status == ShipmentStatus.pending.value,
                    Shipment.carrier_id.is_(None),
                )
                .order_by(desc(Shipment.created_at))
                .limit(limit)
                .offset(offset)
            )
            .scalars()
            .all()
        )

    def list_for_user(
        self, db: Session, user_id: str, *, limit: int = 20, offset: int = 0
    ) -> List[Shipment]:
        """
        Shipments the user posted or carries.
        """
        return list(
            db.execute(
                select(Shipment)
                .where((Shipment.shipper_id == user_id) | (Shipment.carrier_id == user_id))
                .order_by(desc(Shipment.created_at))
                .limit(limit)
                .offset(offset)
            )
            .scalars()
            .all()
        )

    # ─────────────────────────────────────────────
    # MUTATIONS
    # ─────────────────────────────────────────────

    def create(
        self,
        db: Session,
        *,
        shipper_id: str,
        estimated_cost,
        pickup_location: Optional[str] = None,
        destination: Optional[str] = None,
        cargo_type: Optional[str] = None,
    ) -> Shipment:
        """
        estimated_cost is supplied by the pricing collaborator and taken as given.
        """
        try:
            cost = money(estimated_cost)
        except (InvalidOperation, TypeError, ValueError):
            raise InvalidAmount("Estimated cost must be a number.")
        if cost <= Decimal("0"):
            raise InvalidAmount("Estimated cost must be positive.")

        now = _now()
        row = Shipment(
            shipper_id=shipper_id,
            estimated_cost=cost,
            pickup_location=pickup_location,
            destination=destination,
            cargo_type=cargo_type,
            status=ShipmentStatus.pending.value,
            created_at=now,
            updated_at=now,
        )
        db.add(row)
        db.flush()
        return row

    def assign_carrier(
        self,
        db: Session,
        shipment_id: uuid.UUID,
        carrier_id: str,
        driver_id: Optional[str] = None,
    ) -> bool:
        """
        One-way door: assigns only while no carrier is set.
        Returns False (not an exception) when someone else got there first.
        """
        now = _now()
        result = db.execute(
            update(Shipment)
            .where(Shipment.id == shipment_id, Shipment.carrier_id.is_(None))
            .values(
                carrier_id=carrier_id,
                driver_id=driver_id,
                previous_status=Shipment.status,
                status=ShipmentStatus.assigned.value,
                assigned_at=now,
                status_changed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session="fetch")
        )
        assigned = result.rowcount > 0
        if not assigned:
            logger.info(
                "carrier assignment lost race",
                extra={"shipment_id": str(shipment_id), "carrier_id": carrier_id},
            )
        return assigned

    def transition(self, db: Session, shipment_id: uuid.UUID, new_status) -> StatusChange:
        """
        Move the shipment to new_status under a row lock, recording the prior
        status in the same write. Returns the (old, new) pair for diffing.
        """
        try:
            target = ShipmentStatus(new_status).value
        except ValueError:
            raise InvalidStatus(f"Invalid status: {new_status}.")
        if target not in self.SETTABLE_STATUSES:
            raise InvalidStatus(f"Status {target} cannot be set.")

        shipment = self.get(db, shipment_id, for_update=True)
        old = shipment.status

        if old == target:
            return StatusChange(shipment_id=shipment.id, old_status=old, new_status=target)

        if old in TERMINAL_SHIPMENT_STATUSES:
            raise InvalidTransition(f"Shipment is {old}; it cannot move to {target}.")
        if target == ShipmentStatus.cancelled.value and old != ShipmentStatus.pending.value:
            raise InvalidTransition("Only pending shipments can be cancelled.")

        now = _now()
        shipment.previous_status = old
        shipment.status = target
        shipment.status_changed_at = now
        shipment.updated_at = now
        db.flush()

        logger.info(
            "shipment status changed",
            extra={"shipment_id": str(shipment.id), "old_status": old, "new_status": target},
        )
        return StatusChange(shipment_id=shipment.id, old_status=old, new_status=target)
