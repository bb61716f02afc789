#app/models/shipment.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Numeric,
    Uuid,
    CheckConstraint,
    Index,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class Shipment(Base):
    """
    Freight job posted by a shipper.

    carrier_id is written once (assign-if-null) and never reassigned.
    previous_status is updated in the same row write as status so the
    settlement orchestrator can diff a transition.
    """

    __tablename__ = "shipments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    shipper_id: Mapped[str] = mapped_column(String(128), nullable=False)
    carrier_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    # driver of the accepted fleet-manager bid, for access checks
    driver_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # supplied by the pricing collaborator
    estimated_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    pickup_location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    destination: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    cargo_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    previous_status: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    status_changed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("estimated_cost > 0", name="ck_shipment_estimated_cost_positive"),
        Index("ix_shipment_shipper", "shipper_id"),
        Index("ix_shipment_carrier", "carrier_id"),
        Index("ix_shipment_status", "status"),
    )
