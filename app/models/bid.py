#app/models/bid.py
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
    ForeignKey,
    CheckConstraint,
    Index,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.identity import BidderIdentity, bidder_from_columns
from app.db.base import Base


class Bid(Base):
    __tablename__ = "shipment_bids"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    shipment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("shipments.id", ondelete="CASCADE"),
        nullable=False,
    )

    # bidder identity: trucker_id XOR (fleet_manager_id, driver_id)
    trucker_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    fleet_manager_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    driver_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_bid_amount_positive"),
        CheckConstraint(
            "(trucker_id IS NOT NULL AND fleet_manager_id IS NULL AND driver_id IS NULL)"
            " OR (trucker_id IS NULL AND fleet_manager_id IS NOT NULL AND driver_id IS NOT NULL)",
            name="ck_bid_bidder_identity",
        ),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected')", name="ck_bid_status"
        ),
        # one pending bid per trucker per shipment
        Index(
            "uq_bid_pending_trucker",
            "shipment_id",
            "trucker_id",
            unique=True,
            postgresql_where=text("status = 'pending' AND trucker_id IS NOT NULL"),
            sqlite_where=text("status = 'pending' AND trucker_id IS NOT NULL"),
        ),
        # one pending bid per fleet manager + driver per shipment
        Index(
            "uq_bid_pending_fleet_driver",
            "shipment_id",
            "fleet_manager_id",
            "driver_id",
            unique=True,
            postgresql_where=text("status = 'pending' AND fleet_manager_id IS NOT NULL"),
            sqlite_where=text("status = 'pending' AND fleet_manager_id IS NOT NULL"),
        ),
        # at most one winner per shipment
        Index(
            "uq_bid_accepted_per_shipment",
            "shipment_id",
            unique=True,
            postgresql_where=text("status = 'accepted'"),
            sqlite_where=text("status = 'accepted'"),
        ),
        Index("ix_bid_shipment", "shipment_id"),
    )

    @property
    def bidder(self) -> BidderIdentity:
        return bidder_from_columns(self.trucker_id, self.fleet_manager_id, self.driver_id)

    @property
    def payee_id(self) -> str:
        """Fleet manager when the bid carries a driver, else the trucker."""
        return self.fleet_manager_id or self.trucker_id
