#app/services/bids_service.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import (
    BidNotFound,
    BidNotPending,
    DuplicateBid,
    InvalidAmount,
    NotDeletable,
    ShipmentNotBiddable,
    ShipmentNotFound,
)
from app.core.identity import BidderIdentity, FleetManagerDriver, Trucker, bidder_columns
from app.models.bid import Bid
from app.models.enums import BidStatus, ShipmentStatus
from app.models.shipment import Shipment
from app.services.ledger_service import money

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------


def _now():
    return datetime.now(timezone.utc)


def _parse_amount(raw) -> Decimal:
    try:
        amount = money(raw)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount("Bid amount must be a number.")
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmount("Bid amount must be a positive number.")
    return amount


# ---------------------------------------------------------------------
# service
# ---------------------------------------------------------------------


class BidService:
    """
    Per-shipment bid registry.

    - at most one pending bid per bidder identity per shipment
    - at most one accepted bid per shipment
    Both are also enforced by partial unique indexes on shipment_bids.

    Methods flush but never commit; the settlement service owns the unit of work.
    """

    def __init__(self, max_bid_markup: Decimal = Decimal("200000")):
        self.max_bid_markup = Decimal(max_bid_markup)

    def _get_shipment(
        self, db: Session, shipment_id: uuid.UUID, *, for_update: bool = False
    ) -> Shipment:
        stmt = select(Shipment).where(Shipment.id == shipment_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        shipment = db.execute(stmt).scalar_one_or_none()
        if not shipment:
            raise ShipmentNotFound()
        return shipment

    def _ensure_biddable(self, shipment: Shipment) -> None:
        if shipment.status != ShipmentStatus.pending.value:
            raise ShipmentNotBiddable("Shipment is no longer available for bidding.")
        if shipment.carrier_id:
            raise ShipmentNotBiddable("Shipment has already been assigned.")

    def _find_pending(
        self, db: Session, shipment_id: uuid.UUID, bidder: BidderIdentity
    ) -> Optional[Bid]:
        stmt = select(Bid).where(
            Bid.shipment_id == shipment_id,
            Bid.status == BidStatus.pending.value,
        )
        if isinstance(bidder, Trucker):
            stmt = stmt.where(Bid.trucker_id == bidder.trucker_id)
        else:
            stmt = stmt.where(
                Bid.fleet_manager_id == bidder.fleet_manager_id,
                Bid.driver_id == bidder.driver_id,
            )
        return db.execute(stmt).scalars().first()

    # -----------------------------------------------------------------
    # reads
    # -----------------------------------------------------------------

    def get(self, db: Session, bid_id: uuid.UUID, *, for_update: bool = False) -> Bid:
        stmt = select(Bid).where(Bid.id == bid_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        bid = db.execute(stmt).scalar_one_or_none()
        if not bid:
            raise BidNotFound()
        return bid

    def get_accepted(self, db: Session, shipment_id: uuid.UUID) -> Optional[Bid]:
        return db.execute(
            select(Bid).where(
                Bid.shipment_id == shipment_id,
                Bid.status == BidStatus.accepted.value,
            )
        ).scalar_one_or_none()

    def list_for_shipment(self, db: Session, shipment_id: uuid.UUID) -> List[Bid]:
        # cheapest first, then oldest
        return list(
            db.execute(
                select(Bid)
                .where(Bid.shipment_id == shipment_id)
                .order_by(Bid.amount.asc(), Bid.created_at.asc())
            )
            .scalars()
            .all()
        )

    def list_for_bidder(
        self,
        db: Session,
        *,
        trucker_id: Optional[str] = None,
        fleet_manager_id: Optional[str] = None,
        driver_id: Optional[str] = None,
    ) -> List[Bid]:
        """
        Bids visible to a carrier: a trucker's own bids, every bid a fleet
        manager placed, or the bids placed on a driver's behalf.
        """
        stmt = select(Bid)
        if trucker_id:
            stmt = stmt.where(Bid.trucker_id == trucker_id)
        elif fleet_manager_id:
            stmt = stmt.where(Bid.fleet_manager_id == fleet_manager_id)
        elif driver_id:
            stmt = stmt.where(Bid.driver_id == driver_id)
        else:
            return []
        return list(db.execute(stmt.order_by(Bid.created_at.desc())).scalars().all())

    # -----------------------------------------------------------------
    # submit
    # -----------------------------------------------------------------

    def submit(
        self,
        db: Session,
        *,
        shipment_id: uuid.UUID,
        bidder: BidderIdentity,
        amount,
        message: Optional[str] = None,
    ) -> Bid:
        """
        Rules:
        - shipment must be pending and unassigned
        - estimated_cost <= amount <= estimated_cost + max_bid_markup
        - no other pending bid from the same bidder identity
        """
        columns = bidder_columns(bidder)
        amount = _parse_amount(amount)

        shipment = self._get_shipment(db, shipment_id)
        self._ensure_biddable(shipment)

        estimated = money(shipment.estimated_cost)
        ceiling = estimated + self.max_bid_markup
        if amount < estimated:
            raise InvalidAmount(f"Bid amount cannot be less than the estimated cost of {estimated}.")
        if amount > ceiling:
            raise InvalidAmount(
                f"Bid amount cannot exceed {ceiling} ({estimated} estimated + {self.max_bid_markup} maximum addition)."
            )

        if self._find_pending(db, shipment_id, bidder):
            if isinstance(bidder, FleetManagerDriver):
                raise DuplicateBid("You have already submitted a bid for this driver on this shipment.")
            raise DuplicateBid("You have already submitted a bid for this shipment.")

        row = Bid(
            shipment_id=shipment_id,
            amount=amount,
            message=message or None,
            status=BidStatus.pending.value,
            created_at=_now(),
            updated_at=_now(),
            **columns,
        )
        db.add(row)
        try:
            db.flush()
        except IntegrityError as exc:
            # lost a race against an identical submission
            raise DuplicateBid() from exc

        logger.info(
            "bid submitted",
            extra={"bid_id": str(row.id), "shipment_id": str(shipment_id), "amount": str(amount)},
        )
        return row

    # -----------------------------------------------------------------
    # accept
    # -----------------------------------------------------------------

    def accept(self, db: Session, bid_id: uuid.UUID) -> Bid:
        """
        Accept one bid and reject every other pending bid on the shipment.

        Both writes happen in the caller's transaction; nothing is visible
        until it commits, and a rollback undoes both halves.
        """
        bid = self.get(db, bid_id, for_update=True)
        if bid.status != BidStatus.pending.value:
            raise BidNotPending("Bid is no longer available.")

        shipment = self._get_shipment(db, bid.shipment_id, for_update=True)
        self._ensure_biddable(shipment)

        now = _now()
        bid.status = BidStatus.accepted.value
        bid.accepted_at = now
        bid.updated_at = now

        db.execute(
            update(Bid)
            .where(
                Bid.shipment_id == bid.shipment_id,
                Bid.id != bid.id,
                Bid.status == BidStatus.pending.value,
            )
            .values(status=BidStatus.rejected.value, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )

        try:
            db.flush()
        except IntegrityError as exc:
            # another bid on this shipment was accepted concurrently
            raise ShipmentNotBiddable("Shipment has already been assigned.") from exc

        return bid

    # -----------------------------------------------------------------
    # delete
    # -----------------------------------------------------------------

    def delete(self, db: Session, bid_id: uuid.UUID, bidder: BidderIdentity) -> None:
        """
        A bidder may withdraw their own bid while it is still pending.
        """
        bid = db.execute(
            select(Bid).where(Bid.id == bid_id).with_for_update()
        ).scalar_one_or_none()

        if not bid or bid.status != BidStatus.pending.value or bid.bidder != bidder:
            raise NotDeletable(
                "Failed to delete bid. It may not exist, belong to you, or is no longer pending."
            )

        db.delete(bid)
        db.flush()
