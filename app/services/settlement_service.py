# app/services/settlement_service.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.errors import (
    CarrierAlreadyAssigned,
    ConcurrentLedgerWrite,
    DuplicateReference,
    SettlementError,
)
from app.core.identity import BidderIdentity
from app.models.bid import Bid
from app.models.enums import PaymentStage, ShipmentStatus, TransactionStatus, UserRole
from app.models.shipment import Shipment
from app.models.wallet_transaction import WalletTransaction
from app.policies.rbac import Principal
from app.services.bids_service import BidService
from app.services.ledger_service import LedgerService, money
from app.services.notifications import LoggingNotificationSink, NotificationSink
from app.services.shipment_lifecycle import ShipmentLifecycle, StatusChange

logger = logging.getLogger(__name__)


# Which stages a status is the trigger for. Reaching delivered also
# settles a missing pickup tranche so the three stages always add up.
STAGE_TRIGGERS: Dict[str, Tuple[PaymentStage, ...]] = {
    ShipmentStatus.in_transit.value: (PaymentStage.picked_up,),
    ShipmentStatus.delivered.value: (PaymentStage.picked_up, PaymentStage.completed),
}


def stage_amounts(bid_amount) -> Dict[PaymentStage, Decimal]:
    """
    Split a bid amount into its three tranches.
    completed takes the remainder so the tranches sum to the bid exactly.
    """
    total = money(bid_amount)
    accepted = money(total * PaymentStage.accepted.percentage / 100)
    picked_up = money(total * PaymentStage.picked_up.percentage / 100)
    return {
        PaymentStage.accepted: accepted,
        PaymentStage.picked_up: picked_up,
        PaymentStage.completed: total - accepted - picked_up,
    }


def stage_reference(shipment_id: uuid.UUID, bid_id: uuid.UUID, stage: PaymentStage) -> str:
    return f"SHIPMENT-{stage.value.upper()}-{shipment_id}-{bid_id}"


def overage_reference(shipment_id: uuid.UUID, bid_id: uuid.UUID) -> str:
    return f"BID-ACCEPTED-ADDITIONAL-{shipment_id}-{bid_id}"


def escrow_reference(shipment_id: uuid.UUID) -> str:
    return f"SHIPMENT-ESTIMATE-{shipment_id}"


def refund_reference(shipment_id: uuid.UUID) -> str:
    return f"SHIPMENT-REFUND-{shipment_id}"


# Error codes reported per stage; the exception detail stays in the log.
STAGE_ERROR_LEDGER_BUSY = "ledger_busy"
STAGE_ERROR_REJECTED = "credit_rejected"
STAGE_ERROR_FAILED = "credit_failed"


def stage_error_code(exc: BaseException) -> str:
    if isinstance(exc, ConcurrentLedgerWrite):
        return STAGE_ERROR_LEDGER_BUSY
    if isinstance(exc, SettlementError):
        return STAGE_ERROR_REJECTED
    return STAGE_ERROR_FAILED


# ─────────────────────────────────────────────
# Results
# ─────────────────────────────────────────────


@dataclass
class StageOutcome:
    """
    Result of one settlement stage attempt.

    applied: this call wrote the credit.
    already_applied: the credit existed before this call (idempotent no-op).
    error: the credit failed; the stage can be retried by repeating the transition.
    """

    stage: PaymentStage
    amount: Decimal
    recipient_id: str
    applied: bool = False
    already_applied: bool = False
    transaction_id: Optional[uuid.UUID] = None
    error: Optional[str] = None

    @property
    def percentage(self) -> Decimal:
        return self.stage.percentage

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class AcceptanceResult:
    bid: Bid
    shipment: Shipment
    overage_debited: Decimal
    credit: StageOutcome


@dataclass
class TransitionResult:
    change: StatusChange
    shipment: Shipment
    settlements: List[StageOutcome] = field(default_factory=list)

    @property
    def settlement_applied(self) -> bool:
        return any(s.applied for s in self.settlements)

    @property
    def settlement_failed(self) -> bool:
        return any(s.error for s in self.settlements)


@dataclass
class StageStatus:
    stage: PaymentStage
    amount: Decimal
    recipient_id: str
    credited: bool
    transaction_id: Optional[uuid.UUID] = None
    credited_at: Optional[datetime] = None

    @property
    def percentage(self) -> Decimal:
        return self.stage.percentage


@dataclass
class SettlementSummary:
    shipment: Shipment
    bid: Optional[Bid]
    overage_debited: Decimal
    stages: List[StageStatus] = field(default_factory=list)

    @property
    def total_credited(self) -> Decimal:
        return sum((s.amount for s in self.stages if s.credited), Decimal("0.00"))


# ─────────────────────────────────────────────
# Orchestrator
# ─────────────────────────────────────────────


class SettlementService:
    """
    Coordinates bid acceptance and milestone payouts across the bid registry,
    the shipment lifecycle and the wallet ledger.

    Owns every commit / rollback in the core:
    - posting a shipment is one unit: create + estimated cost debit
    - acceptance is one unit: accept + reject siblings + assign carrier
      + overage debit + 5% credit
    - cancelling a pending shipment refunds the estimated cost in the
      same unit as the status change
    - a status change commits on its own; each due stage then settles in
      its own unit, so a failed credit never undoes the physical status
    """

    def __init__(
        self,
        *,
        bids: Optional[BidService] = None,
        shipments: Optional[ShipmentLifecycle] = None,
        ledger: Optional[LedgerService] = None,
        notifier: Optional[NotificationSink] = None,
    ):
        self.bids = bids or BidService()
        self.shipments = shipments or ShipmentLifecycle()
        self.ledger = ledger or LedgerService()
        self.notifier = notifier or LoggingNotificationSink()

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "SettlementService":
        kwargs.setdefault("bids", BidService(max_bid_markup=settings.max_bid_markup))
        kwargs.setdefault("ledger", LedgerService(currency=settings.currency))
        return cls(**kwargs)

    # ─────────────────────────────────────────────
    # Internal helpers
    # ─────────────────────────────────────────────

    def _rollback(self, db: Session, exc: BaseException, action: str, **context) -> None:
        db.rollback()
        ctx = {k: str(v) for k, v in context.items()}
        if isinstance(exc, (SettlementError, PermissionError)):
            logger.warning("%s rejected: %s", action, exc, extra=ctx)
        else:
            logger.exception("%s failed", action, extra=ctx)

    def _notify(self, txns: Iterable[WalletTransaction]) -> None:
        for txn in txns:
            try:
                self.notifier.transaction_recorded(txn)
            except Exception:
                # notification is best effort; the money already moved
                logger.exception("notification failed", extra={"transaction_id": str(txn.id)})

    def _can_update_status(self, shipment: Shipment, principal: Principal, target: str) -> bool:
        if principal.role == UserRole.ADMIN:
            return True
        if shipment.shipper_id == principal.user_id:
            return True
        if target == ShipmentStatus.cancelled.value:
            return False
        if principal.role in (UserRole.TRUCKER, UserRole.FLEET_MANAGER):
            return shipment.carrier_id == principal.user_id
        if principal.role == UserRole.DRIVER:
            return bool(
                shipment.driver_id
                and shipment.driver_id == principal.user_id
                and shipment.carrier_id == principal.fleet_manager_id
            )
        return False

    # ─────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────

    def create_shipment(
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
        Post a shipment and take its estimated cost from the shipper's wallet.
        No shipment exists unless the debit succeeded.
        """
        try:
            shipment = self.shipments.create(
                db,
                shipper_id=shipper_id,
                estimated_cost=estimated_cost,
                pickup_location=pickup_location,
                destination=destination,
                cargo_type=cargo_type,
            )
            txn = self.ledger.debit(
                db,
                account_id=shipper_id,
                amount=shipment.estimated_cost,
                reference=escrow_reference(shipment.id),
                description=f"Payment for shipment {shipment.id}: estimated cost",
                shipment_id=shipment.id,
                metadata={
                    "shipmentId": shipment.id,
                    "estimatedCost": money(shipment.estimated_cost),
                    "source": "shipment_created",
                },
            )
            db.commit()
        except Exception as exc:
            self._rollback(db, exc, "shipment creation", shipper_id=shipper_id)
            raise

        logger.info(
            "shipment created",
            extra={
                "shipment_id": str(shipment.id),
                "shipper_id": shipper_id,
                "estimated_cost": str(shipment.estimated_cost),
            },
        )
        self._notify([txn])
        return shipment

    def _refund_escrow(self, db: Session, shipment: Shipment) -> Optional[WalletTransaction]:
        escrow = self.ledger.get_by_reference(
            db, account_id=shipment.shipper_id, reference=escrow_reference(shipment.id)
        )
        if escrow is None or escrow.status != TransactionStatus.success.value:
            return None
        if self.ledger.get_by_reference(
            db, account_id=shipment.shipper_id, reference=refund_reference(shipment.id)
        ):
            return None
        return self.ledger.credit(
            db,
            account_id=shipment.shipper_id,
            amount=-money(escrow.amount),
            reference=refund_reference(shipment.id),
            description=f"Refund for cancelled shipment {shipment.id}",
            shipment_id=shipment.id,
            metadata={"shipmentId": shipment.id, "source": "shipment_cancelled"},
        )

    def submit_bid(
        self,
        db: Session,
        *,
        shipment_id: uuid.UUID,
        bidder: BidderIdentity,
        amount,
        message: Optional[str] = None,
    ) -> Bid:
        try:
            bid = self.bids.submit(
                db, shipment_id=shipment_id, bidder=bidder, amount=amount, message=message
            )
            db.commit()
        except Exception as exc:
            self._rollback(db, exc, "bid submission", shipment_id=shipment_id)
            raise
        return bid

    def delete_bid(self, db: Session, *, bid_id: uuid.UUID, bidder: BidderIdentity) -> bool:
        try:
            self.bids.delete(db, bid_id, bidder)
            db.commit()
        except Exception as exc:
            self._rollback(db, exc, "bid deletion", bid_id=bid_id)
            raise
        logger.info("bid deleted", extra={"bid_id": str(bid_id)})
        return True

    def accept_bid(self, db: Session, *, bid_id: uuid.UUID, caller_id: str) -> AcceptanceResult:
        """
        Accept a bid and settle the acceptance tranche, all or nothing.

        1. accept the bid, reject its pending siblings
        2. assign the carrier (fleet manager for driver bids, else trucker)
        3. debit the shipper any amount above the estimate
        4. credit the carrier 5% of the bid
        Any failure (including InsufficientFunds at step 3) rolls back 1-4.
        """
        recorded: List[WalletTransaction] = []
        try:
            bid = self.bids.get(db, bid_id, for_update=True)
            shipment = self.shipments.get(db, bid.shipment_id, for_update=True)
            if shipment.shipper_id != caller_id:
                raise PermissionError("Only the shipment's shipper can accept its bids.")

            self.bids.accept(db, bid.id)

            if not self.shipments.assign_carrier(db, shipment.id, bid.payee_id, driver_id=bid.driver_id):
                raise CarrierAlreadyAssigned()

            bid_amount = money(bid.amount)
            estimated = money(shipment.estimated_cost)
            overage = bid_amount - estimated
            overage_debited = Decimal("0.00")

            if overage > 0:
                recorded.append(
                    self.ledger.debit(
                        db,
                        account_id=shipment.shipper_id,
                        amount=overage,
                        reference=overage_reference(shipment.id, bid.id),
                        description=(
                            f"Additional payment for shipment {shipment.id} (accepted bid {bid.id}): "
                            f"bid amount {bid_amount} exceeds estimated cost {estimated}"
                        ),
                        shipment_id=shipment.id,
                        bid_id=bid.id,
                        metadata={
                            "shipmentId": shipment.id,
                            "bidId": bid.id,
                            "bidAmount": bid_amount,
                            "estimatedCost": estimated,
                            "additionalAmount": overage,
                            "source": "bid_accepted_additional",
                        },
                    )
                )
                overage_debited = overage

            amounts = stage_amounts(bid_amount)
            stage = PaymentStage.accepted
            outcome = StageOutcome(stage=stage, amount=amounts[stage], recipient_id=bid.payee_id)
            # a sub-unit bid rounds its 5% to nothing; there is nothing to pay
            if amounts[stage] > 0:
                credit = self.ledger.credit(
                    db,
                    account_id=bid.payee_id,
                    amount=amounts[stage],
                    reference=stage_reference(shipment.id, bid.id, stage),
                    description=f"Payment for shipment {shipment.id} (accepted bid {bid.id}): 5% pickup cost",
                    shipment_id=shipment.id,
                    bid_id=bid.id,
                    payment_stage=stage,
                    metadata={
                        "shipmentId": shipment.id,
                        "bidId": bid.id,
                        "driverId": bid.driver_id,
                        "source": "bid_accepted",
                        "paymentStage": stage,
                        "percentage": stage.percentage,
                        "totalBidAmount": bid_amount,
                        "remainingAmount": bid_amount - amounts[stage],
                    },
                )
                recorded.append(credit)
                outcome.applied = True
                outcome.transaction_id = credit.id

            db.commit()
        except Exception as exc:
            self._rollback(db, exc, "bid acceptance", bid_id=bid_id)
            raise

        logger.info(
            "bid accepted",
            extra={
                "bid_id": str(bid.id),
                "shipment_id": str(shipment.id),
                "carrier_id": bid.payee_id,
                "overage_debited": str(overage_debited),
                "acceptance_credit": str(outcome.amount),
            },
        )
        self._notify(recorded)

        return AcceptanceResult(
            bid=bid,
            shipment=shipment,
            overage_debited=overage_debited,
            credit=outcome,
        )

    def transition_shipment_status(
        self,
        db: Session,
        *,
        shipment_id: uuid.UUID,
        new_status,
        caller: Principal,
    ) -> TransitionResult:
        """
        Commit the status change, then settle whichever stages it triggers.

        Re-sending a status the shipment already has is accepted: the
        change is reported as unchanged and any stage still missing for that
        status is attempted again, which is how a failed credit is retried.
        """
        try:
            shipment = self.shipments.get(db, shipment_id, for_update=True)
            target = str(getattr(new_status, "value", new_status))
            if not self._can_update_status(shipment, caller, target):
                raise PermissionError("Access denied.")
            change = self.shipments.transition(db, shipment_id, new_status)
            refund = None
            if change.changed and change.new_status == ShipmentStatus.cancelled.value:
                refund = self._refund_escrow(db, shipment)
            db.commit()
        except Exception as exc:
            self._rollback(db, exc, "status transition", shipment_id=shipment_id, new_status=new_status)
            raise

        if refund is not None:
            logger.info(
                "estimated cost refunded",
                extra={"shipment_id": str(shipment_id), "amount": str(refund.amount)},
            )
            self._notify([refund])

        settlements = self.settle_transition(db, change)
        shipment = self.shipments.get(db, shipment_id)
        return TransitionResult(change=change, shipment=shipment, settlements=settlements)

    def settle_transition(self, db: Session, change: StatusChange) -> List[StageOutcome]:
        """
        Settle every stage the new status triggers. No accepted bid means
        nothing to settle (admin-driven moves), not an error.
        """
        stages = STAGE_TRIGGERS.get(change.new_status, ())
        if not stages:
            return []

        bid = self.bids.get_accepted(db, change.shipment_id)
        if not bid:
            logger.info(
                "no accepted bid; nothing to settle",
                extra={"shipment_id": str(change.shipment_id), "new_status": change.new_status},
            )
            return []

        bid_id = bid.id
        recipient_id = bid.payee_id
        driver_id = bid.driver_id
        amounts = stage_amounts(bid.amount)
        bid_amount = money(bid.amount)

        return [
            self._settle_stage(
                db,
                shipment_id=change.shipment_id,
                bid_id=bid_id,
                recipient_id=recipient_id,
                driver_id=driver_id,
                bid_amount=bid_amount,
                stage=stage,
                amount=amounts[stage],
            )
            for stage in stages
        ]

    def _settle_stage(
        self,
        db: Session,
        *,
        shipment_id: uuid.UUID,
        bid_id: uuid.UUID,
        recipient_id: str,
        driver_id: Optional[str],
        bid_amount: Decimal,
        stage: PaymentStage,
        amount: Decimal,
    ) -> StageOutcome:
        outcome = StageOutcome(stage=stage, amount=amount, recipient_id=recipient_id)
        ctx = {"shipment_id": str(shipment_id), "bid_id": str(bid_id), "payment_stage": stage.value}

        if amount <= 0:
            # rounds to nothing on sub-unit bids; there is nothing to pay
            return outcome

        existing = self.ledger.find_stage_credit(db, shipment_id=shipment_id, bid_id=bid_id, stage=stage)
        if existing:
            outcome.already_applied = True
            outcome.transaction_id = existing.id
            logger.info("stage already credited", extra=ctx)
            return outcome

        label = "pickup payment" if stage == PaymentStage.picked_up else "completion payment"
        try:
            txn = self.ledger.credit(
                db,
                account_id=recipient_id,
                amount=amount,
                reference=stage_reference(shipment_id, bid_id, stage),
                description=f"Payment for shipment {shipment_id} (bid {bid_id}): {stage.percentage}% {label}",
                shipment_id=shipment_id,
                bid_id=bid_id,
                payment_stage=stage,
                metadata={
                    "shipmentId": shipment_id,
                    "bidId": bid_id,
                    "driverId": driver_id,
                    "source": "shipment_payment",
                    "paymentStage": stage,
                    "percentage": stage.percentage,
                    "totalBidAmount": bid_amount,
                },
            )
            db.commit()
        except DuplicateReference as exc:
            # a concurrent call credited this stage between our check and our write
            db.rollback()
            existing = self.ledger.find_stage_credit(db, shipment_id=shipment_id, bid_id=bid_id, stage=stage)
            if existing:
                outcome.already_applied = True
                outcome.transaction_id = existing.id
                logger.info("stage credited concurrently", extra=ctx)
                return outcome
            outcome.error = stage_error_code(exc)
            logger.warning("stage credit rejected: %s", exc, extra=ctx)
            return outcome
        except Exception as exc:
            # reported to the caller as a code; the status change stays committed
            self._rollback(db, exc, "stage credit", **ctx)
            outcome.error = stage_error_code(exc)
            return outcome

        outcome.applied = True
        outcome.transaction_id = txn.id
        logger.info("stage credited", extra={**ctx, "amount": str(amount), "recipient_id": recipient_id})
        self._notify([txn])
        return outcome

    # ─────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────

    def settlement_summary(self, db: Session, shipment_id: uuid.UUID) -> SettlementSummary:
        shipment = self.shipments.get(db, shipment_id)
        bid = self.bids.get_accepted(db, shipment_id)
        if not bid:
            return SettlementSummary(shipment=shipment, bid=None, overage_debited=Decimal("0.00"))

        amounts = stage_amounts(bid.amount)
        stages: List[StageStatus] = []
        for stage in PaymentStage:
            txn = self.ledger.find_stage_credit(db, shipment_id=shipment_id, bid_id=bid.id, stage=stage)
            stages.append(
                StageStatus(
                    stage=stage,
                    amount=amounts[stage],
                    recipient_id=bid.payee_id,
                    credited=txn is not None,
                    transaction_id=txn.id if txn else None,
                    credited_at=txn.created_at if txn else None,
                )
            )

        overage = Decimal("0.00")
        for txn in self.ledger.list_for_shipment(db, shipment_id):
            if txn.account_id != shipment.shipper_id or txn.bid_id != bid.id:
                continue
            if txn.amount < 0 and txn.status == TransactionStatus.success.value:
                overage += -money(txn.amount)

        return SettlementSummary(shipment=shipment, bid=bid, overage_debited=overage, stages=stages)
