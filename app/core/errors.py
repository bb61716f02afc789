# app/core/errors.py
from __future__ import annotations


class SettlementError(ValueError):
    """
    Base class for every domain failure raised by the settlement core.

    Subclasses ValueError so callers written against plain ValueError
    (the convention elsewhere in the services) keep working.
    status_code is a hint for the HTTP layer only.
    """

    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__.strip().splitlines()[0])


# ─────────────────────────────────────────────
# VALIDATION (rejected before any write)
# ─────────────────────────────────────────────


class ValidationFailed(SettlementError):
    """Request failed validation."""

    status_code = 400


class InvalidAmount(ValidationFailed):
    """Amount is outside the allowed range."""


class InvalidBidderIdentity(ValidationFailed):
    """Bidder identity must be a trucker or a fleet manager + driver pair."""


class InvalidStatus(ValidationFailed):
    """Unknown or non-settable shipment status."""


# ─────────────────────────────────────────────
# CONFLICTS (normal negative results)
# ─────────────────────────────────────────────


class ConflictError(SettlementError):
    """Request conflicts with current state."""

    status_code = 409


class DuplicateBid(ConflictError):
    """A pending bid already exists for this bidder on this shipment."""


class BidNotPending(ConflictError):
    """Bid is no longer pending."""


class ShipmentNotBiddable(ConflictError):
    """Shipment is no longer open for bids."""


class CarrierAlreadyAssigned(ConflictError):
    """Shipment has already been assigned to a carrier."""


class NotDeletable(ConflictError):
    """Bid does not exist, does not belong to the caller, or is no longer pending."""


class InvalidTransition(ConflictError):
    """Shipment cannot move to the requested status."""


class DuplicateReference(ConflictError):
    """A wallet transaction with this reference already exists."""


class ConcurrentLedgerWrite(ConflictError):
    """Another write to this wallet won the race; retry the request."""


class IdempotencyKeyReused(ConflictError):
    """Idempotency-Key reuse with a different payload is not allowed."""


# ─────────────────────────────────────────────
# FUNDS
# ─────────────────────────────────────────────


class InsufficientFunds(SettlementError):
    """Wallet balance is insufficient."""

    status_code = 402


# ─────────────────────────────────────────────
# LOOKUPS
# ─────────────────────────────────────────────


class NotFound(SettlementError):
    """Resource not found."""

    status_code = 404


class BidNotFound(NotFound):
    """Bid not found."""


class ShipmentNotFound(NotFound):
    """Shipment not found."""


# ─────────────────────────────────────────────
# COLLABORATORS
# ─────────────────────────────────────────────


class PayoutFailed(SettlementError):
    """Payout provider rejected or failed the transfer."""

    status_code = 502
