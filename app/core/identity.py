# app/core/identity.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from app.core.errors import InvalidBidderIdentity


@dataclass(frozen=True)
class Trucker:
    """Independent carrier bidding for themself."""

    trucker_id: str

    @property
    def payee_id(self) -> str:
        return self.trucker_id

    @property
    def driver_id(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class FleetManagerDriver:
    """Fleet manager bidding on behalf of one of their drivers. The manager is paid."""

    fleet_manager_id: str
    driver_id: str

    @property
    def payee_id(self) -> str:
        return self.fleet_manager_id


BidderIdentity = Union[Trucker, FleetManagerDriver]


def bidder_from_columns(
    trucker_id: Optional[str],
    fleet_manager_id: Optional[str],
    driver_id: Optional[str],
) -> BidderIdentity:
    """
    Rebuild the tagged identity from the nullable storage columns.
    Exactly one form must be populated.
    """
    if trucker_id and not fleet_manager_id and not driver_id:
        return Trucker(trucker_id=trucker_id)
    if fleet_manager_id and driver_id and not trucker_id:
        return FleetManagerDriver(fleet_manager_id=fleet_manager_id, driver_id=driver_id)
    raise InvalidBidderIdentity()


def bidder_columns(bidder: BidderIdentity) -> dict:
    if isinstance(bidder, Trucker):
        if not bidder.trucker_id:
            raise InvalidBidderIdentity()
        return {"trucker_id": bidder.trucker_id, "fleet_manager_id": None, "driver_id": None}
    if isinstance(bidder, FleetManagerDriver):
        if not bidder.fleet_manager_id or not bidder.driver_id:
            raise InvalidBidderIdentity()
        return {
            "trucker_id": None,
            "fleet_manager_id": bidder.fleet_manager_id,
            "driver_id": bidder.driver_id,
        }
    raise InvalidBidderIdentity()
