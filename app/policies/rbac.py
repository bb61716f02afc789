#app/policies/rbac.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Set

from app.models.enums import UserRole


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: UserRole
    # set for drivers only: the fleet manager they drive for
    fleet_manager_id: Optional[str] = None


# --- Core action constants ---
ACTION_CREATE_SHIPMENT = "CREATE_SHIPMENT"
ACTION_SUBMIT_BID = "SUBMIT_BID"
ACTION_DELETE_BID = "DELETE_BID"
ACTION_ACCEPT_BID = "ACCEPT_BID"
ACTION_VIEW_SHIPMENT_BIDS = "VIEW_SHIPMENT_BIDS"
ACTION_UPDATE_STATUS = "UPDATE_STATUS"
ACTION_WITHDRAW = "WITHDRAW"


def allowed_actions(role: UserRole) -> Set[str]:
    """
    Pure RBAC: which actions a role may attempt.
    Ownership (whose shipment, whose bid) is checked by the caller.
    """

    if role == UserRole.SHIPPER:
        return {
            ACTION_CREATE_SHIPMENT,
            ACTION_ACCEPT_BID,
            ACTION_VIEW_SHIPMENT_BIDS,
            ACTION_UPDATE_STATUS,
            ACTION_WITHDRAW,
        }

    if role == UserRole.TRUCKER:
        return {ACTION_SUBMIT_BID, ACTION_DELETE_BID, ACTION_UPDATE_STATUS, ACTION_WITHDRAW}

    if role == UserRole.FLEET_MANAGER:
        return {ACTION_SUBMIT_BID, ACTION_DELETE_BID, ACTION_UPDATE_STATUS, ACTION_WITHDRAW}

    if role == UserRole.DRIVER:
        return {ACTION_UPDATE_STATUS}

    if role == UserRole.ADMIN:
        return {ACTION_UPDATE_STATUS}

    return set()


def require_action(principal: Principal, action: str) -> None:
    if action not in allowed_actions(principal.role):
        raise PermissionError(f"Role {principal.role.value} cannot perform {action}.")
