# app/api/v1/bids.py
from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.core.deps import DOMAIN_ERRORS, bidder_for, get_settlement_service, http_error
from app.core.deps_idempotency import idempotency_guard, store_idempotent_response
from app.db.session import get_db
from app.models.enums import UserRole
from app.policies.rbac import (
    ACTION_ACCEPT_BID,
    ACTION_DELETE_BID,
    ACTION_SUBMIT_BID,
    Principal,
    require_action,
)
from app.schemas.bids import AcceptanceOut, BidCreate, BidOut
from app.services.settlement_service import SettlementService

router = APIRouter(prefix="/bids")


# ---------------------------------------------------------------------
# POST /v1/bids  (trucker, or fleet manager for a driver)
# ---------------------------------------------------------------------


@router.post("", response_model=BidOut, status_code=201)
def submit_bid(
    payload: BidCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: SettlementService = Depends(get_settlement_service),
):
    try:
        require_action(principal, ACTION_SUBMIT_BID)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))

    bidder = bidder_for(principal, payload.driverId)

    try:
        bid = svc.submit_bid(
            db,
            shipment_id=payload.shipmentId,
            bidder=bidder,
            amount=payload.amount,
            message=payload.message,
        )
    except DOMAIN_ERRORS as e:
        raise http_error(e)

    return BidOut.from_row(bid)


# ---------------------------------------------------------------------
# GET /v1/bids/my
# ---------------------------------------------------------------------


@router.get("/my", response_model=List[BidOut])
def list_my_bids(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: SettlementService = Depends(get_settlement_service),
):
    """
    Truckers see their own bids, fleet managers every bid they placed,
    drivers the bids placed on their behalf.
    """
    if principal.role == UserRole.TRUCKER:
        rows = svc.bids.list_for_bidder(db, trucker_id=principal.user_id)
    elif principal.role == UserRole.FLEET_MANAGER:
        rows = svc.bids.list_for_bidder(db, fleet_manager_id=principal.user_id)
    elif principal.role == UserRole.DRIVER:
        rows = svc.bids.list_for_bidder(db, driver_id=principal.user_id)
    else:
        raise HTTPException(status_code=403, detail="Only carriers have bids.")
    return [BidOut.from_row(b) for b in rows]


# ---------------------------------------------------------------------
# POST /v1/bids/{id}/accept  (shipper)
# ---------------------------------------------------------------------


@router.post("/{bid_id}/accept", response_model=AcceptanceOut)
def accept_bid(
    request: Request,
    bid_id: uuid.UUID,
    _idem=Depends(idempotency_guard),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: SettlementService = Depends(get_settlement_service),
):
    replay = request.state.idempotency_replay
    if replay is not None:
        return JSONResponse(content=replay.body, status_code=replay.status_code)

    try:
        require_action(principal, ACTION_ACCEPT_BID)
        result = svc.accept_bid(db, bid_id=bid_id, caller_id=principal.user_id)
    except DOMAIN_ERRORS as e:
        raise http_error(e)

    response = AcceptanceOut.from_result(result).model_dump(mode="json")
    store_idempotent_response(request, db, response)
    return response


# ---------------------------------------------------------------------
# DELETE /v1/bids/{id}
# ---------------------------------------------------------------------


@router.delete("/{bid_id}")
def delete_bid(
    bid_id: uuid.UUID,
    driverId: Optional[str] = Query(default=None, max_length=128),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: SettlementService = Depends(get_settlement_service),
):
    """
    Withdraw a pending bid. Fleet managers name the driver the bid was for.
    """
    try:
        require_action(principal, ACTION_DELETE_BID)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))

    bidder = bidder_for(principal, driverId)

    try:
        svc.delete_bid(db, bid_id=bid_id, bidder=bidder)
    except DOMAIN_ERRORS as e:
        raise http_error(e)

    return {"message": "Bid deleted successfully.", "bidId": str(bid_id)}
