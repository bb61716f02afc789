# app/api/v1/shipments.py
from __future__ import annotations

import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.core.deps import DOMAIN_ERRORS, get_settlement_service, http_error
from app.core.deps_idempotency import idempotency_guard, store_idempotent_response
from app.db.session import get_db
from app.models.enums import UserRole
from app.policies.rbac import (
    ACTION_CREATE_SHIPMENT,
    ACTION_UPDATE_STATUS,
    ACTION_VIEW_SHIPMENT_BIDS,
    Principal,
    require_action,
)
from app.schemas.bids import BidOut
from app.schemas.settlement import SettlementSummaryOut
from app.schemas.shipments import ShipmentCreate, ShipmentOut, StatusUpdate, TransitionOut
from app.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipments")


# ---------------------------------------------------------------------
# POST /v1/shipments  (shipper)
# ---------------------------------------------------------------------


@router.post("", response_model=ShipmentOut, status_code=201)
def create_shipment(
    payload: ShipmentCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: SettlementService = Depends(get_settlement_service),
):
    try:
        require_action(principal, ACTION_CREATE_SHIPMENT)
        row = svc.create_shipment(
            db,
            shipper_id=principal.user_id,
            estimated_cost=payload.estimatedCost,
            pickup_location=payload.pickupLocation,
            destination=payload.destination,
            cargo_type=payload.cargoType,
        )
    except DOMAIN_ERRORS as e:
        raise http_error(e)

    return ShipmentOut.from_row(row)


# ---------------------------------------------------------------------
# GET /v1/shipments/available, /v1/shipments/my
# ---------------------------------------------------------------------


@router.get("/available", response_model=List[ShipmentOut])
def list_available_shipments(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: SettlementService = Depends(get_settlement_service),
):
    rows = svc.shipments.list_available(db, limit=limit, offset=offset)
    return [ShipmentOut.from_row(r) for r in rows]


@router.get("/my", response_model=List[ShipmentOut])
def list_my_shipments(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: SettlementService = Depends(get_settlement_service),
):
    rows = svc.shipments.list_for_user(db, principal.user_id, limit=limit, offset=offset)
    return [ShipmentOut.from_row(r) for r in rows]


# ---------------------------------------------------------------------
# GET /v1/shipments/{id}
# ---------------------------------------------------------------------


@router.get("/{shipment_id}", response_model=ShipmentOut)
def get_shipment(
    shipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: SettlementService = Depends(get_settlement_service),
):
    try:
        row = svc.shipments.get(db, shipment_id)
    except DOMAIN_ERRORS as e:
        raise http_error(e)
    return ShipmentOut.from_row(row)


# ---------------------------------------------------------------------
# POST /v1/shipments/{id}/status
# ---------------------------------------------------------------------


@router.post("/{shipment_id}/status", response_model=TransitionOut)
def update_shipment_status(
    request: Request,
    shipment_id: uuid.UUID,
    payload: StatusUpdate,
    _idem=Depends(idempotency_guard),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: SettlementService = Depends(get_settlement_service),
):
    """
    Sets the shipment status and settles the stage it triggers.

    A credit failure does not fail the request: the status stays changed and
    the failure is reported under settlements. Sending the same status again
    retries whatever is still missing.
    """
    replay = request.state.idempotency_replay
    if replay is not None:
        return JSONResponse(content=replay.body, status_code=replay.status_code)

    try:
        require_action(principal, ACTION_UPDATE_STATUS)
        result = svc.transition_shipment_status(
            db, shipment_id=shipment_id, new_status=payload.status, caller=principal
        )
    except DOMAIN_ERRORS as e:
        raise http_error(e)

    response = TransitionOut.from_result(result).model_dump(mode="json")
    if result.settlement_failed:
        # not pinned: a retry with the same key must reach the failed stage again
        logger.info(
            "idempotent response not stored; settlement incomplete",
            extra={"shipment_id": str(shipment_id)},
        )
    else:
        store_idempotent_response(request, db, response)
    return response


# ---------------------------------------------------------------------
# GET /v1/shipments/{id}/bids  (owning shipper)
# ---------------------------------------------------------------------


@router.get("/{shipment_id}/bids", response_model=List[BidOut])
def list_shipment_bids(
    shipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: SettlementService = Depends(get_settlement_service),
):
    try:
        require_action(principal, ACTION_VIEW_SHIPMENT_BIDS)
        shipment = svc.shipments.get(db, shipment_id)
        if shipment.shipper_id != principal.user_id:
            raise PermissionError("Access denied.")
    except DOMAIN_ERRORS as e:
        raise http_error(e)

    return [BidOut.from_row(b) for b in svc.bids.list_for_shipment(db, shipment_id)]


# ---------------------------------------------------------------------
# GET /v1/shipments/{id}/settlement
# ---------------------------------------------------------------------


@router.get("/{shipment_id}/settlement", response_model=SettlementSummaryOut)
def get_settlement(
    shipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: SettlementService = Depends(get_settlement_service),
):
    try:
        summary = svc.settlement_summary(db, shipment_id)
    except DOMAIN_ERRORS as e:
        raise http_error(e)

    shipment = summary.shipment
    if principal.role != UserRole.ADMIN and principal.user_id not in (shipment.shipper_id, shipment.carrier_id):
        raise HTTPException(status_code=403, detail="Access denied.")

    return SettlementSummaryOut.from_summary(summary)
