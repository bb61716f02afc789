# app/api/v1/wallet.py
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.core.deps import DOMAIN_ERRORS, get_funding_service, get_ledger_service, get_withdrawal_service, http_error
from app.core.deps_webhook import verified_provider_event
from app.db.session import get_db
from app.models.enums import UserRole
from app.policies.rbac import ACTION_WITHDRAW, Principal, require_action
from app.schemas.wallet import BalanceOut, TransactionOut, TransactionPage, WithdrawRequest
from app.services.funding_service import FundingService, ProviderCharge
from app.services.ledger_service import LedgerService
from app.services.payout_service import BankDetails, WithdrawalService

router = APIRouter(prefix="/wallet")


@router.get("", response_model=BalanceOut)
def get_balance(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    ledger: LedgerService = Depends(get_ledger_service),
):
    return BalanceOut(
        accountId=principal.user_id,
        balance=str(ledger.balance(db, principal.user_id)),
        currency=ledger.currency,
    )


@router.get("/transactions", response_model=TransactionPage)
def list_transactions(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    ledger: LedgerService = Depends(get_ledger_service),
):
    rows = ledger.list_transactions(db, principal.user_id, limit=limit, offset=offset)
    return TransactionPage(items=[TransactionOut.from_row(r) for r in rows], limit=limit, offset=offset)


@router.post("/withdraw", response_model=TransactionOut)
def withdraw(
    payload: WithdrawRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    svc: WithdrawalService = Depends(get_withdrawal_service),
):
    try:
        require_action(principal, ACTION_WITHDRAW)
        txn = svc.withdraw(
            db,
            account_id=principal.user_id,
            amount=payload.amount,
            bank=BankDetails(
                account_number=payload.accountNumber,
                bank_code=payload.bankCode,
                account_name=payload.accountName,
                bank_name=payload.bankName,
            ),
        )
    except DOMAIN_ERRORS as e:
        raise http_error(e)

    return TransactionOut.from_row(txn)


# ---------------------------------------------------------------------
# POST /v1/wallet/webhook  (payment provider, signed)
# ---------------------------------------------------------------------


@router.post("/webhook")
def funding_webhook(
    event: Dict[str, Any] = Depends(verified_provider_event),
    db: Session = Depends(get_db),
    svc: FundingService = Depends(get_funding_service),
):
    """
    Credits the wallet named in a successful charge. Redeliveries of the
    same charge are acknowledged without a second credit.
    """
    try:
        charge = ProviderCharge.from_event(event)
        if charge is None:
            return {"received": True, "credited": False}
        txn, created = svc.credit_charge(db, charge)
    except DOMAIN_ERRORS as e:
        raise http_error(e)

    return {"received": True, "credited": created, "transactionId": str(txn.id)}


# ---------------------------------------------------------------------
# GET /v1/wallet/{account_id}/verify  (admin)
# ---------------------------------------------------------------------


@router.get("/{account_id}/verify")
def verify_wallet_chain(
    account_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """
    Recomputes the account's hash chain.
    """
    if principal.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Not authorized.")
    return {
        "accountId": account_id,
        "valid": ledger.verify_chain(db, account_id),
        "balance": str(ledger.balance(db, account_id)),
        "currency": ledger.currency,
    }
