# /app/core/deps.py
from functools import lru_cache

from fastapi import HTTPException

from app.core.config import get_settings
from app.core.errors import SettlementError
from app.core.identity import BidderIdentity, FleetManagerDriver, Trucker
from app.models.enums import UserRole
from app.policies.rbac import Principal
from app.services.funding_service import FundingService
from app.services.ledger_service import LedgerService
from app.services.payout_service import PayoutClient, WithdrawalService
from app.services.settlement_service import SettlementService


def get_settlement_service() -> SettlementService:
    return SettlementService.from_settings(get_settings())


def get_ledger_service() -> LedgerService:
    return LedgerService(currency=get_settings().currency)


def get_funding_service() -> FundingService:
    return FundingService(ledger=LedgerService(currency=get_settings().currency))


@lru_cache(maxsize=1)
def _payout_client() -> PayoutClient:
    # one client per process so its token cache is shared across requests
    return PayoutClient.from_settings(get_settings())


def close_payout_client() -> None:
    if _payout_client.cache_info().currsize:
        _payout_client().close()
        _payout_client.cache_clear()


def get_withdrawal_service() -> WithdrawalService:
    settings = get_settings()
    return WithdrawalService(
        _payout_client(),
        ledger=LedgerService(currency=settings.currency),
        min_amount=settings.min_withdrawal_amount,
    )


DOMAIN_ERRORS = (SettlementError, PermissionError)


def http_error(exc: Exception) -> HTTPException:
    """
    Map a core failure (one of DOMAIN_ERRORS) onto HTTP.
    """
    if isinstance(exc, PermissionError):
        return HTTPException(status_code=403, detail=str(exc) or "Access denied.")
    return HTTPException(status_code=getattr(exc, "status_code", 400), detail=str(exc))


def bidder_for(principal: Principal, driver_id=None) -> BidderIdentity:
    """
    Truckers bid as themselves; fleet managers must name the driver.
    """
    if principal.role == UserRole.TRUCKER:
        if driver_id:
            raise HTTPException(status_code=400, detail="Truckers cannot bid on behalf of a driver.")
        return Trucker(trucker_id=principal.user_id)
    if principal.role == UserRole.FLEET_MANAGER:
        if not driver_id:
            raise HTTPException(status_code=400, detail="Driver ID is required for fleet manager bids.")
        return FleetManagerDriver(fleet_manager_id=principal.user_id, driver_id=str(driver_id))
    raise HTTPException(status_code=403, detail="Only truckers and fleet managers can place bids.")
