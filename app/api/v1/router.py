from fastapi import APIRouter

from app.api.v1.health import router as health_router
from app.api.v1.shipments import router as shipments_router
from app.api.v1.bids import router as bids_router
from app.api.v1.wallet import router as wallet_router


v1_router = APIRouter()

# ------------------------------------------------------------------
# SYSTEM / CORE
# ------------------------------------------------------------------
v1_router.include_router(health_router, tags=["health"])

# ------------------------------------------------------------------
# MARKETPLACE
# ------------------------------------------------------------------
v1_router.include_router(shipments_router, tags=["shipments"])
v1_router.include_router(bids_router, tags=["bids"])

# ------------------------------------------------------------------
# WALLET (LEDGER IS THE SOURCE OF TRUTH)
# ------------------------------------------------------------------
v1_router.include_router(wallet_router, tags=["wallet"])
