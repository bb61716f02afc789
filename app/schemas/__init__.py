from app.schemas.bids import BidCreate, BidOut, AcceptanceOut
from app.schemas.shipments import ShipmentCreate, ShipmentOut, StatusUpdate, TransitionOut
from app.schemas.settlement import StageOutcomeOut, StageStatusOut, SettlementSummaryOut
from app.schemas.wallet import BalanceOut, TransactionOut, TransactionPage, WithdrawRequest
