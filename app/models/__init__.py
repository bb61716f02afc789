# Importing the models registers their tables on Base.metadata.
from app.models.shipment import Shipment  # noqa: F401
from app.models.bid import Bid  # noqa: F401
from app.models.wallet_transaction import WalletTransaction  # noqa: F401
from app.models.idempotency_key import IdempotencyKeyRecord  # noqa: F401
