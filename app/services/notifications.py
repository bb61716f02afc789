from __future__ import annotations

import logging
from typing import Protocol

from app.models.wallet_transaction import WalletTransaction

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    """
    Receives committed wallet transactions for the notification service to announce.
    """

    def transaction_recorded(self, txn: WalletTransaction) -> None: ...


class LoggingNotificationSink:
    """Default sink: emits one structured log line per committed transaction."""

    def transaction_recorded(self, txn: WalletTransaction) -> None:
        logger.info(
            "wallet transaction recorded",
            extra={
                "account_id": txn.account_id,
                "transaction_id": str(txn.id),
                "type": txn.type,
                "amount": str(txn.amount),
                "payment_stage": txn.payment_stage,
                "shipment_id": str(txn.shipment_id) if txn.shipment_id else None,
            },
        )
