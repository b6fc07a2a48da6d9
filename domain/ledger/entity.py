"""
Ledger transaction entity.

Append-only audit record. One row per lifecycle event of an order
(capture, refund request, refund approval or rejection). The latest row per
order is the read model for refund state in the UI.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.money import money


class TransactionStatus(str, Enum):
    COMPLETED = "COMPLETED"
    PAID = "PAID"
    REFUND_REQUESTED = "REFUND_REQUESTED"
    REFUNDED = "REFUNDED"
    REFUND_REJECTED = "REFUND_REJECTED"
    FAILED = "FAILED"


CAPTURED_STATUSES = (TransactionStatus.COMPLETED, TransactionStatus.PAID)


@dataclass(frozen=True)
class LedgerTransaction:
    order_id: int
    amount: Decimal
    currency: str
    status: TransactionStatus
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    payer_id: Optional[str] = None
    payer_email: Optional[str] = None
    capture_id: Optional[str] = None
    refund_id: Optional[str] = None
    refund_note: Optional[str] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "amount", money(self.amount))
        if self.created_at is None:
            object.__setattr__(self, "created_at", datetime.now(timezone.utc))
        elif self.created_at.tzinfo is None:
            object.__setattr__(self, "created_at", self.created_at.replace(tzinfo=timezone.utc))
