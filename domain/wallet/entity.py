"""Store-credit wallet entities."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class WalletEntry:
    account_id: int
    amount: Decimal
    reason: str
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None
