"""Promo code store (administrable tier of the promo evaluator)."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


@dataclass
class PromoCode:
    code: str
    percent_off: Decimal
    expires_at: Optional[datetime] = None
    active: bool = True
    id: Optional[int] = None


class PromoCodeRepository(ABC):

    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[PromoCode]:
        pass

    @abstractmethod
    async def add(self, promo: PromoCode) -> PromoCode:
        pass
