"""
Pending payment registry port.

Keyed store ``(account, slot) -> PendingIntent``. ``slot`` is the provider name
for order checkouts (``paypal``, ``nets``, ``stripe``) and ``<provider>:subscription``
for subscription checkouts. Opening a new intent overwrites the previous one;
resolving requires the exact provider reference so a stale redirect can never
finalize a newer intent.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from application.dtos.checkout import PendingIntent


@runtime_checkable
class PendingPaymentRegistry(Protocol):

    async def open(self, intent: PendingIntent, *, slot: Optional[str] = None) -> None: ...

    async def resolve(self, account_id: int, slot: str, provider_ref: str) -> Optional[PendingIntent]: ...

    async def current(self, account_id: int, slot: str) -> Optional[PendingIntent]: ...

    async def close(self, account_id: int, slot: str, provider_ref: str) -> bool: ...
