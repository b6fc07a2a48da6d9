"""
Payments API routes.

Webhook receiver only: verify -> dedupe -> hand the event to the checkout
service. Keep this thin: no SDK details here.
"""
from __future__ import annotations

import hashlib
import ipaddress

from fastapi import APIRouter, Depends, HTTPException, Request
from redis.exceptions import RedisError

from api.dependencies import get_checkout_service
from application.services.checkout_service import CheckoutService
from core.config import settings
from core.logging_config import get_logger
from core.response import success_response
from core.settings import payment_settings
from infrastructure.cache import get_redis_cache
from infrastructure.external.payments import get_payment_gateway


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def _ip_permitted(remote_ip: str, allowlist: list[str]) -> bool:
    rip = ipaddress.ip_address(remote_ip)
    for entry in allowlist:
        if "/" in entry:
            try:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            except ValueError:
                logger.warning("webhook_allowlist_entry_invalid", entry=entry)
        elif remote_ip == entry:
            return True
    return False


async def _release_claim(key: str, provider: str) -> None:
    try:
        cache = await get_redis_cache()
        await cache.release(key)
    except RedisError as exc:
        logger.error("webhook_claim_release_failed", provider=provider, key=key, error=str(exc))


@router.post("/webhooks/{provider}", summary="Payment provider webhook")
async def payments_webhook(
    provider: str,
    request: Request,
    service: CheckoutService = Depends(get_checkout_service),
):
    # Content-Type checks
    ct = (request.headers.get("content-type") or "").lower()
    if "application/json" not in ct:
        return success_response(message="Unsupported content type; expected application/json")

    # Optional IP allowlist
    allowlist = payment_settings.webhook.ip_allowlist or []
    if allowlist and request.client and request.client.host:
        try:
            permitted = _ip_permitted(request.client.host, allowlist)
        except ValueError:
            return success_response(message="Invalid remote address")
        if not permitted:
            logger.warning("webhook_ip_rejected", provider=provider, remote_ip=request.client.host)
            return success_response(message="Remote address not allowed")

    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    gw = get_payment_gateway(provider)
    try:
        event = await gw.parse_webhook(headers, raw_body)
    finally:
        await gw.aclose()

    # 同一事件（id + 报文摘要）在容忍窗口内只处理一次
    claim_key = None
    if settings.redis.url:
        try:
            cache = await get_redis_cache()
            body_hash = hashlib.sha256(raw_body or b"{}").hexdigest()
            key = f"webhook:{event.provider}:{event.id}:{body_hash}"
            ttl = max(60, int(payment_settings.webhook.tolerance_seconds))
            is_new = await cache.claim(key, ttl=ttl)
        except RedisError as exc:
            logger.error("webhook_dedupe_failed", provider=provider, error=str(exc))
            # 5xx 触发服务商重试
            raise HTTPException(status_code=500, detail="Webhook dedupe failed")
        if not is_new:
            logger.info("webhook_duplicate_ignored", provider=provider, event_id=event.id)
            return success_response(
                data={"id": event.id, "type": event.type, "provider": event.provider, "duplicate": True},
                message="Duplicate webhook ignored",
            )
        claim_key = key

    try:
        result = await service.handle_webhook(event)
    except Exception:
        # 处理失败时释放去重键，服务商重试才能再次进入处理
        if claim_key is not None:
            await _release_claim(claim_key, provider)
        raise

    # Return 200 to acknowledge receipt per provider conventions
    return success_response(
        data={
            "id": event.id,
            "type": event.type,
            "provider": event.provider,
            "order_id": result.order_id if result else None,
            "outcome": result.outcome.value if result else None,
        },
        message="Webhook received",
    )
