"""
结账API路由 - 报价、创建支付意图、重定向确认、状态轮询
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import Principal, get_checkout_service, get_current_principal
from application.dtos.api import CaptureDTO, IntentResponseDTO, StartCheckoutDTO
from application.dtos.checkout import CheckoutStatus, DeliveryRequest, Quote
from application.services.checkout_service import CheckoutService
from core.response import Response as ApiResponse, success_response
from domain.order.entity import DeliveryType
from infrastructure.tasks.tasks.payments import schedule_intent_poll

router = APIRouter(
    prefix="/checkout",
    tags=["结账"]
)


@router.get("/quote", summary="结账报价", response_model=ApiResponse[Quote])
async def get_quote(
    promo_code: Optional[str] = Query(None, description="优惠码"),
    delivery_type: DeliveryType = Query(DeliveryType.NOW),
    scheduled_at: Optional[str] = Query(None, description="ISO8601 预约时间"),
    principal: Principal = Depends(get_current_principal),
    service: CheckoutService = Depends(get_checkout_service),
):
    """
    计算当前购物车的应付金额

    - 小计 + 会员配送费/折扣（最低 0.50）
    - 优惠码未生效时只返回提示，不报错
    - NOW 配送返回 ETA 区间，SCHEDULED 校验预约时间
    """
    quote = await service.quote(
        principal.account_id,
        promo_code=promo_code,
        delivery=DeliveryRequest(delivery_type=delivery_type, scheduled_at=scheduled_at),
    )
    return success_response(data=quote, message="Quote computed")


@router.post("/{provider}/intents", summary="创建支付意图", response_model=ApiResponse[IntentResponseDTO])
async def create_intent(
    provider: str,
    body: StartCheckoutDTO,
    principal: Principal = Depends(get_current_principal),
    service: CheckoutService = Depends(get_checkout_service),
):
    """
    为当前购物车创建支付意图

    - **stripe**: 返回 client_secret；同时写入 PENDING 订单
    - **paypal**: 返回 approve_url，用户批准后调用 capture
    - **nets**: 返回二维码，客户端轮询 status
    """
    pending, client_params = await service.start(
        principal.account_id,
        provider,
        promo_code=body.promo_code,
        delivery=DeliveryRequest(delivery_type=body.delivery_type, scheduled_at=body.scheduled_at),
    )
    schedule_intent_poll(principal.account_id, pending.provider, pending.provider_ref)
    data = IntentResponseDTO(
        provider=pending.provider,
        provider_ref=pending.provider_ref,
        total=pending.total,
        currency=pending.currency,
        order_id=pending.order_id,
        client_params=client_params,
    )
    return success_response(data=data, message="Payment intent created")


@router.post("/{provider}/capture", summary="确认支付", response_model=ApiResponse[CheckoutStatus])
async def capture_intent(
    provider: str,
    body: CaptureDTO,
    principal: Principal = Depends(get_current_principal),
    service: CheckoutService = Depends(get_checkout_service),
):
    """重定向返回后确认支付并落库订单；重复调用返回同一订单"""
    result = await service.capture(principal.account_id, provider, body.provider_ref)
    return success_response(data=result, message="Payment captured")


@router.get("/{provider}/status", summary="查询支付状态", response_model=ApiResponse[CheckoutStatus])
async def intent_status(
    provider: str,
    provider_ref: Optional[str] = Query(None, description="不传时使用最近一次的待支付意图"),
    principal: Principal = Depends(get_current_principal),
    service: CheckoutService = Depends(get_checkout_service),
):
    """有界轮询网关状态；支付成功时落库订单"""
    result = await service.status(principal.account_id, provider, provider_ref)
    return success_response(data=result, message="Payment status")
