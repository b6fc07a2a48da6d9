"""
会员订阅API路由
"""
from fastapi import APIRouter, Depends

from api.dependencies import Principal, get_current_principal, get_subscription_service
from application.dtos.api import (
    CaptureDTO,
    IntentResponseDTO,
    SubscriptionCancelDTO,
    SubscriptionCheckoutDTO,
    SubscriptionResponseDTO,
)
from application.services.subscription_service import SubscriptionService
from core.response import Response as ApiResponse, success_response

router = APIRouter(
    prefix="/subscriptions",
    tags=["会员订阅"]
)


@router.get("/me", summary="我的订阅", response_model=ApiResponse[SubscriptionResponseDTO])
async def my_subscription(
    principal: Principal = Depends(get_current_principal),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """读取前会先按当前时间处理到期续订/失效"""
    row, active = await service.current(principal.account_id)
    return success_response(data=SubscriptionResponseDTO.from_entity(row, active))


@router.post("/paypal/intents", summary="创建订阅支付", response_model=ApiResponse[IntentResponseDTO])
async def start_subscription_checkout(
    body: SubscriptionCheckoutDTO,
    principal: Principal = Depends(get_current_principal),
    service: SubscriptionService = Depends(get_subscription_service),
):
    pending, client_params = await service.start_checkout(principal.account_id, body.plan)
    data = IntentResponseDTO(
        provider=pending.provider,
        provider_ref=pending.provider_ref,
        total=pending.total,
        currency=pending.currency,
        client_params=client_params,
    )
    return success_response(data=data, message="Subscription payment created")


@router.post("/paypal/capture", summary="确认订阅支付", response_model=ApiResponse[SubscriptionResponseDTO])
async def capture_subscription(
    body: CaptureDTO,
    principal: Principal = Depends(get_current_principal),
    service: SubscriptionService = Depends(get_subscription_service),
):
    row = await service.capture(principal.account_id, body.provider_ref)
    return success_response(data=SubscriptionResponseDTO.from_entity(row, True), message="Subscription activated")


@router.post("/cancel", summary="取消订阅", response_model=ApiResponse[SubscriptionResponseDTO])
async def cancel_subscription(
    body: SubscriptionCancelDTO,
    principal: Principal = Depends(get_current_principal),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """at_period_end=true 时保留到本周期结束，否则立即失效"""
    row = await service.cancel(principal.account_id, at_period_end=body.at_period_end)
    _, active = await service.current(principal.account_id)
    return success_response(data=SubscriptionResponseDTO.from_entity(row, active), message="Subscription cancelled")
