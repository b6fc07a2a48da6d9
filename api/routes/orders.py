"""
订单API路由 - 当前用户的订单、统计与退款申请
"""
from fastapi import APIRouter, Depends

from api.dependencies import (
    Principal,
    get_current_principal,
    get_order_query_service,
    get_refund_service,
)
from application.dtos.api import (
    OrderResponseDTO,
    OrderStatsDTO,
    PaginationParams,
    RefundRequestDTO,
)
from application.services.order_query_service import OrderQueryService
from application.services.refund_service import RefundService
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response

router = APIRouter(
    prefix="/orders",
    tags=["订单"]
)


@router.get("", summary="我的订单", response_model=ApiResponse[PaginatedData[OrderResponseDTO]])
async def list_orders(
    params: PaginationParams = Depends(),
    principal: Principal = Depends(get_current_principal),
    service: OrderQueryService = Depends(get_order_query_service),
):
    """分页列出订单（按创建时间倒序），列出前会先把超时的待支付订单置为 CANCELLED"""
    page = await service.list_for_account(principal.account_id, skip=params.skip, limit=params.limit)
    items = [OrderResponseDTO.from_entity(v.order, v.latest_status) for v in page.items]
    return paginated_response(items=items, total=page.total, page=params.page, size=params.size)


@router.get("/stats", summary="订单统计", response_model=ApiResponse[OrderStatsDTO])
async def order_stats(
    principal: Principal = Depends(get_current_principal),
    service: OrderQueryService = Depends(get_order_query_service),
):
    stats = await service.stats(principal.account_id)
    return success_response(data=OrderStatsDTO(**stats))


@router.get("/{order_id}", summary="订单详情", response_model=ApiResponse[OrderResponseDTO])
async def get_order(
    order_id: int,
    principal: Principal = Depends(get_current_principal),
    service: OrderQueryService = Depends(get_order_query_service),
):
    view = await service.get_for_account(principal.account_id, order_id)
    return success_response(data=OrderResponseDTO.from_entity(view.order, view.latest_status))


@router.post("/{order_id}/refund-request", summary="申请退款", response_model=ApiResponse[OrderResponseDTO])
async def request_refund(
    order_id: int,
    body: RefundRequestDTO,
    principal: Principal = Depends(get_current_principal),
    service: RefundService = Depends(get_refund_service),
):
    """
    申请退款

    - 仅限已支付订单，且在退款窗口期内
    - 同一订单同时只能有一个待审核的退款申请
    """
    order = await service.request_refund(principal.account_id, order_id, body.reason)
    return success_response(data=OrderResponseDTO.from_entity(order), message="Refund requested")
