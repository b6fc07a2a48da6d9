"""
管理后台API路由 - 订单管理、退款审批、配送状态与手动对账
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import (
    Principal,
    get_order_query_service,
    get_reconciler,
    get_refund_service,
    require_admin,
)
from application.dtos.api import (
    DeliveryUpdateDTO,
    OrderResponseDTO,
    PaginationParams,
    RefundApproveDTO,
    RefundRejectDTO,
    TransactionDTO,
)
from application.services.order_query_service import OrderQueryService
from application.services.reconciler import PaymentReconciler
from application.services.refund_service import RefundService
from core.logging_config import get_logger
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response
from domain.order.entity import PaymentStatus

router = APIRouter(
    prefix="/admin",
    tags=["管理后台"]
)
logger = get_logger(__name__)


@router.get("/orders", summary="全部订单", response_model=ApiResponse[PaginatedData[OrderResponseDTO]])
async def list_all_orders(
    params: PaginationParams = Depends(),
    status: Optional[PaymentStatus] = Query(None, description="按支付状态筛选"),
    admin: Principal = Depends(require_admin),
    service: OrderQueryService = Depends(get_order_query_service),
):
    page = await service.list_all(skip=params.skip, limit=params.limit, status=status)
    items = [OrderResponseDTO.from_entity(v.order, v.latest_status) for v in page.items]
    return paginated_response(items=items, total=page.total, page=params.page, size=params.size)


@router.get("/orders/{order_id}", summary="订单详情", response_model=ApiResponse[OrderResponseDTO])
async def get_order(
    order_id: int,
    admin: Principal = Depends(require_admin),
    service: OrderQueryService = Depends(get_order_query_service),
):
    view = await service.get(order_id)
    return success_response(data=OrderResponseDTO.from_entity(view.order, view.latest_status))


@router.get("/orders/{order_id}/transactions", summary="订单流水", response_model=ApiResponse[list[TransactionDTO]])
async def order_transactions(
    order_id: int,
    admin: Principal = Depends(require_admin),
    service: OrderQueryService = Depends(get_order_query_service),
):
    history = await service.history(order_id)
    return success_response(data=[TransactionDTO.from_entity(t) for t in history])


@router.post("/orders/{order_id}/refund/approve", summary="批准退款", response_model=ApiResponse[OrderResponseDTO])
async def approve_refund(
    order_id: int,
    body: RefundApproveDTO,
    admin: Principal = Depends(require_admin),
    service: RefundService = Depends(get_refund_service),
):
    """
    批准退款

    - **LIVE**: 调用网关退款，失败时申请保持 REQUESTED，可重试
    - **MANUAL**: 不调用网关，金额退入用户钱包
    - **partial/amount**: 部分退款，金额不超过可退余额
    """
    order = await service.approve(
        order_id,
        mode=body.mode,
        partial=body.partial,
        amount_override=body.amount,
    )
    logger.info("admin_refund_approved", order_id=order_id, admin_id=admin.account_id, mode=body.mode.value)
    return success_response(data=OrderResponseDTO.from_entity(order), message="Refund approved")


@router.post("/orders/{order_id}/refund/reject", summary="拒绝退款", response_model=ApiResponse[OrderResponseDTO])
async def reject_refund(
    order_id: int,
    body: RefundRejectDTO,
    admin: Principal = Depends(require_admin),
    service: RefundService = Depends(get_refund_service),
):
    order = await service.reject(order_id, body.reason)
    logger.info("admin_refund_rejected", order_id=order_id, admin_id=admin.account_id)
    return success_response(data=OrderResponseDTO.from_entity(order), message="Refund rejected")


@router.patch("/orders/{order_id}/delivery", summary="更新配送状态", response_model=ApiResponse[OrderResponseDTO])
async def update_delivery(
    order_id: int,
    body: DeliveryUpdateDTO,
    admin: Principal = Depends(require_admin),
    service: OrderQueryService = Depends(get_order_query_service),
):
    order = await service.update_delivery_status(order_id, body.delivery_status)
    return success_response(data=OrderResponseDTO.from_entity(order), message="Delivery status updated")


@router.post("/reconcile", summary="手动对账", response_model=ApiResponse[dict])
async def reconcile(
    admin: Principal = Depends(require_admin),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """把账本中已收款但订单未标记的记录同步为 PAID，并清理超时待支付订单"""
    report = await reconciler.run_all()
    return success_response(data=report, message="Reconciliation finished")
