"""领域层业务异常定义，供领域、应用与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
面向用户的 message 必须是可读的固定文案，第三方原始报错只进入 details 或日志。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.checkout_codes import CheckoutCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


# ---- Payment gateway taxonomy ----

class GatewayUnavailableError(BusinessException):
    """网关不可用：缺少凭据（配置错误）或网络不可达。对本次尝试是致命的，可稍后重试。"""

    def __init__(self, provider: str, *, reason: str = "unreachable", details: Optional[dict] = None):
        full_details = {"provider": provider, "reason": reason}
        if details:
            full_details.update(details)
        message = (
            "Payment provider is not configured"
            if reason == "misconfigured"
            else "Payment provider is temporarily unavailable"
        )
        super().__init__(
            code=PaymentCode.GATEWAY_UNAVAILABLE,
            message=message,
            error_type="GatewayUnavailable",
            details=full_details,
        )
        self.provider = provider
        self.reason = reason


class PaymentNotCompletedError(BusinessException):
    """网关表示尚未支付成功（可恢复：继续轮询或提示用户重试）"""

    def __init__(self, provider: str, provider_ref: str, status: Optional[str] = None):
        super().__init__(
            code=PaymentCode.NOT_COMPLETED,
            message="Payment has not been completed yet",
            error_type="PaymentNotCompleted",
            details={"provider": provider, "provider_ref": provider_ref, "status": status},
        )
        self.provider = provider
        self.provider_ref = provider_ref
        self.status = status


class RefundFailedError(BusinessException):
    """网关拒绝退款；申请保持 REQUESTED 以便管理员重试"""

    def __init__(self, provider: str, provider_reason: Optional[str] = None, *, order_id: Optional[int] = None):
        super().__init__(
            code=PaymentCode.REFUND_FAILED,
            message="Refund was rejected by the payment provider",
            error_type="RefundFailed",
            details={"provider": provider, "provider_reason": provider_reason, "order_id": order_id},
        )
        self.provider = provider
        self.provider_reason = provider_reason


# ---- Checkout / order taxonomy ----

class EmptyCartError(BusinessException):
    """既没有购物车、也没有快照或网关回显，无法重建订单"""

    def __init__(self, account_id: int, payment_reference: str):
        super().__init__(
            code=CheckoutCode.EMPTY_CART,
            message="Checkout failed: no items could be found for this payment",
            error_type="EmptyCart",
            details={"account_id": account_id, "payment_reference": payment_reference},
        )


class InvalidPromoError(BusinessException):
    def __init__(self, code: str, message: str):
        super().__init__(
            code=CheckoutCode.INVALID_PROMO,
            message=message or "Promo code not recognized",
            error_type="InvalidPromo",
            details={"promo_code": code},
            field="promo_code",
        )


class InvalidScheduleError(BusinessException):
    def __init__(self, message: str):
        super().__init__(
            code=CheckoutCode.INVALID_SCHEDULE,
            message=message,
            error_type="InvalidSchedule",
            field="scheduled_at",
        )


class PendingIntentNotFoundException(BusinessException):
    def __init__(self, provider: str):
        super().__init__(
            code=CheckoutCode.PENDING_INTENT_NOT_FOUND,
            message="No pending payment found for this session",
            error_type="PendingIntentNotFound",
            details={"provider": provider},
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: Optional[int] = None):
        super().__init__(
            code=CheckoutCode.ORDER_NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details={"order_id": order_id} if order_id is not None else None,
        )


class RefundNotAllowedException(BusinessException):
    def __init__(self, message: str, *, order_id: Optional[int] = None):
        super().__init__(
            code=CheckoutCode.REFUND_NOT_ALLOWED,
            message=message,
            error_type="RefundNotAllowed",
            details={"order_id": order_id},
        )


class RefundAlreadyPendingException(BusinessException):
    def __init__(self, order_id: int):
        super().__init__(
            code=CheckoutCode.REFUND_ALREADY_PENDING,
            message="A refund request is already pending for this order",
            error_type="RefundAlreadyPending",
            details={"order_id": order_id},
        )


class NoPendingRefundException(BusinessException):
    def __init__(self, order_id: int):
        super().__init__(
            code=CheckoutCode.NO_PENDING_REFUND,
            message="There is no pending refund request for this order",
            error_type="NoPendingRefund",
            details={"order_id": order_id},
        )


class ProductNotFoundException(BusinessException):
    def __init__(self, product_id: int):
        super().__init__(
            code=CheckoutCode.PRODUCT_NOT_FOUND,
            message="Product not found",
            error_type="ProductNotFound",
            details={"product_id": product_id},
        )


class InsufficientStockException(BusinessException):
    def __init__(self, product_id: int, available: int):
        super().__init__(
            code=CheckoutCode.INSUFFICIENT_STOCK,
            message="Not enough stock for this product",
            error_type="InsufficientStock",
            details={"product_id": product_id, "available": available},
        )


class SubscriptionNotFoundException(BusinessException):
    def __init__(self, account_id: int):
        super().__init__(
            code=CheckoutCode.SUBSCRIPTION_NOT_FOUND,
            message="No subscription found",
            error_type="SubscriptionNotFound",
            details={"account_id": account_id},
        )


class DuplicatePaymentReferenceException(BusinessException):
    """(payment_method, payment_reference) 已存在订单"""

    def __init__(self, method: str, reference: str):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message="An order already exists for this payment",
            error_type="DuplicatePaymentReference",
            details={"payment_method": method, "payment_reference": reference},
        )
