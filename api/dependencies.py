"""
API依赖项 - 认证、授权与应用服务装配

令牌由上游身份服务签发，这里只负责校验 (HS256 / SECRET_KEY) 并解析出 Principal。
"""
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from api.middleware.request_id import bind_account_id
from application.ports.pending_registry import PendingPaymentRegistry
from application.services.cart_service import CartService
from application.services.checkout_service import CheckoutService
from application.services.order_query_service import OrderQueryService, WalletService
from application.services.reconciler import PaymentReconciler
from application.services.refund_service import RefundService
from application.services.subscription_service import SubscriptionService
from core.config import settings
from core.logging_config import get_logger
from infrastructure.cache import get_pending_registry
from infrastructure.external.payments import get_payment_gateway
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


logger = get_logger(__name__)

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


@dataclass(frozen=True)
class Principal:
    """已认证的调用方"""
    account_id: int
    email: Optional[str] = None
    role: str = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == settings.ADMIN_ROLE


def decode_principal(token: str) -> Optional[Principal]:
    """校验访问令牌；无效或过期返回 None"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("access_token_expired")
        return None
    except jwt.InvalidTokenError:
        return None

    subject = payload.get("account_id", payload.get("sub"))
    try:
        account_id = int(subject)
    except (TypeError, ValueError):
        return None
    return Principal(
        account_id=account_id,
        email=payload.get("email"),
        role=str(payload.get("role") or "customer"),
    )


async def get_token(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> str:
    if bearer_token and bearer_token.credentials:
        return bearer_token.credentials

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="未提供认证凭据",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_principal(token: str = Depends(get_token)) -> Principal:
    """获取当前调用方"""
    principal = decode_principal(token)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="无效的认证凭据",
            headers={"WWW-Authenticate": "Bearer"},
        )
    bind_account_id(principal.account_id)
    return principal


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    """获取当前管理员"""
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="需要管理员权限",
        )
    return principal


# ---- 应用服务 ----

async def get_registry() -> PendingPaymentRegistry:
    return await get_pending_registry()


def get_gateway_factory():
    return get_payment_gateway


async def get_reconciler() -> PaymentReconciler:
    return PaymentReconciler(uow_factory=SQLAlchemyUnitOfWork)


async def get_checkout_service(
    registry: PendingPaymentRegistry = Depends(get_registry),
    gateway_factory=Depends(get_gateway_factory),
) -> CheckoutService:
    return CheckoutService(
        uow_factory=SQLAlchemyUnitOfWork,
        registry=registry,
        gateway_factory=gateway_factory,
    )


async def get_cart_service() -> CartService:
    return CartService(uow_factory=SQLAlchemyUnitOfWork)


async def get_order_query_service(
    reconciler: PaymentReconciler = Depends(get_reconciler),
) -> OrderQueryService:
    return OrderQueryService(uow_factory=SQLAlchemyUnitOfWork, reconciler=reconciler)


async def get_refund_service(gateway_factory=Depends(get_gateway_factory)) -> RefundService:
    return RefundService(uow_factory=SQLAlchemyUnitOfWork, gateway_factory=gateway_factory)


async def get_subscription_service(
    registry: PendingPaymentRegistry = Depends(get_registry),
    gateway_factory=Depends(get_gateway_factory),
) -> SubscriptionService:
    return SubscriptionService(
        uow_factory=SQLAlchemyUnitOfWork,
        registry=registry,
        gateway_factory=gateway_factory,
    )


async def get_wallet_service() -> WalletService:
    return WalletService(uow_factory=SQLAlchemyUnitOfWork)
