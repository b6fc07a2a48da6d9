"""
全局异常处理

业务码 -> HTTP 状态码的映射集中在这里；领域层只抛 BusinessException，
不关心 HTTP 语义。
"""
import traceback
import uuid
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status as http_status

from core.logging_config import get_logger
from core.response import Response, error_response
from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode
from shared.codes.checkout_codes import CheckoutCode
from shared.codes.payment_codes import PaymentCode


logger = get_logger(__name__)

_HTTP_STATUS = {
    BusinessCode.PARAM_VALIDATION_ERROR: 422,
    BusinessCode.NOT_FOUND: 404,
    BusinessCode.CONFLICT: 409,
    BusinessCode.UNAUTHORIZED: 401,
    BusinessCode.FORBIDDEN: 403,
    BusinessCode.SYSTEM_ERROR: 500,
    BusinessCode.SERVICE_UNAVAILABLE: 503,
    BusinessCode.TOO_MANY_REQUESTS: 429,
    # 网关
    PaymentCode.PROVIDER_ERROR: 502,
    PaymentCode.SIGNATURE_ERROR: 400,
    PaymentCode.GATEWAY_UNAVAILABLE: 503,
    PaymentCode.NOT_COMPLETED: 409,
    PaymentCode.REFUND_FAILED: 502,
    # 结账/订单/退款
    CheckoutCode.EMPTY_CART: 409,
    CheckoutCode.INVALID_PROMO: 422,
    CheckoutCode.INVALID_SCHEDULE: 422,
    CheckoutCode.ORDER_NOT_FOUND: 404,
    CheckoutCode.REFUND_NOT_ALLOWED: 400,
    CheckoutCode.REFUND_ALREADY_PENDING: 409,
    CheckoutCode.NO_PENDING_REFUND: 409,
    CheckoutCode.PENDING_INTENT_NOT_FOUND: 404,
    CheckoutCode.INSUFFICIENT_STOCK: 409,
    CheckoutCode.PRODUCT_NOT_FOUND: 404,
    CheckoutCode.SUBSCRIPTION_NOT_FOUND: 404,
}

# HTTPException（鉴权依赖、回调去重失败等）-> 业务码
_CODE_BY_HTTP_STATUS = {
    401: BusinessCode.UNAUTHORIZED,
    403: BusinessCode.FORBIDDEN,
    404: BusinessCode.NOT_FOUND,
    429: BusinessCode.TOO_MANY_REQUESTS,
    503: BusinessCode.SERVICE_UNAVAILABLE,
}


def business_code_to_http_status(code: int) -> int:
    """未登记的业务码一律按 400 返回"""
    return _HTTP_STATUS.get(code, http_status.HTTP_400_BAD_REQUEST)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or uuid.uuid4().hex


def _render(status_code: int, body: Response, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"), headers=headers)


def register_exception_handlers(app: FastAPI):
    """注册全局异常处理器"""

    @app.exception_handler(BusinessException)
    async def handle_business_exception(request: Request, exc: BusinessException):
        request_id = _request_id(request)
        status_code = business_code_to_http_status(exc.code)
        if status_code >= 500:
            # 网关类故障需要排查，4xx 属于正常业务分支
            logger.error(
                "business_exception",
                request_id=request_id,
                code=int(exc.code),
                error_type=exc.error_type,
                details=exc.details,
            )
        body = error_response(
            code=exc.code,
            message=exc.message,
            error_type=exc.error_type,
            details=exc.details,
            field=exc.field,
            request_id=request_id,
        )
        headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
        return _render(status_code, body, headers)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        body = error_response(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=f"Validation failed: {first.get('msg', 'unknown')}",
            error_type="ValidationError",
            details={"errors": errors},
            field=".".join(str(loc) for loc in first.get("loc", [])[1:]),
            request_id=_request_id(request),
        )
        return _render(http_status.HTTP_422_UNPROCESSABLE_ENTITY, body)

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        body = error_response(
            code=_CODE_BY_HTTP_STATUS.get(exc.status_code, BusinessCode.SYSTEM_ERROR),
            message=str(exc.detail),
            error_type="HTTPError",
            details={"status_code": exc.status_code},
            request_id=_request_id(request),
        )
        return _render(exc.status_code, body, getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        request_id = _request_id(request)
        logger.error("unhandled_exception", request_id=request_id, error=str(exc), exc_info=True)

        details = {"exception": str(exc), "traceback": traceback.format_exc()} if app.debug else None
        body = error_response(
            code=BusinessCode.SYSTEM_ERROR,
            message="Internal server error",
            error_type="SystemError",
            details=details,
            request_id=request_id,
        )
        return _render(http_status.HTTP_500_INTERNAL_SERVER_ERROR, body)
