"""
跨层共享的业务码

通用码在此定义；支付服务商相关的码见 ``shared.codes.payment_codes``，
结账/订单/退款相关的码见 ``shared.codes.checkout_codes``。
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    """通用业务码，code=0 表示成功"""

    SUCCESS = 0

    # 参数 (1xxxx)
    PARAM_VALIDATION_ERROR = 10003

    # 资源 (2xxxx)
    NOT_FOUND = 20006
    CONFLICT = 20007

    # 鉴权 (3xxxx)
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # 系统 (4xxxx)
    SYSTEM_ERROR = 40000
    SERVICE_UNAVAILABLE = 40003
    TOO_MANY_REQUESTS = 50001


__all__ = ["BusinessCode"]
