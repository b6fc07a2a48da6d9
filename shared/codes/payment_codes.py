"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # 服务商/网关 (6xxxx)
    PROVIDER_ERROR = 60000
    SIGNATURE_ERROR = 60002
    GATEWAY_UNAVAILABLE = 60005
    NOT_COMPLETED = 60006
    REFUND_FAILED = 60007


# Provider status -> internal intent status (PENDING / PAID / FAILED)
PROVIDER_STATUS_TO_INTERNAL = {
    "stripe": {
        "requires_payment_method": "PENDING",
        "requires_confirmation": "PENDING",
        "requires_action": "PENDING",
        "processing": "PENDING",
        "requires_capture": "PENDING",
        "succeeded": "PAID",
        "canceled": "FAILED",
    },
    "paypal": {
        # Orders v2 status
        "CREATED": "PENDING",
        "SAVED": "PENDING",
        "APPROVED": "PENDING",
        "PAYER_ACTION_REQUIRED": "PENDING",
        "COMPLETED": "PAID",
        "VOIDED": "FAILED",
    },
    "nets": {
        # nets-qr/query txn_status
        "1": "PENDING",
        "2": "PAID",
        "3": "FAILED",
    },
}
