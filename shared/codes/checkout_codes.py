"""
Checkout, order and refund business codes (2xxxx range, 21xxx block).
"""
from __future__ import annotations

from enum import IntEnum


class CheckoutCode(IntEnum):
    EMPTY_CART = 21000
    INVALID_PROMO = 21001
    INVALID_SCHEDULE = 21002
    ORDER_NOT_FOUND = 21003
    REFUND_NOT_ALLOWED = 21004
    REFUND_ALREADY_PENDING = 21005
    NO_PENDING_REFUND = 21006
    PENDING_INTENT_NOT_FOUND = 21007
    INSUFFICIENT_STOCK = 21008
    PRODUCT_NOT_FOUND = 21009
    SUBSCRIPTION_NOT_FOUND = 21010
