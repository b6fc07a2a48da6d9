"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel, OrderItemModel
from .transaction import TransactionModel
from .catalog import ProductModel, CartItemModel, PromoCodeModel
from .account import SubscriptionModel, WalletModel, WalletEntryModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "OrderItemModel",
    "TransactionModel",
    "ProductModel",
    "CartItemModel",
    "PromoCodeModel",
    "SubscriptionModel",
    "WalletModel",
    "WalletEntryModel",
]
