"""create_checkout_schema

Revision ID: 3c9e1f0a7b21
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3c9e1f0a7b21'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name: str, comment: str, nullable: bool = False, default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(precision=12, scale=2),
        nullable=nullable,
        server_default='0' if default else None,
        comment=comment,
    )


def upgrade() -> None:
    # Orders
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False, comment='账户ID'),
        sa.Column('payment_method', sa.String(length=20), nullable=False, comment='支付方式: STRIPE/PAYPAL/NETS'),
        sa.Column('payment_reference', sa.String(length=255), nullable=False, comment='网关交易/意图ID（幂等键）'),
        sa.Column('payment_status', sa.String(length=20), nullable=False, server_default='PENDING',
                  comment='PENDING/PROCESSING/PAID/FAILED/CANCELLED/PARTIAL_REFUND/REFUNDED'),
        sa.Column('payer_email', sa.String(length=255), nullable=True, comment='付款人邮箱'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True, comment='支付完成时间'),
        _money('subtotal', '行项目合计'),
        _money('delivery_fee', '配送费'),
        _money('benefit_discount', '会员折扣'),
        sa.Column('promo_code', sa.String(length=50), nullable=True, comment='优惠码'),
        _money('promo_discount', '优惠码折扣'),
        _money('total_amount', '实收金额', default=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='SGD', comment='货币代码 ISO-4217'),
        sa.Column('delivery_type', sa.String(length=20), nullable=False, server_default='NOW', comment='NOW/SCHEDULED'),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=True, comment='预约配送时间'),
        sa.Column('eta_min', sa.Integer(), nullable=True, comment='预计送达下限（分钟）'),
        sa.Column('eta_max', sa.Integer(), nullable=True, comment='预计送达上限（分钟）'),
        sa.Column('delivery_status', sa.String(length=20), nullable=False, server_default='PREPARING',
                  comment='PREPARING/OUT_FOR_DELIVERY/DELIVERED'),
        sa.Column('refund_status', sa.String(length=20), nullable=False, server_default='NONE',
                  comment='NONE/REQUESTED/APPROVED/REJECTED'),
        sa.Column('refund_reason', sa.Text(), nullable=True, comment='退款原因'),
        sa.Column('refund_requested_at', sa.DateTime(timezone=True), nullable=True, comment='退款申请时间'),
        sa.Column('refund_reviewed_at', sa.DateTime(timezone=True), nullable=True, comment='退款审核时间'),
        _money('refunded_amount', '已退款金额'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id'),
        comment='订单表；(payment_method, payment_reference) 唯一',
    )
    op.create_index('ix_orders_id', 'orders', ['id'], unique=False)
    op.create_index('ix_orders_account_id', 'orders', ['account_id'], unique=False)
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'], unique=False)
    op.create_index('ix_orders_refund_status', 'orders', ['refund_status'], unique=False)
    op.create_index('uq_orders_payment_ref', 'orders', ['payment_method', 'payment_reference'], unique=True)
    op.create_index('ix_orders_account_created', 'orders', ['account_id', 'created_at'], unique=False)
    op.create_index('ix_orders_status_created', 'orders', ['payment_status', 'created_at'], unique=False)

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False, comment='订单ID'),
        sa.Column('product_id', sa.Integer(), nullable=False, comment='商品ID'),
        sa.Column('name', sa.String(length=255), nullable=False, server_default='', comment='商品名称快照'),
        _money('unit_price', '单价快照', default=False),
        sa.Column('quantity', sa.Integer(), nullable=False, comment='数量'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_id', 'order_items', ['id'], unique=False)
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'], unique=False)

    # Append-only ledger
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False, comment='订单ID'),
        sa.Column('payer_id', sa.String(length=255), nullable=True, comment='网关付款人ID'),
        sa.Column('payer_email', sa.String(length=255), nullable=True, comment='付款人邮箱'),
        _money('amount', '金额', default=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='SGD', comment='货币代码'),
        sa.Column('status', sa.String(length=30), nullable=False,
                  comment='COMPLETED/PAID/REFUND_REQUESTED/REFUNDED/REFUND_REJECTED/FAILED'),
        sa.Column('payment_method', sa.String(length=20), nullable=True, comment='支付方式'),
        sa.Column('payment_reference', sa.String(length=255), nullable=True, comment='网关交易/意图ID'),
        sa.Column('capture_id', sa.String(length=255), nullable=True, comment='渠道收款ID（退款使用）'),
        sa.Column('refund_id', sa.String(length=255), nullable=True, comment='渠道退款ID'),
        sa.Column('refund_note', sa.Text(), nullable=True, comment='退款备注'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='记录时间'),
        sa.PrimaryKeyConstraint('id'),
        comment='账本交易表（只追加）',
    )
    op.create_index('ix_transactions_id', 'transactions', ['id'], unique=False)
    op.create_index('ix_transactions_order_id', 'transactions', ['order_id'], unique=False)
    op.create_index('ix_transactions_status', 'transactions', ['status'], unique=False)
    op.create_index('ix_transactions_order_id_id', 'transactions', ['order_id', 'id'], unique=False)

    # Catalog / cart / promo
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False, comment='商品名称'),
        _money('price', '单价', default=False),
        sa.Column('stock_qty', sa.Integer(), nullable=False, server_default='0', comment='可售库存（已扣除购物车预留）'),
        sa.CheckConstraint('stock_qty >= 0', name='ck_products_stock_non_negative'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_products_id', 'products', ['id'], unique=False)

    op.create_table(
        'cart_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False, comment='账户ID'),
        sa.Column('product_id', sa.Integer(), nullable=False, comment='商品ID'),
        sa.Column('name', sa.String(length=255), nullable=False, server_default='', comment='商品名称'),
        _money('unit_price', '加入时单价', default=False),
        sa.Column('quantity', sa.Integer(), nullable=False, comment='数量'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('quantity >= 1', name='ck_cart_items_quantity_positive'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_cart_items_id', 'cart_items', ['id'], unique=False)
    op.create_index('uq_cart_items_account_product', 'cart_items', ['account_id', 'product_id'], unique=True)

    op.create_table(
        'promo_codes',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False, comment='优惠码（大写）'),
        sa.Column('percent_off', sa.Numeric(precision=5, scale=2), nullable=False, comment='折扣百分比'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True, comment='过期时间'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true(), comment='是否启用'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
    )
    op.create_index('ix_promo_codes_id', 'promo_codes', ['id'], unique=False)

    # Subscriptions / wallet
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False, comment='账户ID'),
        sa.Column('plan', sa.String(length=20), nullable=False, comment='BASIC/PREMIUM'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='ACTIVE', comment='ACTIVE/CANCELLED/EXPIRED'),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False, comment='开始时间'),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False, comment='当前周期结束时间'),
        sa.Column('auto_renew', sa.Boolean(), nullable=False, server_default=sa.true(), comment='自动续期'),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false(), comment='周期末取消'),
        sa.Column('payment_reference', sa.String(length=255), nullable=True, comment='付款网关引用'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_subscriptions_id', 'subscriptions', ['id'], unique=False)
    op.create_index('ix_subscriptions_account_id', 'subscriptions', ['account_id', 'id'], unique=False)

    op.create_table(
        'wallets',
        sa.Column('account_id', sa.Integer(), autoincrement=False, nullable=False, comment='账户ID'),
        _money('balance', '余额'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('account_id'),
    )

    op.create_table(
        'wallet_ledger',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False, comment='账户ID'),
        _money('amount', '变动金额', default=False),
        sa.Column('reason', sa.String(length=255), nullable=False, comment='原因'),
        sa.Column('reference_type', sa.String(length=50), nullable=True, comment='关联类型，如 REFUND'),
        sa.Column('reference_id', sa.String(length=255), nullable=True, comment='关联ID'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_wallet_ledger_id', 'wallet_ledger', ['id'], unique=False)
    op.create_index('ix_wallet_ledger_account_id', 'wallet_ledger', ['account_id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_wallet_ledger_account_id', table_name='wallet_ledger')
    op.drop_index('ix_wallet_ledger_id', table_name='wallet_ledger')
    op.drop_table('wallet_ledger')
    op.drop_table('wallets')
    op.drop_index('ix_subscriptions_account_id', table_name='subscriptions')
    op.drop_index('ix_subscriptions_id', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_index('ix_promo_codes_id', table_name='promo_codes')
    op.drop_table('promo_codes')
    op.drop_index('uq_cart_items_account_product', table_name='cart_items')
    op.drop_index('ix_cart_items_id', table_name='cart_items')
    op.drop_table('cart_items')
    op.drop_index('ix_products_id', table_name='products')
    op.drop_table('products')
    op.drop_index('ix_transactions_order_id_id', table_name='transactions')
    op.drop_index('ix_transactions_status', table_name='transactions')
    op.drop_index('ix_transactions_order_id', table_name='transactions')
    op.drop_index('ix_transactions_id', table_name='transactions')
    op.drop_table('transactions')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_index('ix_order_items_id', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_status_created', table_name='orders')
    op.drop_index('ix_orders_account_created', table_name='orders')
    op.drop_index('uq_orders_payment_ref', table_name='orders')
    op.drop_index('ix_orders_refund_status', table_name='orders')
    op.drop_index('ix_orders_payment_status', table_name='orders')
    op.drop_index('ix_orders_account_id', table_name='orders')
    op.drop_index('ix_orders_id', table_name='orders')
    op.drop_table('orders')
