"""Initial schema: batches, stock records, promotions, loyalty, sales, ledger

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. Batch, StockRecord, InventoryMovement (batch-tracked stock ledger)
2. Promotion, PromotionClientUsage (codes with usage counters)
3. Sale, SaleLine, SaleBatchAllocation, CommissionRecord (finalized receipts)
4. LoyaltyAccount, LoyaltyTransaction (branch-scoped points)
5. LedgerEvent, DocumentSequence (audit trail and numbering)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. STOCK LEDGER
    # ==========================================================================
    op.create_table('batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=True),
        sa.Column('batch_number', sa.String(length=64), nullable=False),
        sa.Column('purchase_order_id', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('remaining_quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('expiration_date', sa.Date(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('received_by', sa.String(length=64), nullable=True),
        sa.Column('usage_type', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('source_batch_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.CheckConstraint('remaining_quantity >= 0', name='ck_batches_remaining_non_negative'),
        sa.ForeignKeyConstraint(['source_batch_id'], ['batches.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('batches', schema=None) as batch_op:
        batch_op.create_index('ix_batches_branch_product', ['branch_id', 'product_id'], unique=False)
        batch_op.create_index('ix_batches_branch_status', ['branch_id', 'status'], unique=False)
        batch_op.create_index(batch_op.f('ix_batches_branch_id'), ['branch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_batches_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_batches_batch_number'), ['batch_number'], unique=False)
        batch_op.create_index(batch_op.f('ix_batches_expiration_date'), ['expiration_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_batches_status'), ['status'], unique=False)

    op.create_table('stock_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=True),
        sa.Column('real_time_stock', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.CheckConstraint('real_time_stock >= 0', name='ck_stock_records_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'product_id', name='uq_stock_records_branch_product'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('stock_records', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_records_branch_id'), ['branch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_records_product_id'), ['product_id'], unique=False)

    # ==========================================================================
    # 2. PROMOTIONS
    # ==========================================================================
    op.create_table('promotions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('discount_type', sa.String(length=16), nullable=False),
        sa.Column('discount_value', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('max_discount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('applies_to', sa.String(length=16), nullable=False),
        sa.Column('item_ids', sa.JSON(), nullable=True),
        sa.Column('eligible_branches', sa.JSON(), nullable=True),
        sa.Column('eligible_clients', sa.JSON(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('usage_limit_global', sa.Integer(), nullable=True),
        sa.Column('usage_limit_per_client', sa.Integer(), nullable=True),
        sa.Column('usage_count', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('usage_count >= 0', name='ck_promotions_usage_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_promotions_code'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('promotions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_promotions_code'), ['code'], unique=False)
        batch_op.create_index(batch_op.f('ix_promotions_is_active'), ['is_active'], unique=False)

    op.create_table('promotion_client_usages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('promotion_id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.String(length=64), nullable=False),
        sa.Column('usage_count', sa.Integer(), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['promotion_id'], ['promotions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('promotion_id', 'client_id', name='uq_promo_usage_promotion_client'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('promotion_client_usages', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_promotion_client_usages_promotion_id'), ['promotion_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_promotion_client_usages_client_id'), ['client_id'], unique=False)

    # ==========================================================================
    # 3. SALES
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.String(length=64), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('receipt_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('sales_type', sa.String(length=16), nullable=False),
        sa.Column('client_id', sa.String(length=64), nullable=True),
        sa.Column('client_name', sa.String(length=255), nullable=False),
        sa.Column('appointment_id', sa.String(length=64), nullable=True),
        sa.Column('subtotal', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('discount_type', sa.String(length=16), nullable=True),
        sa.Column('discount_value', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('discount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('promotion_id', sa.Integer(), nullable=True),
        sa.Column('promotion_code', sa.String(length=64), nullable=True),
        sa.Column('promotion_discount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('loyalty_points_used', sa.Integer(), nullable=False),
        sa.Column('loyalty_points_earned', sa.Integer(), nullable=False),
        sa.Column('service_charge', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('tax', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('total', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('payment_reference', sa.String(length=128), nullable=True),
        sa.Column('amount_received', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('change_due', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['promotion_id'], ['promotions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'document_number', name='uq_sales_branch_docnum'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('sales', schema=None) as batch_op:
        batch_op.create_index('ix_sales_branch_created', ['branch_id', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_sales_branch_id'), ['branch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sales_receipt_number'), ['receipt_number'], unique=False)
        batch_op.create_index(batch_op.f('ix_sales_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_sales_client_id'), ['client_id'], unique=False)

    op.create_table('sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('line_type', sa.String(length=16), nullable=False),
        sa.Column('item_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('base_price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('stylist_id', sa.String(length=64), nullable=True),
        sa.Column('client_type', sa.String(length=16), nullable=True),
        sa.Column('adjustment', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('adjustment_reason', sa.String(length=255), nullable=True),
        sa.Column('unit_cost', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('commission_percentage', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('commissioner_id', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('sale_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sale_lines_sale_id'), ['sale_id'], unique=False)

    op.create_table('sale_batch_allocations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('sale_line_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('batch_number', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('expiration_date', sa.Date(), nullable=True),
        sa.Column('unit_cost', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['sale_line_id'], ['sale_lines.id']),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('sale_batch_allocations', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sale_batch_allocations_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sale_batch_allocations_sale_line_id'), ['sale_line_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sale_batch_allocations_batch_id'), ['batch_id'], unique=False)

    op.create_table('commission_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('sale_line_id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('commissioner_id', sa.String(length=64), nullable=False),
        sa.Column('unit_cost', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('percentage', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['sale_line_id'], ['sale_lines.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('commission_records', schema=None) as batch_op:
        batch_op.create_index('ix_commissions_commissioner_created', ['commissioner_id', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_commission_records_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_commission_records_branch_id'), ['branch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_commission_records_commissioner_id'), ['commissioner_id'], unique=False)

    op.create_table('inventory_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('batch_deductions', sa.JSON(), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('counterpart_branch_id', sa.String(length=64), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('inventory_movements', schema=None) as batch_op:
        batch_op.create_index('ix_inventory_movements_branch_product', ['branch_id', 'product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_movements_branch_id'), ['branch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_movements_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_movements_type'), ['type'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_movements_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_movements_occurred_at'), ['occurred_at'], unique=False)

    # ==========================================================================
    # 4. LOYALTY
    # ==========================================================================
    op.create_table('loyalty_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.String(length=64), nullable=False),
        sa.Column('branch_id', sa.String(length=64), nullable=False),
        sa.Column('points_balance', sa.Integer(), nullable=False),
        sa.Column('lifetime_points_earned', sa.Integer(), nullable=False),
        sa.Column('lifetime_points_redeemed', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('points_balance >= 0', name='ck_loyalty_accounts_balance_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'branch_id', name='uq_loyalty_accounts_client_branch'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('loyalty_accounts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_loyalty_accounts_client_id'), ['client_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_loyalty_accounts_branch_id'), ['branch_id'], unique=False)

    op.create_table('loyalty_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.String(length=64), nullable=False),
        sa.Column('branch_id', sa.String(length=64), nullable=False),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('processed_by', sa.String(length=64), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['loyalty_accounts.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('loyalty_transactions', schema=None) as batch_op:
        batch_op.create_index('ix_loyalty_txns_account_occurred', ['account_id', 'occurred_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_loyalty_transactions_account_id'), ['account_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_loyalty_transactions_client_id'), ['client_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_loyalty_transactions_branch_id'), ['branch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_loyalty_transactions_transaction_type'), ['transaction_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_loyalty_transactions_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_loyalty_transactions_occurred_at'), ['occurred_at'], unique=False)

    # ==========================================================================
    # 5. LEDGER + DOCUMENT SEQUENCES
    # ==========================================================================
    op.create_table('ledger_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.String(length=64), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('event_category', sa.String(length=32), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('ledger_events', schema=None) as batch_op:
        batch_op.create_index('ix_ledger_events_branch_occurred', ['branch_id', 'occurred_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_branch_id'), ['branch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_event_category'), ['event_category'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_entity_type'), ['entity_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_entity_id'), ['entity_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_actor_id'), ['actor_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_occurred_at'), ['occurred_at'], unique=False)

    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.String(length=64), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'document_type', name='uq_doc_sequences_branch_type'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('document_sequences', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_document_sequences_branch_id'), ['branch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_document_sequences_document_type'), ['document_type'], unique=False)


def downgrade():
    for table in (
        'document_sequences',
        'ledger_events',
        'loyalty_transactions',
        'loyalty_accounts',
        'inventory_movements',
        'commission_records',
        'sale_batch_allocations',
        'sale_lines',
        'sales',
        'promotion_client_usages',
        'promotions',
        'stock_records',
        'batches',
    ):
        op.drop_table(table)
