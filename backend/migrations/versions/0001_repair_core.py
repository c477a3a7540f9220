"""repair core tables: users, clients, tickets, parts, movements, purchases, sequences

Revision ID: 0001_repair_core
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_repair_core'
down_revision = None
branch_labels = None
depends_on = None


def _updated_at():
    return sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=True)


def upgrade():
    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=128), nullable=False),
        sa.Column('phone', sa.String(length=32)),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False, server_default='TECHNICIAN'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        _updated_at(),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table('clients',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=128)),
        sa.Column('phone', sa.String(length=32)),
        sa.Column('address', sa.String(length=255)),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
        _updated_at(),
    )
    op.create_index('ix_clients_name', 'clients', ['name'])
    op.create_index('ix_clients_email', 'clients', ['email'])

    op.create_table('parts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('category', sa.String(length=64)),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sale_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        _updated_at(),
        sa.CheckConstraint('quantity >= 0', name='ck_parts_quantity_non_negative'),
    )
    op.create_index('ix_parts_code', 'parts', ['code'], unique=True)
    op.create_index('ix_parts_name', 'parts', ['name'])

    op.create_table('tickets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=40), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='INTAKE'),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('technician_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('intake_user_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('reported_fault', sa.Text(), nullable=False),
        sa.Column('diagnosis', sa.Text()),
        sa.Column('estimated_days', sa.Integer()),
        sa.Column('labor_cost_cents', sa.Integer()),
        sa.Column('parts_cost_cents', sa.Integer()),
        sa.Column('budget_total_cents', sa.Integer()),
        sa.Column('discount_kind', sa.String(length=16)),
        sa.Column('discount_value', sa.Integer()),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_reason', sa.String(length=255)),
        sa.Column('total_due_cents', sa.Integer()),
        sa.Column('rejection_reason', sa.Text()),
        sa.Column('cancellation_reason', sa.Text()),
        sa.Column('repair_notes', sa.Text()),
        sa.Column('test_result', sa.Text()),
        sa.Column('delivery_notes', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('budget_issued_at', sa.DateTime(timezone=True)),
        sa.Column('client_response_at', sa.DateTime(timezone=True)),
        sa.Column('repair_started_at', sa.DateTime(timezone=True)),
        sa.Column('repair_finished_at', sa.DateTime(timezone=True)),
        sa.Column('delivered_at', sa.DateTime(timezone=True)),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        _updated_at(),
    )
    op.create_index('ix_tickets_code', 'tickets', ['code'], unique=True)
    op.create_index('ix_tickets_status', 'tickets', ['status'])
    op.create_index('ix_tickets_client_id', 'tickets', ['client_id'])
    op.create_index('ix_tickets_technician_id', 'tickets', ['technician_id'])

    op.create_table('ticket_equipment',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('device_type', sa.String(length=64), nullable=False),
        sa.Column('brand', sa.String(length=64)),
        sa.Column('model', sa.String(length=64)),
        sa.Column('serial_number', sa.String(length=64)),
        sa.Column('accessories', sa.String(length=255)),
        sa.Column('notes', sa.Text()),
    )
    op.create_index('ix_ticket_equipment_ticket_id', 'ticket_equipment', ['ticket_id'])

    op.create_table('ticket_parts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('part_id', sa.Integer(), sa.ForeignKey('parts.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('stock_deducted', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('notes', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_ticket_parts_ticket_id', 'ticket_parts', ['ticket_id'])
    op.create_index('ix_ticket_parts_part_id', 'ticket_parts', ['part_id'])

    op.create_table('purchases',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=40), nullable=False),
        sa.Column('supplier', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='PENDING'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('purchased_at', sa.DateTime(timezone=True)),
        sa.Column('received_at', sa.DateTime(timezone=True)),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        _updated_at(),
    )
    op.create_index('ix_purchases_code', 'purchases', ['code'], unique=True)
    op.create_index('ix_purchases_status', 'purchases', ['status'])
    op.create_index('ix_purchases_supplier', 'purchases', ['supplier'])

    op.create_table('purchase_lines',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('purchase_id', sa.Integer(), sa.ForeignKey('purchases.id', ondelete='CASCADE'), nullable=False),
        sa.Column('part_id', sa.Integer(), sa.ForeignKey('parts.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
    )
    op.create_index('ix_purchase_lines_purchase_id', 'purchase_lines', ['purchase_id'])
    op.create_index('ix_purchase_lines_part_id', 'purchase_lines', ['part_id'])

    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('part_id', sa.Integer(), sa.ForeignKey('parts.id'), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('quantity_before', sa.Integer(), nullable=False),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('tickets.id')),
        sa.Column('purchase_id', sa.Integer(), sa.ForeignKey('purchases.id')),
        sa.Column('actor_user_id', sa.Integer()),
        sa.Column('description', sa.String(length=255)),
        sa.Column('created_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_stock_movements_part_id', 'stock_movements', ['part_id'])
    op.create_index('ix_stock_movements_kind', 'stock_movements', ['kind'])
    op.create_index('ix_stock_movements_ticket_id', 'stock_movements', ['ticket_id'])
    op.create_index('ix_stock_movements_purchase_id', 'stock_movements', ['purchase_id'])

    op.create_table('ticket_sequences',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('seq_key', sa.String(length=64), nullable=False),
        sa.Column('last_value', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_index('ix_ticket_sequences_seq_key', 'ticket_sequences', ['seq_key'], unique=True)


def downgrade():
    for table in ('ticket_sequences', 'stock_movements', 'purchase_lines', 'purchases', 'ticket_parts',
                  'ticket_equipment', 'tickets', 'parts', 'clients', 'users'):
        op.drop_table(table)
