"""Initial lending schema

Revision ID: 0001
Revises:
Create Date: 2026-03-01 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    # Create equipment table
    op.create_table('equipment',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('category', sa.String(length=20), nullable=False),
        sa.Column('condition', sa.String(length=20), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('available', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('quantity >= 0', name='ck_equipment_quantity_non_negative'),
        sa.CheckConstraint('available >= 0', name='ck_equipment_available_non_negative'),
        sa.CheckConstraint('available <= quantity', name='ck_equipment_available_lte_quantity'),
        sa.CheckConstraint('length(name) >= 2', name='ck_equipment_name_min_length'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_equipment_name'), 'equipment', ['name'], unique=False)
    op.create_index(op.f('ix_equipment_category'), 'equipment', ['category'], unique=False)

    # Create counters table
    op.create_table('counters',
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.CheckConstraint('seq >= 0', name='ck_counter_seq_non_negative'),
        sa.PrimaryKeyConstraint('name')
    )

    # Create borrow_requests table
    op.create_table('borrow_requests',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('request_id', sa.String(length=16), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('user_name', sa.String(length=255), nullable=True),
        sa.Column('user_email', sa.String(length=255), nullable=True),
        sa.Column('borrow_date', sa.Date(), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('approved_by', sa.String(length=64), nullable=True),
        sa.Column('approval_note', sa.String(length=500), nullable=True),
        sa.Column('rejected_by', sa.String(length=64), nullable=True),
        sa.Column('rejection_reason', sa.String(length=500), nullable=True),
        sa.Column('expired_reason', sa.String(length=255), nullable=True),
        sa.Column('returned_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('length(reason) >= 10', name='ck_borrow_request_reason_min_length'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('request_id')
    )
    op.create_index(op.f('ix_borrow_requests_request_id'), 'borrow_requests', ['request_id'], unique=False)
    op.create_index(op.f('ix_borrow_requests_user_id'), 'borrow_requests', ['user_id'], unique=False)
    op.create_index(op.f('ix_borrow_requests_status'), 'borrow_requests', ['status'], unique=False)
    op.create_index(op.f('ix_borrow_requests_expires_at'), 'borrow_requests', ['expires_at'], unique=False)
    op.create_index(op.f('ix_borrow_requests_created_at'), 'borrow_requests', ['created_at'], unique=False)

    # Create request_line_items table
    op.create_table('request_line_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('request_id', sa.Uuid(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('equipment_id', sa.Uuid(), nullable=True),
        sa.Column('equipment_name', sa.String(length=100), nullable=False),
        sa.Column('equipment_category', sa.String(length=20), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('return_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('actual_return_date', sa.DateTime(), nullable=True),
        sa.Column('last_reminder_on', sa.Date(), nullable=True),
        sa.CheckConstraint('quantity >= 1', name='ck_line_item_quantity_positive'),
        sa.ForeignKeyConstraint(['request_id'], ['borrow_requests.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['equipment_id'], ['equipment.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_request_line_items_request_id'), 'request_line_items', ['request_id'], unique=False)
    op.create_index(op.f('ix_request_line_items_return_date'), 'request_line_items', ['return_date'], unique=False)
    op.create_index('ix_request_line_items_equipment_status', 'request_line_items', ['equipment_id', 'status'], unique=False)

    # Create request_status_history table
    op.create_table('request_status_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('request_id', sa.Uuid(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('changed_by', sa.String(length=64), nullable=False),
        sa.Column('changed_at', sa.DateTime(), nullable=False),
        sa.Column('comment', sa.String(length=500), nullable=True),
        sa.ForeignKeyConstraint(['request_id'], ['borrow_requests.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_request_status_history_request_id'), 'request_status_history', ['request_id'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('request_status_history')
    op.drop_table('request_line_items')
    op.drop_table('borrow_requests')
    op.drop_table('counters')
    op.drop_table('equipment')
