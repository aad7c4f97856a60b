"""Create job card, parts and invoice tables

Revision ID: 001_create_job_card_tables
Revises:
Create Date: 2026-03-02

Note: Using IF NOT EXISTS pattern to make migration idempotent. users,
vehicles and bookings are owned by other modules; they are only created
here when the database is empty.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import text

# revision identifiers, used by Alembic.
revision = '001_create_job_card_tables'
down_revision = None
branch_labels = None
depends_on = None


def table_exists(conn, table_name):
    """Check if a table exists in the database."""
    result = conn.execute(text(
        "SELECT EXISTS (SELECT FROM information_schema.tables WHERE table_name = :table_name)"
    ), {"table_name": table_name})
    return result.scalar()


def upgrade():
    """Create garage tables."""
    conn = op.get_bind()

    if not table_exists(conn, 'users'):
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('name', sa.String(100), nullable=False),
            sa.Column('email', sa.String(255), unique=True, index=True, nullable=False),
            sa.Column('phone', sa.String(20)),
            sa.Column('role', sa.String(20), nullable=False, server_default='customer', index=True),
            sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True)),
        )
        print("Created users table")

    if not table_exists(conn, 'vehicles'):
        op.create_table(
            'vehicles',
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('owner_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True),
            sa.Column('make', sa.String(50)),
            sa.Column('model', sa.String(50)),
            sa.Column('year', sa.Integer()),
            sa.Column('vin', sa.String(17), unique=True),
            sa.Column('license_plate', sa.String(20)),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True)),
        )
        print("Created vehicles table")

    if not table_exists(conn, 'bookings'):
        op.create_table(
            'bookings',
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('customer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True, index=True),
            sa.Column('vehicle_id', sa.Integer(), sa.ForeignKey('vehicles.id'), nullable=True, index=True),
            sa.Column('service_type', sa.String(50), nullable=False, server_default='general_service'),
            sa.Column('booking_date', sa.Date()),
            sa.Column('status', sa.String(20), server_default='pending'),
            sa.Column('notes', sa.Text()),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True)),
        )
        print("Created bookings table")

    if not table_exists(conn, 'parts'):
        op.create_table(
            'parts',
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('name', sa.String(255), nullable=False, index=True),
            sa.Column('part_number', sa.String(50), unique=True, index=True),
            sa.Column('price', sa.Numeric(10, 2), nullable=False, server_default='0'),
            sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('reorder_level', sa.Integer(), nullable=False, server_default='5'),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True)),
            sa.CheckConstraint('quantity >= 0', name='ck_parts_quantity_non_negative'),
        )
        print("Created parts table")

    if not table_exists(conn, 'jobcards'):
        op.create_table(
            'jobcards',
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('customer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True, index=True),
            sa.Column('vehicle_id', sa.Integer(), sa.ForeignKey('vehicles.id'), nullable=False, index=True),
            sa.Column('booking_id', sa.Integer(), sa.ForeignKey('bookings.id', ondelete='SET NULL'), nullable=True, index=True),
            sa.Column('mechanic_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True),
            sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
            sa.Column('priority', sa.String(10), nullable=False, server_default='medium'),
            sa.Column('notes', sa.Text(), server_default=''),
            sa.Column('progress_notes', sa.Text()),
            sa.Column('percent_complete', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('estimated_hours', sa.Numeric(6, 2)),
            sa.Column('labor_cost', sa.Numeric(10, 2), nullable=False, server_default='0'),
            sa.Column('total_cost', sa.Numeric(10, 2), nullable=False, server_default='0'),
            sa.Column('started_at', sa.DateTime(timezone=True)),
            sa.Column('completed_at', sa.DateTime(timezone=True), index=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint('percent_complete BETWEEN 0 AND 100', name='ck_jobcards_percent_complete'),
        )
        op.create_index('idx_jobcards_mechanic_status', 'jobcards', ['mechanic_id', 'status'])
        print("Created jobcards table")

    if not table_exists(conn, 'jobcard_tasks'):
        op.create_table(
            'jobcard_tasks',
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('jobcard_id', sa.Integer(), sa.ForeignKey('jobcards.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('task_name', sa.String(255), nullable=False),
            sa.Column('task_cost', sa.Numeric(10, 2), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        print("Created jobcard_tasks table")

    if not table_exists(conn, 'jobcard_spareparts'):
        op.create_table(
            'jobcard_spareparts',
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('jobcard_id', sa.Integer(), sa.ForeignKey('jobcards.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('part_id', sa.Integer(), sa.ForeignKey('parts.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('quantity', sa.Integer(), nullable=False),
            sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
            sa.Column('total_price', sa.Numeric(10, 2), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        print("Created jobcard_spareparts table")

    if not table_exists(conn, 'invoices'):
        op.create_table(
            'invoices',
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('jobcard_id', sa.Integer(), sa.ForeignKey('jobcards.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('customer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True, index=True),
            sa.Column('parts_total', sa.Numeric(10, 2), nullable=False, server_default='0'),
            sa.Column('labor_total', sa.Numeric(10, 2), nullable=False, server_default='0'),
            sa.Column('grand_total', sa.Numeric(10, 2), nullable=False, server_default='0'),
            sa.Column('status', sa.String(20), nullable=False, server_default='unpaid', index=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        print("Created invoices table")


def downgrade():
    """Drop the job card tables. users, vehicles and bookings are left in place."""
    conn = op.get_bind()
    tables = ['invoices', 'jobcard_spareparts', 'jobcard_tasks', 'jobcards', 'parts']
    for table in tables:
        if table_exists(conn, table):
            op.drop_table(table)
