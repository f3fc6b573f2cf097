"""operators, visitor records and audit log

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'operators',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('username', sa.String(length=50), nullable=False),
        sa.Column('email', sa.String(length=100), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.Enum('admin', 'reception', name='operatorrole', native_enum=False, length=20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('operators', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_operators_username'), ['username'], unique=True)
        batch_op.create_index(batch_op.f('ix_operators_email'), ['email'], unique=True)

    op.create_table(
        'visitor_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('pass_id', sa.String(length=40), nullable=False),
        sa.Column('visitor_name', sa.String(length=100), nullable=False),
        sa.Column('mobile', sa.String(length=15), nullable=True),
        sa.Column('host_employee', sa.String(length=100), nullable=True),
        sa.Column('host_email', sa.String(length=100), nullable=False),
        sa.Column('purpose', sa.Text(), nullable=False),
        sa.Column('photo_base64', sa.Text(), nullable=True),
        sa.Column('qr_code_data', sa.Text(), nullable=False),
        sa.Column('checkin_time', sa.DateTime(), nullable=False),
        sa.Column('checkout_time', sa.DateTime(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_by', sa.String(length=50), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('visitor_records', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_visitor_records_pass_id'), ['pass_id'], unique=True)
        batch_op.create_index(batch_op.f('ix_visitor_records_host_email'), ['host_email'], unique=False)
        batch_op.create_index(batch_op.f('ix_visitor_records_checkin_time'), ['checkin_time'], unique=False)
        batch_op.create_index(batch_op.f('ix_visitor_records_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_visitor_records_created_at'), ['created_at'], unique=False)

    op.create_table(
        'audit_log',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('operator_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('table_name', sa.String(length=50), nullable=False),
        sa.Column('record_id', sa.Integer(), nullable=True),
        sa.Column('old_data', sa.Text(), nullable=True),
        sa.Column('new_data', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['operator_id'], ['operators.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('audit_log', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_audit_log_action'), ['action'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_log_created_at'), ['created_at'], unique=False)


def downgrade():
    with op.batch_alter_table('audit_log', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_audit_log_created_at'))
        batch_op.drop_index(batch_op.f('ix_audit_log_action'))
    op.drop_table('audit_log')

    with op.batch_alter_table('visitor_records', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_visitor_records_created_at'))
        batch_op.drop_index(batch_op.f('ix_visitor_records_status'))
        batch_op.drop_index(batch_op.f('ix_visitor_records_checkin_time'))
        batch_op.drop_index(batch_op.f('ix_visitor_records_host_email'))
        batch_op.drop_index(batch_op.f('ix_visitor_records_pass_id'))
    op.drop_table('visitor_records')

    with op.batch_alter_table('operators', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_operators_email'))
        batch_op.drop_index(batch_op.f('ix_operators_username'))
    op.drop_table('operators')
