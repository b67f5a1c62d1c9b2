"""Create verification_reports table.

Revision ID: 004
Revises: 003
Create Date: 2024-04-01
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '004'
down_revision = '003'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'verification_reports',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('exports_pass', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('exports_fail', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('exports_miss', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('compose_pass', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('compose_drift', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('compose_miss', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('report_json', sa.JSON(), nullable=False),
        sa.Column('triggered_by', sa.String(100), nullable=False, server_default='cron'),
        sa.CheckConstraint(
            "status IN ('pass', 'fail', 'partial')", name='ck_verification_reports_status'
        ),
    )
    op.create_index('ix_verification_reports_created_at', 'verification_reports', ['created_at'])
    op.create_index('ix_verification_reports_status', 'verification_reports', ['status'])


def downgrade() -> None:
    op.drop_index('ix_verification_reports_status', table_name='verification_reports')
    op.drop_index('ix_verification_reports_created_at', table_name='verification_reports')
    op.drop_table('verification_reports')
