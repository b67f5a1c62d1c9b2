"""Add normalized kind/hash/meta columns to proofs.

Legacy columns stay so older readers keep working.

Revision ID: 002
Revises: 001
Create Date: 2024-02-01
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column('proofs', sa.Column('kind', sa.String(255), nullable=True))
    op.add_column('proofs', sa.Column('hash', sa.String(255), nullable=True))
    op.add_column('proofs', sa.Column('meta', sa.JSON(), nullable=True))
    op.create_index('ix_proofs_kind', 'proofs', ['kind'])


def downgrade() -> None:
    op.drop_index('ix_proofs_kind', table_name='proofs')
    op.drop_column('proofs', 'meta')
    op.drop_column('proofs', 'hash')
    op.drop_column('proofs', 'kind')
