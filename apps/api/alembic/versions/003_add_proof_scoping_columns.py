"""Add workspace scoping and storage client columns to proofs.

Revision ID: 003
Revises: 002
Create Date: 2024-03-01
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '003'
down_revision = '002'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column('proofs', sa.Column('workspace_id', sa.String(255), nullable=True))
    op.add_column('proofs', sa.Column('created_by', sa.String(255), nullable=True))
    op.add_column('proofs', sa.Column('storage_key', sa.Text(), nullable=True))
    op.add_column('proofs', sa.Column('storage_provider', sa.String(50), nullable=True))
    op.create_index('ix_proofs_workspace_id', 'proofs', ['workspace_id'])

    # Database-level guard against duplicate writes
    with op.batch_alter_table('proofs') as batch_op:
        batch_op.create_unique_constraint(
            'uq_proofs_subject_kind_ts_hash', ['subject_id', 'kind', 'ts', 'hash']
        )


def downgrade() -> None:
    with op.batch_alter_table('proofs') as batch_op:
        batch_op.drop_constraint('uq_proofs_subject_kind_ts_hash', type_='unique')
    op.drop_index('ix_proofs_workspace_id', table_name='proofs')
    op.drop_column('proofs', 'storage_provider')
    op.drop_column('proofs', 'storage_key')
    op.drop_column('proofs', 'created_by')
    op.drop_column('proofs', 'workspace_id')
