"""Create provenance and legacy proofs tables.

Revision ID: 001
Revises:
Create Date: 2024-01-01
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'provenance',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('subject_id', sa.String(255), nullable=False),
        sa.Column('action', sa.String(255), nullable=False),
        sa.Column('actor', sa.String(50), nullable=False),
        sa.Column('actor_id', sa.String(255), nullable=True),
        sa.Column('workspace_id', sa.String(255), nullable=True),
        sa.Column('ts', sa.BigInteger(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
    )
    op.create_index('ix_provenance_subject_ts', 'provenance', ['subject_id', 'ts'])
    op.create_index('ix_provenance_workspace_id', 'provenance', ['workspace_id'])

    # Legacy shape: proof packet stored inline
    op.create_table(
        'proofs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('subject_id', sa.String(255), nullable=False),
        sa.Column('type', sa.String(255), nullable=True),
        sa.Column('sha256', sa.String(255), nullable=True),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('path', sa.Text(), nullable=True),
        sa.Column('ts', sa.BigInteger(), nullable=False),
    )
    op.create_index('ix_proofs_subject_ts', 'proofs', ['subject_id', 'ts'])


def downgrade() -> None:
    op.drop_index('ix_proofs_subject_ts', table_name='proofs')
    op.drop_table('proofs')
    op.drop_index('ix_provenance_workspace_id', table_name='provenance')
    op.drop_index('ix_provenance_subject_ts', table_name='provenance')
    op.drop_table('provenance')
