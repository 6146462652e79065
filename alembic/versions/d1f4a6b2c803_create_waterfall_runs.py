"""Create waterfall_runs archive table

Revision ID: d1f4a6b2c803
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'd1f4a6b2c803'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('waterfall_runs',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('lane_id', sa.Text(), nullable=False),
        sa.Column('load_id', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('current_stage_index', sa.Integer(), nullable=True),
        sa.Column('stage_count', sa.Integer(), nullable=True),
        sa.Column('accepted_carrier_id', sa.Text(), nullable=True),
        sa.Column('outcomes', sa.JSON(), nullable=True),
        sa.Column('stages', sa.JSON(), nullable=True),
        sa.Column('log', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_waterfall_runs_lane_load', 'waterfall_runs', ['lane_id', 'load_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_waterfall_runs_lane_load', table_name='waterfall_runs')
    op.drop_table('waterfall_runs')
