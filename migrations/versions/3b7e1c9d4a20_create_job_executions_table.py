"""create job executions table

Revision ID: 3b7e1c9d4a20
Revises:
Create Date: 2026-10-16 09:12:41.518204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3b7e1c9d4a20'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'job_executions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.String(length=255), nullable=False, comment='Dispatcher-assigned job UUID'),
        sa.Column('job_type', sa.String(length=100), nullable=False, comment='Job type identifier'),
        sa.Column('status', sa.String(length=50), nullable=False, comment='Execution status: pending|processing|completed|failed'),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment='Envelope snapshot at enqueue time'),
        sa.Column('result', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Handler result'),
        sa.Column('error', sa.Text(), nullable=True, comment='Last handler error'),
        sa.Column('retry_count', sa.Integer(), server_default='0', nullable=False, comment='Number of deliveries received'),
        sa.Column('user_id', sa.String(length=255), nullable=True),
        sa.Column('organization_id', sa.String(length=255), nullable=True),
        sa.Column('idempotency_key', sa.String(length=255), nullable=True, comment='Event-derived key stable across retries'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name='job_executions_status_check',
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('job_id'),
    )

    # Listing by type and by status, newest first
    op.create_index('ix_job_executions_type_created_at', 'job_executions', ['job_type', 'created_at'])
    op.create_index('ix_job_executions_status_created_at', 'job_executions', ['status', 'created_at'])
    op.create_index('ix_job_executions_idempotency_key', 'job_executions', ['idempotency_key'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_job_executions_idempotency_key', table_name='job_executions')
    op.drop_index('ix_job_executions_status_created_at', table_name='job_executions')
    op.drop_index('ix_job_executions_type_created_at', table_name='job_executions')
    op.drop_table('job_executions')
