"""create_analytics_tables

Revision ID: 7c1e4a9b2d30
Revises:
Create Date: 2026-10-17 10:12:41.318204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7c1e4a9b2d30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema: tables owned by the analytics engine."""
    op.create_table(
        'metric_snapshots',
        sa.Column('provider_id', sa.BigInteger(), nullable=False),
        sa.Column('average_rating', sa.Numeric(2, 1), nullable=False, server_default='0.0'),
        sa.Column('total_reviews', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rating_distribution', sa.JSON(), nullable=False, comment="Keys '1'..'5', always present"),
        sa.Column('review_counts', sa.JSON(), nullable=False, comment='last_30_days, last_6_months, all_time'),
        sa.Column('is_stale', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('computed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('provider_id'),
    )

    alert_metric_type = sa.Enum(
        'completion_rate', 'response_time', 'cancellation_rate', 'rating', 'earnings', 'request_count',
        name='alert_metric_type',
    )
    comparison_operator = sa.Enum('above', 'below', 'equals', name='comparison_operator')

    op.create_table(
        'alert_thresholds',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('provider_id', sa.BigInteger(), nullable=False),
        sa.Column('metric_type', alert_metric_type, nullable=False),
        sa.Column('comparison_operator', comparison_operator, nullable=False),
        sa.Column('threshold_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_triggered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_alert_thresholds_provider_id', 'alert_thresholds', ['provider_id'])

    op.create_table(
        'report_artifacts',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('provider_id', sa.BigInteger(), nullable=False),
        sa.Column('report_type', sa.String(length=20), nullable=False),
        sa.Column('format', sa.String(length=10), nullable=False),
        sa.Column('date_range_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('date_range_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('file_path', sa.String(length=500), nullable=True),
        sa.Column('report_data', sa.JSON(), nullable=False),
        sa.Column('generated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_report_artifacts_provider_id', 'report_artifacts', ['provider_id'])
    op.create_index('ix_report_artifacts_provider_generated', 'report_artifacts', ['provider_id', 'generated_at'])

    op.create_table(
        'scheduled_reports',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('provider_id', sa.BigInteger(), nullable=False),
        sa.Column('report_type', sa.String(length=20), nullable=False),
        sa.Column('format', sa.String(length=10), nullable=False, server_default='pdf'),
        sa.Column('frequency', sa.String(length=10), nullable=False),
        sa.Column('next_run_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_run_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('email_recipients', sa.JSON(), nullable=False),
        sa.Column('report_options', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_scheduled_reports_provider_id', 'scheduled_reports', ['provider_id'])
    op.create_index('ix_scheduled_reports_next_run_date', 'scheduled_reports', ['next_run_date'])
    op.create_index('ix_scheduled_reports_is_active', 'scheduled_reports', ['is_active'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_scheduled_reports_is_active', table_name='scheduled_reports')
    op.drop_index('ix_scheduled_reports_next_run_date', table_name='scheduled_reports')
    op.drop_index('ix_scheduled_reports_provider_id', table_name='scheduled_reports')
    op.drop_table('scheduled_reports')

    op.drop_index('ix_report_artifacts_provider_generated', table_name='report_artifacts')
    op.drop_index('ix_report_artifacts_provider_id', table_name='report_artifacts')
    op.drop_table('report_artifacts')

    op.drop_index('ix_alert_thresholds_provider_id', table_name='alert_thresholds')
    op.drop_table('alert_thresholds')
    sa.Enum(name='comparison_operator').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='alert_metric_type').drop(op.get_bind(), checkfirst=True)

    op.drop_table('metric_snapshots')
