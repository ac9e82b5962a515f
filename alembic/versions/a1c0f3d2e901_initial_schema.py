"""initial schema

Revision ID: a1c0f3d2e901
Revises:
Create Date: 2026-10-19 12:00:00.000000

Hey future me - this is the whole starting schema in one go.

TABLES:
- trackforge_artists / trackforge_projects / trackforge_tracks: the catalog.
  Every user gets a personal artist with an inbox project on first use.
- generation_jobs: one row per provider task. (service, external_id) is unique
  so callbacks and polls always resolve to exactly one job.
- operation_locks: TTL mutex rows (expires_at is epoch seconds, not a DateTime).
- rate_limit_counters: fixed-window counters per (caller, service).

The (variant_group_id, variant_number) unique constraint on tracks is what keeps
two reconcilers from creating the same variant twice.
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'a1c0f3d2e901'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # === Catalog ===
    op.create_table(
        'trackforge_artists',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_personal', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_trackforge_artists_user_id', 'trackforge_artists', ['user_id'])
    op.create_index(
        'ix_trackforge_artists_user_personal',
        'trackforge_artists',
        ['user_id', 'is_personal'],
    )

    op.create_table(
        'trackforge_projects',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'artist_id',
            sa.String(36),
            sa.ForeignKey('trackforge_artists.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('is_inbox', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        'ix_trackforge_projects_artist_inbox',
        'trackforge_projects',
        ['artist_id', 'is_inbox'],
    )

    # === Generation jobs ===
    op.create_table(
        'generation_jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('service', sa.String(32), nullable=False),
        sa.Column('external_id', sa.String(128), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('prompt', sa.Text, nullable=False, server_default=''),
        sa.Column('parameters', sa.JSON, nullable=False),
        sa.Column('metadata', sa.JSON, nullable=False),
        sa.Column('result_url', sa.Text, nullable=True),
        sa.Column('track_id', sa.String(36), nullable=True),
        sa.Column('variant_group_id', sa.String(36), nullable=True),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            'service', 'external_id', name='uq_generation_jobs_service_external'
        ),
    )
    op.create_index('ix_generation_jobs_user_id', 'generation_jobs', ['user_id'])
    op.create_index(
        'ix_generation_jobs_status_created',
        'generation_jobs',
        ['status', 'created_at'],
    )

    op.create_table(
        'trackforge_tracks',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'project_id',
            sa.String(36),
            sa.ForeignKey('trackforge_projects.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('track_number', sa.Integer, nullable=False, server_default='1'),
        sa.Column('audio_url', sa.Text, nullable=True),
        sa.Column('duration', sa.Float, nullable=True),
        sa.Column('lyrics', sa.Text, nullable=True),
        sa.Column('style_prompt', sa.Text, nullable=True),
        sa.Column('metadata', sa.JSON, nullable=False),
        sa.Column(
            'generation_job_id',
            sa.String(36),
            sa.ForeignKey('generation_jobs.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('variant_group_id', sa.String(36), nullable=True),
        sa.Column('variant_number', sa.Integer, nullable=True),
        sa.Column('is_master_variant', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            'variant_group_id', 'variant_number', name='uq_trackforge_tracks_variant'
        ),
    )
    op.create_index(
        'ix_trackforge_tracks_generation_job_id',
        'trackforge_tracks',
        ['generation_job_id'],
    )
    op.create_index(
        'ix_trackforge_tracks_project_number',
        'trackforge_tracks',
        ['project_id', 'track_number'],
    )

    # === Coordination ===
    op.create_table(
        'operation_locks',
        sa.Column('key', sa.String(255), primary_key=True),
        sa.Column('owner', sa.String(64), nullable=False),
        sa.Column('expires_at', sa.Float, nullable=False),
    )
    op.create_index('ix_operation_locks_expires_at', 'operation_locks', ['expires_at'])

    op.create_table(
        'rate_limit_counters',
        sa.Column('caller_id', sa.String(128), primary_key=True),
        sa.Column('service', sa.String(32), primary_key=True),
        sa.Column('request_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('window_reset_at', sa.Float, nullable=False),
        sa.Column('last_admitted', sa.Boolean, nullable=False, server_default=sa.true()),
    )


def downgrade() -> None:
    op.drop_table('rate_limit_counters')
    op.drop_index('ix_operation_locks_expires_at', table_name='operation_locks')
    op.drop_table('operation_locks')

    op.drop_index('ix_trackforge_tracks_project_number', table_name='trackforge_tracks')
    op.drop_index('ix_trackforge_tracks_generation_job_id', table_name='trackforge_tracks')
    op.drop_table('trackforge_tracks')

    op.drop_index('ix_generation_jobs_status_created', table_name='generation_jobs')
    op.drop_index('ix_generation_jobs_user_id', table_name='generation_jobs')
    op.drop_table('generation_jobs')

    op.drop_index('ix_trackforge_projects_artist_inbox', table_name='trackforge_projects')
    op.drop_table('trackforge_projects')

    op.drop_index('ix_trackforge_artists_user_personal', table_name='trackforge_artists')
    op.drop_index('ix_trackforge_artists_user_id', table_name='trackforge_artists')
    op.drop_table('trackforge_artists')
