"""Create content approval tables

Revision ID: 001_content_approval
Revises:
Create Date: 2026-10-18

Post partitions (drafting, calendar scheduled, calendar unscheduled), client
approval sessions, per-post approval decisions and caption revisions.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_content_approval'
down_revision = None
branch_labels = None
depends_on = None

POST_TABLES = ('posts', 'calendar_scheduled_posts', 'calendar_unscheduled_posts')


def _post_columns():
    """Columns shared by every post partition"""
    return [
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('client_id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), nullable=True),
        sa.Column('caption', sa.Text(), nullable=False),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('approval_status', sa.String(length=50), nullable=False, server_default='pending'),
        sa.Column('needs_reapproval', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('needs_attention', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('client_feedback', sa.Text(), nullable=True),
        sa.Column('reapproval_notified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('edit_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_edited_by', sa.String(), nullable=True),
        sa.Column('last_edited_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('edit_reason', sa.Text(), nullable=True),
        sa.Column('draft_changes', sa.JSON(), nullable=True),
        sa.Column('currently_editing_by', sa.String(), nullable=True),
        sa.Column('editing_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    ]


def upgrade():
    """Create post partitions, approval sessions, decisions and revisions"""

    op.create_table('posts',
        *_post_columns(),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='draft'),
        sa.Column('media_type', sa.String(length=50), nullable=True),
        sa.Column('media_alt_text', sa.Text(), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_posts_status', 'posts', ['status'])
    op.create_index('ix_posts_client_status', 'posts', ['client_id', 'status'])
    op.create_index('ix_posts_approval_status', 'posts', ['approval_status'])

    op.create_table('calendar_scheduled_posts',
        *_post_columns(),
        sa.Column('scheduled_date', sa.Date(), nullable=True),
        sa.Column('scheduled_time', sa.String(length=8), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_calendar_scheduled_posts_scheduled_date', 'calendar_scheduled_posts', ['scheduled_date'])
    op.create_index('ix_calendar_scheduled_client_project', 'calendar_scheduled_posts', ['client_id', 'project_id'])

    op.create_table('calendar_unscheduled_posts',
        *_post_columns(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_calendar_unscheduled_client_project', 'calendar_unscheduled_posts', ['client_id', 'project_id'])

    for table in POST_TABLES:
        op.create_index('ix_{}_client_id'.format(table), table, ['client_id'])
        op.create_index('ix_{}_project_id'.format(table), table, ['project_id'])

    op.create_table('client_approval_sessions',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('share_token', sa.String(length=128), nullable=False),
        sa.Column('client_id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_client_approval_sessions_share_token', 'client_approval_sessions', ['share_token'], unique=True)
    op.create_index('ix_client_approval_sessions_client_id', 'client_approval_sessions', ['client_id'])
    op.create_index('ix_client_approval_sessions_project_id', 'client_approval_sessions', ['project_id'])

    op.create_table('post_approvals',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('session_id', sa.String(), nullable=False),
        sa.Column('post_id', sa.String(), nullable=False),
        sa.Column('post_type', sa.String(length=50), nullable=False),
        sa.Column('approval_status', sa.String(length=50), nullable=False, server_default='pending'),
        sa.Column('client_comments', sa.Text(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['client_approval_sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'post_id', 'post_type', name='uq_post_approvals_session_post_type')
    )
    op.create_index('ix_post_approvals_session_id', 'post_approvals', ['session_id'])
    op.create_index('ix_post_approvals_post_id_type', 'post_approvals', ['post_id', 'post_type'])

    op.create_table('post_revisions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('post_id', sa.String(), nullable=False),
        sa.Column('partition', sa.String(length=20), nullable=False),
        sa.Column('revision_number', sa.Integer(), nullable=False),
        sa.Column('edited_by', sa.String(), nullable=False),
        sa.Column('edited_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('previous_caption', sa.Text(), nullable=False),
        sa.Column('new_caption', sa.Text(), nullable=False),
        sa.Column('edit_reason', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('post_id', 'partition', 'revision_number', name='uq_post_revisions_number')
    )
    op.create_index('ix_post_revisions_post', 'post_revisions', ['post_id', 'partition'])


def downgrade():
    """Drop all content approval tables"""

    op.drop_index('ix_post_revisions_post', table_name='post_revisions')
    op.drop_table('post_revisions')

    op.drop_index('ix_post_approvals_post_id_type', table_name='post_approvals')
    op.drop_index('ix_post_approvals_session_id', table_name='post_approvals')
    op.drop_table('post_approvals')

    op.drop_index('ix_client_approval_sessions_project_id', table_name='client_approval_sessions')
    op.drop_index('ix_client_approval_sessions_client_id', table_name='client_approval_sessions')
    op.drop_index('ix_client_approval_sessions_share_token', table_name='client_approval_sessions')
    op.drop_table('client_approval_sessions')

    for table in POST_TABLES:
        op.drop_table(table)
