"""bingo game state: cards, cells, review threads, leaderboard

Revision ID: 4c2a9e71b3d0
Revises:
Create Date: 2026-10-17 00:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c2a9e71b3d0'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    # Collaborator tables may already be managed by the accounts/teams service
    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)
    if 'team' not in existing_tables:
        op.create_table(
            'team',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('leader_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('team_resolution_text', sa.String(length=1000), nullable=True),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='forming'),
        )
    if 'team_membership' not in existing_tables:
        op.create_table(
            'team_membership',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('team_id', sa.Integer(), sa.ForeignKey('team.id'), nullable=False, index=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False, index=True),
            sa.Column('role', sa.String(length=16), nullable=False, server_default='member'),
            sa.Column('joined_at', sa.DateTime(), nullable=False),
            sa.UniqueConstraint('team_id', 'user_id', name='uq_team_membership'),
        )
    if 'resolution' not in existing_tables:
        op.create_table(
            'resolution',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('owner_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False, index=True),
            sa.Column('text', sa.String(length=1000), nullable=False),
        )
    if 'provided_resolution' not in existing_tables:
        op.create_table(
            'provided_resolution',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('team_id', sa.Integer(), sa.ForeignKey('team.id'), nullable=False, index=True),
            sa.Column('from_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('to_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False, index=True),
            sa.Column('text', sa.String(length=1000), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.UniqueConstraint('team_id', 'from_user_id', 'to_user_id', name='uq_provided_resolution'),
        )

    op.create_table(
        'bingo_card',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('team_id', sa.Integer(), sa.ForeignKey('team.id'), nullable=False, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False, index=True),
        sa.Column('grid_size', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('team_id', 'user_id', name='uq_bingo_card_team_user'),
    )
    op.create_table(
        'bingo_cell',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('card_id', sa.Integer(), sa.ForeignKey('bingo_card.id'), nullable=False, index=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('resolution_id', sa.Integer(), sa.ForeignKey('resolution.id', ondelete='SET NULL'), nullable=True),
        sa.Column('provided_resolution_id', sa.Integer(),
                  sa.ForeignKey('provided_resolution.id', ondelete='SET NULL'), nullable=True),
        sa.Column('source_type', sa.String(length=32), nullable=False),
        sa.Column('source_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        sa.Column('state', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('resolved_text', sa.String(length=1000), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('card_id', 'position', name='uq_bingo_cell_position'),
        sa.CheckConstraint('position <> 12', name='ck_bingo_cell_not_joker'),
    )
    op.create_table(
        'review_thread',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('cell_id', sa.Integer(), sa.ForeignKey('bingo_cell.id'), nullable=False, index=True),
        sa.Column('completed_by_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='open', index=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
    )
    op.create_table(
        'review_message',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('thread_id', sa.Integer(), sa.ForeignKey('review_thread.id'), nullable=False, index=True),
        sa.Column('author_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_table(
        'review_file',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('thread_id', sa.Integer(), sa.ForeignKey('review_thread.id'), nullable=False, index=True),
        sa.Column('uploaded_by_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('file_path', sa.String(length=512), nullable=False),
        sa.Column('file_size', sa.Integer(), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=False),
        sa.Column('mime_type', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_table(
        'review_vote',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('thread_id', sa.Integer(), sa.ForeignKey('review_thread.id'), nullable=False, index=True),
        sa.Column('voter_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('vote', sa.String(length=8), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('thread_id', 'voter_user_id', name='uq_review_vote_voter'),
    )
    op.create_table(
        'team_leaderboard',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('team_id', sa.Integer(), sa.ForeignKey('team.id'), nullable=False, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('completed_tasks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('first_bingo_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('team_id', 'user_id', name='uq_team_leaderboard_user'),
    )
    op.create_table(
        'duplicate_report',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('cell_id', sa.Integer(), sa.ForeignKey('bingo_cell.id'), nullable=False, index=True),
        sa.Column('reporter_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('replacement_text', sa.String(length=1000), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
    )


def downgrade():
    for table in (
        'duplicate_report', 'team_leaderboard', 'review_vote', 'review_file',
        'review_message', 'review_thread', 'bingo_cell', 'bingo_card',
    ):
        op.drop_table(table)
