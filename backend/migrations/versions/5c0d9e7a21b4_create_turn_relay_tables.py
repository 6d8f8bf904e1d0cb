"""create player, season, season_player, game, turn and scheduled_job tables

Revision ID: 5c0d9e7a21b4
Revises:
Create Date: 2025-09-02 10:20:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c0d9e7a21b4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'player',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('external_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_player_external_id', 'player', ['external_id'], unique=True)

    op.create_table(
        'season',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('creator_id', sa.String(length=32), nullable=True),
        sa.Column('min_players', sa.Integer(), nullable=False),
        sa.Column('max_players', sa.Integer(), nullable=True),
        sa.Column('turn_pattern', sa.String(length=256), nullable=False),
        sa.Column('claim_timeout', sa.String(length=32), nullable=True),
        sa.Column('writing_timeout', sa.String(length=32), nullable=True),
        sa.Column('drawing_timeout', sa.String(length=32), nullable=True),
        sa.Column('open_duration', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['creator_id'], ['player.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )
    op.create_index('ix_season_status', 'season', ['status'])

    op.create_table(
        'season_player',
        sa.Column('season_id', sa.String(length=32), nullable=False),
        sa.Column('player_id', sa.String(length=32), nullable=False),
        sa.Column('joined_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['season_id'], ['season.id']),
        sa.ForeignKeyConstraint(['player_id'], ['player.id']),
        sa.PrimaryKeyConstraint('season_id', 'player_id'),
    )
    op.create_index('ix_season_player_player_id', 'season_player', ['player_id'])

    op.create_table(
        'game',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('season_id', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('claim_timeout', sa.String(length=32), nullable=True),
        sa.Column('writing_timeout', sa.String(length=32), nullable=True),
        sa.Column('drawing_timeout', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['season_id'], ['season.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_game_season_id', 'game', ['season_id'])
    op.create_index('ix_game_status', 'game', ['status'])

    op.create_table(
        'turn',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('game_id', sa.String(length=32), nullable=False),
        sa.Column('turn_number', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('player_id', sa.String(length=32), nullable=True),
        sa.Column('offered_at', sa.DateTime(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('skipped_at', sa.DateTime(), nullable=True),
        sa.Column('text_content', sa.Text(), nullable=True),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('last_declined_player_id', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['game_id'], ['game.id']),
        sa.ForeignKeyConstraint(['player_id'], ['player.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('game_id', 'turn_number', name='uq_turn_game_number'),
    )
    op.create_index('ix_turn_game_id', 'turn', ['game_id'])
    op.create_index('ix_turn_status', 'turn', ['status'])
    op.create_index('ix_turn_player_id', 'turn', ['player_id'])

    op.create_table(
        'scheduled_job',
        sa.Column('id', sa.String(length=128), nullable=False),
        sa.Column('phase', sa.String(length=32), nullable=False),
        sa.Column('run_at', sa.DateTime(), nullable=False),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_scheduled_job_phase', 'scheduled_job', ['phase'])
    op.create_index('ix_scheduled_job_run_at', 'scheduled_job', ['run_at'])


def downgrade():
    op.drop_index('ix_scheduled_job_run_at', table_name='scheduled_job')
    op.drop_index('ix_scheduled_job_phase', table_name='scheduled_job')
    op.drop_table('scheduled_job')
    op.drop_index('ix_turn_player_id', table_name='turn')
    op.drop_index('ix_turn_status', table_name='turn')
    op.drop_index('ix_turn_game_id', table_name='turn')
    op.drop_table('turn')
    op.drop_index('ix_game_status', table_name='game')
    op.drop_index('ix_game_season_id', table_name='game')
    op.drop_table('game')
    op.drop_index('ix_season_player_player_id', table_name='season_player')
    op.drop_table('season_player')
    op.drop_index('ix_season_status', table_name='season')
    op.drop_table('season')
    op.drop_index('ix_player_external_id', table_name='player')
    op.drop_table('player')
