"""create user, game_session and game_round

Revision ID: 4c7e9a1d2b3f
Revises:
Create Date: 2026-10-17 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c7e9a1d2b3f'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('username', sa.String(length=30), nullable=False),
            sa.Column('email', sa.String(length=254), nullable=False),
            sa.Column('password_hash', sa.String(length=128), nullable=False),
            sa.Column('wins', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('losses', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('draws', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_games', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('avatar', sa.String(length=512), nullable=True),
            sa.Column('bio', sa.String(length=200), nullable=False, server_default=''),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('last_login', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint('id'),
        )
        with op.batch_alter_table('user') as batch_op:
            batch_op.create_index('ix_user_username', ['username'], unique=True)
            batch_op.create_index('ix_user_email', ['email'], unique=True)
            batch_op.create_index('ix_user_wins', ['wins'], unique=False)
            batch_op.create_index('ix_user_total_games', ['total_games'], unique=False)
            batch_op.create_index('ix_user_created_at', ['created_at'], unique=False)

    if 'game_session' not in existing_tables:
        op.create_table(
            'game_session',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('player1_name', sa.String(length=50), nullable=False),
            sa.Column('player2_name', sa.String(length=50), nullable=False),
            sa.Column('player1_id', sa.Integer(), nullable=True),
            sa.Column('player2_id', sa.Integer(), nullable=True),
            sa.Column('player1_wins', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('player2_wins', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('draws', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_rounds', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('session_type', sa.String(length=16), nullable=False, server_default='guest'),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(['player1_id'], ['user.id'], ondelete='SET NULL'),
            sa.ForeignKeyConstraint(['player2_id'], ['user.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id'),
        )
        with op.batch_alter_table('game_session') as batch_op:
            batch_op.create_index('ix_game_session_player1_id', ['player1_id'], unique=False)
            batch_op.create_index('ix_game_session_player2_id', ['player2_id'], unique=False)
            batch_op.create_index('ix_game_session_total_rounds', ['total_rounds'], unique=False)
            batch_op.create_index('ix_game_session_is_active', ['is_active'], unique=False)
            batch_op.create_index('ix_game_session_session_type', ['session_type'], unique=False)
            batch_op.create_index('ix_game_session_created_at', ['created_at'], unique=False)

    if 'game_round' not in existing_tables:
        op.create_table(
            'game_round',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('session_id', sa.Integer(), nullable=False),
            sa.Column('winner', sa.String(length=16), nullable=False),
            sa.Column('board', sa.JSON(), nullable=False),
            sa.Column('moves', sa.JSON(), nullable=False),
            sa.Column('completed_at', sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(['session_id'], ['game_session.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id'),
        )
        with op.batch_alter_table('game_round') as batch_op:
            batch_op.create_index('ix_game_round_session_id', ['session_id'], unique=False)


def downgrade():
    op.drop_table('game_round')
    op.drop_table('game_session')
    op.drop_table('user')
