"""Initial backup manager schema

Revision ID: a7c3e91d5b20
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a7c3e91d5b20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'backups',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('filename', sa.String(255), nullable=False),
        sa.Column('storage_path', sa.String(1024), nullable=False),
        sa.Column('size_bytes', sa.BigInteger(), nullable=True),
        sa.Column('kind', sa.Enum('MANUAL', 'SCHEDULED', 'UPLOADED', name='backupkind'), nullable=False),
        sa.Column('is_protected', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('sequence', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
    )
    op.create_index('ix_backups_kind', 'backups', ['kind'])
    op.create_index('ix_backups_created_at', 'backups', ['created_at'])

    op.create_table(
        'settings',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('key', sa.String(100), nullable=False),
        sa.Column('value', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_settings_key', 'settings', ['key'], unique=True)

    op.create_table(
        'log_entries',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('level', sa.Enum('INFO', 'WARN', 'ERROR', name='loglevel'), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_log_entries_level', 'log_entries', ['level'])


def downgrade() -> None:
    op.drop_index('ix_log_entries_level', table_name='log_entries')
    op.drop_table('log_entries')
    op.drop_index('ix_settings_key', table_name='settings')
    op.drop_table('settings')
    op.drop_index('ix_backups_created_at', table_name='backups')
    op.drop_index('ix_backups_kind', table_name='backups')
    op.drop_table('backups')
    sa.Enum(name='loglevel').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='backupkind').drop(op.get_bind(), checkfirst=True)
