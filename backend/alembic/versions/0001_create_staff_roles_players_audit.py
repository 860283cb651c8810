"""Create staff, staff roles, server API keys, players and audit logs

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str | None = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    """Apply schema changes."""
    op.create_table(
        'staff_roles',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('server_name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('order', sa.Integer(), server_default='999', nullable=False),
        sa.Column('permissions', sa.JSON(), nullable=False),
        sa.Column('is_default', sa.Boolean(), server_default='false', nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_staff_roles')),
        sa.UniqueConstraint('server_name', 'name', name='uq_staff_roles_server_name'),
        sa.UniqueConstraint('server_name', 'slug', name='uq_staff_roles_server_slug'),
    )
    op.create_index('ix_staff_roles_server_name', 'staff_roles', ['server_name'], unique=False)

    op.create_table(
        'staff',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('server_name', sa.String(length=255), nullable=False),
        sa.Column('username', sa.String(length=100), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=100), nullable=False),
        sa.Column('assigned_minecraft_uuid', sa.String(length=36), nullable=True),
        sa.Column('assigned_minecraft_username', sa.String(length=32), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_staff')),
        sa.UniqueConstraint('server_name', 'username', name='uq_staff_server_username'),
        sa.UniqueConstraint('server_name', 'email', name='uq_staff_server_email'),
    )
    op.create_index('ix_staff_server_name', 'staff', ['server_name'], unique=False)
    op.create_index('ix_staff_role', 'staff', ['role'], unique=False)

    op.create_table(
        'server_api_keys',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('server_name', sa.String(length=255), nullable=False),
        sa.Column('key_hash', sa.String(length=64), nullable=False),
        sa.Column('revoked', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_server_api_keys')),
        sa.UniqueConstraint('key_hash', name=op.f('uq_server_api_keys_key_hash')),
    )
    op.create_index('ix_server_api_keys_server_name', 'server_api_keys', ['server_name'], unique=False)

    op.create_table(
        'players',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('server_name', sa.String(length=255), nullable=False),
        sa.Column('minecraft_uuid', sa.String(length=36), nullable=False),
        sa.Column('usernames', sa.JSON(), nullable=False),
        sa.Column('notes', sa.JSON(), nullable=False),
        sa.Column('ip_list', sa.JSON(), nullable=False),
        sa.Column('punishments', sa.JSON(), nullable=False),
        sa.Column('pending_notifications', sa.JSON(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_players')),
        sa.UniqueConstraint('server_name', 'minecraft_uuid', name='uq_players_server_uuid'),
    )
    op.create_index('ix_players_server_name', 'players', ['server_name'], unique=False)

    op.create_table(
        'audit_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('server_name', sa.String(length=255), nullable=False),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('actor_type', sa.String(length=50), nullable=False),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('entity_type', sa.String(length=100), nullable=False),
        sa.Column('entity_id', sa.String(length=255), nullable=False),
        sa.Column('before', sa.JSON(), nullable=True),
        sa.Column('after', sa.JSON(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(
            ['actor_id'], ['staff.id'], name=op.f('fk_audit_logs_actor_id_staff'), ondelete='SET NULL'
        ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_audit_logs')),
        sa.CheckConstraint("actor_type IN ('user', 'system', 'anonymous')", name='valid_actor_type'),
    )
    for column in ('server_name', 'actor_id', 'actor_type', 'action', 'entity_type', 'entity_id', 'created_at'):
        op.create_index(f'ix_audit_logs_{column}', 'audit_logs', [column], unique=False)


def downgrade() -> None:
    """Revert schema changes."""
    for column in ('server_name', 'actor_id', 'actor_type', 'action', 'entity_type', 'entity_id', 'created_at'):
        op.drop_index(f'ix_audit_logs_{column}', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('ix_players_server_name', table_name='players')
    op.drop_table('players')
    op.drop_index('ix_server_api_keys_server_name', table_name='server_api_keys')
    op.drop_table('server_api_keys')
    op.drop_index('ix_staff_role', table_name='staff')
    op.drop_index('ix_staff_server_name', table_name='staff')
    op.drop_table('staff')
    op.drop_index('ix_staff_roles_server_name', table_name='staff_roles')
    op.drop_table('staff_roles')
