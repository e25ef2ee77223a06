"""create clients, events, user_profiles and predictions tables

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create tenant-scoped tracking and prediction tables."""
    op.create_table(
        'clients',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('api_key', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_clients_api_key', 'clients', ['api_key'], unique=True)

    op.create_table(
        'events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('client_id', sa.String(length=36), nullable=False),
        sa.Column('event_id', sa.String(length=64), nullable=True),
        sa.Column('user_id', sa.String(length=255), nullable=True),
        sa.Column('session_id', sa.String(length=255), nullable=True),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('page_url', sa.String(length=2048), nullable=True),
        sa.Column('properties', sa.JSON(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'event_id', name='uq_events_client_event_id'),
    )
    # Scoring reads a user's events newest first
    op.create_index('ix_events_client_user_timestamp', 'events', ['client_id', 'user_id', 'timestamp'])
    op.create_index('ix_events_event_type', 'events', ['event_type'])

    op.create_table(
        'user_profiles',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('client_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('first_seen', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('last_active', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('traits', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'user_id', name='uq_user_profiles_client_user'),
    )

    op.create_table(
        'predictions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('client_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('risk_score', sa.Float(), nullable=False),
        sa.Column('risk_factors', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('risk_score >= 0 AND risk_score <= 1', name='ck_predictions_risk_score_range'),
    )
    op.create_index(
        'ix_predictions_client_user_created', 'predictions', ['client_id', 'user_id', 'created_at']
    )
    op.create_index('ix_predictions_client_risk', 'predictions', ['client_id', 'risk_score'])


def downgrade() -> None:
    """Drop tracking and prediction tables."""
    op.drop_index('ix_predictions_client_risk', table_name='predictions')
    op.drop_index('ix_predictions_client_user_created', table_name='predictions')
    op.drop_table('predictions')
    op.drop_table('user_profiles')
    op.drop_index('ix_events_event_type', table_name='events')
    op.drop_index('ix_events_client_user_timestamp', table_name='events')
    op.drop_table('events')
    op.drop_index('ix_clients_api_key', table_name='clients')
    op.drop_table('clients')
