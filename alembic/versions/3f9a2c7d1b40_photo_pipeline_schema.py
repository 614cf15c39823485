"""photo_pipeline_schema

Revision ID: 3f9a2c7d1b40
Revises:
Create Date: 2026-10-17 09:12:44.518203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f9a2c7d1b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


PHOTO_STATUSES = ('PENDING', 'UPLOADING', 'UPLOADED', 'PROCESSING', 'RETRYING', 'COMPLETED', 'FAILED')
PHOTO_EVENT_TYPES = (
    'PHOTO_UPLOAD_STARTED',
    'PHOTO_UPLOADED',
    'PHOTO_PROCESSING_STARTED',
    'PHOTO_VALIDATION_COMPLETED',
    'PHOTO_THUMBNAIL_GENERATED',
    'PHOTO_METADATA_EXTRACTED',
    'PHOTO_PROCESSING_COMPLETED',
    'PHOTO_PROCESSING_FAILED',
    'PHOTO_RETRY_SCHEDULED',
    'PHOTO_DELETED',
    'PHOTO_CACHE_INVALIDATED',
)
COMMAND_TYPES = ('PROCESS_PHOTO', 'GENERATE_THUMBNAIL', 'EXTRACT_METADATA', 'VALIDATE_PHOTO', 'DELETE_PHOTO')
QUEUE_STATUSES = ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', 'DEAD_LETTER')


def upgrade() -> None:
    """Create photos, photo_events and processing_queue tables"""
    op.create_table(
        'photos',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('original_filename', sa.String(length=500), nullable=False),
        sa.Column('content_type', sa.String(length=100), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=False),
        sa.Column('checksum', sa.String(length=64), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('tags', sa.Text(), nullable=True),
        sa.Column('storage_key', sa.String(length=500), nullable=True),
        sa.Column('storage_url', sa.Text(), nullable=True),
        sa.Column('thumbnail_url', sa.Text(), nullable=True),
        sa.Column('width', sa.Integer(), nullable=True),
        sa.Column('height', sa.Integer(), nullable=True),
        sa.Column('photo_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('status', sa.Enum(*PHOTO_STATUSES, name='photo_status'), nullable=False),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('manual_retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('uploaded_at', sa.DateTime(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('storage_key'),
    )
    op.create_index('ix_photos_user_id', 'photos', ['user_id'])
    op.create_index('ix_photos_status', 'photos', ['status'])
    op.create_index('ix_photos_checksum', 'photos', ['checksum'], unique=True)

    # No foreign key to photos: the audit trail outlives deleted photos
    op.create_table(
        'photo_events',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('photo_id', sa.UUID(), nullable=False),
        sa.Column('event_type', sa.Enum(*PHOTO_EVENT_TYPES, name='photo_event_type'), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('correlation_id', sa.String(length=64), nullable=True),
        sa.Column('user_id', sa.String(length=255), nullable=True),
        sa.Column('source', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_photo_events_photo_id', 'photo_events', ['photo_id'])
    op.create_index('ix_photo_events_timestamp', 'photo_events', ['timestamp'])
    op.create_index('ix_photo_events_correlation_id', 'photo_events', ['correlation_id'])

    op.create_table(
        'processing_queue',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('photo_id', sa.UUID(), nullable=True),
        sa.Column('command_type', sa.Enum(*COMMAND_TYPES, name='queue_command_type'), nullable=False),
        sa.Column('status', sa.Enum(*QUEUE_STATUSES, name='queue_status'), nullable=False),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_retries', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('next_retry_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('topic', sa.String(length=255), nullable=True),
        sa.Column('event_type', sa.String(length=100), nullable=True),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('correlation_id', sa.String(length=64), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_processing_queue_photo_id', 'processing_queue', ['photo_id'])
    op.create_index('ix_processing_queue_status', 'processing_queue', ['status'])
    op.create_index('ix_processing_queue_correlation_id', 'processing_queue', ['correlation_id'])
    # Poller scans PENDING items by retry time
    op.create_index('ix_processing_queue_status_next_retry_at', 'processing_queue', ['status', 'next_retry_at'])


def downgrade() -> None:
    """Drop pipeline tables and enum types"""
    op.drop_index('ix_processing_queue_status_next_retry_at', table_name='processing_queue')
    op.drop_index('ix_processing_queue_correlation_id', table_name='processing_queue')
    op.drop_index('ix_processing_queue_status', table_name='processing_queue')
    op.drop_index('ix_processing_queue_photo_id', table_name='processing_queue')
    op.drop_table('processing_queue')

    op.drop_index('ix_photo_events_correlation_id', table_name='photo_events')
    op.drop_index('ix_photo_events_timestamp', table_name='photo_events')
    op.drop_index('ix_photo_events_photo_id', table_name='photo_events')
    op.drop_table('photo_events')

    op.drop_index('ix_photos_checksum', table_name='photos')
    op.drop_index('ix_photos_status', table_name='photos')
    op.drop_index('ix_photos_user_id', table_name='photos')
    op.drop_table('photos')

    for enum_name in ('queue_status', 'queue_command_type', 'photo_event_type', 'photo_status'):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
