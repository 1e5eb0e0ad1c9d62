"""Create events, event_images and upload_intents tables

Revision ID: 001_event_gallery_tables
Revises:
Create Date: 2026-10-19

- events: Event metadata, owned by a user
- event_images: ORIGINAL/WATERMARK rendition rows, unique per (event, variant, order)
- upload_intents: Planned storage keys per batch, swept when a batch fails
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_event_gallery_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('date', sa.DateTime(), nullable=False),
        sa.Column('location', sa.String(), nullable=False),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_events_category', 'events', ['category'])
    op.create_index('ix_events_user_id', 'events', ['user_id'])

    op.create_table(
        'event_images',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('event_id', sa.Integer(), sa.ForeignKey('events.id'), nullable=False),
        sa.Column('url', sa.String(), nullable=False),
        sa.Column('storage_key', sa.String(), nullable=True),
        sa.Column('variant', sa.Enum('ORIGINAL', 'WATERMARK', name='imagevariant'), nullable=False),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('original_id', sa.Integer(), sa.ForeignKey('event_images.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('event_id', 'variant', 'order', name='uq_event_images_event_variant_order'),
    )
    op.create_index('ix_event_images_event_id', 'event_images', ['event_id'])
    op.create_index('ix_event_images_original_id', 'event_images', ['original_id'])

    op.create_table(
        'upload_intents',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column(
            'status',
            sa.Enum('PENDING', 'FULFILLED', 'ABANDONED', 'RECONCILED', name='intentstatus'),
            nullable=False,
            server_default='PENDING'
        ),
        sa.Column('storage_keys', sa.JSON(), nullable=True),
        sa.Column('event_id', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_upload_intents_status', 'upload_intents', ['status'])
    op.create_index('ix_upload_intents_created_at', 'upload_intents', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_upload_intents_created_at', table_name='upload_intents')
    op.drop_index('ix_upload_intents_status', table_name='upload_intents')
    op.drop_table('upload_intents')

    op.drop_index('ix_event_images_original_id', table_name='event_images')
    op.drop_index('ix_event_images_event_id', table_name='event_images')
    op.drop_table('event_images')

    op.drop_index('ix_events_user_id', table_name='events')
    op.drop_index('ix_events_category', table_name='events')
    op.drop_table('events')

    sa.Enum(name='intentstatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='imagevariant').drop(op.get_bind(), checkfirst=True)
