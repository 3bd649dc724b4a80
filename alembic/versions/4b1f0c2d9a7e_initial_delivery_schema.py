"""initial_delivery_schema

Revision ID: 4b1f0c2d9a7e
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4b1f0c2d9a7e'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TRANSFER_STATUSES = ('offered', 'invoiced', 'paid', 'delivered', 'acknowledged', 'disputed', 'refunded')
PAYMENT_STATUSES = ('pending', 'paid', 'failed', 'refunded')


def upgrade() -> None:
    op.create_table('users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('public_key', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table('products',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('content_type', sa.String(), nullable=False),
        sa.Column('size_bytes', sa.BigInteger(), nullable=False),
        sa.Column('content_hash', sa.String(), nullable=False),
        sa.Column('encryption_algorithm', sa.String(), nullable=False),
        sa.Column('storage_type', sa.String(), nullable=False),
        sa.Column('storage_pointer', sa.String(), nullable=False),
        sa.Column('manifest', sa.JSON(), nullable=True),
        sa.Column('required_inputs', sa.JSON(), nullable=False),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_products_owner_id', 'products', ['owner_id'])

    op.create_table('upload_sessions',
        sa.Column('upload_id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('storage_prefix', sa.String(), nullable=False),
        sa.Column('chunk_size', sa.Integer(), nullable=False),
        sa.Column('total_size', sa.BigInteger(), nullable=False),
        sa.Column('expected_chunks', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('upload_id')
    )
    op.create_index('ix_upload_sessions_product_id', 'upload_sessions', ['product_id'])
    op.create_index('ix_upload_sessions_expires_at', 'upload_sessions', ['expires_at'])

    op.create_table('upload_chunks',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('upload_id', sa.Uuid(), nullable=False),
        sa.Column('chunk_index', sa.Integer(), nullable=False),
        sa.Column('hash', sa.String(), nullable=False),
        sa.Column('size', sa.Integer(), nullable=False),
        sa.Column('uploaded_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['upload_id'], ['upload_sessions.upload_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('upload_id', 'chunk_index', name='uq_upload_chunks_upload_index')
    )
    op.create_index('ix_upload_chunks_upload_id', 'upload_chunks', ['upload_id'])

    op.create_table('transfers',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('from_owner_id', sa.Uuid(), nullable=False),
        sa.Column('to_recipient_id', sa.Uuid(), nullable=False),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False),
        sa.Column('status', sa.Enum(*TRANSFER_STATUSES, name='transfer_status'), nullable=False),
        sa.Column('policy', sa.JSON(), nullable=False),
        sa.Column('buyer_inputs', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['from_owner_id'], ['users.id']),
        sa.ForeignKeyConstraint(['to_recipient_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_transfers_product_id', 'transfers', ['product_id'])
    op.create_index('ix_transfers_from_owner_id', 'transfers', ['from_owner_id'])
    op.create_index('ix_transfers_to_recipient_id', 'transfers', ['to_recipient_id'])
    op.create_index('ix_transfers_product_recipient', 'transfers', ['product_id', 'to_recipient_id'])

    op.create_table('delivery_receipts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('transfer_id', sa.Uuid(), nullable=False),
        sa.Column('client_hash', sa.String(), nullable=False),
        sa.Column('signature', sa.String(), nullable=False),
        sa.Column('meta', sa.JSON(), nullable=False),
        sa.Column('delivered_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['transfer_id'], ['transfers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transfer_id')
    )

    op.create_table('payment_intents',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('transfer_id', sa.Uuid(), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False),
        sa.Column('status', sa.Enum(*PAYMENT_STATUSES, name='payment_status'), nullable=False),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('provider_ref', sa.String(), nullable=True),
        sa.Column('checkout_url', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['transfer_id'], ['transfers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transfer_id')
    )

    op.create_table('product_keys',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('recipient_id', sa.Uuid(), nullable=False),
        sa.Column('key_envelope', sa.Text(), nullable=False),
        sa.Column('algorithm', sa.String(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['recipient_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'recipient_id', name='uq_product_keys_product_recipient')
    )
    op.create_index('ix_product_keys_product_id', 'product_keys', ['product_id'])
    op.create_index('ix_product_keys_recipient_id', 'product_keys', ['recipient_id'])

    op.create_table('notifications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False),
        sa.Column('resource_type', sa.String(), nullable=True),
        sa.Column('resource_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('target_type', sa.String(), nullable=True),
        sa.Column('target_id', sa.String(), nullable=True),
        sa.Column('metadata_json', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('notifications')
    op.drop_table('product_keys')
    op.drop_table('payment_intents')
    op.drop_table('delivery_receipts')
    op.drop_table('transfers')
    op.drop_table('upload_chunks')
    op.drop_table('upload_sessions')
    op.drop_table('products')
    op.drop_table('users')
    sa.Enum(name='payment_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='transfer_status').drop(op.get_bind(), checkfirst=True)
