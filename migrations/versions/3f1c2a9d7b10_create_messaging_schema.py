"""create messaging schema

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-19 09:12:44.108372

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Step 1: Conversations and their canonical participants
    op.create_table(
        'conversations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('conversation_type', sa.String(10), nullable=False, server_default='direct'),
        sa.Column('participant_one', sa.String(320), nullable=False),
        sa.Column('participant_two', sa.String(320), nullable=False),
        sa.Column('conversation_key', sa.String(64), nullable=False),
        sa.Column('last_message_at', sa.DateTime(timezone=True)),
        sa.Column('message_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('conversation_key', name='uq_conversations_conversation_key'),
        sa.CheckConstraint(
            "conversation_type IN ('direct', 'group')", name='conversations_type_check'
        ),
        sa.CheckConstraint(
            'participant_one < participant_two', name='conversations_participant_order_check'
        ),
        sa.CheckConstraint('message_count >= 0', name='conversations_message_count_check'),
    )
    op.create_index('ix_conversations_participant_one', 'conversations', ['participant_one'])
    op.create_index('ix_conversations_participant_two', 'conversations', ['participant_two'])
    op.create_index('ix_conversations_last_message_at', 'conversations', ['last_message_at'])

    op.create_table(
        'conversation_participants',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'conversation_id',
            sa.Uuid(),
            sa.ForeignKey('conversations.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('address', sa.String(320), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.UniqueConstraint('conversation_id', 'address', name='uq_conversation_participant'),
    )
    op.create_index(
        'ix_conversation_participants_address', 'conversation_participants', ['address']
    )

    # Step 2: Messages
    op.create_table(
        'messages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'conversation_id',
            sa.Uuid(),
            sa.ForeignKey('conversations.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('type', sa.String(10), nullable=False),
        sa.Column('to', sa.JSON(), nullable=False),
        sa.Column('from_address', sa.String(320), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('direction', sa.String(10), nullable=False, server_default='outbound'),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('messaging_provider_id', sa.String(255)),
        sa.Column('provider_name', sa.String(50)),
        sa.Column('delivery_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('queued_at', sa.DateTime(timezone=True)),
        sa.Column('sent_at', sa.DateTime(timezone=True)),
        sa.Column('delivered_at', sa.DateTime(timezone=True)),
        sa.Column('failed_at', sa.DateTime(timezone=True)),
        sa.Column('failure_reason', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("type IN ('sms', 'mms', 'email')", name='messages_type_check'),
        sa.CheckConstraint(
            "direction IN ('inbound', 'outbound')", name='messages_direction_check'
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'queued', 'processing', 'sent', 'delivered', 'failed', 'received')",
            name='messages_status_check',
        ),
    )
    op.create_index('ix_messages_conversation_id', 'messages', ['conversation_id'])
    op.create_index('ix_messages_status', 'messages', ['status'])

    # Step 3: Attachments, owned by their message
    op.create_table(
        'attachments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'message_id',
            sa.Uuid(),
            sa.ForeignKey('messages.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('url', sa.String(2048)),
        sa.Column('blob', sa.LargeBinary()),
        sa.Column('attachment_type', sa.String(20), nullable=False),
        sa.Column('filename', sa.String(255)),
        sa.Column('content_type', sa.String(255)),
        sa.Column('size', sa.BigInteger()),
        sa.Column('checksum', sa.String(64)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint('(url IS NULL) <> (blob IS NULL)', name='attachments_url_xor_blob'),
        sa.CheckConstraint(
            "attachment_type IN ('image', 'document', 'video', 'audio', 'archive', 'text', 'other')",
            name='attachments_type_check',
        ),
    )
    op.create_index('ix_attachments_message_id', 'attachments', ['message_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('attachments')
    op.drop_table('messages')
    op.drop_table('conversation_participants')
    op.drop_table('conversations')
